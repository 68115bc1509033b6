"""HTTP surface for mailpipe.

Provides a FastAPI app with:
- Gmail push notification webhook
- Health check
- Manual sync trigger
- Read-only job and sync-state listings
"""

from mailpipe.web.app import create_app

__all__ = ["create_app"]
