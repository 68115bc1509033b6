"""Mailbox provider module.

Provides the Gmail REST client and the interface the rest of mailpipe
programs against:
- MailboxClient protocol (what the sync engine and handlers call)
- GmailClient with retry, backoff and rate limiting
- Access token sources
- Parsed change-log and message types

Usage:
    from mailpipe.provider import GmailClient, TokenFileProvider

    tokens = TokenFileProvider("data/tokens.json")
    client = GmailClient("alice@example.com", tokens)
    page = client.list_history("1000")
"""

from mailpipe.provider.base import MailboxClient
from mailpipe.provider.client import GmailClient
from mailpipe.provider.models import (
    HistoryPage,
    HistoryRecord,
    LabelChange,
    MessageRef,
    MessageSummary,
)
from mailpipe.provider.tokens import StaticTokenProvider, TokenFileProvider, TokenProvider

__all__ = [
    "MailboxClient",
    "GmailClient",
    "HistoryPage",
    "HistoryRecord",
    "LabelChange",
    "MessageRef",
    "MessageSummary",
    "TokenProvider",
    "StaticTokenProvider",
    "TokenFileProvider",
]
