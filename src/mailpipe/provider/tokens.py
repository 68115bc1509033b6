"""Access token sources for the provider client.

Tokens are obtained out of band (OAuth consent and refresh happen
elsewhere). The file provider re-reads its JSON file when it changes, so
an external refresher can rotate tokens without restarting the service.

Token file format:
    {"alice@example.com": "ya29.a0Af...", "bob@example.com": "ya29.b1Bg..."}
"""

import json
import threading
from pathlib import Path
from typing import Protocol

from mailpipe.core.errors import AuthenticationError
from mailpipe.core.logging import get_logger

logger = get_logger(__name__)


class TokenProvider(Protocol):
    def get_access_token(self, mailbox: str) -> str: ...


class StaticTokenProvider:
    """Serves a fixed token (single-mailbox deployments and tests)."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("StaticTokenProvider requires a non-empty token")
        self._token = token

    def get_access_token(self, mailbox: str) -> str:
        return self._token


class TokenFileProvider:
    """Reads per-mailbox tokens from a JSON file.

    Args:
        path: Path to the JSON token map (auth.token_cache_path)
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._tokens: dict[str, str] = {}
        self._mtime: float = 0.0

    def _reload_if_changed(self) -> None:
        try:
            mtime = self.path.stat().st_mtime
        except OSError as e:
            raise AuthenticationError(
                f"Token file {self.path} is not readable: {e}. "
                "Write access tokens to auth.token_cache_path."
            ) from e

        if mtime <= self._mtime and self._tokens:
            return

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise AuthenticationError(f"Token file {self.path} is invalid: {e}") from e

        if not isinstance(data, dict):
            raise AuthenticationError(
                f"Token file {self.path} must map mailbox addresses to tokens"
            )

        self._tokens = {str(k).lower(): str(v) for k, v in data.items() if v}
        self._mtime = mtime
        logger.debug("token_file_loaded", path=str(self.path), mailboxes=len(self._tokens))

    def get_access_token(self, mailbox: str) -> str:
        with self._lock:
            self._reload_if_changed()
            token = self._tokens.get(mailbox.lower())

        if not token:
            raise AuthenticationError(
                f"No access token for {mailbox} in {self.path}. "
                "Complete the OAuth flow for this mailbox and store its token."
            )
        return token
