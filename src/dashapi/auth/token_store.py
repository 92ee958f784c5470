"""Session token storage.

The store owns the current ``TokenPair``. Updates replace the whole frozen
pair in one assignment, so concurrent readers always see a consistent
snapshot and never a half-written session.

Two implementations are provided:
- InMemoryTokenStore: process-local session
- JsonFileTokenStore: session persisted to a JSON file between runs
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from dashapi.core.logging import get_logger

_logger = get_logger("auth.token_store")


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh credentials for one session.

    Attributes:
        access_token: Bearer token sent on every request.
        refresh_token: Token exchanged for a new pair. None when the server
            keeps it in an HttpOnly cookie instead.
        expires_in: Server-reported lifetime, e.g. ``"15m"`` or ``900000``.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: str | int | None = None

    @classmethod
    def from_wire(cls, payload: Any) -> TokenPair | None:
        """Build a pair from ``{accessToken, refreshToken?, expiresIn?}``.

        Returns None when the payload carries no usable access token.
        """
        if not isinstance(payload, Mapping):
            return None
        access = payload.get("accessToken")
        if not isinstance(access, str) or not access:
            return None
        refresh = payload.get("refreshToken")
        expires = payload.get("expiresIn")
        return cls(
            access_token=access,
            refresh_token=refresh if isinstance(refresh, str) and refresh else None,
            expires_in=expires if isinstance(expires, (str, int)) else None,
        )

    def to_wire(self) -> dict[str, Any]:
        result: dict[str, Any] = {"accessToken": self.access_token}
        if self.refresh_token is not None:
            result["refreshToken"] = self.refresh_token
        if self.expires_in is not None:
            result["expiresIn"] = self.expires_in
        return result

    def __repr__(self) -> str:
        return f"TokenPair(access_token=***, refresh_token={'***' if self.refresh_token else None})"


@runtime_checkable
class TokenStore(Protocol):
    """Read and atomic-update operations on the current session."""

    def get_tokens(self) -> TokenPair | None: ...

    def get_user(self) -> dict[str, Any] | None: ...

    def set_session(self, tokens: TokenPair, user: dict[str, Any] | None = None) -> None: ...

    def update_tokens(self, tokens: TokenPair) -> None: ...

    def clear_session(self) -> None: ...


class InMemoryTokenStore:
    """Token store holding the session in process memory."""

    def __init__(
        self,
        tokens: TokenPair | None = None,
        user: dict[str, Any] | None = None,
    ) -> None:
        self._tokens = tokens
        self._user = user

    def get_tokens(self) -> TokenPair | None:
        return self._tokens

    def get_user(self) -> dict[str, Any] | None:
        return self._user

    def set_session(self, tokens: TokenPair, user: dict[str, Any] | None = None) -> None:
        """Start a session after login."""
        self._tokens = tokens
        self._user = user
        self._persist()
        _logger.info("token_store.session_set", has_refresh=tokens.refresh_token is not None)

    def update_tokens(self, tokens: TokenPair) -> None:
        """Replace the token pair, keeping the session's user."""
        self._tokens = tokens
        self._persist()
        _logger.debug("token_store.tokens_updated")

    def clear_session(self) -> None:
        """Drop tokens and user (failed refresh or logout)."""
        had_session = self._tokens is not None
        self._tokens = None
        self._user = None
        self._persist()
        if had_session:
            _logger.info("token_store.session_cleared")

    def _persist(self) -> None:
        """Hook for durable subclasses."""


class JsonFileTokenStore(InMemoryTokenStore):
    """Token store persisted to a JSON file.

    File layout: ``{"tokens": {accessToken, refreshToken?, expiresIn?} | null,
    "user": {...} | null}``. Writes go through a temp file and a rename, and
    the file is created readable by the owner only.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        tokens, user = self._load()
        super().__init__(tokens, user)

    def _load(self) -> tuple[TokenPair | None, dict[str, Any] | None]:
        if not self.path.exists():
            return None, None
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            _logger.warning("token_store.load_failed", path=str(self.path), error=str(e))
            return None, None
        if not isinstance(data, dict):
            _logger.warning("token_store.load_failed", path=str(self.path), error="not a mapping")
            return None, None
        user = data.get("user")
        return TokenPair.from_wire(data.get("tokens")), user if isinstance(user, dict) else None

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tokens = self.get_tokens()
        payload = {
            "tokens": tokens.to_wire() if tokens else None,
            "user": self.get_user(),
        }
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(payload, f, indent=2)
        temp_file.replace(self.path)


__all__ = [
    "InMemoryTokenStore",
    "JsonFileTokenStore",
    "TokenPair",
    "TokenStore",
]
