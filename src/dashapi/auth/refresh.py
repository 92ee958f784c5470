"""Single-flight access-token refresh.

Any number of requests may hit 401 at the same time. The first one starts a
refresh task; everyone else awaits that same task, so the refresh endpoint is
called once per authentication-failure episode. Waiters await the task
through ``asyncio.shield``, so a cancelled request never cancels the refresh
other requests are waiting on.

State machine::

    IDLE -> REFRESHING -> RESOLVED | FAILED -> IDLE

The handle is released one loop turn after the task settles so a later 401
starts a fresh attempt.

Failure policy
==============

| RefreshFailure | Cause | Clears session + redirects |
|----------------|-------|----------------------------|
| REJECTED | 401 / 403 from the refresh endpoint | yes |
| INVALID_REQUEST | any other non-2xx except 5xx, 408, 429 | yes |
| INVALIDATED | 2xx whose envelope reports an error or VALIDATION_ERROR | yes |
| SERVER_UNAVAILABLE | 5xx, 408, 429 | no |
| NO_TOKEN | 2xx success without an access token | no |
| NETWORK | transport failure or timeout | no |
| MALFORMED | 2xx body that is not JSON | no |
| STORE | new tokens could not be saved | no |

Transient failures leave the existing session alone so a network blip never
signs the user out.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import replace
from enum import Enum
from typing import Any

import httpx

from dashapi.auth.redirect import LoginRedirect
from dashapi.auth.token_store import TokenPair, TokenStore
from dashapi.core.envelope import normalize
from dashapi.core.errors import RETRYABLE_CLIENT_STATUSES, ErrorCode
from dashapi.core.logging import get_logger
from dashapi.utils.tasks import log_task_exception

_logger = get_logger("refresh")


class RefreshState(str, Enum):
    """Lifecycle of the shared refresh handle."""

    IDLE = "idle"
    REFRESHING = "refreshing"
    RESOLVED = "resolved"
    FAILED = "failed"


class RefreshFailure(str, Enum):
    """Why a refresh attempt produced no tokens."""

    REJECTED = "rejected"
    INVALID_REQUEST = "invalid_request"
    INVALIDATED = "invalidated"
    SERVER_UNAVAILABLE = "server_unavailable"
    NO_TOKEN = "no_token"
    NETWORK = "network"
    MALFORMED = "malformed"
    STORE = "store"


# True where the failure proves the session is gone.
FORCES_LOGOUT: dict[RefreshFailure, bool] = {
    RefreshFailure.REJECTED: True,
    RefreshFailure.INVALID_REQUEST: True,
    RefreshFailure.INVALIDATED: True,
    RefreshFailure.SERVER_UNAVAILABLE: False,
    RefreshFailure.NO_TOKEN: False,
    RefreshFailure.NETWORK: False,
    RefreshFailure.MALFORMED: False,
    RefreshFailure.STORE: False,
}

_unmapped = set(RefreshFailure) - set(FORCES_LOGOUT)
if _unmapped:
    raise RuntimeError(f"No logout policy for: {sorted(f.value for f in _unmapped)}")


def failure_for_status(status: int) -> RefreshFailure:
    """Map a non-2xx refresh status to its failure mode."""
    if status in (401, 403):
        return RefreshFailure.REJECTED
    if status >= 500 or status in RETRYABLE_CLIENT_STATUSES:
        return RefreshFailure.SERVER_UNAVAILABLE
    return RefreshFailure.INVALID_REQUEST


def _extract_tokens(data: Any) -> TokenPair | None:
    """Read tokens from ``data`` or ``data.tokens``; both variants exist server-side."""
    tokens = TokenPair.from_wire(data)
    if tokens is None and isinstance(data, Mapping):
        tokens = TokenPair.from_wire(data.get("tokens"))
    return tokens


class RefreshCoordinator:
    """Owns the single in-flight refresh for one session.

    Args:
        client: HTTP client shared with the request executor (cookie jar
            included, so HttpOnly refresh cookies are sent).
        store: Session token store.
        redirect: One-shot login redirect fired on forced logout.
        refresh_url: Absolute URL of the refresh endpoint.
        timeout: Deadline for the refresh call, in seconds.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: TokenStore,
        redirect: LoginRedirect,
        refresh_url: str,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._store = store
        self._redirect = redirect
        self.refresh_url = refresh_url
        self._timeout = timeout
        self._task: asyncio.Task[TokenPair | None] | None = None
        self._state = RefreshState.IDLE
        self._attempts = 0
        self.last_failure: RefreshFailure | None = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def attempts(self) -> int:
        """Number of refresh calls issued so far."""
        return self._attempts

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self, failed_token: str | None = None) -> TokenPair | None:
        """Refresh the session, joining an in-flight refresh if there is one.

        Args:
            failed_token: Access token the rejected request was sent with.
                When the store already holds a different access token, the
                session was rotated after that request left and the stored
                pair is returned without calling the refresh endpoint.

        Returns:
            The new TokenPair, or None if the refresh failed.
        """
        task = self._task
        if task is None and failed_token is not None:
            current = self._store.get_tokens()
            if current is not None and current.access_token != failed_token:
                _logger.debug("refresh.already_rotated")
                return current
        if task is None:
            self._state = RefreshState.REFRESHING
            task = asyncio.create_task(self._run(), name="dashapi-token-refresh")
            task.add_done_callback(self._on_settled)
            self._task = task
        else:
            _logger.debug("refresh.joined", state=self._state.value)
        return await asyncio.shield(task)

    async def aclose(self) -> None:
        """Cancel an in-flight refresh. Used at teardown."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._task = None
        self._state = RefreshState.IDLE

    def _on_settled(self, task: asyncio.Task[TokenPair | None]) -> None:
        exc = log_task_exception(task, _logger, "refresh.crashed")
        if task.cancelled() or exc is not None or task.result() is None:
            self._state = RefreshState.FAILED
        else:
            self._state = RefreshState.RESOLVED
        asyncio.get_running_loop().call_soon(self._release, task)

    def _release(self, task: asyncio.Task[TokenPair | None]) -> None:
        if self._task is task:
            self._task = None
            self._state = RefreshState.IDLE

    async def _run(self) -> TokenPair | None:
        self._attempts += 1
        current = self._store.get_tokens()
        refresh_token = current.refresh_token if current else None

        headers = {"Content-Type": "application/json"}
        content: bytes | None = None
        if refresh_token:
            headers["Authorization"] = f"Bearer {refresh_token}"
            content = json.dumps({"refreshToken": refresh_token}).encode()

        _logger.info("refresh.started", refresh_via="header" if refresh_token else "cookie")
        try:
            response = await asyncio.wait_for(
                self._client.post(
                    self.refresh_url,
                    headers=headers,
                    content=content,
                    timeout=self._timeout,
                ),
                timeout=self._timeout,
            )
        except (TimeoutError, httpx.RequestError, httpx.InvalidURL) as e:
            return self._fail(RefreshFailure.NETWORK, error=str(e), error_type=type(e).__name__)

        if not response.is_success:
            return self._fail(failure_for_status(response.status_code), http_status=response.status_code)

        try:
            raw = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return self._fail(RefreshFailure.MALFORMED, http_status=response.status_code)

        envelope = normalize(raw)
        tokens = _extract_tokens(envelope.data)
        if tokens is not None:
            if tokens.refresh_token is None and refresh_token:
                tokens = replace(tokens, refresh_token=refresh_token)
            try:
                self._store.update_tokens(tokens)
            except OSError as e:
                return self._fail(RefreshFailure.STORE, error=str(e), error_type=type(e).__name__)
            self.last_failure = None
            _logger.info("refresh.succeeded")
            return tokens

        server_code = raw.get("code") if isinstance(raw, Mapping) else None
        if envelope.status == "error" or server_code == ErrorCode.VALIDATION_ERROR.value:
            return self._fail(RefreshFailure.INVALIDATED, server_code=server_code)
        return self._fail(RefreshFailure.NO_TOKEN)

    def _fail(self, reason: RefreshFailure, **context: Any) -> None:
        forced = FORCES_LOGOUT[reason]
        self.last_failure = reason
        _logger.warning("refresh.failed", reason=reason.value, forced_logout=forced, **context)
        if forced:
            try:
                self._store.clear_session()
            except OSError as e:
                _logger.error("refresh.clear_failed", error=str(e), error_type=type(e).__name__)
            self._redirect.trigger()
        return None


__all__ = [
    "FORCES_LOGOUT",
    "RefreshCoordinator",
    "RefreshFailure",
    "RefreshState",
    "failure_for_status",
]
