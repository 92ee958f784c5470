"""Pytest fixtures for dashapi tests."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Generator
from typing import Any

import httpx
import pytest
import structlog

from dashapi.auth.redirect import LoginRedirect
from dashapi.auth.refresh import RefreshCoordinator
from dashapi.auth.token_store import InMemoryTokenStore, TokenPair
from dashapi.client.executor import RequestExecutor

BASE_URL = "http://api.test/api"
REFRESH_URL = f"{BASE_URL}/v1/auth/refresh"

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    import dashapi.cli.helpers as cli_helpers

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


def json_response(status: int, body: Any) -> httpx.Response:
    """Build an httpx.Response with a JSON body."""
    return httpx.Response(
        status,
        content=json.dumps(body).encode(),
        headers={"Content-Type": "application/json"},
    )


class Harness:
    """Executor wired to a MockTransport with an in-memory session.

    Every request the transport sees is appended to ``requests`` before the
    handler runs, so tests can count refresh calls and inspect headers.
    """

    def __init__(
        self,
        handler: Handler,
        tokens: TokenPair | None,
        refresh_timeout: float = 10.0,
    ) -> None:
        self.requests: list[httpx.Request] = []
        self.redirects: list[str] = []

        def _recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        self.http = httpx.AsyncClient(transport=httpx.MockTransport(_recording))
        self.store = InMemoryTokenStore(tokens)
        self.redirect = LoginRedirect(self.redirects.append)
        self.coordinator = RefreshCoordinator(
            self.http, self.store, self.redirect, REFRESH_URL, timeout=refresh_timeout
        )
        self.executor = RequestExecutor(
            self.http,
            self.store,
            self.coordinator,
            base_url=BASE_URL,
            timeout=2.0,
            owns_client=True,
        )

    @property
    def refresh_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/auth/refresh")]

    @property
    def api_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if not r.url.path.endswith("/auth/refresh")]

    async def aclose(self) -> None:
        await self.coordinator.aclose()
        await self.executor.aclose()


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    """Factory for executor harnesses. Tests close them with ``aclose()``."""

    def _make(
        handler: Handler,
        tokens: TokenPair | None = TokenPair("access-1", "refresh-1"),
        refresh_timeout: float = 10.0,
    ) -> Harness:
        return Harness(handler, tokens, refresh_timeout)

    return _make
