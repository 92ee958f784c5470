"""Service graph for one API session.

``ApiClient`` wires one token store, one login redirect guard, one refresh
coordinator and one request executor around a single shared
``httpx.AsyncClient``, plus the query cache and retry policy that sit on top.
Use one ApiClient per application session.

Example usage:
    async with ApiClient.from_config() as api:
        api.login(TokenPair(access_token="..."))
        envelope = await api.executor.get("/v1/jobs")
"""

from __future__ import annotations

from typing import Any

import httpx

from dashapi.auth.redirect import LoginRedirect, RedirectHandler
from dashapi.auth.refresh import RefreshCoordinator
from dashapi.auth.token_store import InMemoryTokenStore, JsonFileTokenStore, TokenPair, TokenStore
from dashapi.client.executor import RequestExecutor
from dashapi.core.config import DashApiConfig, load_config
from dashapi.core.logging import get_logger
from dashapi.sync.network import ConnectivityProbe, NetworkTracker, VisibilityTracker
from dashapi.sync.query_cache import QueryCache
from dashapi.sync.retry_policy import RetryPolicy
from dashapi.sync.scheduler import BackgroundSyncScheduler

_logger = get_logger("api_client")


class ApiClient:
    """Owns the shared components of one API session.

    Args:
        config: Effective configuration.
        store: Token store; defaults to a JSON file store when
            ``client.token_file`` is set, else an in-memory store.
        redirect_handler: Called with the login location on forced logout.
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
        http_client: Pre-built httpx client; not closed by ``aclose()``.
    """

    def __init__(
        self,
        config: DashApiConfig,
        *,
        store: TokenStore | None = None,
        redirect_handler: RedirectHandler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        client_cfg = config.client

        if store is None:
            if client_cfg.token_file is not None:
                store = JsonFileTokenStore(client_cfg.token_file)
            else:
                store = InMemoryTokenStore()
        self.store = store
        self.redirect = LoginRedirect(redirect_handler, location=client_cfg.login_path)

        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(client_cfg.timeout_seconds),
        )
        self.coordinator = RefreshCoordinator(
            self.http,
            self.store,
            self.redirect,
            client_cfg.refresh_url,
            timeout=client_cfg.timeout_seconds,
        )
        self.executor = RequestExecutor(
            self.http,
            self.store,
            self.coordinator,
            base_url=client_cfg.base_url,
            timeout=client_cfg.timeout_seconds,
            default_headers=client_cfg.default_headers,
        )
        self.retry_policy = RetryPolicy(config.retry)
        self.cache = QueryCache.from_config(config.cache, self.retry_policy)

    @classmethod
    def from_config(cls, config: DashApiConfig | None = None, **kwargs: Any) -> ApiClient:
        """Build a client from ``config``, or from ``load_config()`` when omitted."""
        return cls(config or load_config(), **kwargs)

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def login(self, tokens: TokenPair, user: dict[str, Any] | None = None) -> None:
        """Start a session and re-arm the login redirect guard."""
        self.store.set_session(tokens, user)
        self.redirect.reset()

    def logout(self) -> None:
        """End the session and drop cached data."""
        self.store.clear_session()
        self.cache.clear()

    def create_scheduler(
        self,
        network: NetworkTracker,
        visibility: VisibilityTracker,
    ) -> BackgroundSyncScheduler:
        return BackgroundSyncScheduler(self.cache, network, visibility, self.config.sync)

    def create_probe(self, network: NetworkTracker) -> ConnectivityProbe:
        cfg = self.config.connectivity
        return ConnectivityProbe(
            network,
            self.http,
            self.config.ping_url,
            interval=cfg.interval_seconds,
            timeout=cfg.timeout_seconds,
            enabled=cfg.enabled,
        )

    async def aclose(self) -> None:
        await self.cache.aclose()
        await self.coordinator.aclose()
        if self._owns_http and not self.http.is_closed:
            await self.http.aclose()
        _logger.debug("api_client.closed")


__all__ = ["ApiClient"]
