"""HTTP request executor.

Issues one API call with a per-attempt deadline, bearer-token injection and
cookie credentials. A 401 triggers the shared token refresh and exactly one
re-issue of the same descriptor; no other failure is retried here. Every
failure leaves this module as a ClassifiedError; httpx exceptions never leak.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

import httpx

from dashapi.auth.refresh import RefreshCoordinator
from dashapi.auth.token_store import TokenStore
from dashapi.client.request import CredentialMode, RequestDescriptor
from dashapi.core.envelope import Envelope, normalize
from dashapi.core.errors import ClassifiedError, ErrorClassifier, ErrorCode, parse_error_body
from dashapi.core.logging import RequestContext, get_logger, with_request_context

_logger = get_logger("executor")

JSON_CONTENT_TYPE = "application/json"


class RequestExecutor:
    """Executes RequestDescriptors against the API.

    Args:
        client: Shared httpx client. Its cookie jar carries session cookies.
        store: Token store read for the bearer header on every attempt.
        coordinator: Refresh coordinator consulted on 401.
        base_url: API root that relative paths are resolved against.
        timeout: Default per-attempt deadline in seconds.
        default_headers: Headers sent on every request, below caller headers.
        owns_client: Close ``client`` in ``aclose()``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: TokenStore,
        coordinator: RefreshCoordinator,
        *,
        base_url: str,
        timeout: float = 10.0,
        default_headers: Mapping[str, str] | None = None,
        classifier: ErrorClassifier | None = None,
        owns_client: bool = False,
    ) -> None:
        self._client = client
        self._store = store
        self._coordinator = coordinator
        self.base_url = base_url.rstrip("/")
        self._base_origin = _origin(self.base_url)
        self.timeout = timeout
        self._default_headers = dict(default_headers or {})
        self._classifier = classifier or ErrorClassifier()
        self._owns_client = owns_client

    async def __aenter__(self) -> RequestExecutor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    # ─── Public API ───────────────────────────────────────────────────

    async def execute(self, descriptor: RequestDescriptor) -> Envelope[Any]:
        """Execute a request and return its normalized envelope.

        Raises:
            ClassifiedError: For every failure. AUTH_REQUIRED is raised only
                after the refresh failed or the single retry returned 401 again.
        """
        ctx = RequestContext(method=descriptor.method, path=descriptor.path)
        with with_request_context(ctx):
            access_token = self._session_token(descriptor)
            response = await self._attempt(descriptor, access_token)
            if response.status_code != 401:
                return self._handle_response(response)
            if not self.is_api_origin(descriptor):
                _logger.info("executor.foreign_unauthorized", http_status=401)
                return self._handle_response(response)

            tokens = await self._coordinator.refresh(failed_token=access_token)
            if tokens is None or not tokens.access_token:
                _logger.warning("executor.auth_failed", reason="refresh_failed")
                raise self._auth_required(response)

        retry_ctx = ctx.next_attempt()
        with with_request_context(retry_ctx):
            _logger.info("executor.auth_retry")
            response = await self._attempt(descriptor, tokens.access_token)
            if response.status_code == 401:
                _logger.warning("executor.auth_failed", reason="retry_unauthorized")
                raise self._auth_required(response)
            return self._handle_response(response)

    async def get(self, path: str, **kwargs: Any) -> Envelope[Any]:
        return await self.execute(RequestDescriptor("GET", path, **kwargs))

    async def post(self, path: str, **kwargs: Any) -> Envelope[Any]:
        return await self.execute(RequestDescriptor("POST", path, **kwargs))

    async def put(self, path: str, **kwargs: Any) -> Envelope[Any]:
        return await self.execute(RequestDescriptor("PUT", path, **kwargs))

    async def patch(self, path: str, **kwargs: Any) -> Envelope[Any]:
        return await self.execute(RequestDescriptor("PATCH", path, **kwargs))

    async def delete(self, path: str, **kwargs: Any) -> Envelope[Any]:
        return await self.execute(RequestDescriptor("DELETE", path, **kwargs))

    # ─── Internals ────────────────────────────────────────────────────

    def resolve_url(self, descriptor: RequestDescriptor) -> str:
        if descriptor.is_absolute:
            return descriptor.path
        return f"{self.base_url}/{descriptor.path.lstrip('/')}"

    def is_api_origin(self, descriptor: RequestDescriptor) -> bool:
        """True when the request targets the API's own scheme and host.

        Only such requests carry the bearer token or take part in refresh.
        """
        return not descriptor.is_absolute or _origin(descriptor.path) == self._base_origin

    def _session_token(self, descriptor: RequestDescriptor) -> str | None:
        if not self.is_api_origin(descriptor):
            return None
        tokens = self._store.get_tokens()
        return tokens.access_token if tokens else None

    def _build_headers(
        self,
        descriptor: RequestDescriptor,
        access_token: str | None,
    ) -> httpx.Headers:
        """Defaults, then bearer, then caller headers. Later entries win."""
        headers = httpx.Headers(self._default_headers)
        if not descriptor.has_raw_body:
            headers["Content-Type"] = JSON_CONTENT_TYPE
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        for key, value in descriptor.headers.items():
            headers[key] = value
        return headers

    def _sends_cookies(self, descriptor: RequestDescriptor) -> bool:
        if descriptor.credentials is CredentialMode.OMIT:
            return False
        if descriptor.credentials is CredentialMode.SAME_ORIGIN:
            return self.is_api_origin(descriptor)
        return True

    def _build_request(
        self,
        descriptor: RequestDescriptor,
        access_token: str | None,
        timeout: float,
    ) -> httpx.Request:
        url = self.resolve_url(descriptor)
        body: dict[str, Any] = {}
        if descriptor.json is not None:
            body["content"] = json.dumps(descriptor.json).encode()
        elif descriptor.content is not None:
            body["content"] = descriptor.content
        elif descriptor.files is not None:
            body["files"] = descriptor.files
            if descriptor.form is not None:
                body["data"] = descriptor.form

        request = self._client.build_request(
            descriptor.method,
            url,
            headers=self._build_headers(descriptor, access_token),
            params=descriptor.params,
            timeout=timeout,
            **body,
        )
        if not self._sends_cookies(descriptor):
            request.headers.pop("Cookie", None)
        return request

    async def _attempt(
        self,
        descriptor: RequestDescriptor,
        access_token: str | None,
    ) -> httpx.Response:
        """Send one attempt under its own deadline."""
        timeout = descriptor.timeout or self.timeout

        started = time.monotonic()
        try:
            request = self._build_request(descriptor, access_token, timeout)
            _logger.debug("executor.request_sent", url=str(request.url))
            response = await asyncio.wait_for(self._client.send(request), timeout=timeout)
        except (TimeoutError, httpx.RequestError, httpx.InvalidURL) as e:
            error = self._classifier.from_transport(e)
            _logger.warning(
                "executor.transport_failed",
                code=error.code.value,
                error_type=type(e).__name__,
                elapsed_seconds=round(time.monotonic() - started, 3),
            )
            raise error from e

        _logger.debug(
            "executor.response_received",
            http_status=response.status_code,
            elapsed_seconds=round(time.monotonic() - started, 3),
        )
        return response

    def _auth_required(self, response: httpx.Response) -> ClassifiedError:
        return self._classifier.from_response(401, parse_error_body(response.content))

    def _handle_response(self, response: httpx.Response) -> Envelope[Any]:
        if not response.is_success:
            error = self._classifier.from_response(
                response.status_code, parse_error_body(response.content)
            )
            _logger.info(
                "executor.request_failed",
                code=error.code.value,
                http_status=response.status_code,
            )
            raise error

        if not response.content:
            return normalize(None)
        try:
            raw = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            _logger.warning("executor.malformed_body", http_status=response.status_code)
            raise ClassifiedError(
                ErrorCode.UNKNOWN_ERROR,
                "Response body is not valid JSON",
                http_status=response.status_code,
            ) from e
        return normalize(raw)


def _origin(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    return parts.scheme, parts.netloc


__all__ = ["JSON_CONTENT_TYPE", "RequestExecutor"]
