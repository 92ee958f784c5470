"""Tests for RequestExecutor: header assembly, credentials, the single
post-refresh retry and failure classification."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from dashapi.auth import TokenPair
from dashapi.client import CredentialMode, RequestDescriptor
from dashapi.core.errors import ClassifiedError, ErrorCode
from tests.conftest import BASE_URL, Harness, json_response

NEW_TOKENS = {"success": True, "data": {"accessToken": "access-2", "refreshToken": "refresh-2"}}


def ok_handler(request: httpx.Request) -> httpx.Response:
    return json_response(200, {"success": True, "data": {"ok": True}})


# ─── RequestDescriptor ───────────────────────────────────────────────────


class TestRequestDescriptor:
    def test_method_upper_cased(self) -> None:
        assert RequestDescriptor("get", "/v1/jobs").method == "GET"

    def test_credentials_coerced(self) -> None:
        desc = RequestDescriptor("GET", "/", credentials="omit")  # type: ignore[arg-type]
        assert desc.credentials is CredentialMode.OMIT

    def test_rejects_two_bodies(self) -> None:
        with pytest.raises(ValueError, match="only one"):
            RequestDescriptor("POST", "/", json={"a": 1}, content=b"x")

    def test_rejects_form_without_files(self) -> None:
        with pytest.raises(ValueError, match="form"):
            RequestDescriptor("POST", "/", form={"a": "1"})

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError, match="timeout"):
            RequestDescriptor("GET", "/", timeout=0)


# ─── Successful calls ────────────────────────────────────────────────────


class TestSuccess:
    @pytest.mark.asyncio
    async def test_bearer_and_json_headers(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        envelope = await h.executor.post("/v1/jobs", json={"title": "Engineer"})

        request = h.requests[0]
        assert str(request.url) == f"{BASE_URL}/v1/jobs"
        assert request.headers["Authorization"] == "Bearer access-1"
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"title": "Engineer"}
        assert envelope.data == {"ok": True}
        assert envelope.status == "success"
        await h.aclose()

    @pytest.mark.asyncio
    async def test_no_bearer_without_session(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler, tokens=None)

        await h.executor.get("/v1/public")

        assert "Authorization" not in h.requests[0].headers
        await h.aclose()

    @pytest.mark.asyncio
    async def test_caller_headers_win(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        await h.executor.post(
            "/v1/notes",
            json="plain",
            headers={"Content-Type": "text/plain", "Authorization": "Bearer override"},
        )

        request = h.requests[0]
        assert request.headers["Content-Type"] == "text/plain"
        assert request.headers["Authorization"] == "Bearer override"
        await h.aclose()

    @pytest.mark.asyncio
    async def test_raw_body_has_no_json_content_type(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        await h.executor.put("/v1/blobs/1", content=b"\x00\x01")

        assert "Content-Type" not in h.requests[0].headers
        await h.aclose()

    @pytest.mark.asyncio
    async def test_multipart_sets_its_own_content_type(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        await h.executor.post(
            "/v1/uploads",
            files={"file": ("cv.txt", b"hello", "text/plain")},
            form={"kind": "resume"},
        )

        assert h.requests[0].headers["Content-Type"].startswith("multipart/form-data")
        await h.aclose()

    @pytest.mark.asyncio
    async def test_query_params(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        await h.executor.get("/v1/jobs", params={"page": 2})

        assert h.requests[0].url.params["page"] == "2"
        await h.aclose()

    @pytest.mark.asyncio
    async def test_empty_body_yields_null_data(self, make_harness) -> None:
        h: Harness = make_harness(lambda r: httpx.Response(204))

        envelope = await h.executor.delete("/v1/jobs/1")

        assert envelope.data is None
        assert envelope.ok
        await h.aclose()

    @pytest.mark.asyncio
    async def test_bare_payload_normalized(self, make_harness) -> None:
        h: Harness = make_harness(lambda r: json_response(200, [1, 2, 3]))

        envelope = await h.executor.get("/v1/ids")

        assert envelope.data == [1, 2, 3]
        await h.aclose()


# ─── Cookie credentials ──────────────────────────────────────────────────


class TestCredentials:
    @pytest.mark.asyncio
    async def test_cookies_sent_by_default(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)
        h.http.cookies.set("sid", "abc", domain="api.test")

        await h.executor.get("/v1/me")

        assert h.requests[0].headers.get("Cookie") == "sid=abc"
        await h.aclose()

    @pytest.mark.asyncio
    async def test_omit_strips_cookies(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)
        h.http.cookies.set("sid", "abc", domain="api.test")

        await h.executor.get("/v1/me", credentials=CredentialMode.OMIT)

        assert "Cookie" not in h.requests[0].headers
        await h.aclose()

    @pytest.mark.asyncio
    async def test_same_origin_strips_cross_origin_cookies(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)
        h.http.cookies.set("sid", "abc", domain="cdn.test")

        await h.executor.get("http://cdn.test/asset", credentials=CredentialMode.SAME_ORIGIN)

        assert "Cookie" not in h.requests[0].headers
        await h.aclose()


# ─── Absolute URLs ───────────────────────────────────────────────────────


class TestAbsoluteUrls:
    @pytest.mark.asyncio
    async def test_foreign_host_gets_no_bearer(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        await h.executor.get("https://collector.example/collect")

        assert h.requests[0].url.host == "collector.example"
        assert "Authorization" not in h.requests[0].headers
        await h.aclose()

    @pytest.mark.asyncio
    async def test_scheme_change_counts_as_foreign(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        await h.executor.get("https://api.test/api/v1/me")

        assert "Authorization" not in h.requests[0].headers
        await h.aclose()

    @pytest.mark.asyncio
    async def test_api_origin_absolute_url_keeps_bearer(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)

        await h.executor.get(f"{BASE_URL}/v1/me")

        assert h.requests[0].headers["Authorization"] == "Bearer access-1"
        await h.aclose()

    @pytest.mark.asyncio
    async def test_foreign_401_does_not_refresh(self, make_harness) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/auth/refresh"):
                return json_response(200, NEW_TOKENS)
            return json_response(401, {"message": "Sign in to the CDN"})

        h: Harness = make_harness(handler)

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("https://cdn.example/private/file")

        assert exc_info.value.code is ErrorCode.AUTH_REQUIRED
        assert h.refresh_calls == []
        assert h.redirects == []
        assert h.store.get_tokens() == TokenPair("access-1", "refresh-1")
        await h.aclose()


# ─── 401 handling ────────────────────────────────────────────────────────


class TestAuthRetry:
    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries_with_new_token(self, make_harness) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/auth/refresh"):
                return json_response(200, NEW_TOKENS)
            if request.headers["Authorization"] == "Bearer access-2":
                return json_response(200, {"success": True, "data": "fresh"})
            return json_response(401, {})

        h: Harness = make_harness(handler)

        envelope = await h.executor.get("/v1/jobs")

        assert envelope.data == "fresh"
        assert [r.headers["Authorization"] for r in h.api_calls] == [
            "Bearer access-1",
            "Bearer access-2",
        ]
        await h.aclose()

    @pytest.mark.asyncio
    async def test_no_third_attempt(self, make_harness) -> None:
        """A 401 on the retry surfaces AUTH_REQUIRED instead of refreshing again."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/auth/refresh"):
                return json_response(200, NEW_TOKENS)
            return json_response(401, {"message": "Still unauthorized"})

        h: Harness = make_harness(handler)

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/jobs")

        assert exc_info.value.code is ErrorCode.AUTH_REQUIRED
        assert exc_info.value.message == "Still unauthorized"
        assert len(h.api_calls) == 2
        assert len(h.refresh_calls) == 1
        await h.aclose()

    @pytest.mark.asyncio
    async def test_retry_replays_same_body(self, make_harness) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/auth/refresh"):
                return json_response(200, NEW_TOKENS)
            if request.headers["Authorization"] == "Bearer access-2":
                return json_response(201, {"success": True, "data": None})
            return json_response(401, {})

        h: Harness = make_harness(handler)

        await h.executor.post("/v1/jobs", json={"title": "Engineer"})

        bodies = [json.loads(r.content) for r in h.api_calls]
        assert bodies == [{"title": "Engineer"}, {"title": "Engineer"}]
        await h.aclose()

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, make_harness) -> None:
        h: Harness = make_harness(lambda r: json_response(503, {"message": "down"}))

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/jobs")

        assert exc_info.value.code is ErrorCode.SERVER_ERROR
        assert exc_info.value.retryable
        assert len(h.requests) == 1
        assert h.refresh_calls == []
        await h.aclose()


# ─── Failure classification ──────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_status_errors_classified(self, make_harness) -> None:
        h: Harness = make_harness(
            lambda r: json_response(404, {"code": "NOT_FOUND", "message": "No such job"})
        )

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/jobs/9")

        assert exc_info.value.to_dict() == {
            "code": "NOT_FOUND",
            "message": "No such job",
            "httpStatus": 404,
        }
        await h.aclose()

    @pytest.mark.asyncio
    async def test_unparseable_error_body(self, make_harness) -> None:
        h: Harness = make_harness(lambda r: httpx.Response(502, content=b"Bad Gateway"))

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/jobs")

        assert exc_info.value.code is ErrorCode.SERVER_ERROR
        assert exc_info.value.http_status == 502
        await h.aclose()

    @pytest.mark.asyncio
    async def test_non_json_success_body(self, make_harness) -> None:
        h: Harness = make_harness(lambda r: httpx.Response(200, content=b"<html></html>"))

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/jobs")

        assert exc_info.value.code is ErrorCode.UNKNOWN_ERROR
        assert exc_info.value.http_status == 200
        await h.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_is_network_error(self, make_harness) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        h: Harness = make_harness(handler)

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/jobs")

        assert exc_info.value.code is ErrorCode.NETWORK_ERROR
        assert exc_info.value.http_status is None
        assert exc_info.value.retryable
        await h.aclose()

    @pytest.mark.asyncio
    async def test_deadline_is_timeout(self, make_harness) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return json_response(200, {})

        h: Harness = make_harness(handler)

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/slow", timeout=0.05)

        assert exc_info.value.code is ErrorCode.TIMEOUT
        assert exc_info.value.message == "Request timeout"
        await h.aclose()

    @pytest.mark.asyncio
    async def test_httpx_timeout_is_timeout(self, make_harness) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        h: Harness = make_harness(handler)

        with pytest.raises(ClassifiedError) as exc_info:
            await h.executor.get("/v1/jobs")

        assert exc_info.value.code is ErrorCode.TIMEOUT
        await h.aclose()

    @pytest.mark.asyncio
    async def test_store_updates_visible_to_next_request(self, make_harness) -> None:
        h: Harness = make_harness(ok_handler)
        h.store.update_tokens(TokenPair("access-9"))

        await h.executor.get("/v1/jobs")

        assert h.requests[0].headers["Authorization"] == "Bearer access-9"
        await h.aclose()
