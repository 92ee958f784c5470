"""ErrorClassifier: maps failed responses and transport exceptions to ClassifiedError.

Classification of a non-2xx response follows a fixed precedence:

1. HTTP 401 is always AUTH_REQUIRED.
2. A server-sent ``code`` that belongs to the taxonomy is used as-is.
3. Otherwise the HTTP status decides (see ``code_for_status``). A server code
   outside the taxonomy is kept in ``details["server_code"]``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import httpx

from dashapi.core.logging import get_logger

from .codes import ErrorCode, code_for_status
from .models import ClassifiedError

_logger = get_logger("errors")

# Shape used when a failed response body cannot be parsed.
FALLBACK_ERROR_BODY: dict[str, Any] = {
    "code": ErrorCode.UNKNOWN_ERROR.value,
    "message": "An unknown error occurred",
}

DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: "Network request failed",
    ErrorCode.TIMEOUT: "Request timeout",
    ErrorCode.AUTH_REQUIRED: "Authentication required",
    ErrorCode.SERVER_ERROR: "Server error",
    ErrorCode.VALIDATION_ERROR: "Request validation failed",
    ErrorCode.AUTHORIZATION_ERROR: "Not authorized to perform this operation",
    ErrorCode.CONFLICT_ERROR: "Request conflicts with the current resource state",
    ErrorCode.NOT_FOUND: "Resource not found",
    ErrorCode.UNKNOWN_ERROR: "An unknown error occurred",
}


def parse_error_body(content: bytes) -> dict[str, Any]:
    """Decode a failed response body, falling back to the generic error shape."""
    if not content:
        return dict(FALLBACK_ERROR_BODY)
    try:
        body = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return dict(FALLBACK_ERROR_BODY)
    if not isinstance(body, dict):
        return dict(FALLBACK_ERROR_BODY)
    return body


class ErrorClassifier:
    """Stateless translator from failure evidence to ClassifiedError."""

    def from_response(
        self,
        status: int,
        body: Mapping[str, Any] | None,
    ) -> ClassifiedError:
        """Classify a non-2xx HTTP response.

        Args:
            status: HTTP status code.
            body: Decoded error body (``{code?, message?, details?, data?}``).
        """
        body = body or {}
        wire_code = body.get("code")
        taxonomy_code = ErrorCode.from_wire(wire_code)

        if status == 401:
            code = ErrorCode.AUTH_REQUIRED
        elif taxonomy_code is not None:
            code = taxonomy_code
        else:
            code = code_for_status(status)

        message = body.get("message")
        if not isinstance(message, str) or not message:
            message = DEFAULT_MESSAGES[code]

        details = _extract_details(body)
        if wire_code and taxonomy_code is None:
            details = {**(details or {}), "server_code": str(wire_code)}

        _logger.debug(
            "errors.classified",
            code=code.value,
            http_status=status,
            server_code=wire_code,
        )
        return ClassifiedError(code, message, http_status=status, details=details)

    def from_transport(self, exc: BaseException) -> ClassifiedError:
        """Classify an exception raised before any response was received.

        httpx timeouts are a subclass of ``httpx.RequestError`` and must be
        checked first.
        """
        if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
            code = ErrorCode.TIMEOUT
            message = DEFAULT_MESSAGES[code]
        elif isinstance(exc, (httpx.RequestError, OSError)):
            code = ErrorCode.NETWORK_ERROR
            message = str(exc) or DEFAULT_MESSAGES[code]
        else:
            code = ErrorCode.UNKNOWN_ERROR
            message = DEFAULT_MESSAGES[code]

        _logger.debug(
            "errors.transport_classified",
            code=code.value,
            exception_type=type(exc).__name__,
        )
        return ClassifiedError(code, message)


def _extract_details(body: Mapping[str, Any]) -> dict[str, Any] | None:
    details = body.get("details")
    if details is None:
        details = body.get("data")
    if details is None:
        return None
    if isinstance(details, dict):
        return dict(details)
    return {"value": details}


__all__ = [
    "DEFAULT_MESSAGES",
    "ErrorClassifier",
    "FALLBACK_ERROR_BODY",
    "parse_error_body",
]
