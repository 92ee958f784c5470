"""Exception types raised by dashapi.

This module provides:
- DashApiError: Base class for every error raised by the library
- ClassifiedError: A failed API call carrying a closed-taxonomy ErrorCode
- ConfigurationError: Invalid configuration file or environment values
"""

from __future__ import annotations

from typing import Any

from .codes import RETRYABLE_CLIENT_STATUSES, ErrorCode


class DashApiError(Exception):
    """Base exception for dashapi."""


class ClassifiedError(DashApiError):
    """A failed API operation, classified into the ErrorCode taxonomy.

    This is the only error type callers of the executor need to handle.
    Transport exceptions are translated into it at the executor boundary.

    Attributes:
        code: Closed-taxonomy classification.
        message: Human-readable message (server-provided when available).
        http_status: HTTP status of the failed response, if one was received.
        details: Extra structured information from the server.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details

    @property
    def retryable(self) -> bool:
        """Whether retrying the same operation could plausibly succeed."""
        if self.http_status is not None and 400 <= self.http_status < 500:
            return self.http_status in RETRYABLE_CLIENT_STATUSES
        if self.http_status is not None and self.http_status >= 500:
            return True
        return self.code.is_retryable

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire error shape."""
        result: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.http_status is not None:
            result["httpStatus"] = self.http_status
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(code={self.code.value}, "
            f"http_status={self.http_status}, message={self.message!r})"
        )

    def __str__(self) -> str:
        if self.http_status is not None:
            return f"[{self.code.value}] {self.message} (HTTP {self.http_status})"
        return f"[{self.code.value}] {self.message}"


class ConfigurationError(DashApiError):
    """Raised when configuration cannot be loaded or fails validation."""


__all__ = [
    "ClassifiedError",
    "ConfigurationError",
    "DashApiError",
]
