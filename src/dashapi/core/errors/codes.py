"""Error codes for classified API failures.

The taxonomy is closed: every failure surfaced by the client carries exactly
one of these codes.

Error Code Taxonomy
===================

| Code | Origin | Typical status | Retryable |
|------|--------|----------------|-----------|
| NETWORK_ERROR | transport failure (DNS, refused, reset) | none | yes |
| TIMEOUT | request deadline expired, or HTTP 408 | none / 408 | yes |
| AUTH_REQUIRED | 401 that survived the refresh + retry | 401 | no |
| SERVER_ERROR | server-side failure | 5xx | yes |
| VALIDATION_ERROR | request rejected as invalid | 400 / 422 | no |
| AUTHORIZATION_ERROR | authenticated but not permitted | 403 | no |
| CONFLICT_ERROR | resource state conflict | 409 | no |
| NOT_FOUND | resource does not exist | 404 | no |
| UNKNOWN_ERROR | any other non-2xx, or unclassifiable | 429 / 3xx / other 4xx | with a 429 or 5xx status |

The ``retryable`` flag on a ClassifiedError combines the code with the HTTP
status: 408 and 429 stay retryable, every other 4xx does not.
"""

from __future__ import annotations

from enum import Enum

# Statuses in the 4xx range that are still worth retrying.
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


class ErrorCode(str, Enum):
    """Closed set of error codes produced by the client."""

    NETWORK_ERROR = "NETWORK_ERROR"
    """Transport-level failure before a response was received."""

    TIMEOUT = "TIMEOUT"
    """Request deadline expired (client-side abort or HTTP 408)."""

    AUTH_REQUIRED = "AUTH_REQUIRED"
    """Authentication failed and could not be recovered by a token refresh."""

    SERVER_ERROR = "SERVER_ERROR"
    """Server-side failure (5xx)."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """The server rejected the request payload."""

    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    """The caller is authenticated but not allowed to perform the operation."""

    CONFLICT_ERROR = "CONFLICT_ERROR"
    """The operation conflicts with the current resource state."""

    NOT_FOUND = "NOT_FOUND"
    """The requested resource does not exist."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Failure that fits no other code."""

    @classmethod
    def from_wire(cls, value: object) -> ErrorCode | None:
        """Return the member whose value equals ``value``, or None."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_retryable(self) -> bool:
        """Default retryability of the code when no HTTP status is known."""
        return self in (
            ErrorCode.NETWORK_ERROR,
            ErrorCode.TIMEOUT,
            ErrorCode.SERVER_ERROR,
        )


# Fallback code for a status when the server did not send a usable one.
STATUS_CODE_MAP: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTH_REQUIRED,
    403: ErrorCode.AUTHORIZATION_ERROR,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.TIMEOUT,
    409: ErrorCode.CONFLICT_ERROR,
    422: ErrorCode.VALIDATION_ERROR,
}


def code_for_status(status: int) -> ErrorCode:
    """Map an HTTP status to the best matching ErrorCode."""
    if status in STATUS_CODE_MAP:
        return STATUS_CODE_MAP[status]
    if status >= 500:
        return ErrorCode.SERVER_ERROR
    return ErrorCode.UNKNOWN_ERROR


__all__ = [
    "ErrorCode",
    "RETRYABLE_CLIENT_STATUSES",
    "STATUS_CODE_MAP",
    "code_for_status",
]
