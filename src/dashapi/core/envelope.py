"""Canonical response envelope and the normalizer that produces it.

Servers answer in several shapes. Every successful call is normalized into::

    {"data": ..., "status": "success" | "error", "message"?: str, "timestamp": ISO-8601}

Shape detection produces an ``EnvelopeShape`` tag, and each tag has exactly
one handler in ``_HANDLERS``. The table is checked for completeness at import
time, so adding a shape without a handler fails immediately.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from dashapi.utils.time import parse_iso, utc_iso

T = TypeVar("T")

EnvelopeStatus = Literal["success", "error"]
VALID_STATUSES: frozenset[str] = frozenset({"success", "error"})


@dataclass(frozen=True)
class Envelope(Generic[T]):
    """Canonical response envelope.

    Attributes:
        data: Response payload.
        status: "success" or "error".
        timestamp: ISO-8601 timestamp of the response.
        message: Optional human-readable message.
    """

    data: T
    status: EnvelopeStatus
    timestamp: str
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape, omitting ``message`` when absent."""
        result: dict[str, Any] = {
            "data": self.data,
            "status": self.status,
            "timestamp": self.timestamp,
        }
        if self.message is not None:
            result["message"] = self.message
        return result


class EnvelopeShape(str, Enum):
    """Known server response shapes, in detection order."""

    SUCCESS_FLAG = "success_flag"
    """``{"success": bool, "data"?, "message"?, "timestamp"?}``"""

    CANONICAL = "canonical"
    """Already canonical: ``data``, a valid ``status`` and a parseable ``timestamp``."""

    WRAPPED_OBJECT = "wrapped_object"
    """Any other mapping; ``data`` is unwrapped when present."""

    BARE = "bare"
    """Non-mapping payloads: scalars, lists and null."""


def detect_shape(raw: Any) -> EnvelopeShape:
    """Classify a decoded JSON value into an EnvelopeShape."""
    if not isinstance(raw, Mapping):
        return EnvelopeShape.BARE
    if isinstance(raw.get("success"), bool):
        return EnvelopeShape.SUCCESS_FLAG
    if (
        "data" in raw
        and raw.get("status") in VALID_STATUSES
        and isinstance(raw.get("timestamp"), str)
        and parse_iso(raw["timestamp"]) is not None
    ):
        return EnvelopeShape.CANONICAL
    return EnvelopeShape.WRAPPED_OBJECT


def _optional_message(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _timestamp_or_now(value: Any) -> str:
    if isinstance(value, str) and parse_iso(value) is not None:
        return value
    return utc_iso()


def _from_success_flag(raw: Mapping[str, Any]) -> Envelope[Any]:
    return Envelope(
        data=raw.get("data"),
        status="success" if raw["success"] else "error",
        message=_optional_message(raw.get("message")),
        timestamp=_timestamp_or_now(raw.get("timestamp")),
    )


def _from_canonical(raw: Mapping[str, Any]) -> Envelope[Any]:
    message = raw.get("message")
    return Envelope(
        data=raw["data"],
        status=raw["status"],
        message=message if isinstance(message, str) else None,
        timestamp=raw["timestamp"],
    )


def _from_wrapped_object(raw: Mapping[str, Any]) -> Envelope[Any]:
    data = raw.get("data")
    message = raw.get("message")
    return Envelope(
        data=data if data is not None else dict(raw),
        status="success",
        message=message if isinstance(message, str) else None,
        timestamp=utc_iso(),
    )


def _from_bare(raw: Any) -> Envelope[Any]:
    return Envelope(data=raw, status="success", timestamp=utc_iso())


_HANDLERS: dict[EnvelopeShape, Callable[[Any], Envelope[Any]]] = {
    EnvelopeShape.SUCCESS_FLAG: _from_success_flag,
    EnvelopeShape.CANONICAL: _from_canonical,
    EnvelopeShape.WRAPPED_OBJECT: _from_wrapped_object,
    EnvelopeShape.BARE: _from_bare,
}

_missing = set(EnvelopeShape) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"No envelope handler for shapes: {sorted(s.value for s in _missing)}")


def normalize(raw: Any) -> Envelope[Any]:
    """Normalize a decoded JSON response into a canonical Envelope.

    Already-normalized input is returned unchanged: an ``Envelope`` instance
    is returned as-is, and ``normalize(e.to_dict()) == e``.
    """
    if isinstance(raw, Envelope):
        return raw
    return _HANDLERS[detect_shape(raw)](raw)


__all__ = [
    "Envelope",
    "EnvelopeShape",
    "EnvelopeStatus",
    "VALID_STATUSES",
    "detect_shape",
    "normalize",
]
