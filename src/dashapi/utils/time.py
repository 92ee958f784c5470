"""Time utilities for dashapi.

Timezone-aware helpers for the ISO-8601 timestamps carried by response
envelopes.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def utc_iso() -> str:
    """Return the current UTC time as an ISO-8601 string.

    Uses millisecond precision and a ``Z`` suffix, the same rendering the
    backend uses for its own ``timestamp`` fields.
    """
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp string.

    Returns:
        The parsed datetime, or None if ``value`` is not a well-formed
        ISO-8601 string.
    """
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
