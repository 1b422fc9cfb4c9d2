"""Common time utilities."""

from __future__ import annotations

import datetime as dt

EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def format_timestamp(value: dt.datetime) -> str:
    """Render an aware datetime in GitHub's ISO-8601 UTC form.

    >>> format_timestamp(dt.datetime(2025, 1, 2, 3, 4, 5, tzinfo=dt.UTC))
    '2025-01-02T03:04:05Z'

    """
    if value.tzinfo is None:
        msg = "timestamp must be timezone-aware"
        raise ValueError(msg)
    return value.astimezone(dt.UTC).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> dt.datetime:
    """Parse an ISO-8601 timestamp with an explicit offset into aware UTC."""
    text = value.strip().replace("Z", "+00:00")
    parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        msg = f"timestamp missing timezone: {value}"
        raise ValueError(msg)
    return parsed.astimezone(dt.UTC)


def maybe_parse_timestamp(value: object) -> dt.datetime | None:
    """Parse ``value`` when it is a usable timestamp string, else ``None``."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def hours_between(start: dt.datetime, end: dt.datetime) -> float:
    """Return the fractional hours elapsed from ``start`` to ``end``."""
    return (end - start).total_seconds() / 3600.0
