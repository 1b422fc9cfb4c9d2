"""Tests for timestamp helpers shared by the mirror and the metrics."""

from __future__ import annotations

import datetime as dt

import pytest

from gillnet.common.time import (
    EPOCH,
    format_timestamp,
    hours_between,
    maybe_parse_timestamp,
    parse_timestamp,
)


def test_format_timestamp_renders_utc_with_z_suffix() -> None:
    """Offsets are normalised to UTC and microseconds dropped."""
    value = dt.datetime(
        2025, 1, 2, 5, 4, 5, 123456, tzinfo=dt.timezone(dt.timedelta(hours=2))
    )

    assert format_timestamp(value) == "2025-01-02T03:04:05Z"


def test_format_timestamp_rejects_naive_values() -> None:
    """Naive datetimes have no defined instant."""
    with pytest.raises(ValueError, match="timezone-aware"):
        format_timestamp(dt.datetime(2025, 1, 2))  # noqa: DTZ001


def test_parse_timestamp_accepts_z_suffix() -> None:
    """GitHub's ``Z`` suffix parses to an aware UTC datetime."""
    parsed = parse_timestamp("2025-03-10T12:00:00Z")

    assert parsed == dt.datetime(2025, 3, 10, 12, tzinfo=dt.UTC)
    assert parsed.tzinfo is dt.UTC


def test_parse_timestamp_converts_offsets_to_utc() -> None:
    """Explicit offsets are converted rather than discarded."""
    assert parse_timestamp("2025-03-10T14:00:00+02:00") == dt.datetime(
        2025, 3, 10, 12, tzinfo=dt.UTC
    )


def test_parse_timestamp_rejects_missing_timezone() -> None:
    """Strings without an offset are refused."""
    with pytest.raises(ValueError, match="missing timezone"):
        parse_timestamp("2025-03-10T12:00:00")


@pytest.mark.parametrize("value", [None, "", "   ", "yesterday", 1700000000])
def test_maybe_parse_timestamp_returns_none_for_unusable_values(
    value: object,
) -> None:
    """Unusable inputs yield None instead of raising."""
    assert maybe_parse_timestamp(value) is None


def test_hours_between_is_fractional() -> None:
    """Durations are reported as fractional hours."""
    start = EPOCH
    end = EPOCH + dt.timedelta(hours=5, minutes=30)

    assert hours_between(start, end) == pytest.approx(5.5)
