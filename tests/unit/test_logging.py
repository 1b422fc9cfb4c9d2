"""Tests for the femtologging helper functions."""

from __future__ import annotations

import dataclasses

import pytest

from gillnet.logging import (
    format_log_message,
    log_error,
    log_exception,
    log_info,
    log_warning,
    normalize_log_level,
)


@dataclasses.dataclass(slots=True)
class _RecordedLog:
    level: str
    message: str
    exc_info: object | None


class _RecordingLogger:
    """Logger double that records calls made through the helpers."""

    def __init__(self) -> None:
        self.records: list[_RecordedLog] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> str:
        del stack_info
        self.records.append(_RecordedLog(level, message, exc_info))
        return message


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("debug", ("DEBUG", False)),
        (" warning ", ("WARNING", False)),
        ("TRACE", ("TRACE", False)),
        ("verbose", ("INFO", True)),
        ("", ("INFO", True)),
        (None, ("INFO", True)),
    ],
)
def test_normalize_log_level(raw: str | None, expected: tuple[str, bool]) -> None:
    """Known levels are upper-cased; anything else falls back to INFO."""
    assert normalize_log_level(raw) == expected


def test_format_log_message_interpolates_only_with_args() -> None:
    """A literal ``%`` survives when no arguments are given."""
    assert format_log_message("100% done") == "100% done"
    assert format_log_message("Syncing %s (%d)", "sdk", 3) == "Syncing sdk (3)"


def test_level_helpers_emit_formatted_messages() -> None:
    """Each helper logs at its own level with the message pre-formatted."""
    logger = _RecordingLogger()

    log_info(logger, "Syncing %s", "acme/widgets")
    log_warning(logger, "Rate limit low (remaining=%d)", 3)
    log_error(logger, "failed")

    assert [(r.level, r.message) for r in logger.records] == [
        ("INFO", "Syncing acme/widgets"),
        ("WARNING", "Rate limit low (remaining=3)"),
        ("ERROR", "failed"),
    ]


def test_log_exception_attaches_exception() -> None:
    """The exception travels as exc_info and the message is not interpolated."""
    logger = _RecordingLogger()
    error = RuntimeError("boom")

    log_exception(logger, "gillnet sync failed: 100%", error)

    (record,) = logger.records
    assert record.level == "ERROR"
    assert record.message == "gillnet sync failed: 100%"
    assert record.exc_info is error
