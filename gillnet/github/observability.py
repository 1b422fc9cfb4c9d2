"""Observability primitives for mirror sync runs.

Provides structured logging and error categorisation for per-repository sync,
sweep and aggregation runs. Every event is emitted as a single
``[event.type] key=value`` log line suitable for log aggregators.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import typing as typ

import httpx
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError

if typ.TYPE_CHECKING:
    import datetime as dt

    from gillnet.metrics.aggregation import AggregationResult
    from gillnet.sync.orchestrator import RepositorySyncResult, SyncState
    from gillnet.sync.sweep import SweepResult

logger = logging.getLogger(__name__)

_HTTP_SERVER_ERROR_THRESHOLD = 500


class SyncEventType(enum.StrEnum):
    """Structured log event types for sync observability."""

    RUN_STARTED = "sync.run.started"
    RUN_COMPLETED = "sync.run.completed"
    RUN_FAILED = "sync.run.failed"
    STREAM_COMPLETED = "sync.stream.completed"
    SWEEP_COMPLETED = "sync.sweep.completed"
    AGGREGATION_COMPLETED = "metrics.aggregation.completed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    TRANSIENT = "transient"
    CLIENT_ERROR = "client_error"
    SCHEMA_DRIFT = "schema_drift"
    CONFIGURATION = "configuration"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True, slots=True)
class SyncRunContext:
    """Shared context for a single repository sync run."""

    org: str
    repo: str
    started_at: dt.datetime
    watermark: dt.datetime


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (GitHubResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def _root_cause(exc: BaseException) -> BaseException:
    """Follow explicit ``raise ... from`` chains to the originating error."""
    seen: set[int] = set()
    while exc.__cause__ is not None and id(exc) not in seen:
        seen.add(id(exc))
        exc = exc.__cause__
    return exc


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorise an exception (or the cause it wraps) for alert routing."""
    root = _root_cause(exc)
    if isinstance(root, GitHubAPIError):
        if (
            root.status_code is not None
            and root.status_code >= _HTTP_SERVER_ERROR_THRESHOLD
        ):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.CLIENT_ERROR

    if isinstance(root, httpx.TransportError):
        return ErrorCategory.TRANSIENT

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(root, exc_type):
            return category

    return ErrorCategory.UNKNOWN


class SyncEventLogger:
    """Emit structured sync events via Python logging.

    INFO for success, ERROR for failures. Messages use lazy interpolation.
    """

    def log_run_started(self, context: SyncRunContext) -> None:
        """Log repository sync start."""
        logger.info(
            "[%s] org=%s repo=%s started_at=%s watermark=%s",
            SyncEventType.RUN_STARTED,
            context.org,
            context.repo,
            context.started_at.isoformat(),
            context.watermark.isoformat(),
        )

    def log_run_completed(
        self,
        context: SyncRunContext,
        result: RepositorySyncResult,
        duration: dt.timedelta,
    ) -> None:
        """Log a committed repository sync with per-entity counts."""
        logger.info(
            "[%s] org=%s repo=%s duration_seconds=%.3f pull_requests=%d "
            "reviews=%d issues=%d issue_comments=%d review_comments=%d "
            "stargazers=%d commits_fetched=%d workflow_runs=%d total=%d",
            SyncEventType.RUN_COMPLETED,
            context.org,
            context.repo,
            duration.total_seconds(),
            result.pull_requests,
            result.reviews,
            result.issues,
            result.issue_comments,
            result.review_comments,
            result.stargazers,
            result.commits_fetched,
            result.workflow_runs,
            result.total,
        )

    def log_run_failed(
        self,
        context: SyncRunContext,
        state: SyncState,
        error: BaseException,
        duration: dt.timedelta,
    ) -> None:
        """Log a failed repository sync; the checkpoint was not advanced."""
        logger.error(
            "[%s] org=%s repo=%s failed_state=%s duration_seconds=%.3f "
            "error_type=%s error_category=%s error_message=%s",
            SyncEventType.RUN_FAILED,
            context.org,
            context.repo,
            state,
            duration.total_seconds(),
            type(_root_cause(error)).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_stream_completed(
        self, context: SyncRunContext, kind: str, rows: int
    ) -> None:
        """Log one entity loop's upsert count."""
        logger.info(
            "[%s] repo=%s stream_kind=%s rows_upserted=%d",
            SyncEventType.STREAM_COMPLETED,
            context.repo,
            kind,
            rows,
        )

    def log_sweep_completed(self, result: SweepResult) -> None:
        """Log a repository sweep outcome."""
        logger.info(
            "[%s] repo=%s remote_open=%d local_open=%d closed=%d deleted=%d",
            SyncEventType.SWEEP_COMPLETED,
            result.repo,
            result.remote_open,
            result.local_open,
            result.closed,
            result.deleted,
        )

    def log_aggregation_completed(self, result: AggregationResult) -> None:
        """Log a metrics recompute window."""
        logger.info(
            "[%s] window_start=%s window_end=%s repositories=%d rows_written=%d",
            SyncEventType.AGGREGATION_COMPLETED,
            result.window_start.isoformat(),
            result.window_end.isoformat(),
            result.repositories,
            result.rows_written,
        )
