"""Recompute per-day, per-repository metrics over a trailing dirty window.

Usage
-----
Run after a sync so the raw tables reflect the latest fetch:

>>> from gillnet.metrics.aggregation import MetricsAggregator
>>> result = await MetricsAggregator(session_factory).recompute()
>>> result.rows_written

Every row is derived only from raw mirror rows, never from another day's
metrics, so repeating a recompute over unchanged data reproduces the same
rows. Days before the window are left untouched.
"""

from __future__ import annotations

import bisect
import collections
import dataclasses as dc
import datetime as dt
import typing as typ

from sqlalchemy import delete, func, select

from gillnet.common.time import hours_between, utcnow
from gillnet.github.observability import SyncEventLogger
from gillnet.mirror.storage import (
    Commit,
    Issue,
    PullRequest,
    Stargazer,
    WorkflowRun,
)

from .responses import FirstResponseIndex
from .storage import DailyMetric

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

HISTORY_START = dt.date(2010, 1, 1)
DIRTY_WINDOW = dt.timedelta(days=3)
INTERNAL_ASSOCIATIONS = frozenset({"OWNER", "MEMBER", "COLLABORATOR"})
FAILURE_CONCLUSION = "failure"

type DayKey = dt.date


@dc.dataclass(frozen=True, slots=True)
class AggregationResult:
    """Window recomputed by one aggregation run."""

    window_start: dt.date
    window_end: dt.date
    rows_written: int
    repositories: int = 0


def window_start_for(latest: dt.date | None) -> dt.date:
    """Return the first day to recompute given the newest stored metric day."""
    if latest is None:
        return HISTORY_START
    return latest - DIRTY_WINDOW


def is_internal_association(association: str | None) -> bool:
    """Return True for owners, members and collaborators (case-insensitive)."""
    return (association or "").strip().upper() in INTERNAL_ASSOCIATIONS


def iter_days(start: dt.date, end: dt.date) -> cabc.Iterator[dt.date]:
    """Yield each calendar day from ``start`` to ``end`` inclusive."""
    day = start
    while day <= end:
        yield day
        day += dt.timedelta(days=1)


def _mean(values: list[float] | None) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


class _OpenCounter:
    """Count items open as of a day from sorted entry and exit dates.

    An item is open on day D when it was created on or before D and has not
    left (closed, or soft-deleted) on or before D.
    """

    def __init__(self) -> None:
        self._entered: list[dt.date] = []
        self._left: list[dt.date] = []

    def add(self, created: dt.date, left: dt.date | None) -> None:
        self._entered.append(created)
        if left is not None:
            # Leaving before creation counts from creation onwards.
            self._left.append(max(created, left))

    def freeze(self) -> None:
        self._entered.sort()
        self._left.sort()

    def open_on(self, day: dt.date) -> int:
        entered = bisect.bisect_right(self._entered, day)
        left = bisect.bisect_right(self._left, day)
        return entered - left


@dc.dataclass(slots=True)
class _RepoSnapshot:
    """Raw rows for one repository, bucketed by the UTC day they fall on."""

    prs_opened: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    prs_merged: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    issues_opened: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    issues_closed: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    churn_additions: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    churn_deletions: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    ci_runs: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    ci_failures: collections.Counter[DayKey] = dc.field(
        default_factory=collections.Counter
    )
    star_days: list[dt.date] = dc.field(default_factory=list)
    open_prs: _OpenCounter = dc.field(default_factory=_OpenCounter)
    open_issues: _OpenCounter = dc.field(default_factory=_OpenCounter)
    issue_resolution: dict[DayKey, list[float]] = dc.field(
        default_factory=lambda: collections.defaultdict(list)
    )
    pr_resolution: dict[DayKey, list[float]] = dc.field(
        default_factory=lambda: collections.defaultdict(list)
    )
    merge_internal: dict[DayKey, list[float]] = dc.field(
        default_factory=lambda: collections.defaultdict(list)
    )
    merge_external: dict[DayKey, list[float]] = dc.field(
        default_factory=lambda: collections.defaultdict(list)
    )

    def freeze(self) -> None:
        self.star_days.sort()
        self.open_prs.freeze()
        self.open_issues.freeze()

    def add_pull_request(self, row: PullRequest) -> None:
        created = row.created_at.date()
        self.prs_opened[created] += 1
        self.open_prs.add(created, row.closed_at.date() if row.closed_at else None)

        resolved_at = row.merged_at or row.closed_at
        if resolved_at is not None:
            self.pr_resolution[resolved_at.date()].append(
                hours_between(row.created_at, resolved_at)
            )

        if row.merged_at is not None:
            merged = row.merged_at.date()
            self.prs_merged[merged] += 1
            bucket = (
                self.merge_internal
                if is_internal_association(row.author_association)
                else self.merge_external
            )
            bucket[merged].append(hours_between(row.created_at, row.merged_at))

    def add_issue(self, row: Issue) -> None:
        created = row.created_at.date()
        self.issues_opened[created] += 1
        exits = [stamp.date() for stamp in (row.closed_at, row.deleted_at) if stamp]
        self.open_issues.add(created, min(exits) if exits else None)

        if row.closed_at is not None:
            closed = row.closed_at.date()
            self.issues_closed[closed] += 1
            self.issue_resolution[closed].append(
                hours_between(row.created_at, row.closed_at)
            )

    def add_commit(self, row: Commit) -> None:
        day = row.date.date()
        self.churn_additions[day] += row.additions
        self.churn_deletions[day] += row.deletions

    def add_workflow_run(self, row: WorkflowRun) -> None:
        day = row.created_at.date()
        self.ci_runs[day] += 1
        if row.conclusion == FAILURE_CONCLUSION:
            self.ci_failures[day] += 1

    def metric_for(
        self, day: dt.date, repo: str, responses: FirstResponseIndex
    ) -> DailyMetric:
        """Build the row for ``(day, repo)`` from this snapshot alone."""
        return DailyMetric(
            date=day,
            repo=repo,
            prs_opened=self.prs_opened[day],
            prs_merged=self.prs_merged[day],
            issues_opened=self.issues_opened[day],
            issues_closed=self.issues_closed[day],
            churn_additions=self.churn_additions[day],
            churn_deletions=self.churn_deletions[day],
            ci_failures=self.ci_failures[day],
            ci_runs=self.ci_runs[day],
            stars=bisect.bisect_right(self.star_days, day),
            open_prs_count=self.open_prs.open_on(day),
            open_issues_count=self.open_issues.open_on(day),
            time_to_first_response=responses.average(repo, day),
            avg_issue_resolution_time=_mean(self.issue_resolution.get(day)),
            avg_pr_resolution_time=_mean(self.pr_resolution.get(day)),
            time_to_merge_internal=_mean(self.merge_internal.get(day)),
            time_to_merge_external=_mean(self.merge_external.get(day)),
        )


async def _load_snapshots(session: AsyncSession) -> dict[str, _RepoSnapshot]:
    """Read the raw tables once; active repositories get a snapshot each.

    Active means present in pull requests, issues, stargazers or commits.
    Workflow runs alone do not make a repository active.
    """
    snapshots: dict[str, _RepoSnapshot] = collections.defaultdict(_RepoSnapshot)

    for pr in await session.scalars(select(PullRequest).order_by(PullRequest.id)):
        snapshots[pr.repo].add_pull_request(pr)
    for issue in await session.scalars(select(Issue).order_by(Issue.id)):
        snapshots[issue.repo].add_issue(issue)
    for commit in await session.scalars(select(Commit).order_by(Commit.sha)):
        snapshots[commit.repo].add_commit(commit)
    for repo, starred_at in await session.execute(
        select(Stargazer.repo, Stargazer.starred_at)
    ):
        snapshots[repo].star_days.append(starred_at.date())

    active = dict(snapshots)
    for run in await session.scalars(select(WorkflowRun).order_by(WorkflowRun.id)):
        if run.repo in active:
            active[run.repo].add_workflow_run(run)

    for snapshot in active.values():
        snapshot.freeze()
    return active


class MetricsAggregator:
    """Delete and regenerate ``daily_metrics`` rows inside the dirty window."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: cabc.Callable[[], dt.datetime] | None = None,
        event_logger: SyncEventLogger | None = None,
    ) -> None:
        """Bind the aggregator to a session factory and an injectable clock."""
        self._session_factory = session_factory
        self._clock = clock or utcnow
        self._event_logger = event_logger or SyncEventLogger()

    async def recompute(self) -> AggregationResult:
        """Recompute ``[max(date) - 3 days, today]`` in a single transaction."""
        window_end = self._clock().astimezone(dt.UTC).date()
        async with self._session_factory() as session, session.begin():
            latest = await session.scalar(select(func.max(DailyMetric.date)))
            window_start = window_start_for(latest)

            await session.execute(
                delete(DailyMetric).where(DailyMetric.date >= window_start)
            )

            responses = await FirstResponseIndex.load(session)
            snapshots = await _load_snapshots(session)

            rows = [
                snapshots[repo].metric_for(day, repo, responses)
                for day in iter_days(window_start, window_end)
                for repo in sorted(snapshots)
            ]
            session.add_all(rows)

        result = AggregationResult(
            window_start=window_start,
            window_end=window_end,
            rows_written=len(rows),
            repositories=len(snapshots),
        )
        self._event_logger.log_aggregation_completed(result)
        return result
