"""Per-repository sync state machine and the organisation driver.

A repository sync walks a fixed sequence of entity loops. The run start time
is captured before the first fetch and written as the new checkpoint only
after the last loop completes, so a failed run is retried in full from the
previous watermark next time.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from gillnet.common.time import format_timestamp, utcnow
from gillnet.github.client import STAR_ACCEPT
from gillnet.github.models import RepositoryInfo
from gillnet.github.observability import SyncEventLogger, SyncRunContext
from gillnet.github.pagination import PaginatedFetcher
from gillnet.mirror.checkpoints import CheckpointStore
from gillnet.mirror.payloads import (
    commit_from_payload,
    issue_comment_from_payload,
    issue_from_payload,
    pull_request_from_payload,
    review_comment_from_payload,
    review_from_payload,
    stargazer_from_payload,
    workflow_run_from_payload,
)
from gillnet.mirror.upsert import EntityUpserter

from .errors import RepositorySyncError, SyncStateError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gillnet.github.client import GitHubRestApi
    from gillnet.github.rate import RateGovernor

type Clock = cabc.Callable[[], dt.datetime]


class SyncState(enum.StrEnum):
    """States of a repository sync, in the order they are entered."""

    IDLE = "idle"
    FETCHING_PRS = "fetching_prs"
    FETCHING_ISSUES = "fetching_issues"
    FETCHING_ISSUE_COMMENTS = "fetching_issue_comments"
    FETCHING_PR_COMMENTS = "fetching_pr_comments"
    FETCHING_STARS = "fetching_stars"
    FETCHING_COMMITS = "fetching_commits"
    FETCHING_WORKFLOWS = "fetching_workflows"
    COMMITTED = "committed"
    FAILED = "failed"


_SEQUENCE: tuple[SyncState, ...] = (
    SyncState.IDLE,
    SyncState.FETCHING_PRS,
    SyncState.FETCHING_ISSUES,
    SyncState.FETCHING_ISSUE_COMMENTS,
    SyncState.FETCHING_PR_COMMENTS,
    SyncState.FETCHING_STARS,
    SyncState.FETCHING_COMMITS,
    SyncState.FETCHING_WORKFLOWS,
    SyncState.COMMITTED,
)

_UPDATED_DESC: dict[str, str | int] = {"sort": "updated", "direction": "desc"}


@dataclasses.dataclass(frozen=True, slots=True)
class RepositorySyncResult:
    """Rows written by one committed repository sync."""

    repo: str
    checkpoint: dt.datetime
    pull_requests: int = 0
    reviews: int = 0
    issues: int = 0
    issue_comments: int = 0
    review_comments: int = 0
    stargazers: int = 0
    stargazers_removed: int = 0
    commits_fetched: int = 0
    commits_skipped: int = 0
    workflow_runs: int = 0

    @property
    def total(self) -> int:
        """Return the number of rows upserted across every entity loop."""
        return (
            self.pull_requests
            + self.reviews
            + self.issues
            + self.issue_comments
            + self.review_comments
            + self.stargazers
            + self.commits_fetched
            + self.workflow_runs
        )


@dataclasses.dataclass(slots=True)
class _Counts:
    pull_requests: int = 0
    reviews: int = 0
    issues: int = 0
    issue_comments: int = 0
    review_comments: int = 0
    stargazers: int = 0
    stargazers_removed: int = 0
    commits_fetched: int = 0
    commits_skipped: int = 0
    workflow_runs: int = 0


class RepositorySync:
    """Sync one repository's activity since its checkpoint.

    An instance runs once. ``history`` records every state entered, ending
    in ``COMMITTED`` or ``FAILED``.
    """

    def __init__(  # noqa: PLR0913
        self,
        org: str,
        repo: str,
        *,
        client: GitHubRestApi,
        governor: RateGovernor,
        upserter: EntityUpserter,
        checkpoints: CheckpointStore,
        event_logger: SyncEventLogger | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Bind the machine to its collaborators; nothing is fetched yet."""
        self.org = org
        self.repo = repo
        self._client = client
        self._governor = governor
        self._fetcher = PaginatedFetcher(client, governor)
        self._upserter = upserter
        self._checkpoints = checkpoints
        self._event_logger = event_logger or SyncEventLogger()
        self._clock = clock or utcnow
        self._history: list[SyncState] = [SyncState.IDLE]
        self._counts = _Counts()

    @property
    def state(self) -> SyncState:
        """Return the current state."""
        return self._history[-1]

    @property
    def history(self) -> tuple[SyncState, ...]:
        """Return every state entered so far, oldest first."""
        return tuple(self._history)

    @property
    def _base(self) -> str:
        return f"/repos/{self.org}/{self.repo}"

    def _advance(self, target: SyncState) -> None:
        expected = _SEQUENCE[_SEQUENCE.index(self.state) + 1]
        if target is not expected:
            raise SyncStateError(self.repo, self.state)
        self._history.append(target)

    async def run(self) -> RepositorySyncResult:
        """Fetch every entity kind, then advance the checkpoint.

        Raises
        ------
        RepositorySyncError
            When any step fails. The checkpoint keeps its previous value and
            rows already upserted by this run stay in place.

        """
        if self.state is not SyncState.IDLE:
            raise SyncStateError(self.repo, self.state)

        now = self._clock()
        since = await self._checkpoints.get_checkpoint(self.org, self.repo)
        context = SyncRunContext(
            org=self.org, repo=self.repo, started_at=now, watermark=since
        )
        self._event_logger.log_run_started(context)

        try:
            await self._run_steps(context, now)
        except Exception as exc:
            failed_in = self.state
            self._history.append(SyncState.FAILED)
            self._event_logger.log_run_failed(
                context, failed_in, exc, self._clock() - now
            )
            raise RepositorySyncError(self.repo, failed_in, exc) from exc

        result = RepositorySyncResult(
            repo=self.repo,
            checkpoint=now,
            **dataclasses.asdict(self._counts),
        )
        self._event_logger.log_run_completed(context, result, self._clock() - now)
        return result

    async def _run_steps(self, context: SyncRunContext, now: dt.datetime) -> None:
        since = context.watermark
        steps: tuple[
            tuple[SyncState, str, cabc.Callable[[dt.datetime], cabc.Awaitable[int]]],
            ...,
        ] = (
            (SyncState.FETCHING_PRS, "pull_request", self._sync_pull_requests),
            (SyncState.FETCHING_ISSUES, "issue", self._sync_issues),
            (
                SyncState.FETCHING_ISSUE_COMMENTS,
                "issue_comment",
                self._sync_issue_comments,
            ),
            (
                SyncState.FETCHING_PR_COMMENTS,
                "review_comment",
                self._sync_review_comments,
            ),
            (SyncState.FETCHING_STARS, "stargazer", self._sync_stargazers),
            (SyncState.FETCHING_COMMITS, "commit", self._sync_commits),
            (SyncState.FETCHING_WORKFLOWS, "workflow_run", self._sync_workflow_runs),
        )
        for state, kind, step in steps:
            self._advance(state)
            rows = await step(since)
            self._event_logger.log_stream_completed(context, kind, rows)

        await self._checkpoints.set_checkpoint(self.org, self.repo, now)
        self._advance(SyncState.COMMITTED)

    async def _sync_pull_requests(self, since: dt.datetime) -> int:
        params = {"state": "all", **_UPDATED_DESC}
        async for page in self._fetcher.iter_since(
            f"{self._base}/pulls", params, watermark=since
        ):
            for raw in page:
                record = pull_request_from_payload(raw, self.repo)
                if record is None:
                    continue
                await self._upserter.upsert(record)
                self._counts.pull_requests += 1
                if record.updated_at >= since:
                    self._counts.reviews += await self._sync_reviews(record.number)
        return self._counts.pull_requests

    async def _sync_reviews(self, number: int) -> int:
        count = 0
        async for page in self._fetcher.iter_pages(
            f"{self._base}/pulls/{number}/reviews"
        ):
            for raw in page:
                await self._upserter.upsert(review_from_payload(raw, self.repo, number))
                count += 1
        return count

    async def _sync_issues(self, since: dt.datetime) -> int:
        params = {"state": "all", **_UPDATED_DESC, "since": format_timestamp(since)}
        async for page in self._fetcher.iter_since(
            f"{self._base}/issues", params, watermark=since
        ):
            for raw in page:
                record = issue_from_payload(raw, self.repo)
                if record is None:
                    continue
                await self._upserter.upsert(record)
                self._counts.issues += 1
        return self._counts.issues

    async def _sync_issue_comments(self, since: dt.datetime) -> int:
        params = {**_UPDATED_DESC, "since": format_timestamp(since)}
        async for page in self._fetcher.iter_since(
            f"{self._base}/issues/comments", params, watermark=since
        ):
            for raw in page:
                await self._upserter.upsert(issue_comment_from_payload(raw, self.repo))
                self._counts.issue_comments += 1
        return self._counts.issue_comments

    async def _sync_review_comments(self, since: dt.datetime) -> int:
        params = {**_UPDATED_DESC, "since": format_timestamp(since)}
        async for page in self._fetcher.iter_since(
            f"{self._base}/pulls/comments", params, watermark=since
        ):
            for raw in page:
                await self._upserter.upsert(
                    review_comment_from_payload(raw, self.repo)
                )
                self._counts.review_comments += 1
        return self._counts.review_comments

    async def _sync_stargazers(self, since: dt.datetime) -> int:
        """Mirror the full star set; the watermark does not apply."""
        remote_users: set[str] = set()
        async for page in self._fetcher.iter_pages(
            f"{self._base}/stargazers", accept=STAR_ACCEPT
        ):
            for raw in page:
                record = stargazer_from_payload(raw, self.repo)
                if record is None:
                    continue
                remote_users.add(record.user)
                await self._upserter.upsert(record)
                self._counts.stargazers += 1
        self._counts.stargazers_removed = (
            await self._upserter.delete_stargazers_except(self.repo, remote_users)
        )
        return self._counts.stargazers

    async def _sync_commits(self, since: dt.datetime) -> int:
        params = {"since": format_timestamp(since)}
        async for page in self._fetcher.iter_pages(f"{self._base}/commits", params):
            shas = dict.fromkeys(
                raw["sha"]
                for raw in page
                if isinstance(raw.get("sha"), str) and raw["sha"]
            )
            for sha in shas:
                if await self._upserter.has_commit(sha):
                    self._counts.commits_skipped += 1
                    continue
                await self._governor.check_limits()
                detail = await self._client.get_json(f"{self._base}/commits/{sha}")
                await self._upserter.upsert(
                    commit_from_payload(detail, self.repo, sha=sha)
                )
                self._counts.commits_fetched += 1
        return self._counts.commits_fetched

    async def _sync_workflow_runs(self, since: dt.datetime) -> int:
        params = {"created": f">{since.strftime('%Y-%m-%d')}"}
        async for page in self._fetcher.iter_pages(
            f"{self._base}/actions/runs", params, items_key="workflow_runs"
        ):
            for raw in page:
                await self._upserter.upsert(workflow_run_from_payload(raw, self.repo))
                self._counts.workflow_runs += 1
        return self._counts.workflow_runs


async def list_eligible_repositories(
    fetcher: PaginatedFetcher, org: str
) -> list[RepositoryInfo]:
    """Page through ``/orgs/{org}/repos`` and keep the syncable repositories."""
    repos: list[RepositoryInfo] = []
    async for page in fetcher.iter_pages(f"/orgs/{org}/repos"):
        for raw in page:
            info = RepositoryInfo.from_payload(org, raw)
            if info is not None and info.is_eligible:
                repos.append(info)
    return repos


class OrganisationSync:
    """Sync every eligible repository of an organisation, one at a time."""

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: GitHubRestApi,
        governor: RateGovernor,
        *,
        org: str,
        event_logger: SyncEventLogger | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Create a driver sharing one client, governor and session factory."""
        self.org = org
        self._client = client
        self._governor = governor
        self._fetcher = PaginatedFetcher(client, governor)
        self._upserter = EntityUpserter(session_factory)
        self._checkpoints = CheckpointStore(session_factory)
        self._event_logger = event_logger or SyncEventLogger()
        self._clock = clock

    async def list_repositories(self) -> list[RepositoryInfo]:
        """Return public, unarchived, non-``private_`` repositories."""
        return await list_eligible_repositories(self._fetcher, self.org)

    def repository_sync(self, repo: str) -> RepositorySync:
        """Build a fresh state machine for ``repo``."""
        return RepositorySync(
            self.org,
            repo,
            client=self._client,
            governor=self._governor,
            upserter=self._upserter,
            checkpoints=self._checkpoints,
            event_logger=self._event_logger,
            clock=self._clock,
        )

    async def sync(
        self,
        *,
        on_repository: cabc.Callable[[RepositoryInfo], None] | None = None,
    ) -> list[RepositorySyncResult]:
        """Sync each repository in listing order.

        The first failure propagates as :class:`RepositorySyncError`;
        repositories synced before it keep their advanced checkpoints.
        """
        results: list[RepositorySyncResult] = []
        for info in await self.list_repositories():
            if on_repository is not None:
                on_repository(info)
            results.append(await self.repository_sync(info.name).run())
        return results
