"""Tests for the per-repository sync state machine and the org driver."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
from sqlalchemy import select, text

from gillnet.common.time import EPOCH
from gillnet.github.client import STAR_ACCEPT
from gillnet.github.errors import GitHubAPIError
from gillnet.github.rate import RateGovernor
from gillnet.mirror.checkpoints import CheckpointStore
from gillnet.mirror.storage import Issue, PullRequest, Review
from gillnet.sync import (
    OrganisationSync,
    RepositorySyncError,
    SyncState,
    SyncStateError,
)
from tests.helpers.fake_github import FakeGitHub, no_sleep
from tests.helpers.github_payloads import (
    BASE_TIME,
    issue_payload,
    pr_payload,
    repo_payload,
    script_repository,
    star_payload,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gillnet.github.models import RepositoryInfo

RUN_TIME = BASE_TIME + dt.timedelta(hours=1)
_BASE = "/repos/acme/widgets"
_MIRROR_TABLES = (
    "pull_requests",
    "pr_reviews",
    "issues",
    "issue_comments",
    "pr_review_comments",
    "stargazers",
    "commits",
    "workflow_runs",
)


def _org_sync(
    session_factory: async_sessionmaker[AsyncSession],
    github: FakeGitHub,
    *,
    now: dt.datetime = RUN_TIME,
) -> OrganisationSync:
    governor = RateGovernor(github, sleep=no_sleep)
    return OrganisationSync(
        session_factory, github, governor, org="acme", clock=lambda: now
    )


async def _dump_mirror(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[str, list[tuple[object, ...]]]:
    dump: dict[str, list[tuple[object, ...]]] = {}
    async with session_factory() as session:
        for table in _MIRROR_TABLES:
            query = text(f"SELECT * FROM {table} ORDER BY 1, 2")  # noqa: S608
            rows = await session.execute(query)
            dump[table] = [tuple(row) for row in rows]
    return dump


@pytest.fixture
def github() -> FakeGitHub:
    """Return a fake GitHub serving one populated repository."""
    fake = FakeGitHub()
    script_repository(fake, "acme", "widgets")
    return fake


class TestRepositorySync:
    """Tests for a single repository run."""

    @pytest.mark.asyncio
    async def test_first_run_mirrors_every_entity(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """A first run walks every state and commits the run start time."""
        machine = _org_sync(session_factory, github).repository_sync("widgets")

        result = await machine.run()

        assert machine.history == (
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
        assert result.checkpoint == RUN_TIME
        assert (result.pull_requests, result.reviews, result.issues) == (2, 2, 2)
        assert (result.issue_comments, result.review_comments) == (1, 1)
        assert (result.stargazers, result.workflow_runs) == (2, 2)
        assert (result.commits_fetched, result.commits_skipped) == (2, 1)
        checkpoints = CheckpointStore(session_factory)
        assert await checkpoints.get_checkpoint("acme", "widgets") == RUN_TIME

    @pytest.mark.asyncio
    async def test_pull_request_items_are_not_stored_as_issues(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """The issues table only holds real issues."""
        await _org_sync(session_factory, github).repository_sync("widgets").run()

        async with session_factory() as session:
            numbers = (
                await session.scalars(select(Issue.number).order_by(Issue.number))
            ).all()
        assert list(numbers) == [3, 4]

    @pytest.mark.asyncio
    async def test_requests_use_expected_parameters(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """List calls carry the documented sort, filter and media type."""
        await _org_sync(session_factory, github).repository_sync("widgets").run()

        pulls = github.requests_to(f"{_BASE}/pulls")[0]
        assert pulls.params == {"state": "all", "sort": "updated", "direction": "desc"}
        issues = github.requests_to(f"{_BASE}/issues")[0]
        assert issues.params is not None
        assert issues.params["since"] == "1970-01-01T00:00:00Z"
        stars = github.requests_to(f"{_BASE}/stargazers")[0]
        assert stars.accept == STAR_ACCEPT
        runs = github.requests_to(f"{_BASE}/actions/runs")[0]
        assert runs.params == {"created": ">1970-01-01"}

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """Re-running over unchanged remote data leaves the mirror unchanged."""
        await _org_sync(session_factory, github).repository_sync("widgets").run()
        before = await _dump_mirror(session_factory)

        result = await (
            _org_sync(session_factory, github).repository_sync("widgets").run()
        )

        assert await _dump_mirror(session_factory) == before
        assert result.pull_requests == 0
        assert result.commits_fetched == 0
        assert result.commits_skipped == 3

    @pytest.mark.asyncio
    async def test_commit_details_are_fetched_once(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """Known SHAs never trigger another detail request."""
        for _ in range(2):
            await _org_sync(session_factory, github).repository_sync("widgets").run()

        assert github.calls[f"{_BASE}/commits/a1"] == 1
        assert github.calls[f"{_BASE}/commits/b2"] == 1

    @pytest.mark.asyncio
    async def test_reviews_follow_the_watermark(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """Only pull requests updated since the checkpoint get review calls."""
        await CheckpointStore(session_factory).set_checkpoint(
            "acme", "widgets", BASE_TIME - dt.timedelta(minutes=90)
        )

        result = await (
            _org_sync(session_factory, github).repository_sync("widgets").run()
        )

        assert result.pull_requests == 1
        assert github.calls[f"{_BASE}/pulls/1/reviews"] == 1
        assert github.calls[f"{_BASE}/pulls/2/reviews"] == 0
        async with session_factory() as session:
            reviews = (await session.scalars(select(Review.pr_number))).all()
        assert list(reviews) == [1]

    @pytest.mark.asyncio
    async def test_pagination_stops_at_watermark(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Pages beyond the first stale item are never requested."""
        github = FakeGitHub(page_size=1)
        script_repository(github, "acme", "widgets")
        await CheckpointStore(session_factory).set_checkpoint(
            "acme", "widgets", BASE_TIME - dt.timedelta(minutes=90)
        )

        await _org_sync(session_factory, github).repository_sync("widgets").run()

        assert github.calls[f"{_BASE}/pulls"] == 2

    @pytest.mark.asyncio
    async def test_every_request_follows_a_quota_check(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """First pages, review lists and commit details are all governed."""
        github = FakeGitHub(page_size=1)
        script_repository(github, "acme", "widgets")

        await _org_sync(session_factory, github).repository_sync("widgets").run()

        assert github.calls[f"{_BASE}/pulls/1/reviews"] == 1
        assert github.calls[f"{_BASE}/pulls/2/reviews"] == 1
        assert github.unchecked_requests() == []

    @pytest.mark.asyncio
    async def test_items_without_number_are_skipped(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """Keyless pull requests and issues never abort the run."""
        keyless: list[dict[str, object]] = []
        for number in (7, 8):
            for payload in (
                pr_payload(number, updated_at=BASE_TIME),
                issue_payload(number, updated_at=BASE_TIME),
            ):
                del payload["number"]
                keyless.append(payload)
        github.lists[f"{_BASE}/pulls"].extend(keyless[0::2])
        github.lists[f"{_BASE}/issues"].extend(keyless[1::2])
        machine = _org_sync(session_factory, github).repository_sync("widgets")

        result = await machine.run()

        assert machine.state is SyncState.COMMITTED
        assert (result.pull_requests, result.issues) == (2, 2)
        checkpoints = CheckpointStore(session_factory)
        assert await checkpoints.get_checkpoint("acme", "widgets") == RUN_TIME

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_checkpoint(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """A failed step leaves the watermark and earlier rows in place."""
        github.fail(
            f"{_BASE}/issues/comments", GitHubAPIError.http_error(502, "comments")
        )
        machine = _org_sync(session_factory, github).repository_sync("widgets")

        with pytest.raises(RepositorySyncError) as excinfo:
            await machine.run()

        assert excinfo.value.state is SyncState.FETCHING_ISSUE_COMMENTS
        assert machine.state is SyncState.FAILED
        assert machine.history[-2:] == (
            SyncState.FETCHING_ISSUE_COMMENTS,
            SyncState.FAILED,
        )
        checkpoints = CheckpointStore(session_factory)
        assert await checkpoints.get_checkpoint("acme", "widgets") == EPOCH
        async with session_factory() as session:
            prs = (await session.scalars(select(PullRequest.number))).all()
        assert sorted(prs) == [1, 2]

    @pytest.mark.asyncio
    async def test_retry_after_failure_commits(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """The next run starts from the old watermark and commits."""
        path = f"{_BASE}/stargazers"
        github.fail(path, GitHubAPIError.http_error(500, path))
        with pytest.raises(RepositorySyncError):
            await _org_sync(session_factory, github).repository_sync("widgets").run()
        github.recover(path)

        result = await (
            _org_sync(session_factory, github).repository_sync("widgets").run()
        )

        assert result.pull_requests == 2
        checkpoints = CheckpointStore(session_factory)
        assert await checkpoints.get_checkpoint("acme", "widgets") == RUN_TIME

    @pytest.mark.asyncio
    async def test_removed_stars_are_deleted(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """The local star set mirrors the remote one."""
        await _org_sync(session_factory, github).repository_sync("widgets").run()
        github.set_list(f"{_BASE}/stargazers", [star_payload("alice", BASE_TIME)])

        result = await (
            _org_sync(session_factory, github).repository_sync("widgets").run()
        )

        assert result.stargazers == 1
        assert result.stargazers_removed == 1

    @pytest.mark.asyncio
    async def test_machine_runs_once(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """A finished machine refuses to start again."""
        machine = _org_sync(session_factory, github).repository_sync("widgets")
        await machine.run()

        with pytest.raises(SyncStateError):
            await machine.run()


class TestOrganisationSync:
    """Tests for repository listing and the org loop."""

    @pytest.fixture
    def org_github(self, github: FakeGitHub) -> FakeGitHub:
        """Add an org listing with ineligible repositories."""
        github.set_list(
            "/orgs/acme/repos",
            [
                repo_payload("widgets"),
                repo_payload("old", archived=True),
                repo_payload("secret", private=True),
                repo_payload("private_tools"),
                repo_payload("gadgets"),
            ],
        )
        script_repository(github, "acme", "gadgets")
        return github

    @pytest.mark.asyncio
    async def test_lists_only_eligible_repositories(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        org_github: FakeGitHub,
    ) -> None:
        """Archived, private and ``private_`` repositories are skipped."""
        repos = await _org_sync(session_factory, org_github).list_repositories()

        assert [info.name for info in repos] == ["widgets", "gadgets"]

    @pytest.mark.asyncio
    async def test_syncs_each_repository_in_order(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        org_github: FakeGitHub,
    ) -> None:
        """Every eligible repository is synced and reported."""
        seen: list[RepositoryInfo] = []

        results = await _org_sync(session_factory, org_github).sync(
            on_repository=seen.append
        )

        assert [info.slug for info in seen] == ["acme/widgets", "acme/gadgets"]
        assert [result.repo for result in results] == ["widgets", "gadgets"]
        assert org_github.calls["/repos/acme/old/pulls"] == 0

    @pytest.mark.asyncio
    async def test_first_failure_aborts_the_run(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        org_github: FakeGitHub,
    ) -> None:
        """Earlier repositories keep their advanced checkpoints."""
        path = "/repos/acme/gadgets/pulls"
        org_github.fail(path, GitHubAPIError.http_error(500, path))

        with pytest.raises(RepositorySyncError) as excinfo:
            await _org_sync(session_factory, org_github).sync()

        assert excinfo.value.repo == "gadgets"
        checkpoints = CheckpointStore(session_factory)
        assert await checkpoints.get_checkpoint("acme", "widgets") == RUN_TIME
        assert await checkpoints.get_checkpoint("acme", "gadgets") == EPOCH
