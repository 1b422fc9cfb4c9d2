"""Tests for the open-issue sweep."""

from __future__ import annotations

import datetime as dt
import typing as typ

import httpx
import pytest
from sqlalchemy import select

from gillnet.github.errors import GitHubAPIError
from gillnet.github.rate import RateGovernor
from gillnet.mirror.payloads import issue_from_payload
from gillnet.mirror.storage import Issue
from gillnet.mirror.upsert import DELETED_STATE, EntityUpserter
from gillnet.sync import SweepError, Sweeper
from tests.helpers.fake_github import FakeGitHub, no_sleep
from tests.helpers.github_payloads import BASE_TIME, issue_payload, repo_payload

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

SWEEP_TIME = BASE_TIME + dt.timedelta(days=2)
_ISSUES = "/repos/acme/widgets/issues"


async def _seed_open_issues(
    session_factory: async_sessionmaker[AsyncSession], numbers: list[int]
) -> None:
    upserter = EntityUpserter(session_factory)
    for number in numbers:
        record = issue_from_payload(
            issue_payload(number, updated_at=BASE_TIME), "widgets"
        )
        assert record is not None
        await upserter.upsert(record)


async def _issues_by_number(
    session_factory: async_sessionmaker[AsyncSession],
) -> dict[int, Issue]:
    async with session_factory() as session:
        rows = (await session.scalars(select(Issue))).all()
    return {row.number: row for row in rows}


def _sweeper(
    session_factory: async_sessionmaker[AsyncSession], github: FakeGitHub
) -> Sweeper:
    governor = RateGovernor(github, sleep=no_sleep)
    return Sweeper(
        session_factory, github, governor, org="acme", clock=lambda: SWEEP_TIME
    )


@pytest.fixture
def github() -> FakeGitHub:
    """Return a fake where only #5 is still open remotely.

    #6 was closed upstream and #7 no longer exists.
    """
    fake = FakeGitHub()
    fake.set_list(_ISSUES, [issue_payload(5, updated_at=BASE_TIME)])
    closed_at = BASE_TIME + dt.timedelta(days=1)
    fake.set_object(
        f"{_ISSUES}/6",
        issue_payload(
            6,
            updated_at=closed_at,
            created_at=BASE_TIME,
            state="closed",
            closed_at=closed_at,
        ),
    )
    return fake


class TestSweepRepository:
    """Tests for reconciling one repository."""

    @pytest.mark.asyncio
    async def test_closes_and_deletes_missing_issues(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """Closed issues take the remote state; missing ones are soft-deleted."""
        await _seed_open_issues(session_factory, [5, 6, 7])

        result = await _sweeper(session_factory, github).sweep_repository("widgets")

        assert (result.remote_open, result.local_open) == (1, 3)
        assert (result.closed, result.deleted) == (1, 1)
        issues = await _issues_by_number(session_factory)
        assert issues[5].state == "open"
        assert issues[6].state == "closed"
        assert issues[6].closed_at == BASE_TIME + dt.timedelta(days=1)
        assert issues[6].updated_at == BASE_TIME + dt.timedelta(days=1)
        assert issues[7].state == DELETED_STATE
        assert issues[7].deleted_at == SWEEP_TIME
        assert github.calls[f"{_ISSUES}/5"] == 0

    @pytest.mark.asyncio
    async def test_deletion_is_irreversible(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """A later sync returning the issue does not resurrect it."""
        await _seed_open_issues(session_factory, [5, 6, 7])
        await _sweeper(session_factory, github).sweep_repository("widgets")

        await _seed_open_issues(session_factory, [7])
        result = await _sweeper(session_factory, github).sweep_repository("widgets")

        issues = await _issues_by_number(session_factory)
        assert issues[7].state == DELETED_STATE
        assert issues[7].deleted_at == SWEEP_TIME
        assert result.local_open == 1
        assert github.calls[f"{_ISSUES}/7"] == 1

    @pytest.mark.asyncio
    async def test_gone_status_marks_deleted(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """410 Gone (transferred or removed) counts as missing."""
        await _seed_open_issues(session_factory, [9])
        github.fail(f"{_ISSUES}/9", GitHubAPIError.http_error(410, "issues/9"))

        result = await _sweeper(session_factory, github).sweep_repository("widgets")

        assert result.deleted == 1

    @pytest.mark.parametrize(
        "error",
        [
            GitHubAPIError.http_error(502, "issues/8"),
            httpx.ConnectError("connection refused"),
        ],
    )
    @pytest.mark.asyncio
    async def test_unexpected_errors_abort_the_sweep(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
        error: Exception,
    ) -> None:
        """Server and transport errors leave the issue untouched."""
        await _seed_open_issues(session_factory, [8])
        github.fail(f"{_ISSUES}/8", error)

        with pytest.raises(SweepError) as excinfo:
            await _sweeper(session_factory, github).sweep_repository("widgets")

        assert excinfo.value.number == 8
        assert excinfo.value.cause is error
        issues = await _issues_by_number(session_factory)
        assert issues[8].state == "open"
        assert issues[8].deleted_at is None

    @pytest.mark.asyncio
    async def test_missing_state_defaults_to_closed(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: FakeGitHub,
    ) -> None:
        """A remote payload without a state is recorded as closed."""
        await _seed_open_issues(session_factory, [10])
        github.set_object(f"{_ISSUES}/10", {"number": 10})

        await _sweeper(session_factory, github).sweep_repository("widgets")

        issues = await _issues_by_number(session_factory)
        assert issues[10].state == "closed"
        assert issues[10].closed_at is None
        assert issues[10].updated_at == BASE_TIME


@pytest.mark.asyncio
async def test_sweep_org_visits_eligible_repositories(
    session_factory: async_sessionmaker[AsyncSession],
    github: FakeGitHub,
) -> None:
    """The org sweep reuses the sync's repository filter."""
    github.set_list(
        "/orgs/acme/repos",
        [repo_payload("widgets"), repo_payload("old", archived=True)],
    )
    await _seed_open_issues(session_factory, [5])
    seen: list[str] = []

    results = await _sweeper(session_factory, github).sweep_org(
        on_repository=lambda info: seen.append(info.name)
    )

    assert seen == ["widgets"]
    assert [result.repo for result in results] == ["widgets"]
    assert github.calls["/repos/acme/old/issues"] == 0


@pytest.mark.asyncio
async def test_every_sweep_request_follows_a_quota_check(
    session_factory: async_sessionmaker[AsyncSession],
    github: FakeGitHub,
) -> None:
    """Listings of every repository and single-issue lookups are governed."""
    github.set_list(
        "/orgs/acme/repos", [repo_payload("widgets"), repo_payload("gadgets")]
    )
    await _seed_open_issues(session_factory, [5, 6, 7])

    await _sweeper(session_factory, github).sweep_org()

    assert github.calls["/repos/acme/gadgets/issues"] == 1
    assert github.calls[f"{_ISSUES}/6"] == 1
    assert github.unchecked_requests() == []
