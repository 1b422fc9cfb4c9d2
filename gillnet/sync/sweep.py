"""Reconcile locally open issues against GitHub's open set.

Incremental sync only sees issues that changed since the watermark, so an
issue deleted or transferred upstream would stay open locally forever. The
sweep fetches each locally open issue that GitHub no longer lists as open and
records its real state, or marks it deleted when GitHub reports it missing.
"""

from __future__ import annotations

import dataclasses
import typing as typ

import httpx
from sqlalchemy import select, update

from gillnet.common.time import maybe_parse_timestamp, utcnow
from gillnet.github.errors import GitHubAPIError
from gillnet.github.observability import SyncEventLogger
from gillnet.github.pagination import PaginatedFetcher
from gillnet.mirror.storage import Issue
from gillnet.mirror.upsert import DELETED_STATE

from .errors import SweepError
from .orchestrator import list_eligible_repositories

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from gillnet.github.client import GitHubRestApi
    from gillnet.github.models import RawItem, RepositoryInfo
    from gillnet.github.rate import RateGovernor

OPEN_STATE = "open"
DEFAULT_CLOSED_STATE = "closed"


@dataclasses.dataclass(frozen=True, slots=True)
class SweepResult:
    """Outcome of sweeping one repository."""

    repo: str
    remote_open: int = 0
    local_open: int = 0
    closed: int = 0
    deleted: int = 0


class Sweeper:
    """Close or soft-delete issues that left GitHub's open set."""

    def __init__(  # noqa: PLR0913
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: GitHubRestApi,
        governor: RateGovernor,
        *,
        org: str,
        event_logger: SyncEventLogger | None = None,
        clock: cabc.Callable[[], dt.datetime] | None = None,
    ) -> None:
        """Create a sweeper sharing the sync run's client and governor."""
        self.org = org
        self._session_factory = session_factory
        self._client = client
        self._governor = governor
        self._fetcher = PaginatedFetcher(client, governor)
        self._event_logger = event_logger or SyncEventLogger()
        self._clock = clock or utcnow

    async def sweep_org(
        self,
        *,
        on_repository: cabc.Callable[[RepositoryInfo], None] | None = None,
    ) -> list[SweepResult]:
        """Sweep every eligible repository in listing order.

        The first :class:`SweepError` aborts the remaining repositories.
        """
        results: list[SweepResult] = []
        for info in await list_eligible_repositories(self._fetcher, self.org):
            if on_repository is not None:
                on_repository(info)
            results.append(await self.sweep_repository(info.name))
        return results

    async def sweep_repository(self, repo: str) -> SweepResult:
        """Reconcile one repository's open issues."""
        remote_open = await self._remote_open_numbers(repo)
        local_open = await self._local_open_numbers(repo)
        closed = deleted = 0
        for number in local_open:
            if number in remote_open:
                continue
            await self._governor.check_limits()
            try:
                payload = await self._client.get_json(
                    f"/repos/{self.org}/{repo}/issues/{number}"
                )
            except GitHubAPIError as exc:
                if not exc.is_missing_resource:
                    raise SweepError(repo, exc, number=number) from exc
                await self._mark_deleted(repo, number)
                deleted += 1
                continue
            except httpx.HTTPError as exc:
                raise SweepError(repo, exc, number=number) from exc
            await self._apply_remote_state(repo, number, payload)
            closed += 1

        result = SweepResult(
            repo=repo,
            remote_open=len(remote_open),
            local_open=len(local_open),
            closed=closed,
            deleted=deleted,
        )
        self._event_logger.log_sweep_completed(result)
        return result

    async def _remote_open_numbers(self, repo: str) -> set[int]:
        numbers: set[int] = set()
        async for page in self._fetcher.iter_pages(
            f"/repos/{self.org}/{repo}/issues", {"state": OPEN_STATE}
        ):
            for raw in page:
                number = raw.get("number")
                if isinstance(number, int) and not isinstance(number, bool):
                    numbers.add(number)
        return numbers

    async def _local_open_numbers(self, repo: str) -> list[int]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(Issue.number)
                .where(
                    Issue.repo == repo,
                    Issue.state == OPEN_STATE,
                    Issue.closed_at.is_(None),
                    Issue.deleted_at.is_(None),
                )
                .order_by(Issue.number)
            )
            return list(rows.all())

    async def _apply_remote_state(
        self, repo: str, number: int, payload: RawItem
    ) -> None:
        state = payload.get("state")
        if not isinstance(state, str) or not state:
            state = DEFAULT_CLOSED_STATE
        values: dict[str, typ.Any] = {
            "state": state,
            "closed_at": maybe_parse_timestamp(payload.get("closed_at")),
        }
        updated_at = maybe_parse_timestamp(payload.get("updated_at"))
        if updated_at is not None:
            values["updated_at"] = updated_at
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Issue)
                .where(Issue.repo == repo, Issue.number == number)
                .values(**values)
            )

    async def _mark_deleted(self, repo: str, number: int) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(Issue)
                .where(Issue.repo == repo, Issue.number == number)
                .values(state=DELETED_STATE, deleted_at=self._clock())
            )
