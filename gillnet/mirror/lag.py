"""Checkpoint age and health queries.

Flags repositories whose watermark has not advanced recently, so a daily
sync that keeps failing on one repository is visible to operators.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import typing as typ

from sqlalchemy import select

from gillnet.common.time import maybe_parse_timestamp, utcnow

from .checkpoints import checkpoint_key
from .storage import Checkpoint

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@dataclasses.dataclass(frozen=True, slots=True)
class CheckpointHealthConfig:
    """Threshold after which a checkpoint counts as stale."""

    stale_threshold: dt.timedelta = dataclasses.field(
        default_factory=lambda: dt.timedelta(hours=26)
    )


@dataclasses.dataclass(frozen=True, slots=True)
class CheckpointHealth:
    """Checkpoint age for one repository."""

    repo: str
    last_sync: dt.datetime | None
    age_seconds: float | None
    is_stale: bool


def _compute_health(
    repo: str,
    last_sync: dt.datetime | None,
    now: dt.datetime,
    threshold: dt.timedelta,
) -> CheckpointHealth:
    if last_sync is None:
        # Never synced (or unreadable) counts as stale.
        return CheckpointHealth(
            repo=repo, last_sync=None, age_seconds=None, is_stale=True
        )
    age = (now - last_sync).total_seconds()
    return CheckpointHealth(
        repo=repo,
        last_sync=last_sync,
        age_seconds=age,
        is_stale=age > threshold.total_seconds(),
    )


class CheckpointHealthService:
    """Compute checkpoint health on demand from the ``checkpoints`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        config: CheckpointHealthConfig | None = None,
        clock: cabc.Callable[[], dt.datetime] | None = None,
    ) -> None:
        """Create a health service bound to a database session factory."""
        self._session_factory = session_factory
        self._config = config or CheckpointHealthConfig()
        self._clock = clock or utcnow

    async def get_health(
        self, org: str, repos: cabc.Iterable[str]
    ) -> list[CheckpointHealth]:
        """Return health for each of ``repos`` in the order given."""
        names = list(repos)
        keys = {checkpoint_key(org, name): name for name in names}
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(Checkpoint).where(Checkpoint.key.in_(list(keys)))
                )
            ).all()
        values = {keys[row.key]: maybe_parse_timestamp(row.value) for row in rows}
        now = self._clock()
        return [
            _compute_health(
                name, values.get(name), now, self._config.stale_threshold
            )
            for name in names
        ]

    async def get_stale_repositories(
        self, org: str, repos: cabc.Iterable[str]
    ) -> list[CheckpointHealth]:
        """Return only the repositories whose checkpoint is stale."""
        healths = await self.get_health(org, repos)
        return [health for health in healths if health.is_stale]
