"""Per-repository sync watermarks."""

from __future__ import annotations

import typing as typ

from gillnet.common.time import EPOCH, format_timestamp, maybe_parse_timestamp, utcnow

from .storage import Checkpoint

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

CHECKPOINT_PREFIX = "last_sync_"


def checkpoint_key(org: str, repo: str) -> str:
    """Return the storage key for a repository watermark.

    >>> checkpoint_key("strands-agents", "sdk-python")
    'last_sync_strands-agents_sdk-python'

    """
    return f"{CHECKPOINT_PREFIX}{org}_{repo}"


class CheckpointStore:
    """Read and overwrite watermarks in the ``checkpoints`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Bind the store to a session factory."""
        self._session_factory = session_factory

    async def get_checkpoint(self, org: str, repo: str) -> dt.datetime:
        """Return the stored watermark, or the epoch when absent or unreadable."""
        async with self._session_factory() as session:
            row = await session.get(Checkpoint, checkpoint_key(org, repo))
        if row is None:
            return EPOCH
        parsed = maybe_parse_timestamp(row.value)
        return EPOCH if parsed is None else parsed

    async def set_checkpoint(self, org: str, repo: str, timestamp: dt.datetime) -> None:
        """Overwrite the watermark with ``timestamp``; no monotonicity check."""
        async with self._session_factory() as session, session.begin():
            await session.merge(
                Checkpoint(
                    key=checkpoint_key(org, repo),
                    value=format_timestamp(timestamp),
                    updated_at=utcnow(),
                )
            )

