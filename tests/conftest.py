"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gillnet.metrics import init_metrics_storage
from gillnet.mirror import init_mirror_storage

if typ.TYPE_CHECKING:
    from pathlib import Path


async def _init_all_storage(engine: AsyncEngine) -> None:
    """Create the mirror and metrics tables."""
    await init_mirror_storage(engine)
    await init_metrics_storage(engine)


async def _setup_sqlite(tmp_path: Path) -> AsyncEngine:
    """Create a SQLite engine and initialise all storage layers."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gillnet_test.db'}")
    try:
        await _init_all_storage(engine)
    except Exception:
        await engine.dispose()
        raise
    return engine


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = await _setup_sqlite(tmp_path)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()
