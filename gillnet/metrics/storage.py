"""Daily metric rows derived from the raw mirror."""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

from sqlalchemy import Date, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from gillnet.mirror.storage import Base

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class DailyMetric(Base):
    """One repository's activity on one calendar day (UTC).

    Counts default to zero. Time averages are in hours and stay ``None`` when
    nothing qualified on that day.
    """

    __tablename__ = "daily_metrics"

    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    repo: Mapped[str] = mapped_column(String(255), primary_key=True)
    prs_opened: Mapped[int] = mapped_column(Integer, default=0)
    prs_merged: Mapped[int] = mapped_column(Integer, default=0)
    issues_opened: Mapped[int] = mapped_column(Integer, default=0)
    issues_closed: Mapped[int] = mapped_column(Integer, default=0)
    churn_additions: Mapped[int] = mapped_column(Integer, default=0)
    churn_deletions: Mapped[int] = mapped_column(Integer, default=0)
    ci_failures: Mapped[int] = mapped_column(Integer, default=0)
    ci_runs: Mapped[int] = mapped_column(Integer, default=0)
    stars: Mapped[int] = mapped_column(Integer, default=0)
    open_prs_count: Mapped[int] = mapped_column(Integer, default=0)
    open_issues_count: Mapped[int] = mapped_column(Integer, default=0)
    time_to_first_response: Mapped[float | None] = mapped_column(Float)
    avg_issue_resolution_time: Mapped[float | None] = mapped_column(Float)
    avg_pr_resolution_time: Mapped[float | None] = mapped_column(Float)
    time_to_merge_internal: Mapped[float | None] = mapped_column(Float)
    time_to_merge_external: Mapped[float | None] = mapped_column(Float)


async def init_metrics_storage(engine: AsyncEngine) -> None:
    """Create metrics tables registered with the shared Base if absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
