"""Persistence models for the raw GitHub mirror.

Rows mirror remote entities one-to-one and are replaced wholesale on every
upsert. Timestamps are stored as ``YYYY-MM-DDTHH:MM:SSZ`` strings so the file
remains readable by other tools and sorts lexicographically.
"""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import (
    JSON,
    BigInteger,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from gillnet.common.time import format_timestamp, parse_timestamp, utcnow

from .errors import TimezoneAwareRequiredError

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine


class Base(DeclarativeBase):
    """Base declarative class shared by mirror and metrics models."""


class IsoTimestamp(TypeDecorator[dt.datetime]):
    """Aware datetime persisted as an ISO-8601 UTC string."""

    impl = String(20)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> str | None:
        """Render bound datetimes as ``YYYY-MM-DDTHH:MM:SSZ``."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return format_timestamp(value)

    def process_result_value(
        self, value: str | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Parse stored strings back into aware UTC datetimes."""
        if value is None or not value:
            return None
        return parse_timestamp(value)


class PullRequest(Base):
    """Pull request as last returned by the list endpoint."""

    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint("repo", "number", name="uq_pull_requests_repo_number"),
        Index("ix_pull_requests_repo_state", "repo", "state"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    author: Mapped[str] = mapped_column(String(255))
    author_association: Mapped[str] = mapped_column(String(32), default="")
    title: Mapped[str] = mapped_column(Text())
    created_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    updated_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    merged_at: Mapped[dt.datetime | None] = mapped_column(IsoTimestamp())
    closed_at: Mapped[dt.datetime | None] = mapped_column(IsoTimestamp())
    data: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)


class Issue(Base):
    """Issue (never a pull request) plus local soft-delete bookkeeping."""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("repo", "number", name="uq_issues_repo_number"),
        Index("ix_issues_repo_state", "repo", "state"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    author: Mapped[str] = mapped_column(String(255))
    title: Mapped[str] = mapped_column(Text())
    created_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    updated_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    closed_at: Mapped[dt.datetime | None] = mapped_column(IsoTimestamp())
    deleted_at: Mapped[dt.datetime | None] = mapped_column(IsoTimestamp())
    data: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)


class IssueComment(Base):
    """Comment on an issue or on a pull request conversation."""

    __tablename__ = "issue_comments"
    __table_args__ = (Index("ix_issue_comments_parent", "repo", "issue_number"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    issue_number: Mapped[int] = mapped_column(Integer)
    author: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    updated_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    data: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)


class ReviewComment(Base):
    """Inline review comment on a pull request diff."""

    __tablename__ = "pr_review_comments"
    __table_args__ = (Index("ix_pr_review_comments_parent", "repo", "pr_number"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    pr_number: Mapped[int] = mapped_column(Integer)
    author: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    updated_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    data: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)


class Review(Base):
    """Submitted pull request review."""

    __tablename__ = "pr_reviews"
    __table_args__ = (Index("ix_pr_reviews_parent", "repo", "pr_number"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    pr_number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(32))
    author: Mapped[str] = mapped_column(String(255))
    submitted_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    data: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)


class Stargazer(Base):
    """Star relationship between a user and a repository."""

    __tablename__ = "stargazers"

    repo: Mapped[str] = mapped_column(String(255), primary_key=True)
    user: Mapped[str] = mapped_column(String(255), primary_key=True)
    starred_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())


class Commit(Base):
    """Commit with line statistics from the detail endpoint."""

    __tablename__ = "commits"
    __table_args__ = (Index("ix_commits_repo_date", "repo", "date"),)

    sha: Mapped[str] = mapped_column(String(64), primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    author: Mapped[str] = mapped_column(String(255))
    date: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    additions: Mapped[int] = mapped_column(Integer, default=0)
    deletions: Mapped[int] = mapped_column(Integer, default=0)
    message: Mapped[str] = mapped_column(Text(), default="")


class WorkflowRun(Base):
    """GitHub Actions workflow run."""

    __tablename__ = "workflow_runs"
    __table_args__ = (Index("ix_workflow_runs_repo_created", "repo", "created_at"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    repo: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    head_branch: Mapped[str] = mapped_column(String(255))
    conclusion: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    updated_at: Mapped[dt.datetime] = mapped_column(IsoTimestamp())
    duration_ms: Mapped[int] = mapped_column(BigInteger, default=0)


class Checkpoint(Base):
    """Per-repository sync watermark.

    ``value`` stays a plain string so an unreadable entry degrades to a full
    resync instead of failing the load.
    """

    __tablename__ = "checkpoints"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(String(64))
    updated_at: Mapped[dt.datetime] = mapped_column(
        IsoTimestamp(), default=utcnow, onupdate=utcnow
    )


async def init_mirror_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
