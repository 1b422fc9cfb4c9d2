"""Full-row replace of mirror records keyed by their primary key."""

from __future__ import annotations

import typing as typ

from sqlalchemy import delete, select

from .payloads import (
    CommitRecord,
    IssueCommentRecord,
    IssueRecord,
    PullRequestRecord,
    ReviewCommentRecord,
    ReviewRecord,
    StargazerRecord,
    WorkflowRunRecord,
)
from .storage import (
    Base,
    Commit,
    Issue,
    IssueComment,
    PullRequest,
    Review,
    ReviewComment,
    Stargazer,
    WorkflowRun,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from .payloads import MirrorRecord

DELETED_STATE = "deleted"


class UnsupportedRecordError(TypeError):
    """Raised when a value that is not a mirror record is upserted."""

    def __init__(self, type_name: str) -> None:
        """Record the offending type name for diagnostics."""
        super().__init__(f"cannot upsert {type_name}")


def _row_for(record: MirrorRecord) -> Base:  # noqa: PLR0911
    match record:
        case PullRequestRecord():
            return PullRequest(
                id=record.id,
                repo=record.repo,
                number=record.number,
                state=record.state,
                author=record.author,
                author_association=record.author_association,
                title=record.title,
                created_at=record.created_at,
                updated_at=record.updated_at,
                merged_at=record.merged_at,
                closed_at=record.closed_at,
                data=record.raw,
            )
        case IssueRecord():
            return Issue(
                id=record.id,
                repo=record.repo,
                number=record.number,
                state=record.state,
                author=record.author,
                title=record.title,
                created_at=record.created_at,
                updated_at=record.updated_at,
                closed_at=record.closed_at,
                deleted_at=None,
                data=record.raw,
            )
        case IssueCommentRecord():
            return IssueComment(
                id=record.id,
                repo=record.repo,
                issue_number=record.issue_number,
                author=record.author,
                created_at=record.created_at,
                updated_at=record.updated_at,
                data=record.raw,
            )
        case ReviewCommentRecord():
            return ReviewComment(
                id=record.id,
                repo=record.repo,
                pr_number=record.pr_number,
                author=record.author,
                created_at=record.created_at,
                updated_at=record.updated_at,
                data=record.raw,
            )
        case ReviewRecord():
            return Review(
                id=record.id,
                repo=record.repo,
                pr_number=record.pr_number,
                state=record.state,
                author=record.author,
                submitted_at=record.submitted_at,
                data=record.raw,
            )
        case StargazerRecord():
            return Stargazer(
                repo=record.repo, user=record.user, starred_at=record.starred_at
            )
        case CommitRecord():
            return Commit(
                sha=record.sha,
                repo=record.repo,
                author=record.author,
                date=record.date,
                additions=record.additions,
                deletions=record.deletions,
                message=record.message,
            )
        case WorkflowRunRecord():
            return WorkflowRun(
                id=record.id,
                repo=record.repo,
                name=record.name,
                head_branch=record.head_branch,
                conclusion=record.conclusion,
                created_at=record.created_at,
                updated_at=record.updated_at,
                duration_ms=record.duration_ms,
            )
        case _:
            raise UnsupportedRecordError(type(record).__name__)


async def _preserve_deletion(session: AsyncSession, row: Issue) -> None:
    """Keep a soft-deleted issue deleted when GitHub returns it again."""
    existing = await session.get(Issue, row.id)
    if existing is not None and existing.state == DELETED_STATE:
        row.state = DELETED_STATE
        row.deleted_at = existing.deleted_at


class EntityUpserter:
    """Write decoded records into the mirror, one transaction per record."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Bind the upserter to a session factory."""
        self._session_factory = session_factory

    async def upsert(self, record: MirrorRecord) -> None:
        """Insert ``record`` or replace every column of the existing row."""
        row = _row_for(record)
        async with self._session_factory() as session, session.begin():
            if isinstance(row, Issue):
                await _preserve_deletion(session, row)
            await session.merge(row)

    async def has_commit(self, sha: str) -> bool:
        """Return True when ``sha`` is already mirrored."""
        async with self._session_factory() as session:
            found = await session.scalar(select(Commit.sha).where(Commit.sha == sha))
        return found is not None

    async def delete_stargazers_except(
        self, repo: str, users: cabc.Collection[str]
    ) -> int:
        """Remove local stars for ``repo`` whose user is not in ``users``."""
        async with self._session_factory() as session, session.begin():
            local = (
                await session.scalars(
                    select(Stargazer.user).where(Stargazer.repo == repo)
                )
            ).all()
            stale = [user for user in local if user not in users]
            if stale:
                await session.execute(
                    delete(Stargazer).where(
                        Stargazer.repo == repo, Stargazer.user.in_(stale)
                    )
                )
        return len(stale)
