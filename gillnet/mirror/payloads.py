"""Typed records decoded from raw GitHub REST payloads.

The builders never raise on absent leaf fields: each falls back to an
explicit sentinel (``""``, ``0``, ``"unknown"`` or the epoch timestamp) so a
single odd payload cannot abort a sync run. Items missing the keys a row is
identified by are dropped instead.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003
import typing as typ

import msgspec

from gillnet.common.slug import number_from_url
from gillnet.common.time import EPOCH, maybe_parse_timestamp

if typ.TYPE_CHECKING:
    from gillnet.github.models import RawItem

UNKNOWN_AUTHOR = "unknown"
DEFAULT_CONCLUSION = "in_progress"

_PR_STATES = frozenset({"open", "closed"})


class PullRequestRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Pull request fields mirrored into ``pull_requests``."""

    id: int
    repo: str
    number: int
    state: str
    author: str
    author_association: str
    title: str
    created_at: dt.datetime
    updated_at: dt.datetime
    merged_at: dt.datetime | None = None
    closed_at: dt.datetime | None = None
    raw: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class IssueRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Issue fields mirrored into ``issues``."""

    id: int
    repo: str
    number: int
    state: str
    author: str
    title: str
    created_at: dt.datetime
    updated_at: dt.datetime
    closed_at: dt.datetime | None = None
    raw: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class IssueCommentRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Conversation comment attached to an issue or pull request number."""

    id: int
    repo: str
    issue_number: int
    author: str
    created_at: dt.datetime
    updated_at: dt.datetime
    raw: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class ReviewCommentRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Inline diff comment attached to a pull request number."""

    id: int
    repo: str
    pr_number: int
    author: str
    created_at: dt.datetime
    updated_at: dt.datetime
    raw: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class ReviewRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Submitted review on a pull request."""

    id: int
    repo: str
    pr_number: int
    state: str
    author: str
    submitted_at: dt.datetime
    raw: dict[str, typ.Any] = msgspec.field(default_factory=dict)


class StargazerRecord(msgspec.Struct, kw_only=True, frozen=True):
    """User who starred a repository and when."""

    repo: str
    user: str
    starred_at: dt.datetime


class CommitRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Commit detail with line statistics."""

    sha: str
    repo: str
    author: str
    date: dt.datetime
    additions: int = 0
    deletions: int = 0
    message: str = ""


class WorkflowRunRecord(msgspec.Struct, kw_only=True, frozen=True):
    """Completed or in-flight Actions run."""

    id: int
    repo: str
    name: str
    head_branch: str
    conclusion: str
    created_at: dt.datetime
    updated_at: dt.datetime
    duration_ms: int = 0


type MirrorRecord = (
    PullRequestRecord
    | IssueRecord
    | IssueCommentRecord
    | ReviewCommentRecord
    | ReviewRecord
    | StargazerRecord
    | CommitRecord
    | WorkflowRunRecord
)


def _int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _str(value: object, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _mapping(value: object) -> RawItem:
    return value if isinstance(value, dict) else {}


def _login(payload: RawItem, key: str = "user") -> str:
    login = _mapping(payload.get(key)).get("login")
    return login if isinstance(login, str) and login else UNKNOWN_AUTHOR


def _timestamp(value: object) -> dt.datetime:
    parsed = maybe_parse_timestamp(value)
    return EPOCH if parsed is None else parsed


def _identity(raw: RawItem) -> tuple[int, int] | None:
    """Return ``(id, number)``, or None when either key is absent."""
    item_id, number = raw.get("id"), raw.get("number")
    if isinstance(item_id, bool) or not isinstance(item_id, int):
        return None
    if isinstance(number, bool) or not isinstance(number, int):
        return None
    return item_id, number


def pull_request_from_payload(raw: RawItem, repo: str) -> PullRequestRecord | None:
    """Build a pull request record, or None when ``id`` or ``number`` is absent."""
    identity = _identity(raw)
    if identity is None:
        return None
    item_id, number = identity
    state = _str(raw.get("state")).lower()
    return PullRequestRecord(
        id=item_id,
        repo=repo,
        number=number,
        state=state if state in _PR_STATES else "unknown",
        author=_login(raw),
        author_association=_str(raw.get("author_association")),
        title=_str(raw.get("title")),
        created_at=_timestamp(raw.get("created_at")),
        updated_at=_timestamp(raw.get("updated_at")),
        merged_at=maybe_parse_timestamp(raw.get("merged_at")),
        closed_at=maybe_parse_timestamp(raw.get("closed_at")),
        raw=raw,
    )


def is_pull_request_item(raw: RawItem) -> bool:
    """Return True when an ``/issues`` item is really a pull request."""
    return "pull_request" in raw


def issue_from_payload(raw: RawItem, repo: str) -> IssueRecord | None:
    """Build an issue record.

    Returns None for pull-request-marked items and for items without an
    ``id`` or ``number``; either would collide on the ``(repo, number)`` key.
    """
    identity = _identity(raw)
    if is_pull_request_item(raw) or identity is None:
        return None
    item_id, number = identity
    return IssueRecord(
        id=item_id,
        repo=repo,
        number=number,
        state=_str(raw.get("state")) or "unknown",
        author=_login(raw),
        title=_str(raw.get("title")),
        created_at=_timestamp(raw.get("created_at")),
        updated_at=_timestamp(raw.get("updated_at")),
        closed_at=maybe_parse_timestamp(raw.get("closed_at")),
        raw=raw,
    )


def issue_comment_from_payload(raw: RawItem, repo: str) -> IssueCommentRecord:
    """Build an issue comment record; the parent comes from ``issue_url``."""
    return IssueCommentRecord(
        id=_int(raw.get("id")),
        repo=repo,
        issue_number=number_from_url(raw.get("issue_url")),
        author=_login(raw),
        created_at=_timestamp(raw.get("created_at")),
        updated_at=_timestamp(raw.get("updated_at")),
        raw=raw,
    )


def review_comment_from_payload(raw: RawItem, repo: str) -> ReviewCommentRecord:
    """Build a review comment record; the parent comes from ``pull_request_url``."""
    return ReviewCommentRecord(
        id=_int(raw.get("id")),
        repo=repo,
        pr_number=number_from_url(raw.get("pull_request_url")),
        author=_login(raw),
        created_at=_timestamp(raw.get("created_at")),
        updated_at=_timestamp(raw.get("updated_at")),
        raw=raw,
    )


def review_from_payload(raw: RawItem, repo: str, pr_number: int) -> ReviewRecord:
    """Build a review record for ``pr_number``; state is upper-cased."""
    state = _str(raw.get("state")).upper()
    return ReviewRecord(
        id=_int(raw.get("id")),
        repo=repo,
        pr_number=pr_number,
        state=state or "UNKNOWN",
        author=_login(raw),
        submitted_at=_timestamp(raw.get("submitted_at")),
        raw=raw,
    )


def stargazer_from_payload(raw: RawItem, repo: str) -> StargazerRecord | None:
    """Build a star record from the star+json media type, or None if partial."""
    starred_at = maybe_parse_timestamp(raw.get("starred_at"))
    login = _mapping(raw.get("user")).get("login")
    if starred_at is None or not isinstance(login, str) or not login:
        return None
    return StargazerRecord(repo=repo, user=login, starred_at=starred_at)


def commit_from_payload(
    raw: RawItem, repo: str, *, sha: str | None = None
) -> CommitRecord:
    """Build a commit record from a ``/commits/{sha}`` detail payload.

    ``sha`` overrides the payload value; the list endpoint is authoritative.
    """
    commit = _mapping(raw.get("commit"))
    author = _mapping(commit.get("author"))
    stats = _mapping(raw.get("stats"))
    name = author.get("name")
    return CommitRecord(
        sha=sha or _str(raw.get("sha")),
        repo=repo,
        author=name if isinstance(name, str) and name else UNKNOWN_AUTHOR,
        date=_timestamp(author.get("date")),
        additions=_int(stats.get("additions")),
        deletions=_int(stats.get("deletions")),
        message=_str(commit.get("message")),
    )


def workflow_duration_ms(created_at: object, updated_at: object) -> int:
    """Return ``updated_at - created_at`` in milliseconds, 0 when unknown."""
    start = maybe_parse_timestamp(created_at)
    end = maybe_parse_timestamp(updated_at)
    if start is None or end is None:
        return 0
    return int((end - start).total_seconds() * 1000)


def workflow_run_from_payload(raw: RawItem, repo: str) -> WorkflowRunRecord:
    """Build a workflow run record from an ``/actions/runs`` item."""
    conclusion = raw.get("conclusion")
    return WorkflowRunRecord(
        id=_int(raw.get("id")),
        repo=repo,
        name=_str(raw.get("name")),
        head_branch=_str(raw.get("head_branch")),
        conclusion=conclusion
        if isinstance(conclusion, str) and conclusion
        else DEFAULT_CONCLUSION,
        created_at=_timestamp(raw.get("created_at")),
        updated_at=_timestamp(raw.get("updated_at")),
        duration_ms=workflow_duration_ms(
            raw.get("created_at"), raw.get("updated_at")
        ),
    )
