"""Typed domain models for the GitHub REST client."""

from __future__ import annotations

import dataclasses
import typing as typ

from gillnet.common.slug import repo_slug

if typ.TYPE_CHECKING:
    import datetime as dt

type RawItem = dict[str, typ.Any]

PRIVATE_NAME_PREFIX = "private_"


@dataclasses.dataclass(frozen=True, slots=True)
class Page:
    """One page of a list endpoint plus the cursor to the next page."""

    items: list[RawItem]
    next_url: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class RateLimitSnapshot:
    """Remaining core quota and the moment it resets."""

    remaining: int
    reset_at: dt.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryInfo:
    """Repository attributes needed to decide whether and how to sync it."""

    owner: str
    name: str
    archived: bool = False
    private: bool = False

    @property
    def slug(self) -> str:
        """Return owner/name."""
        return repo_slug(self.owner, self.name)

    @property
    def is_eligible(self) -> bool:
        """Return True for public, unarchived, non-``private_`` repositories."""
        return not (
            self.archived
            or self.private
            or self.name.startswith(PRIVATE_NAME_PREFIX)
        )

    @classmethod
    def from_payload(cls, owner: str, payload: RawItem) -> RepositoryInfo | None:
        """Build from an ``/orgs/{org}/repos`` item, or None without a name."""
        name = payload.get("name")
        if not isinstance(name, str) or not name:
            return None
        return cls(
            owner=owner,
            name=name,
            archived=bool(payload.get("archived") or False),
            private=bool(payload.get("private") or False),
        )
