"""First-response latency index built once per aggregation run.

Parents are issues and pull requests. An activity is an issue comment, a
review or a review comment on the same ``(repo, number)``. The first response
is the earliest activity strictly after the parent was created whose author
differs from the parent's author.
"""

from __future__ import annotations

import collections
import dataclasses
import typing as typ

from sqlalchemy import select

from gillnet.common.time import hours_between
from gillnet.mirror.storage import (
    Issue,
    IssueComment,
    PullRequest,
    Review,
    ReviewComment,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession

type ItemKey = tuple[str, int]


@dataclasses.dataclass(frozen=True, slots=True)
class ResponseParent:
    """An issue or pull request awaiting a first response."""

    repo: str
    number: int
    author: str
    created_at: dt.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class ResponseActivity:
    """A comment or review that may count as a response."""

    repo: str
    number: int
    author: str
    at: dt.datetime


def first_response_hours(
    parent: ResponseParent, activities: cabc.Iterable[ResponseActivity]
) -> float | None:
    """Return hours to the first qualifying activity, or None if none qualify."""
    qualifying = [
        activity.at
        for activity in activities
        if activity.at > parent.created_at and activity.author != parent.author
    ]
    if not qualifying:
        return None
    return hours_between(parent.created_at, min(qualifying))


class FirstResponseIndex:
    """Latencies keyed by repository and the UTC date the parent was created."""

    def __init__(self, latencies: dict[tuple[str, dt.date], list[float]]) -> None:
        """Wrap precomputed latencies; use :meth:`build` or :meth:`load`."""
        self._latencies = latencies

    @classmethod
    def build(
        cls,
        parents: cabc.Iterable[ResponseParent],
        activities: cabc.Iterable[ResponseActivity],
    ) -> FirstResponseIndex:
        """Join parents to their activities in one pass over each input."""
        by_item: dict[ItemKey, list[ResponseActivity]] = collections.defaultdict(list)
        for activity in activities:
            by_item[(activity.repo, activity.number)].append(activity)

        latencies: dict[tuple[str, dt.date], list[float]] = collections.defaultdict(
            list
        )
        for parent in parents:
            hours = first_response_hours(
                parent, by_item.get((parent.repo, parent.number), ())
            )
            if hours is not None:
                latencies[(parent.repo, parent.created_at.date())].append(hours)
        return cls(dict(latencies))

    @classmethod
    async def load(cls, session: AsyncSession) -> FirstResponseIndex:
        """Read parents and activities from the mirror and build the index."""
        parents: list[ResponseParent] = []
        for model in (Issue, PullRequest):
            rows = await session.execute(
                select(
                    model.repo, model.number, model.author, model.created_at
                ).order_by(model.repo, model.number)
            )
            parents.extend(
                ResponseParent(repo=repo, number=number, author=author, created_at=at)
                for repo, number, author, at in rows
            )

        activity_queries = (
            select(
                IssueComment.repo,
                IssueComment.issue_number,
                IssueComment.author,
                IssueComment.created_at,
            ),
            select(Review.repo, Review.pr_number, Review.author, Review.submitted_at),
            select(
                ReviewComment.repo,
                ReviewComment.pr_number,
                ReviewComment.author,
                ReviewComment.created_at,
            ),
        )
        activities: list[ResponseActivity] = []
        for query in activity_queries:
            rows = await session.execute(query)
            activities.extend(
                ResponseActivity(repo=repo, number=number, author=author, at=at)
                for repo, number, author, at in rows
            )
        return cls.build(parents, activities)

    def __len__(self) -> int:
        """Return the number of parents that received a response."""
        return sum(len(values) for values in self._latencies.values())

    def latencies(self, repo: str, day: dt.date) -> list[float]:
        """Return latencies for parents in ``repo`` created on ``day``."""
        return list(self._latencies.get((repo, day), ()))

    def average(self, repo: str, day: dt.date) -> float | None:
        """Return the mean latency for ``(repo, day)``, or None when empty."""
        values = self._latencies.get((repo, day))
        if not values:
            return None
        return sum(values) / len(values)
