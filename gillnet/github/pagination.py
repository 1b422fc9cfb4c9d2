"""Cursor-following pagination over GitHub list endpoints."""

from __future__ import annotations

import typing as typ

from gillnet.common.time import maybe_parse_timestamp, utcnow

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from .client import GitHubRestApi, QueryParams
    from .models import RawItem
    from .rate import RateGovernor


def item_timestamp(
    item: RawItem, field: str, *, default: dt.datetime
) -> dt.datetime:
    """Return ``item[field]`` as an aware datetime, or ``default`` if unusable."""
    parsed = maybe_parse_timestamp(item.get(field))
    return default if parsed is None else parsed


def split_at_watermark(
    items: list[RawItem],
    watermark: dt.datetime,
    *,
    field: str,
    now: dt.datetime,
) -> tuple[list[RawItem], bool]:
    """Return the items before the first one older than ``watermark``.

    The boolean is True when such an item was found, meaning the remainder of
    this page and every later page should be skipped. Items without a usable
    timestamp are treated as ``now`` and therefore kept.
    """
    for index, item in enumerate(items):
        if item_timestamp(item, field, default=now) < watermark:
            return items[:index], True
    return items, False


class PaginatedFetcher:
    """Walk a collection page by page, consulting the governor before each page."""

    def __init__(self, client: GitHubRestApi, governor: RateGovernor) -> None:
        """Bind the fetcher to a client and the run's shared governor."""
        self._client = client
        self._governor = governor

    async def iter_pages(
        self,
        path: str,
        params: QueryParams | None = None,
        *,
        accept: str | None = None,
        items_key: str | None = None,
    ) -> cabc.AsyncIterator[list[RawItem]]:
        """Yield each page's items until the server stops returning a next URL."""
        await self._governor.check_limits()
        page = await self._client.get_page(
            path, params or {}, accept=accept, items_key=items_key
        )
        while True:
            yield page.items
            if page.next_url is None:
                return
            await self._governor.check_limits()
            page = await self._client.get_page(
                page.next_url, None, accept=accept, items_key=items_key
            )

    async def iter_since(
        self,
        path: str,
        params: QueryParams,
        *,
        watermark: dt.datetime,
        field: str = "updated_at",
    ) -> cabc.AsyncIterator[list[RawItem]]:
        """Yield pages of a ``desc``-sorted collection down to ``watermark``.

        Pagination stops at the first item older than the watermark. This
        relies on the endpoint honouring descending order by ``field``; an
        item sorted behind an older one is missed.
        """
        now = utcnow()
        pages = self.iter_pages(path, params)
        try:
            async for items in pages:
                kept, reached = split_at_watermark(
                    items, watermark, field=field, now=now
                )
                if kept:
                    yield kept
                if reached:
                    return
        finally:
            await pages.aclose()
