"""GitHub REST client used by the sync orchestrator and the sweeper."""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
import typing as typ

import httpx

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .models import Page, RateLimitSnapshot

if typ.TYPE_CHECKING:
    from .models import RawItem

type QueryParams = dict[str, str | int]

STAR_ACCEPT = "application/vnd.github.star+json"
DEFAULT_PER_PAGE = 100

_HTTP_ERROR_STATUS_THRESHOLD = 400


class GitHubRestApi(typ.Protocol):
    """Interface for the remote calls the sync engine makes."""

    async def get_page(
        self,
        path: str,
        params: QueryParams | None = None,
        *,
        accept: str | None = None,
        items_key: str | None = None,
    ) -> Page:
        """Fetch one page of a list endpoint (``path`` may be a next URL)."""
        ...

    async def get_json(self, path: str) -> RawItem:
        """Fetch a single object."""
        ...

    async def rate_limit(self) -> RateLimitSnapshot:
        """Return the current core quota."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubRestConfig:
    """Configuration for the GitHub REST API client."""

    token: str
    api_url: str = "https://api.github.com"
    timeout_s: float = 30.0
    user_agent: str = "gillnet/0.1"

    @classmethod
    def from_env(cls) -> GitHubRestConfig:
        """Build configuration using the ``GITHUB_TOKEN`` env var."""
        token = os.environ.get("GITHUB_TOKEN", "").strip()
        if not token:
            raise GitHubConfigError.missing_token()
        return cls(token=token)


def _api_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str):
            return message
    return None


def _page_items(body: object, *, url: str, items_key: str | None) -> list[RawItem]:
    """Extract list items from a page body, keeping only JSON objects."""
    if items_key is not None:
        if not isinstance(body, dict):
            raise GitHubResponseShapeError.expected("object", url)
        body = body.get(items_key)
        if body is None:
            raise GitHubResponseShapeError.missing(items_key)
    if not isinstance(body, list):
        raise GitHubResponseShapeError.expected("array", url)
    return [item for item in body if isinstance(item, dict)]


def _parse_reset(value: object) -> dt.datetime:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise GitHubResponseShapeError.missing("resources.core.reset")
    return dt.datetime.fromtimestamp(float(value), tz=dt.UTC)


def _rate_snapshot(body: object) -> RateLimitSnapshot:
    """Read the core quota from a ``/rate_limit`` body."""
    if not isinstance(body, dict):
        raise GitHubResponseShapeError.missing("resources")
    resources = body.get("resources")
    core = resources.get("core") if isinstance(resources, dict) else None
    if not isinstance(core, dict):
        core = body.get("rate")
    if not isinstance(core, dict):
        raise GitHubResponseShapeError.missing("resources.core")
    remaining = core.get("remaining")
    if isinstance(remaining, bool) or not isinstance(remaining, int):
        raise GitHubResponseShapeError.missing("resources.core.remaining")
    return RateLimitSnapshot(
        remaining=remaining, reset_at=_parse_reset(core.get("reset"))
    )


def _json_body(response: httpx.Response, url: str) -> object:
    try:
        return response.json()
    except ValueError as exc:
        raise GitHubResponseShapeError.expected("document", url) from exc


class GitHubRestClient:
    """httpx implementation of :class:`GitHubRestApi`."""

    def __init__(
        self,
        config: GitHubRestConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=config.api_url,
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def get_page(
        self,
        path: str,
        params: QueryParams | None = None,
        *,
        accept: str | None = None,
        items_key: str | None = None,
    ) -> Page:
        """Fetch one page and the ``rel="next"`` URL from its Link header.

        Next URLs carry their query string already, so ``params`` is only
        applied to the first request of a collection.
        """
        query: QueryParams | None = None
        if params is not None:
            query = {"per_page": DEFAULT_PER_PAGE, **params}
        response = await self._get(path, params=query, accept=accept)
        items = _page_items(_json_body(response, path), url=path, items_key=items_key)
        next_link = response.links.get("next", {}).get("url")
        return Page(items=items, next_url=next_link or None)

    async def get_json(self, path: str) -> RawItem:
        """Fetch a single JSON object."""
        response = await self._get(path)
        body = _json_body(response, path)
        if not isinstance(body, dict):
            raise GitHubResponseShapeError.expected("object", path)
        return body

    async def rate_limit(self) -> RateLimitSnapshot:
        """Return the current core quota from ``/rate_limit``."""
        response = await self._get("/rate_limit")
        return _rate_snapshot(_json_body(response, "/rate_limit"))

    async def _get(
        self,
        path: str,
        *,
        params: QueryParams | None = None,
        accept: str | None = None,
    ) -> httpx.Response:
        headers = {"Accept": accept} if accept else None
        response = await self._client.get(path, params=params, headers=headers)
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(
                response.status_code, path, _api_message(response)
            )
        return response
