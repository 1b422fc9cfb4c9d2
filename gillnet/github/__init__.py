"""GitHub REST client, rate governor and pagination primitives."""

from __future__ import annotations

from .client import GitHubRestApi, GitHubRestClient, GitHubRestConfig
from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError
from .models import Page, RateLimitSnapshot, RepositoryInfo
from .observability import (
    ErrorCategory,
    SyncEventLogger,
    SyncEventType,
    SyncRunContext,
    categorize_error,
)
from .pagination import PaginatedFetcher
from .rate import RateGovernor, RateGovernorConfig

__all__ = [
    "ErrorCategory",
    "GitHubAPIError",
    "GitHubConfigError",
    "GitHubResponseShapeError",
    "GitHubRestApi",
    "GitHubRestClient",
    "GitHubRestConfig",
    "Page",
    "PaginatedFetcher",
    "RateGovernor",
    "RateGovernorConfig",
    "RateLimitSnapshot",
    "RepositoryInfo",
    "SyncEventLogger",
    "SyncEventType",
    "SyncRunContext",
    "categorize_error",
]
