"""Incremental repository sync and open-issue reconciliation."""

from __future__ import annotations

from .errors import RepositorySyncError, SweepError, SyncError, SyncStateError
from .orchestrator import (
    OrganisationSync,
    RepositorySync,
    RepositorySyncResult,
    SyncState,
    list_eligible_repositories,
)
from .sweep import Sweeper, SweepResult

__all__ = [
    "OrganisationSync",
    "RepositorySync",
    "RepositorySyncError",
    "RepositorySyncResult",
    "SweepError",
    "SweepResult",
    "Sweeper",
    "SyncError",
    "SyncState",
    "SyncStateError",
    "list_eligible_repositories",
]
