"""Errors raised by the sync orchestrator and the sweeper."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from .orchestrator import SyncState


class SyncError(RuntimeError):
    """Base class for sync and sweep errors."""


class RepositorySyncError(SyncError):
    """Raised when a repository sync fails; its checkpoint was not advanced."""

    def __init__(self, repo: str, state: SyncState, cause: BaseException) -> None:
        """Record the repository and the state the machine failed in."""
        self.repo = repo
        self.state = state
        self.cause = cause
        super().__init__(f"sync of {repo} failed during {state}: {cause}")


class SweepError(SyncError):
    """Raised when an open-issue sweep hits an unexpected remote error."""

    def __init__(
        self, repo: str, cause: BaseException, *, number: int | None = None
    ) -> None:
        """Record the repository and, when known, the issue being checked."""
        self.repo = repo
        self.number = number
        self.cause = cause
        target = repo if number is None else f"{repo}#{number}"
        super().__init__(f"sweep of {target} failed: {cause}")


class SyncStateError(SyncError):
    """Raised when a repository sync is started from a non-idle state."""

    def __init__(self, repo: str, state: SyncState) -> None:
        """Record the repository and the state it was found in."""
        self.repo = repo
        self.state = state
        super().__init__(f"sync of {repo} cannot start from state {state}")
