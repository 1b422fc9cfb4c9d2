"""Raw GitHub mirror: storage models, payload records and writers."""

from __future__ import annotations

from .checkpoints import CheckpointStore, checkpoint_key
from .errors import TimezoneAwareRequiredError
from .lag import CheckpointHealth, CheckpointHealthConfig, CheckpointHealthService
from .storage import (
    Base,
    Checkpoint,
    Commit,
    Issue,
    IssueComment,
    IsoTimestamp,
    PullRequest,
    Review,
    ReviewComment,
    Stargazer,
    WorkflowRun,
    init_mirror_storage,
)
from .upsert import DELETED_STATE, EntityUpserter, UnsupportedRecordError

__all__ = [
    "DELETED_STATE",
    "Base",
    "Checkpoint",
    "CheckpointHealth",
    "CheckpointHealthConfig",
    "CheckpointHealthService",
    "CheckpointStore",
    "Commit",
    "EntityUpserter",
    "IsoTimestamp",
    "Issue",
    "IssueComment",
    "PullRequest",
    "Review",
    "ReviewComment",
    "Stargazer",
    "TimezoneAwareRequiredError",
    "UnsupportedRecordError",
    "WorkflowRun",
    "checkpoint_key",
    "init_mirror_storage",
]
