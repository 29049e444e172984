from __future__ import annotations

# Runtime package version from installed metadata.
try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("queuekit")
except Exception:  # pragma: no cover
    # source checkout without install
    __version__ = "0.0.0"

from .api.errors import (
    EntryNotFound,
    ExecutionTimeout,
    InvalidTransition,
    JobNotRegistered,
    OperationRejected,
    QueueDraining,
    QueueError,
)
from .api.registry import Job, JobContext, JobRegistry
from .core.config import QueueConfig
from .protocol.models import EntryStatus, Priority, QueueEntry, QueueMode, QueueStats, RetryBackoff
from .runtime.manager import QueueManager
from .storage import InMemoryRecordStore, MongoRecordStore

__all__ = [
    "EntryNotFound",
    "EntryStatus",
    "ExecutionTimeout",
    "InMemoryRecordStore",
    "InvalidTransition",
    "Job",
    "JobContext",
    "JobNotRegistered",
    "JobRegistry",
    "MongoRecordStore",
    "OperationRejected",
    "Priority",
    "QueueConfig",
    "QueueDraining",
    "QueueEntry",
    "QueueError",
    "QueueManager",
    "QueueMode",
    "QueueStats",
    "RetryBackoff",
    "__version__",
]
