# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Public extension API: job registration and the error taxonomy.
"""

from .errors import (
    ConfigError,
    EntryNotFound,
    ExecutionTimeout,
    InvalidTransition,
    JobNotRegistered,
    OperationRejected,
    QueueDraining,
    QueueError,
    RegistryError,
)
from .registry import Job, JobContext, JobRegistry

__all__ = [
    "ConfigError",
    "EntryNotFound",
    "ExecutionTimeout",
    "InvalidTransition",
    "Job",
    "JobContext",
    "JobNotRegistered",
    "JobRegistry",
    "OperationRejected",
    "QueueDraining",
    "QueueError",
    "RegistryError",
]
