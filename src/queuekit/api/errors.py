# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for the queue orchestrator.

Only operational misuse surfaces to callers as an exception (unknown ids,
illegal state changes, enqueue while draining). Failures of queued work are
absorbed by the runtime and recorded on the entry; `ExecutionTimeout` exists so
a hang is recorded with a message distinct from ordinary job errors.
"""


class QueueError(Exception):
    """Base class for all queuekit errors."""

    ...


class RegistryError(QueueError):
    """Job registration failed (duplicate or invalid id)."""

    ...


class JobNotRegistered(QueueError):
    """Enqueue referenced a job id the registry does not know."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f'Job "{job_id}" not found in registry')
        self.job_id = job_id


class EntryNotFound(QueueError):
    """A queue entry or dead-letter entry with the given id does not exist."""

    def __init__(self, entry_id: str, *, kind: str = "Queued entry") -> None:
        super().__init__(f'{kind} "{entry_id}" not found')
        self.entry_id = entry_id


class OperationRejected(QueueError):
    """
    The operation is not allowed for the entry's current state
    (cancel a running entry, retry a non-retryable dead-letter entry).
    """

    ...


class InvalidTransition(QueueError):
    """A status change outside the entry state machine was attempted."""

    def __init__(self, entry_id: str, src: str, dst: str) -> None:
        super().__init__(f"illegal transition for {entry_id}: {src} -> {dst}")
        self.entry_id = entry_id
        self.src = src
        self.dst = dst


class QueueDraining(QueueError):
    """The queue is draining and does not accept new entries."""

    ...


class ExecutionTimeout(QueueError):
    """A unit of work exceeded its timeout; recorded as a failed attempt."""

    def __init__(self, message: str = "execution timeout") -> None:
        super().__init__(message)


class ConfigError(QueueError, ValueError):
    """Invalid queue configuration value."""

    ...
