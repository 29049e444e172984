# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
queuekit queue data model
=========================

Persisted records (QueueEntry, DeadLetterEntry), read-side projections
(QueueStats) and published event payloads (QueueEvent).

Design principles:
- Pydantic v2 models with `extra="forbid"` to fail fast on unknown fields.
- All timestamps are **epoch milliseconds** (UTC); durations are milliseconds.
- `status` and `priority` are closed enums; status changes go through
  `QueueEntry.transition()`, which rejects moves outside the state machine.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..api.errors import InvalidTransition

# --------------------------------------------------------------------------- #
# Enums
# --------------------------------------------------------------------------- #


class EntryStatus(str, Enum):
    """Lifecycle state of a queue entry."""

    pending = "pending"
    delayed = "delayed"
    ready = "ready"
    running = "running"
    completed = "completed"
    failed = "failed"
    dead_letter = "dead-letter"
    cancelled = "cancelled"


class Priority(str, Enum):
    """Dispatch priority; iteration order is highest first."""

    critical = "critical"
    high = "high"
    normal = "normal"
    low = "low"


class RetryBackoff(str, Enum):
    """Delay policy between failed attempts."""

    fixed = "fixed"
    exponential = "exponential"
    linear = "linear"


class QueueMode(str, Enum):
    """Orchestrator-wide dispatch mode."""

    active = "active"
    paused = "paused"
    draining = "draining"


class DependencyState(str, Enum):
    """Resolution state of one dependency slot."""

    pending = "pending"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES: frozenset[EntryStatus] = frozenset(
    {EntryStatus.completed, EntryStatus.failed, EntryStatus.dead_letter, EntryStatus.cancelled}
)

# Statuses that count as a failed outcome for dependents.
FAILED_OUTCOMES: frozenset[EntryStatus] = frozenset(
    {EntryStatus.failed, EntryStatus.dead_letter, EntryStatus.cancelled}
)

_TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.pending: frozenset(
        {EntryStatus.ready, EntryStatus.delayed, EntryStatus.failed, EntryStatus.cancelled}
    ),
    EntryStatus.delayed: frozenset(
        {EntryStatus.ready, EntryStatus.pending, EntryStatus.failed, EntryStatus.cancelled}
    ),
    EntryStatus.ready: frozenset({EntryStatus.running, EntryStatus.failed, EntryStatus.cancelled}),
    # delayed/dead-letter are the retry and quarantine routes of a failed attempt
    EntryStatus.running: frozenset(
        {EntryStatus.completed, EntryStatus.failed, EntryStatus.delayed, EntryStatus.dead_letter}
    ),
    EntryStatus.completed: frozenset(),
    EntryStatus.failed: frozenset(),
    EntryStatus.dead_letter: frozenset(),
    EntryStatus.cancelled: frozenset(),
}


def can_transition(src: EntryStatus, dst: EntryStatus) -> bool:
    """True when `src -> dst` is a legal move of the entry state machine."""
    return dst in _TRANSITIONS[src]


# --------------------------------------------------------------------------- #
# Records
# --------------------------------------------------------------------------- #


class RateLimit(BaseModel):
    """At most `max_runs` dispatches of the same job id per trailing `window_ms`."""

    model_config = ConfigDict(extra="forbid")

    max_runs: int = Field(ge=1)
    window_ms: int = Field(ge=1)


class QueueEntry(BaseModel):
    """
    A unit of queued work.

    Fields:
        id: Unique, immutable id assigned at enqueue time.
        job_id / job_name: Registry reference and its denormalized display name.
        scheduled_for: Not dispatchable before this timestamp (ms), if set.
        depends_on / dependency_status: Dependency gate; dispatch requires every
            slot to read `completed`.
        attempt: Executions started so far (incremented once per start).
        rate_limit: Applied per `job_id`, not per entry.
        input / org_id / user_id / tags / metadata: Opaque to the orchestrator.
        error / error_stack: Last failure detail.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    job_id: str
    job_name: str
    status: EntryStatus = EntryStatus.pending
    priority: Priority = Priority.normal

    scheduled_for: int | None = None
    enqueued_at: int
    started_at: int | None = None
    last_attempt_at: int | None = None
    completed_at: int | None = None

    depends_on: list[str] = Field(default_factory=list)
    dependency_status: dict[str, DependencyState] = Field(default_factory=dict)

    attempt: int = 0
    max_attempts: int = Field(ge=1)
    retry_delay_ms: int = Field(ge=0)
    retry_backoff: RetryBackoff = RetryBackoff.exponential
    timeout_ms: int = Field(gt=0)

    concurrency_key: str | None = None
    rate_limit: RateLimit | None = None

    input: dict[str, Any] | None = None
    org_id: str | None = None
    user_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    error: str | None = None
    error_stack: str | None = None

    created_at: int
    updated_at: int

    # ---- state machine

    def transition(self, dst: EntryStatus, *, now_ms: int) -> None:
        """Move to `dst` or raise InvalidTransition; stamps `updated_at`."""
        if not can_transition(self.status, dst):
            raise InvalidTransition(self.id, self.status.value, dst.value)
        self.status = dst
        self.updated_at = now_ms
        if dst in TERMINAL_STATUSES:
            self.completed_at = now_ms

    # ---- readiness helpers

    def dependencies_met(self) -> bool:
        return all(s == DependencyState.completed for s in self.dependency_status.values())

    def failed_dependency(self) -> str | None:
        for dep_id, s in self.dependency_status.items():
            if s == DependencyState.failed:
                return dep_id
        return None

    def is_due(self, now_ms: int) -> bool:
        return self.scheduled_for is None or self.scheduled_for <= now_ms

    # ---- persistence

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> QueueEntry:
        return cls.model_validate(dict(rec))


class DeadLetterEntry(BaseModel):
    """
    Quarantine snapshot of an entry that exhausted its failure budget.

    The snapshot fields are never rewritten; only `retry_count`/`updated_at`
    change when the entry is resubmitted (which creates a new QueueEntry).
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    original_entry_id: str
    job_id: str
    job_name: str

    failure_reason: str
    attempts: int
    first_attempt_at: int
    last_attempt_at: int

    input: dict[str, Any] | None = None
    error: str | None = None
    error_stack: str | None = None

    moved_at: int
    can_retry: bool = True
    retry_count: int = 0

    org_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    created_at: int
    updated_at: int

    @classmethod
    def snapshot(cls, entry: QueueEntry, *, error: str, error_stack: str | None, now_ms: int) -> DeadLetterEntry:
        return cls(
            id=f"dlq-{entry.id}",
            original_entry_id=entry.id,
            job_id=entry.job_id,
            job_name=entry.job_name,
            failure_reason=f"Failed after {entry.attempt} attempts: {error}",
            attempts=entry.attempt,
            first_attempt_at=entry.enqueued_at,
            last_attempt_at=entry.last_attempt_at or now_ms,
            input=entry.input,
            error=error,
            error_stack=error_stack,
            moved_at=now_ms,
            org_id=entry.org_id,
            tags=list(entry.tags),
            metadata=dict(entry.metadata),
            created_at=now_ms,
            updated_at=now_ms,
        )

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> DeadLetterEntry:
        return cls.model_validate(dict(rec))


# --------------------------------------------------------------------------- #
# Projections / events
# --------------------------------------------------------------------------- #


class ConcurrencyUsage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    active: int
    limit: int | None = None


class QueueStats(BaseModel):
    """Point-in-time queue health snapshot (pure read-side projection)."""

    model_config = ConfigDict(extra="forbid")

    mode: QueueMode
    total: int = 0

    pending: int = 0
    ready: int = 0
    running: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
    dead_letter: int = 0
    cancelled: int = 0
    dead_letter_records: int = 0

    critical: int = 0
    high: int = 0
    normal: int = 0
    low: int = 0

    queue_depth: int = 0
    active: int = 0
    max_concurrency: int = 0
    concurrency: dict[str, ConcurrencyUsage] = Field(default_factory=dict)

    average_wait_ms: float | None = None
    average_execution_ms: float | None = None
    success_rate: float | None = None
    throughput_per_hour: int = 0

    last_updated: int


class QueueEvent(BaseModel):
    """Payload published for every queue lifecycle event (topic `queue.<event_type>`)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    event_type: str
    entry_id: str | None = None
    job_id: str | None = None
    ts_ms: int
    data: dict[str, Any] = Field(default_factory=dict)
