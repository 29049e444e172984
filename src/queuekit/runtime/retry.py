# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Retry & dead-letter policy.

A failed attempt is either rescheduled (`running -> delayed`, with
`scheduled_for = now + backoff`) or, once `attempt >= max_attempts`, closed:
quarantined as a DeadLetterEntry when dead-lettering is enabled and the
attempt count reached the threshold, otherwise failed permanently. Both
terminal routes cascade to dependents.

Errors are not classified: a malformed input is retried exactly like a
transient outage.
"""

from collections.abc import Callable

from ..api.errors import EntryNotFound, OperationRejected
from ..core.config import QueueConfig
from ..core.log import get_logger
from ..core.time import Clock
from ..core.utils import error_message, error_stack
from ..protocol.models import (
    DeadLetterEntry,
    DependencyState,
    EntryStatus,
    QueueEntry,
    RetryBackoff,
)
from ..storage.entries import EntryRepository
from ..transport.events import EventEmitter
from .dependencies import DependencyResolver
from .metrics import QueueMetrics


def compute_backoff_ms(backoff: RetryBackoff, base_ms: int, attempt: int) -> int:
    """
    Delay before the next attempt after `attempt` failures.

        fixed:        base
        exponential:  base * 2^(attempt-1)
        linear:       base * attempt
    """
    k = max(1, int(attempt))
    if backoff == RetryBackoff.fixed:
        return base_ms
    if backoff == RetryBackoff.linear:
        return base_ms * k
    return base_ms * (2 ** (k - 1))


class RetryManager:
    def __init__(
        self,
        *,
        repo: EntryRepository,
        clock: Clock,
        events: EventEmitter,
        metrics: QueueMetrics,
        resolver: DependencyResolver,
        config: Callable[[], QueueConfig],
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.events = events
        self.metrics = metrics
        self.resolver = resolver
        self._cfg = config
        self.log = get_logger("retry")

    async def handle_failure(self, entry: QueueEntry, exc: BaseException) -> EntryStatus:
        """Route a failed attempt of a `running` entry; returns the resulting status."""
        cfg = self._cfg()
        now = self.clock.now_ms()
        entry.error = error_message(exc)
        entry.error_stack = error_stack(exc)

        if entry.attempt < entry.max_attempts:
            delay = compute_backoff_ms(entry.retry_backoff, entry.retry_delay_ms, entry.attempt)
            entry.scheduled_for = now + delay
            entry.transition(EntryStatus.delayed, now_ms=now)
            await self.repo.save(entry)
            self.metrics.retries_total.inc()
            self.log.info(
                "entry.retry_scheduled",
                entry_id=entry.id,
                job_id=entry.job_id,
                attempt=entry.attempt,
                delay_ms=delay,
                error=entry.error,
            )
            await self.events.emit(
                "retry",
                entry,
                attempt=entry.attempt,
                max_attempts=entry.max_attempts,
                delay_ms=delay,
                scheduled_for=entry.scheduled_for,
                error=entry.error,
            )
            return EntryStatus.delayed

        if cfg.dead_letter_enabled and entry.attempt >= cfg.dead_letter_threshold:
            await self._quarantine(entry, now)
        else:
            entry.transition(EntryStatus.failed, now_ms=now)
            await self.repo.save(entry)
            self.metrics.finished_total.labels(result="failed").inc()
            self.log.warning(
                "entry.failed", entry_id=entry.id, job_id=entry.job_id, attempt=entry.attempt, error=entry.error
            )
            await self.events.emit("failed", entry, attempt=entry.attempt, error=entry.error)

        await self.resolver.resolve(entry.id, DependencyState.failed)
        return entry.status

    async def _quarantine(self, entry: QueueEntry, now: int) -> None:
        dl = DeadLetterEntry.snapshot(entry, error=entry.error or "", error_stack=entry.error_stack, now_ms=now)
        await self.repo.create_dead_letter(dl)
        entry.transition(EntryStatus.dead_letter, now_ms=now)
        await self.repo.save(entry)
        self.metrics.dead_letter_total.inc()
        self.metrics.finished_total.labels(result="dead_letter").inc()
        self.log.error(
            "entry.dead_lettered",
            entry_id=entry.id,
            job_id=entry.job_id,
            attempt=entry.attempt,
            dead_letter_id=dl.id,
            error=entry.error,
        )
        await self.events.emit(
            "dead-letter", entry, dead_letter_id=dl.id, attempts=dl.attempts, reason=dl.failure_reason
        )

    # ---- resubmission

    async def load_retryable(self, dead_letter_id: str) -> DeadLetterEntry:
        dl = await self.repo.get_dead_letter(dead_letter_id)
        if dl is None:
            raise EntryNotFound(dead_letter_id, kind="Dead letter entry")
        if not dl.can_retry:
            raise OperationRejected(f'Dead letter entry "{dead_letter_id}" cannot be retried')
        return dl

    @staticmethod
    def resubmission_metadata(dl: DeadLetterEntry) -> dict:
        return {**dl.metadata, "retried_from_dead_letter": True, "original_entry_id": dl.original_entry_id}

    async def mark_resubmitted(self, dl: DeadLetterEntry, new_entry: QueueEntry) -> DeadLetterEntry:
        """Bump `retry_count`; the snapshot fields stay as quarantined."""
        dl.retry_count += 1
        dl.updated_at = self.clock.now_ms()
        await self.repo.save_dead_letter(dl)
        self.log.info(
            "dead_letter.resubmitted",
            dead_letter_id=dl.id,
            entry_id=new_entry.id,
            job_id=dl.job_id,
            retry_count=dl.retry_count,
        )
        return dl
