# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Read-side projection of queue health. Reads records and in-process limiter
state; never writes.
"""

from collections import Counter
from collections.abc import Callable

from ..core.config import QueueConfig
from ..core.time import Clock
from ..protocol.models import ConcurrencyUsage, EntryStatus, Priority, QueueEntry, QueueStats
from ..storage.entries import EntryRepository
from .limits import ConcurrencyLimiter

HOUR_MS = 3_600_000


def _mean(values: list[int]) -> float | None:
    return sum(values) / len(values) if values else None


class StatsAggregator:
    def __init__(
        self,
        *,
        repo: EntryRepository,
        clock: Clock,
        limiter: ConcurrencyLimiter,
        active_count: Callable[[], int],
        config: Callable[[], QueueConfig],
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.limiter = limiter
        self._active_count = active_count
        self._cfg = config

    async def snapshot(self) -> QueueStats:
        cfg = self._cfg()
        now = self.clock.now_ms()
        entries = await self.repo.list(limit=cfg.stats_scan_limit)
        dead_letters = await self.repo.list_dead_letters(limit=cfg.stats_scan_limit)

        by_status = Counter(e.status for e in entries)
        by_priority = Counter(e.priority for e in entries)
        completed = [e for e in entries if e.status == EntryStatus.completed]

        finished = by_status[EntryStatus.completed] + by_status[EntryStatus.failed]
        success_rate = by_status[EntryStatus.completed] / finished if finished else None

        concurrency = {
            key: ConcurrencyUsage(active=g.active_count, limit=g.limit) for key, g in self.limiter.groups().items()
        }
        for key, limit in cfg.concurrency_limits.items():
            concurrency.setdefault(key, ConcurrencyUsage(active=0, limit=limit))

        return QueueStats(
            mode=cfg.mode,
            total=len(entries),
            pending=by_status[EntryStatus.pending],
            ready=by_status[EntryStatus.ready],
            running=by_status[EntryStatus.running],
            delayed=by_status[EntryStatus.delayed],
            completed=by_status[EntryStatus.completed],
            failed=by_status[EntryStatus.failed],
            dead_letter=by_status[EntryStatus.dead_letter],
            cancelled=by_status[EntryStatus.cancelled],
            dead_letter_records=len(dead_letters),
            critical=by_priority[Priority.critical],
            high=by_priority[Priority.high],
            normal=by_priority[Priority.normal],
            low=by_priority[Priority.low],
            queue_depth=(
                by_status[EntryStatus.pending] + by_status[EntryStatus.ready] + by_status[EntryStatus.delayed]
            ),
            active=self._active_count(),
            max_concurrency=cfg.max_concurrency,
            concurrency=concurrency,
            average_wait_ms=_mean(_waits(completed)),
            average_execution_ms=_mean(_durations(completed)),
            success_rate=success_rate,
            throughput_per_hour=sum(1 for e in completed if e.completed_at and now - e.completed_at < HOUR_MS),
            last_updated=now,
        )


def _waits(entries: list[QueueEntry]) -> list[int]:
    return [e.started_at - e.enqueued_at for e in entries if e.started_at is not None]


def _durations(entries: list[QueueEntry]) -> list[int]:
    return [
        e.completed_at - e.started_at for e in entries if e.started_at is not None and e.completed_at is not None
    ]
