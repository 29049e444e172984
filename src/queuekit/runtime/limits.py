# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Dispatch admission: per-key concurrency and per-job sliding-window rate limits.

State here is process-local and ephemeral: it starts empty, is never
persisted, and is mutated only from the tick (admit) and from execution
completion (release).
"""

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from ..core.time import Clock
from ..protocol.models import QueueEntry, RateLimit

LimitLookup = Callable[[str], "int | None"]

DEFER_CONCURRENCY = "concurrency"
DEFER_RATE_LIMIT = "rate_limit"


@dataclass
class ConcurrencyGroup:
    """Live executions sharing one concurrency key."""

    key: str
    limit: int | None
    active_count: int = 0
    members: list[str] = field(default_factory=list)


class ConcurrencyLimiter:
    """Counts active executions per concurrency key; absent limit means unbounded."""

    def __init__(self, limit_for: LimitLookup) -> None:
        self._limit_for = limit_for
        self._groups: dict[str, ConcurrencyGroup] = {}

    def can_admit(self, key: str | None) -> bool:
        if not key:
            return True
        limit = self._limit_for(key)
        if limit is None:
            return True
        group = self._groups.get(key)
        return (group.active_count if group else 0) < limit

    def admit(self, entry: QueueEntry) -> None:
        key = entry.concurrency_key
        if not key:
            return
        group = self._groups.get(key)
        if group is None:
            group = ConcurrencyGroup(key=key, limit=self._limit_for(key))
            self._groups[key] = group
        group.active_count += 1
        group.members.append(entry.id)

    def release(self, entry: QueueEntry) -> None:
        key = entry.concurrency_key
        group = self._groups.get(key) if key else None
        if group is None:
            return
        if entry.id in group.members:
            group.members.remove(entry.id)
            group.active_count -= 1
        if group.active_count <= 0:
            del self._groups[key]

    def active(self, key: str) -> int:
        group = self._groups.get(key)
        return group.active_count if group else 0

    def groups(self) -> dict[str, ConcurrencyGroup]:
        """Snapshot copy of live groups (limits refreshed from config)."""
        return {
            k: ConcurrencyGroup(key=k, limit=self._limit_for(k), active_count=g.active_count, members=list(g.members))
            for k, g in self._groups.items()
        }


class RateLimiter:
    """Sliding window of dispatch timestamps per job id."""

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self._windows: dict[str, deque[int]] = {}

    def _prune(self, job_id: str, window_ms: int, now: int) -> deque[int]:
        q = self._windows.setdefault(job_id, deque())
        while q and now - q[0] >= window_ms:
            q.popleft()
        return q

    def allows(self, job_id: str, rate: RateLimit) -> bool:
        q = self._prune(job_id, rate.window_ms, self.clock.now_ms())
        return len(q) < rate.max_runs

    def record(self, job_id: str) -> None:
        self._windows.setdefault(job_id, deque()).append(self.clock.now_ms())

    def recent(self, job_id: str) -> int:
        return len(self._windows.get(job_id, ()))


class AdmissionControl:
    """Both constraints checked first, then both recorded, so a deferral mutates nothing."""

    def __init__(self, limit_for: LimitLookup, clock: Clock) -> None:
        self.concurrency = ConcurrencyLimiter(limit_for)
        self.rate = RateLimiter(clock)

    def try_admit(self, entry: QueueEntry) -> str | None:
        """Admit `entry` and return None, or return the deferral reason."""
        if not self.concurrency.can_admit(entry.concurrency_key):
            return DEFER_CONCURRENCY
        if entry.rate_limit is not None and not self.rate.allows(entry.job_id, entry.rate_limit):
            return DEFER_RATE_LIMIT
        self.concurrency.admit(entry)
        if entry.rate_limit is not None:
            self.rate.record(entry.job_id)
        return None

    def release(self, entry: QueueEntry) -> None:
        self.concurrency.release(entry)
