# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Dependency gating and outcome propagation.

An entry waits in `pending` (or `delayed`) until every id in `depends_on`
reads `completed` in its `dependency_status`. When an entry reaches a terminal
outcome its waiting dependents get the slot updated and are re-evaluated:
all completed -> `ready` (or left `delayed` until due); any failed -> the
dependent fails without running and the failure cascades to its own
dependents. The cascade is a worklist with a visited set, so it terminates
for any finite graph.
"""

from collections import deque
from collections.abc import Callable, Iterable

from ..api.errors import EntryNotFound
from ..core.log import get_logger
from ..core.time import Clock
from ..protocol.models import (
    FAILED_OUTCOMES,
    DependencyState,
    EntryStatus,
    QueueEntry,
)
from ..storage.entries import EntryRepository
from ..transport.events import EventEmitter
from .metrics import QueueMetrics

_WAITING = (EntryStatus.pending, EntryStatus.delayed)


def dependency_error(dep_id: str) -> str:
    return f"Dependency failed: {dep_id}"


class DependencyResolver:
    def __init__(
        self,
        *,
        repo: EntryRepository,
        clock: Clock,
        events: EventEmitter,
        metrics: QueueMetrics,
        scan_limit: Callable[[], int],
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.events = events
        self.metrics = metrics
        self._scan_limit = scan_limit
        self.log = get_logger("dependencies")

    async def seed(self, depends_on: Iterable[str]) -> dict[str, DependencyState]:
        """
        Initial dependency_status for a new entry, read from the current state of
        each dependency. Unknown ids are rejected, which also keeps the graph acyclic:
        a fresh entry can only point at entries that already exist.
        """
        out: dict[str, DependencyState] = {}
        for dep_id in dict.fromkeys(depends_on):
            dep = await self.repo.get(dep_id)
            if dep is None:
                raise EntryNotFound(dep_id, kind="Dependency")
            if dep.status == EntryStatus.completed:
                out[dep_id] = DependencyState.completed
            elif dep.status in FAILED_OUTCOMES:
                out[dep_id] = DependencyState.failed
            else:
                out[dep_id] = DependencyState.pending
        return out

    async def fail_blocked(self, entry: QueueEntry, dep_id: str) -> None:
        """Fail `entry` because `dep_id` failed, then cascade to its dependents."""
        await self._fail(entry, dep_id)
        await self.resolve(entry.id, DependencyState.failed)

    async def resolve(self, source_id: str, outcome: DependencyState) -> list[QueueEntry]:
        """
        Propagate `outcome` of `source_id` to waiting dependents.
        Returns every entry whose status changed (ready or failed).
        """
        changed: list[QueueEntry] = []
        visited: set[str] = {source_id}
        work: deque[tuple[str, DependencyState]] = deque([(source_id, outcome)])

        while work:
            src, state = work.popleft()
            candidates = await self.repo.list(limit=self._scan_limit())
            for dep in candidates:
                if src not in dep.depends_on or dep.status not in _WAITING:
                    continue
                dep.dependency_status[src] = state
                failed_dep = dep.failed_dependency()

                if failed_dep is not None:
                    if dep.id in visited:
                        continue
                    visited.add(dep.id)
                    await self._fail(dep, failed_dep)
                    changed.append(dep)
                    work.append((dep.id, DependencyState.failed))
                elif dep.dependencies_met() and dep.is_due(self.clock.now_ms()):
                    dep.transition(EntryStatus.ready, now_ms=self.clock.now_ms())
                    await self.repo.save(dep)
                    changed.append(dep)
                    self.log.info("entry.ready", entry_id=dep.id, job_id=dep.job_id, after=src)
                else:
                    dep.updated_at = self.clock.now_ms()
                    await self.repo.save(dep)
        return changed

    async def _fail(self, entry: QueueEntry, dep_id: str) -> None:
        entry.error = dependency_error(dep_id)
        entry.transition(EntryStatus.failed, now_ms=self.clock.now_ms())
        await self.repo.save(entry)
        self.metrics.finished_total.labels(result="dependency_failed").inc()
        self.log.warning("entry.dependency_failed", entry_id=entry.id, job_id=entry.job_id, dependency=dep_id)
        await self.events.emit("failed", entry, error=entry.error, dependency=dep_id, attempt=entry.attempt)
