# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Orchestrator mode (active / paused / draining) and per-entry cancellation.

Mode changes only rewrite the config (mode plus a timestamp) and publish an
event; the tick reads the mode on its next pass. Setting the current mode
again is a no-op.
"""

from collections.abc import Callable

from ..api.errors import EntryNotFound, OperationRejected
from ..core.config import QueueConfig
from ..core.log import get_logger
from ..core.time import Clock
from ..protocol.models import DependencyState, EntryStatus, QueueEntry, QueueMode
from ..storage.entries import EntryRepository
from ..transport.events import EventEmitter
from .dependencies import DependencyResolver
from .metrics import QueueMetrics

_MODE_EVENTS = {
    QueueMode.active: "resumed",
    QueueMode.paused: "paused",
    QueueMode.draining: "draining",
}


class LifecycleController:
    def __init__(
        self,
        *,
        repo: EntryRepository,
        clock: Clock,
        events: EventEmitter,
        metrics: QueueMetrics,
        resolver: DependencyResolver,
        get_config: Callable[[], QueueConfig],
        set_config: Callable[[QueueConfig], None],
        is_active: Callable[[str], bool],
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.events = events
        self.metrics = metrics
        self.resolver = resolver
        self._get_config = get_config
        self._set_config = set_config
        self._is_active = is_active
        self.log = get_logger("lifecycle")

    @property
    def mode(self) -> QueueMode:
        return self._get_config().mode

    async def pause(self) -> bool:
        return await self.set_mode(QueueMode.paused)

    async def resume(self) -> bool:
        return await self.set_mode(QueueMode.active)

    async def drain(self) -> bool:
        return await self.set_mode(QueueMode.draining)

    async def set_mode(self, mode: QueueMode | str) -> bool:
        """Switch mode; returns False when already in `mode`."""
        mode = QueueMode(mode)
        previous = self.apply_mode(mode)
        if previous is None:
            return False
        await self.announce(previous, mode)
        return True

    def apply_mode(self, mode: QueueMode) -> QueueMode | None:
        """Rewrite the config for `mode`; returns the previous mode, or None if unchanged."""
        cfg = self._get_config()
        if cfg.mode == mode:
            return None

        now = self.clock.now_ms()
        changes: dict = {"mode": mode, "updated_at": now}
        if mode == QueueMode.paused:
            changes["paused_at"] = now
        elif mode == QueueMode.draining:
            changes["draining_started_at"] = now
        else:
            changes["paused_at"] = None
            changes["draining_started_at"] = None
        self._set_config(cfg.updated(changes))
        self.log.info("queue.mode_changed", mode=mode.value, previous=cfg.mode.value)
        return cfg.mode

    async def announce(self, previous: QueueMode, mode: QueueMode) -> None:
        await self.events.emit(_MODE_EVENTS[mode], previous=previous.value, mode=mode.value)

    async def cancel(self, entry_id: str) -> QueueEntry:
        """
        Cancel an entry that is not running. Terminal entries raise
        InvalidTransition; dependents are failed as for any failed outcome.
        """
        entry = await self.repo.get(entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        if self._is_active(entry_id) or entry.status == EntryStatus.running:
            raise OperationRejected(f'Cannot cancel running entry "{entry_id}"')

        previous = entry.status
        entry.transition(EntryStatus.cancelled, now_ms=self.clock.now_ms())
        await self.repo.save(entry)
        self.metrics.finished_total.labels(result="cancelled").inc()
        self.log.info("entry.cancelled", entry_id=entry.id, job_id=entry.job_id, previous=previous.value)
        await self.events.emit("cancelled", entry, previous=previous.value)

        await self.resolver.resolve(entry.id, DependencyState.failed)
        return entry
