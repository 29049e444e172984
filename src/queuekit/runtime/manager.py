# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
queuekit QueueManager: priority job queue and execution orchestrator.

Responsibilities:
  - Accept work (`enqueue`) and persist it as QueueEntry records.
  - Drive a periodic tick: promote pending/due-delayed entries whose
    dependencies are met, order ready entries by weighted priority, admit
    them through concurrency/rate limits and launch them.
  - Route outcomes: success -> dependency resolution; failure -> retry /
    dead-letter policy (with cascade).
  - Lifecycle: pause / resume / drain, per-entry cancel, dead-letter resubmit.
  - On-demand stats.

Out of scope:
  - Cross-process coordination: one active manager per record store.
  - Transport wiring: the host owns the EventPublisher (and starts/stops it).

Minimal lifecycle:
    registry = JobRegistry([...])
    qm = QueueManager(registry, InMemoryRecordStore())
    await qm.start()
    entry = await qm.enqueue("reports.daily", priority="high")
    ...
    await qm.stop()
"""

import asyncio
import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from prometheus_client import CollectorRegistry

from ..api.errors import ConfigError, JobNotRegistered, QueueDraining
from ..api.registry import JobRegistry
from ..core.config import QueueConfig
from ..core.log import get_logger, warn_once
from ..core.time import Clock, SystemClock
from ..core.types import ENTRY_ID_SUFFIX_SIZE
from ..core.utils import nanoid
from ..protocol.models import (
    DeadLetterEntry,
    EntryStatus,
    Priority,
    QueueEntry,
    QueueMode,
    QueueStats,
    RateLimit,
    RetryBackoff,
)
from ..storage.entries import EntryRepository
from ..storage.records import RecordStore
from ..transport.events import EventEmitter, EventPublisher
from .dependencies import DependencyResolver
from .engine import ExecutionEngine
from .limits import AdmissionControl
from .lifecycle import LifecycleController
from .metrics import QueueMetrics
from .retry import RetryManager
from .selector import PrioritySelector
from .stats import StatsAggregator

_WAITING = (EntryStatus.pending, EntryStatus.ready, EntryStatus.delayed)


class QueueManager:
    """
    Explicitly constructed orchestrator; the hosting process owns the single
    instance and its `start()`/`stop()`.

    In-process state (active executions, concurrency groups, rate windows) is
    created empty with the manager and never persisted.
    """

    def __init__(
        self,
        registry: JobRegistry,
        store: RecordStore,
        *,
        config: QueueConfig | None = None,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        metrics: QueueMetrics | None = None,
        metrics_registry: CollectorRegistry | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.registry = registry
        self.clock: Clock = clock or SystemClock()
        self.cfg = config or QueueConfig()
        if self.cfg.created_at is None:
            now = self.clock.now_ms()
            self.cfg = self.cfg.updated({"created_at": now, "updated_at": now})
        self.log = logger or get_logger("manager")

        self.repo = EntryRepository(store)
        self.events = EventEmitter(publisher, clock=self.clock)
        self.metrics = metrics or QueueMetrics.create(metrics_registry)
        self.selector = PrioritySelector()
        self.admission = AdmissionControl(lambda key: self.cfg.limit_for(key), self.clock)

        self.resolver = DependencyResolver(
            repo=self.repo,
            clock=self.clock,
            events=self.events,
            metrics=self.metrics,
            scan_limit=lambda: self.cfg.scan_limit,
        )
        self.retry = RetryManager(
            repo=self.repo,
            clock=self.clock,
            events=self.events,
            metrics=self.metrics,
            resolver=self.resolver,
            config=lambda: self.cfg,
        )
        self.engine = ExecutionEngine(
            repo=self.repo,
            clock=self.clock,
            events=self.events,
            metrics=self.metrics,
            admission=self.admission,
            resolver=self.resolver,
            retry=self.retry,
        )
        self.lifecycle = LifecycleController(
            repo=self.repo,
            clock=self.clock,
            events=self.events,
            metrics=self.metrics,
            resolver=self.resolver,
            get_config=lambda: self.cfg,
            set_config=self._set_config,
            is_active=self.engine.is_active,
        )
        self.stats = StatsAggregator(
            repo=self.repo,
            clock=self.clock,
            limiter=self.admission.concurrency,
            active_count=lambda: len(self.engine.active),
            config=lambda: self.cfg,
        )

        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._bg: set[asyncio.Task] = set()

    # ---- lifecycle -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def mode(self) -> QueueMode:
        return self.cfg.mode

    async def start(self) -> None:
        """Start the tick loop."""
        if self._running:
            return
        await self.repo.ensure_indexes()
        self._running = True
        self._loop_task = self._spawn(self._tick_loop(), name="queue-tick")
        self.log.info("queue.started", mode=self.cfg.mode.value, poll_interval_ms=self.cfg.poll_interval_ms)

    async def stop(self, *, cancel_running: bool = False) -> None:
        """
        Stop the tick loop. In-flight executions are awaited, or cancelled with
        `cancel_running=True` (their entries stay `running` in the store).
        """
        self._running = False
        t = self._loop_task
        self._loop_task = None
        if t is not None and t is not asyncio.current_task():
            t.cancel()
            try:
                await t
            except asyncio.CancelledError:
                pass
        if cancel_running:
            await self.engine.cancel_all()
        else:
            await self.engine.join()
        self.log.info("queue.stopped")

    async def join(self) -> None:
        """Wait until every launched execution has settled."""
        await self.engine.join()

    async def pause(self) -> bool:
        return await self.lifecycle.pause()

    async def resume(self) -> bool:
        return await self.lifecycle.resume()

    async def drain(self) -> bool:
        return await self.lifecycle.drain()

    async def cancel(self, entry_id: str) -> QueueEntry:
        return await self.lifecycle.cancel(entry_id)

    # ---- enqueue -------------------------------------------------------------

    async def enqueue(
        self,
        job_id: str,
        *,
        input: Mapping[str, Any] | None = None,
        priority: Priority | str = Priority.normal,
        scheduled_for: int | None = None,
        depends_on: Iterable[str] = (),
        max_attempts: int | None = None,
        retry_delay_ms: int | None = None,
        retry_backoff: RetryBackoff | str | None = None,
        timeout_ms: int | None = None,
        concurrency_key: str | None = None,
        rate_limit: RateLimit | Mapping[str, int] | None = None,
        org_id: str | None = None,
        user_id: str | None = None,
        tags: Iterable[str] = (),
        metadata: Mapping[str, Any] | None = None,
    ) -> QueueEntry:
        """
        Persist a new entry and return it.

        Raises:
            QueueDraining: the queue is draining.
            JobNotRegistered: `job_id` is unknown to the registry.
            EntryNotFound: a `depends_on` id does not exist.
        """
        cfg = self.cfg
        if cfg.mode == QueueMode.draining:
            raise QueueDraining("Queue is draining; new entries are not accepted")
        job = self.registry.lookup(job_id)
        if job is None:
            raise JobNotRegistered(job_id)

        deps = list(dict.fromkeys(depends_on))
        dependency_status = await self.resolver.seed(deps)

        now = self.clock.now_ms()
        if rate_limit is not None and not isinstance(rate_limit, RateLimit):
            rate_limit = RateLimit.model_validate(dict(rate_limit))
        entry = QueueEntry(
            id=f"queue-{job_id}-{now}-{nanoid(ENTRY_ID_SUFFIX_SIZE)}",
            job_id=job_id,
            job_name=job.name,
            status=EntryStatus.delayed if scheduled_for is not None and scheduled_for > now else EntryStatus.pending,
            priority=Priority(priority),
            scheduled_for=scheduled_for,
            enqueued_at=now,
            depends_on=deps,
            dependency_status=dependency_status,
            max_attempts=max_attempts if max_attempts is not None else cfg.default_max_attempts,
            retry_delay_ms=retry_delay_ms if retry_delay_ms is not None else cfg.default_retry_delay_ms,
            retry_backoff=RetryBackoff(retry_backoff) if retry_backoff is not None else cfg.default_retry_backoff,
            timeout_ms=timeout_ms if timeout_ms is not None else cfg.default_timeout_ms,
            concurrency_key=concurrency_key,
            rate_limit=rate_limit,
            input=dict(input) if input is not None else None,
            org_id=org_id,
            user_id=user_id,
            tags=list(tags),
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        await self.repo.create(entry)

        self.metrics.enqueued_total.labels(priority=entry.priority.value).inc()
        self.log.info(
            "entry.enqueued",
            entry_id=entry.id,
            job_id=job_id,
            priority=entry.priority.value,
            status=entry.status.value,
            depends_on=len(deps),
        )
        await self.events.emit("enqueued", entry, priority=entry.priority.value, status=entry.status.value)

        failed_dep = entry.failed_dependency()
        if failed_dep is not None:
            await self.resolver.fail_blocked(entry, failed_dep)
        return entry

    async def retry_dead_letter(self, dead_letter_id: str) -> QueueEntry:
        """
        Resubmit a quarantined entry as a new `high` priority entry with the
        original input. The dead-letter record only gets `retry_count` bumped.
        """
        dl: DeadLetterEntry = await self.retry.load_retryable(dead_letter_id)
        new_entry = await self.enqueue(
            dl.job_id,
            input=dl.input,
            priority=Priority.high,
            org_id=dl.org_id,
            tags=dl.tags,
            metadata=self.retry.resubmission_metadata(dl),
        )
        await self.retry.mark_resubmitted(dl, new_entry)
        return new_entry

    async def get_dead_letter(self, dead_letter_id: str) -> DeadLetterEntry | None:
        return await self.repo.get_dead_letter(dead_letter_id)

    async def get_entry(self, entry_id: str) -> QueueEntry | None:
        return await self.repo.get(entry_id)

    # ---- stats / config ------------------------------------------------------

    async def get_stats(self) -> QueueStats:
        return await self.stats.snapshot()

    def get_config(self) -> QueueConfig:
        return copy.deepcopy(self.cfg)

    def update_config(self, **partial: Any) -> QueueConfig:
        """
        Apply a validated partial update. A `mode` change goes through the
        lifecycle controller (same timestamps and event as pause/resume/drain).
        """
        mode = partial.pop("mode", None)
        if mode is not None:
            try:
                mode = QueueMode(mode)
            except ValueError as e:
                raise ConfigError(str(e)) from e
        if partial:
            self._set_config(self.cfg.updated({**partial, "updated_at": self.clock.now_ms()}))
        if mode is not None:
            previous = self.lifecycle.apply_mode(mode)
            if previous is not None:
                self._announce_later(previous, mode)
        self.log.info("queue.config_updated", keys=sorted(partial) + (["mode"] if mode is not None else []))
        return self.get_config()

    def _set_config(self, cfg: QueueConfig) -> None:
        self.cfg = cfg

    def _announce_later(self, previous: QueueMode, mode: QueueMode) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            warn_once(self.log, "mode_event_without_loop", "mode changed outside an event loop; event not published")
            return
        self._spawn(self.lifecycle.announce(previous, mode), name="queue-mode-event")

    # ---- tick ----------------------------------------------------------------

    async def tick(self) -> int:
        """
        One dispatch pass; returns the number of executions launched.
        Launched work is not awaited.
        """
        cfg = self.cfg
        now = self.clock.now_ms()
        entries = await self.repo.list(limit=cfg.scan_limit)

        ready: list[QueueEntry] = []
        for e in entries:
            if e.status in (EntryStatus.pending, EntryStatus.delayed):
                await self._promote(e, now)
            if e.status == EntryStatus.ready and not self.engine.is_active(e.id):
                ready.append(e)

        launched = 0
        if cfg.mode != QueueMode.paused:
            launched = await self._dispatch(ready, cfg)

        if cfg.mode == QueueMode.draining and self._running:
            waiting = any(e.status in _WAITING for e in entries)
            if not waiting and not self.engine.active:
                self._running = False
                self.log.info("queue.drained")
        return launched

    async def _promote(self, entry: QueueEntry, now: int) -> None:
        failed_dep = entry.failed_dependency()
        deps_met = entry.dependencies_met()
        due = entry.is_due(now)
        if failed_dep is None and not (deps_met and due):
            if entry.status == EntryStatus.delayed and due:
                # due but still gated on dependencies
                await self._write_if_unchanged(entry, EntryStatus.pending, now)
            return

        fresh = await self.repo.get(entry.id)
        if fresh is None or fresh.status != entry.status:
            if fresh is not None:
                entry.status = fresh.status
            return
        if failed_dep is not None:
            await self.resolver.fail_blocked(entry, failed_dep)
            return
        entry.transition(EntryStatus.ready, now_ms=now)
        await self.repo.save(entry)

    async def _write_if_unchanged(self, entry: QueueEntry, dst: EntryStatus, now: int) -> None:
        fresh = await self.repo.get(entry.id)
        if fresh is None or fresh.status != entry.status:
            return
        entry.transition(dst, now_ms=now)
        await self.repo.save(entry)

    async def _dispatch(self, ready: list[QueueEntry], cfg: QueueConfig) -> int:
        slots = cfg.max_concurrency - len(self.engine.active)
        if slots <= 0 or not ready:
            return 0

        launched = 0
        for entry in self.selector.order(ready, cfg.priority_weights):
            if launched >= slots:
                break
            job = self.registry.lookup(entry.job_id)
            if job is None:
                warn_once(
                    self.log,
                    f"registry_miss:{entry.job_id}",
                    "job not found in registry; entry left queued",
                    job_id=entry.job_id,
                    entry_id=entry.id,
                )
                continue
            reason = self.admission.try_admit(entry)
            if reason is not None:
                self.metrics.deferred_total.labels(reason=reason).inc()
                self.log.debug("entry.deferred", entry_id=entry.id, job_id=entry.job_id, reason=reason)
                continue
            self.engine.launch(entry, job)
            launched += 1
        return launched

    async def _tick_loop(self) -> None:
        try:
            while self._running:
                try:
                    await self.tick()
                except Exception:
                    self.log.error("queue.tick.failed", exc_info=True)
                if not self._running:
                    break
                await asyncio.sleep(self.cfg.poll_interval_ms / 1000.0)
        except asyncio.CancelledError:  # graceful stop
            return

    def _spawn(self, coro, *, name: str | None = None) -> asyncio.Task:
        t = asyncio.create_task(coro, name=name or getattr(coro, "__name__", "task"))
        self._bg.add(t)

        def _done(task: asyncio.Task) -> None:
            self._bg.discard(task)
            if task.cancelled():
                return
            if exc := task.exception():
                self.log.error("queue.task.crashed", exc_info=exc, task=task.get_name())

        t.add_done_callback(_done)
        return t
