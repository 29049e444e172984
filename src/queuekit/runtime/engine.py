# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Execution engine: the only place a registered job's `run` is awaited.

Each admitted entry runs as its own background task (never awaited by the
tick). The task re-reads the entry, marks it `running` (stamping
`started_at`/`last_attempt_at` and bumping `attempt` once), races the job
against `timeout_ms`, then reports the outcome: success goes to the
dependency resolver, failure (including timeout) to the retry manager.
Admission slots are released when the task settles, whatever the outcome.
"""

import asyncio
from typing import Any

from ..api.errors import ExecutionTimeout
from ..api.registry import Job, JobContext
from ..core.log import get_logger, log_context
from ..core.time import Clock
from ..core.utils import error_message
from ..protocol.models import DependencyState, EntryStatus, QueueEntry
from ..storage.entries import EntryRepository
from ..transport.events import EventEmitter
from .dependencies import DependencyResolver
from .limits import AdmissionControl
from .metrics import QueueMetrics
from .retry import RetryManager


def _consume_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class ExecutionEngine:
    def __init__(
        self,
        *,
        repo: EntryRepository,
        clock: Clock,
        events: EventEmitter,
        metrics: QueueMetrics,
        admission: AdmissionControl,
        resolver: DependencyResolver,
        retry: RetryManager,
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.events = events
        self.metrics = metrics
        self.admission = admission
        self.resolver = resolver
        self.retry = retry
        self.log = get_logger("engine")

        # entry id -> execution task; mutated only by launch() and the task's own cleanup
        self.active: dict[str, asyncio.Task] = {}

    # ---- public

    def launch(self, entry: QueueEntry, job: Job) -> asyncio.Task:
        """Start executing an admitted entry in the background."""
        task = self._spawn(self._execute(entry, job), name=f"queue-exec:{entry.id}")
        self.active[entry.id] = task
        self.metrics.active.set(len(self.active))
        return task

    def is_active(self, entry_id: str) -> bool:
        return entry_id in self.active

    async def join(self) -> None:
        """Wait until every launched execution has settled."""
        while self.active:
            await asyncio.gather(*list(self.active.values()), return_exceptions=True)

    async def cancel_all(self) -> None:
        for t in list(self.active.values()):
            t.cancel()
        await self.join()

    # ---- internals

    def _spawn(self, coro, *, name: str | None = None) -> asyncio.Task:
        t = asyncio.create_task(coro, name=name or getattr(coro, "__name__", "task"))

        def _done(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            if exc := task.exception():
                self.log.error("engine.task.crashed", exc_info=exc, task=task.get_name())

        t.add_done_callback(_done)
        return t

    async def _execute(self, admitted: QueueEntry, job: Job) -> None:
        try:
            entry = await self.repo.get(admitted.id)
            if entry is None or entry.status != EntryStatus.ready:
                self.log.info(
                    "entry.dispatch_skipped",
                    entry_id=admitted.id,
                    status=entry.status.value if entry else None,
                )
                return

            now = self.clock.now_ms()
            entry.transition(EntryStatus.running, now_ms=now)
            entry.started_at = now
            entry.last_attempt_at = now
            entry.attempt += 1
            await self.repo.save(entry)

            self.metrics.dispatched_total.labels(priority=entry.priority.value).inc()
            self.metrics.wait_ms.observe(max(0, now - entry.enqueued_at))

            with log_context(entry_id=entry.id, job_id=entry.job_id, attempt=entry.attempt):
                self.log.info("entry.started", entry_id=entry.id, job_id=entry.job_id, attempt=entry.attempt)
                await self.events.emit("started", entry, attempt=entry.attempt, priority=entry.priority.value)
                await self._run_and_report(entry, job)
        finally:
            self.admission.release(admitted)
            self.active.pop(admitted.id, None)
            self.metrics.active.set(len(self.active))

    async def _run_and_report(self, entry: QueueEntry, job: Job) -> None:
        ctx = JobContext(
            logger=get_logger(f"job.{job.id}"),
            publish=self.events.publish,
            now=self.clock.now_dt(),
            input=entry.input,
            entry_id=entry.id,
            job_id=entry.job_id,
            attempt=entry.attempt,
        )
        try:
            result = await self._race(job, ctx, entry.timeout_ms)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result_label = "timeout" if isinstance(e, ExecutionTimeout) else "error"
            self.metrics.execution_ms.labels(result=result_label).observe(self._elapsed(entry))
            self.log.warning(
                "entry.attempt_failed",
                entry_id=entry.id,
                job_id=entry.job_id,
                attempt=entry.attempt,
                error=error_message(e),
                timeout=result_label == "timeout",
            )
            await self.retry.handle_failure(entry, e)
            return

        entry.transition(EntryStatus.completed, now_ms=self.clock.now_ms())
        entry.error = None
        entry.error_stack = None
        await self.repo.save(entry)
        duration = self._elapsed(entry)
        self.metrics.execution_ms.labels(result="ok").observe(duration)
        self.metrics.finished_total.labels(result="completed").inc()
        self.log.info("entry.completed", entry_id=entry.id, job_id=entry.job_id, duration_ms=duration)
        await self.events.emit(
            "completed", entry, attempt=entry.attempt, duration_ms=duration, has_result=result is not None
        )
        await self.resolver.resolve(entry.id, DependencyState.completed)

    async def _race(self, job: Job, ctx: JobContext, timeout_ms: int) -> Any:
        """Run the job against a timer; whichever settles first wins."""
        task = asyncio.ensure_future(job.run(ctx))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000.0)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            task.cancel()
            task.add_done_callback(_consume_result)
            raise ExecutionTimeout()
        if task.cancelled():
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise asyncio.CancelledError()
            # the job cancelled itself; the engine was not asked to stop
            raise RuntimeError("execution cancelled")
        return task.result()

    def _elapsed(self, entry: QueueEntry) -> int:
        return max(0, self.clock.now_ms() - (entry.started_at or self.clock.now_ms()))
