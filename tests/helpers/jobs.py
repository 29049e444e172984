from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from queuekit.api.registry import Job, JobContext


@dataclass
class CallLog:
    """Records every invocation of a test job (attempt, entry, input)."""

    calls: list[JobContext] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.calls)

    def attempts(self) -> list[int]:
        return [c.attempt for c in self.calls]


def ok_job(job_id: str = "ok", *, result: Any = None, log: CallLog | None = None, name: str | None = None) -> Job:
    async def run(ctx: JobContext) -> Any:
        if log is not None:
            log.calls.append(ctx)
        return result

    return Job(id=job_id, name=name or job_id.title(), run=run)


def failing_job(job_id: str = "boom", *, message: str = "boom", log: CallLog | None = None) -> Job:
    async def run(ctx: JobContext) -> Any:
        if log is not None:
            log.calls.append(ctx)
        raise RuntimeError(message)

    return Job(id=job_id, name=job_id.title(), run=run)


def flaky_job(job_id: str = "flaky", *, failures: int, log: CallLog | None = None) -> Job:
    """Fails the first `failures` attempts, then succeeds."""

    async def run(ctx: JobContext) -> Any:
        if log is not None:
            log.calls.append(ctx)
        if ctx.attempt <= failures:
            raise RuntimeError(f"flaky failure #{ctx.attempt}")
        return "ok"

    return Job(id=job_id, name=job_id.title(), run=run)


def sleepy_job(job_id: str = "sleepy", *, seconds: float) -> Job:
    async def run(ctx: JobContext) -> Any:
        await asyncio.sleep(seconds)

    return Job(id=job_id, name=job_id.title(), run=run)


class GatedJob:
    """
    Job that blocks until released, tracking how many runs overlap.

        gate = GatedJob("slow")
        registry.register(gate.job)
        ...
        gate.release()
    """

    def __init__(self, job_id: str = "gated") -> None:
        self.gate = asyncio.Event()
        self.running = 0
        self.peak = 0
        self.started: list[str] = []
        self.job = Job(id=job_id, name=job_id.title(), run=self._run)

    async def _run(self, ctx: JobContext) -> None:
        self.started.append(ctx.entry_id)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await self.gate.wait()
        finally:
            self.running -= 1

    def release(self) -> None:
        self.gate.set()
