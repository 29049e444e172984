# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Job registry.

Maps a stable job id to a named asynchronous unit of work. The orchestrator
only ever calls `lookup(job_id)`; registration is done by the hosting process
at startup.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import RegistryError

PublishFn = Callable[[str, Mapping[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class JobContext:
    """
    Execution context handed to a unit of work.

    Attributes:
        logger: Logger adapter bound to the execution (accepts keyword fields).
        publish: Best-effort event publisher `await publish(topic, payload)`.
        now: Wall-clock time at execution start (UTC).
        input: Opaque payload stored on the queue entry.
        entry_id: Queue entry being executed.
        job_id: Registered job id.
        attempt: 1-based attempt number of this execution.
    """

    logger: logging.LoggerAdapter | logging.Logger
    publish: PublishFn
    now: datetime
    input: Mapping[str, Any] | None
    entry_id: str
    job_id: str
    attempt: int


RunFn = Callable[[JobContext], Awaitable[Any]]


@dataclass(frozen=True)
class Job:
    """A named, registered unit of work."""

    id: str
    name: str
    run: RunFn


class JobRegistry:
    """
    In-process registry of jobs keyed by id.

    Duplicate registration is an error; `unregister` exists so hosts can roll
    out configuration changes (entries for a removed job stay queued untouched).
    """

    def __init__(self, jobs: Iterable[Job] = ()) -> None:
        self._jobs: dict[str, Job] = {}
        self.register_many(jobs)

    def _check_id(self, job_id: str) -> None:
        if not job_id or job_id.strip() != job_id:
            raise RegistryError("empty/invalid job id")

    def register(self, job: Job) -> Job:
        self._check_id(job.id)
        if job.id in self._jobs:
            raise RegistryError(f'Job with id "{job.id}" is already registered')
        self._jobs[job.id] = job
        return job

    def register_many(self, jobs: Iterable[Job]) -> None:
        for job in jobs:
            self.register(job)

    def job(self, job_id: str, name: str | None = None):
        """
        Decorator form:

            @registry.job("reports.daily", "Daily report")
            async def daily(ctx: JobContext) -> None: ...
        """

        def _wrap(fn: RunFn) -> RunFn:
            self.register(Job(id=job_id, name=name or job_id, run=fn))
            return fn

        return _wrap

    def unregister(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def lookup(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)
