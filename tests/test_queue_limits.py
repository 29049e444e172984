from __future__ import annotations

import asyncio

import pytest

from queuekit.api.registry import Job, JobContext
from queuekit.protocol.models import EntryStatus
from tests.helpers import CallLog, GatedJob, drive, flaky_job, ok_job, status_of


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
@pytest.mark.cfg(max_concurrency=10, concurrency_limits={"db": 2})
async def test_per_key_concurrency_ceiling(qm, registry, clock):
    gated = GatedJob("load")
    registry.register(gated.job)
    ids = [(await qm.enqueue("load", concurrency_key="db")).id for _ in range(5)]

    for _ in range(3):
        await qm.tick()
        await _settle()
    assert gated.running == 2
    assert qm.stats.limiter.active("db") == 2
    assert qm.metrics.registry.get_sample_value("queuekit_deferred_total", {"reason": "concurrency"}) > 0

    gated.release()
    await qm.join()
    await drive(qm, clock, rounds=3)
    assert gated.peak == 2
    assert all([await status_of(qm, i) == EntryStatus.completed for i in ids])
    assert qm.admission.concurrency.groups() == {}


@pytest.mark.asyncio
@pytest.mark.cfg(max_concurrency=3)
async def test_global_concurrency_ceiling(qm, registry):
    gated = GatedJob("load")
    registry.register(gated.job)
    for _ in range(7):
        await qm.enqueue("load")

    launched = [await qm.tick() for _ in range(3)]
    await _settle()
    assert launched[0] == 3 and sum(launched) == 3
    assert len(qm.engine.active) == 3
    assert gated.running == 3

    gated.release()
    await qm.join()
    assert not qm.engine.active


@pytest.mark.asyncio
async def test_unkeyed_entries_ignore_key_limits(qm, registry):
    qm.update_config(concurrency_limits={"db": 1})
    gated = GatedJob("load")
    registry.register(gated.job)
    for _ in range(3):
        await qm.enqueue("load")
    await qm.tick()
    await _settle()
    assert gated.running == 3
    gated.release()


@pytest.mark.asyncio
async def test_rate_limit_per_job_window(qm, registry, clock):
    log = CallLog()
    registry.register(ok_job("send", log=log))
    rate = {"max_runs": 3, "window_ms": 60_000}
    ids = [(await qm.enqueue("send", rate_limit=rate)).id for _ in range(5)]

    await drive(qm, clock, rounds=3, step_ms=10_000)
    assert log.count == 3
    assert sum([await status_of(qm, i) == EntryStatus.ready for i in ids]) == 2

    # window measured from the first dispatch
    await clock.sleep_ms(30_000)
    await drive(qm, clock)
    assert log.count == 5

    dispatch_times = sorted(round(c.now.timestamp() * 1000) for c in log.calls)
    for t in dispatch_times:
        in_window = [u for u in dispatch_times if t <= u < t + 60_000]
        assert len(in_window) <= 3


@pytest.mark.asyncio
async def test_rate_limit_is_shared_by_job_id_not_entry(qm, registry, clock):
    log_a, log_b = CallLog(), CallLog()
    registry.register(ok_job("a", log=log_a))
    registry.register(ok_job("b", log=log_b))
    await qm.enqueue("a", rate_limit={"max_runs": 1, "window_ms": 1000})
    await qm.enqueue("a", rate_limit={"max_runs": 1, "window_ms": 1000})
    await qm.enqueue("b", rate_limit={"max_runs": 1, "window_ms": 1000})
    await drive(qm, clock)
    assert (log_a.count, log_b.count) == (1, 1)
    await drive(qm, clock, step_ms=1000)
    await drive(qm, clock)
    assert log_a.count == 2


@pytest.mark.asyncio
async def test_retry_bound_and_recovery(qm, registry, clock):
    log = CallLog()
    registry.register(flaky_job("flaky", failures=2, log=log))
    e = await qm.enqueue("flaky", max_attempts=3, retry_delay_ms=100, retry_backoff="exponential")

    await drive(qm, clock, rounds=20, step_ms=50)
    stored = await qm.get_entry(e.id)
    assert stored.status == EntryStatus.completed
    assert stored.attempt == 3
    assert stored.error is None
    assert log.attempts() == [1, 2, 3]
    starts = [round(c.now.timestamp() * 1000) for c in log.calls]
    # exponential: 100 then 200
    assert starts[1] - starts[0] >= 100
    assert starts[2] - starts[1] >= 200


@pytest.mark.asyncio
async def test_dependents_never_run_before_dependencies_complete(qm, registry, clock):
    """Chain a -> b -> c with an observer recording each start against store state."""
    violations: list[str] = []

    async def run(ctx: JobContext) -> None:
        entry = await qm.get_entry(ctx.entry_id)
        for dep in entry.depends_on:
            if await status_of(qm, dep) != EntryStatus.completed:
                violations.append(f"{ctx.entry_id} started before {dep}")

    registry.register(Job(id="step", name="Step", run=run))
    a = await qm.enqueue("step", priority="low")
    b = await qm.enqueue("step", priority="critical", depends_on=[a.id])
    c = await qm.enqueue("step", priority="critical", depends_on=[a.id, b.id])

    await drive(qm, clock, rounds=6)
    assert violations == []
    for eid in (a.id, b.id, c.id):
        assert await status_of(qm, eid) == EntryStatus.completed
