from __future__ import annotations

import pytest

from queuekit.api.errors import EntryNotFound
from queuekit.protocol.models import DependencyState, EntryStatus
from tests.helpers import failing_job, ok_job, status_of

pytestmark = [pytest.mark.unit]


@pytest.mark.asyncio
async def test_seed_reads_current_dependency_status(qm, registry):
    registry.register(ok_job("a"))
    done = await qm.enqueue("a")
    waiting = await qm.enqueue("a")
    await qm.cancel(done.id)

    seeded = await qm.resolver.seed([waiting.id, done.id, waiting.id])
    assert seeded == {waiting.id: DependencyState.pending, done.id: DependencyState.failed}

    with pytest.raises(EntryNotFound):
        await qm.resolver.seed(["queue-nope"])


@pytest.mark.asyncio
async def test_completion_readies_dependent_only_when_all_complete(qm, registry):
    registry.register(ok_job("a"))
    x = await qm.enqueue("a")
    y = await qm.enqueue("a")
    z = await qm.enqueue("a", depends_on=[x.id, y.id])

    changed = await qm.resolver.resolve(x.id, DependencyState.completed)
    assert changed == []
    assert (await qm.get_entry(z.id)).dependency_status[x.id] == DependencyState.completed
    assert await status_of(qm, z.id) == EntryStatus.pending

    changed = await qm.resolver.resolve(y.id, DependencyState.completed)
    assert [e.id for e in changed] == [z.id]
    assert await status_of(qm, z.id) == EntryStatus.ready


@pytest.mark.asyncio
async def test_failure_cascades_transitively(qm, registry, publisher):
    registry.register(ok_job("a"))
    root = await qm.enqueue("a")
    mid = await qm.enqueue("a", depends_on=[root.id])
    leaf = await qm.enqueue("a", depends_on=[mid.id])
    other = await qm.enqueue("a")

    await qm.cancel(root.id)

    m = await qm.get_entry(mid.id)
    lf = await qm.get_entry(leaf.id)
    assert m.status == EntryStatus.failed and m.error == f"Dependency failed: {root.id}"
    assert lf.status == EntryStatus.failed and lf.error == f"Dependency failed: {mid.id}"
    assert await status_of(qm, other.id) == EntryStatus.pending
    assert {p["entry_id"] for p in publisher.of("queue.failed")} == {mid.id, leaf.id}


@pytest.mark.asyncio
async def test_enqueue_on_failed_dependency_fails_immediately(qm, registry):
    registry.register(ok_job("a"))
    registry.register(failing_job("b"))
    dep = await qm.enqueue("a")
    await qm.cancel(dep.id)

    e = await qm.enqueue("b", depends_on=[dep.id])
    stored = await qm.get_entry(e.id)
    assert stored.status == EntryStatus.failed
    assert stored.attempt == 0
    assert stored.error == f"Dependency failed: {dep.id}"


@pytest.mark.asyncio
async def test_delayed_dependents_are_updated(qm, registry, clock):
    registry.register(ok_job("a"))
    x = await qm.enqueue("a")
    y = await qm.enqueue("a", depends_on=[x.id], scheduled_for=clock.now_ms() + 10_000)
    assert y.status == EntryStatus.delayed

    await qm.resolver.resolve(x.id, DependencyState.completed)
    stored = await qm.get_entry(y.id)
    # dependency satisfied but not yet due
    assert stored.status == EntryStatus.delayed
    assert stored.dependency_status[x.id] == DependencyState.completed

    await clock.sleep_ms(10_000)
    await qm.tick()
    assert await status_of(qm, y.id) in (EntryStatus.ready, EntryStatus.running)


@pytest.mark.asyncio
async def test_cascade_terminates_on_cyclic_store(qm, registry, store):
    """A hand-edited cycle in the store must not loop forever."""
    registry.register(ok_job("a"))
    root = await qm.enqueue("a")
    p = await qm.enqueue("a", depends_on=[root.id])
    q = await qm.enqueue("a", depends_on=[p.id])
    rec = await store.get("queue_entries", p.id)
    rec["depends_on"].append(q.id)
    rec["dependency_status"][q.id] = "pending"
    await store.update("queue_entries", p.id, rec)

    await qm.cancel(root.id)
    assert await status_of(qm, p.id) == EntryStatus.failed
    assert await status_of(qm, q.id) == EntryStatus.failed
