from __future__ import annotations

import pytest

from queuekit.protocol.models import Priority, QueueEntry
from queuekit.runtime.selector import PrioritySelector, draws_per_round

pytestmark = [pytest.mark.unit]

WEIGHTS = {"critical": 50, "high": 30, "normal": 15, "low": 5}


def _entry(eid: str, priority: str, enqueued_at: int) -> QueueEntry:
    return QueueEntry(
        id=eid,
        job_id="j",
        job_name="J",
        status="ready",
        priority=priority,
        enqueued_at=enqueued_at,
        max_attempts=3,
        retry_delay_ms=10,
        timeout_ms=1000,
        created_at=enqueued_at,
        updated_at=enqueued_at,
    )


def test_draws_per_round_default_weights():
    draws = draws_per_round(WEIGHTS)
    assert draws == {Priority.critical: 5, Priority.high: 3, Priority.normal: 2, Priority.low: 1}


def test_zero_weight_bucket_still_draws_one():
    draws = draws_per_round({"critical": 100, "high": 0, "normal": 0, "low": 0})
    assert draws[Priority.critical] == 10
    assert draws[Priority.low] == 1


def test_fifo_within_bucket():
    entries = [_entry("n3", "normal", 30), _entry("n1", "normal", 10), _entry("n2", "normal", 20)]
    picked = PrioritySelector().order(entries, WEIGHTS)
    assert [e.id for e in picked] == ["n1", "n2", "n3"]


def test_first_round_is_weighted_and_low_is_not_starved():
    entries = [_entry(f"c{i}", "critical", i) for i in range(20)]
    entries += [_entry(f"l{i}", "low", 100 + i) for i in range(3)]
    picked = PrioritySelector().order(entries, WEIGHTS, limit=6)
    # one round: 5 critical then 1 low
    assert [e.id for e in picked] == ["c0", "c1", "c2", "c3", "c4", "l0"]


def test_rounds_continue_until_buckets_exhausted():
    entries = [_entry(f"c{i}", "critical", i) for i in range(7)]
    entries += [_entry(f"h{i}", "high", 100 + i) for i in range(4)]
    picked = PrioritySelector().order(entries, WEIGHTS)
    assert [e.id for e in picked] == ["c0", "c1", "c2", "c3", "c4", "h0", "h1", "h2", "c5", "c6", "h3"]


def test_limit_bounds_result_and_empty_input():
    sel = PrioritySelector()
    assert sel.order([], WEIGHTS, limit=5) == []
    entries = [_entry(f"n{i}", "normal", i) for i in range(5)]
    assert len(sel.order(entries, WEIGHTS, limit=2)) == 2
    assert sel.order(entries, WEIGHTS, limit=0) == []
