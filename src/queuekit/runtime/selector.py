# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Weighted-fair priority ordering.

Entries are bucketed by priority and kept FIFO (by `enqueued_at`) within a
bucket. Each round draws `ceil(weight / total * 10)` entries from every
non-empty bucket, highest priority first, until the buckets are exhausted or
the slot budget is filled. Higher priorities are served more densely, but any
non-empty bucket gets at least one draw per round, so `low` is never starved
by a continuous stream of `critical` work.
"""

from collections import deque
from collections.abc import Iterable, Mapping

from ..protocol.models import Priority, QueueEntry

ROUND_SIZE = 10


def draws_per_round(weights: Mapping[str, int]) -> dict[Priority, int]:
    """Per-bucket draw count for one round (at least 1 per bucket)."""
    total = sum(int(weights[p.value]) for p in Priority)
    out: dict[Priority, int] = {}
    for p in Priority:
        w = int(weights[p.value])
        # integer ceil(w / total * ROUND_SIZE)
        out[p] = max(1, -(-w * ROUND_SIZE // total))
    return out


class PrioritySelector:
    """Stateless ordering over a pool of dispatch candidates."""

    def order(
        self,
        entries: Iterable[QueueEntry],
        weights: Mapping[str, int],
        *,
        limit: int | None = None,
    ) -> list[QueueEntry]:
        buckets: dict[Priority, deque[QueueEntry]] = {}
        for p in Priority:
            buckets[p] = deque()
        for e in sorted(entries, key=lambda x: x.enqueued_at):
            buckets[e.priority].append(e)

        draws = draws_per_round(weights)
        budget = limit if limit is not None else sum(len(q) for q in buckets.values())
        picked: list[QueueEntry] = []
        while len(picked) < budget and any(buckets.values()):
            for p in Priority:
                q = buckets[p]
                n = draws[p]
                while n > 0 and q and len(picked) < budget:
                    picked.append(q.popleft())
                    n -= 1
                if len(picked) >= budget:
                    break
        return picked
