# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Low-cardinality Prometheus metrics for the queue runtime.

Labels are kept conservative (priority, result, reason) and never carry ids.
Each QueueMetrics owns its CollectorRegistry unless the host passes one
(e.g. `prometheus_client.REGISTRY` to expose through the default endpoint).
"""

from dataclasses import dataclass
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

_LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 5000, 30_000, 300_000)


@dataclass
class QueueMetrics:
    registry: Any
    enqueued_total: Any
    dispatched_total: Any
    finished_total: Any
    retries_total: Any
    dead_letter_total: Any
    deferred_total: Any
    active: Any
    wait_ms: Any
    execution_ms: Any

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> QueueMetrics:
        reg = registry if registry is not None else CollectorRegistry()
        return cls(
            registry=reg,
            enqueued_total=Counter("queuekit_enqueued_total", "Entries enqueued", ["priority"], registry=reg),
            dispatched_total=Counter("queuekit_dispatched_total", "Entries dispatched", ["priority"], registry=reg),
            finished_total=Counter("queuekit_finished_total", "Terminal outcomes", ["result"], registry=reg),
            retries_total=Counter("queuekit_retries_total", "Retries scheduled", registry=reg),
            dead_letter_total=Counter("queuekit_dead_letter_total", "Entries quarantined", registry=reg),
            deferred_total=Counter("queuekit_deferred_total", "Dispatch deferrals", ["reason"], registry=reg),
            active=Gauge("queuekit_active", "Executions in flight", registry=reg),
            wait_ms=Histogram(
                "queuekit_wait_ms",
                "Latency from enqueue to execution start (ms)",
                buckets=_LATENCY_BUCKETS_MS,
                registry=reg,
            ),
            execution_ms=Histogram(
                "queuekit_execution_ms",
                "Execution duration (ms)",
                ["result"],
                buckets=_LATENCY_BUCKETS_MS,
                registry=reg,
            ),
        )
