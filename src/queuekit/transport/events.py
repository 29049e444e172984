# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Event sink abstraction.

- `EventPublisher` protocol: fire-and-forget `publish(topic, payload)`.
- `NullPublisher`: drops everything (default when the host wires no sink).
- `EventEmitter`: builds `QueueEvent` payloads and publishes them best-effort;
  a failing sink is logged and never affects queue state.
"""

import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from ..core.log import get_logger, swallow
from ..core.time import Clock
from ..core.utils import nanoid
from ..protocol.models import QueueEntry, QueueEvent

TOPIC_PREFIX = "queue."


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None: ...


class NullPublisher:
    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        return None


class EventEmitter:
    """Queue-side facade over an EventPublisher."""

    def __init__(self, publisher: EventPublisher | None, *, clock: Clock, logger: logging.LoggerAdapter | None = None):
        self.publisher: EventPublisher = publisher or NullPublisher()
        self.clock = clock
        self.log = logger or get_logger("events")

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        """Raw best-effort publish (also exposed to jobs through JobContext)."""
        with swallow(
            logger=self.log,
            code="events.publish",
            msg="event publish failed",
            level=logging.WARNING,
            extra={"topic": topic},
        ):
            await self.publisher.publish(topic, payload)

    async def emit(self, event_type: str, entry: QueueEntry | None = None, **data: Any) -> None:
        ev = QueueEvent(
            id=nanoid(),
            event_type=event_type,
            entry_id=entry.id if entry else None,
            job_id=entry.job_id if entry else None,
            ts_ms=self.clock.now_ms(),
            data=data,
        )
        await self.publish(TOPIC_PREFIX + event_type, ev.model_dump(mode="json"))
