# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Kafka-backed EventPublisher using aiokafka.

Events are JSON-serialized via queuekit.core.utils.dumps; the partition key is
the entry id when present so events of one entry stay ordered.
"""

import logging
from collections.abc import Mapping
from typing import Any

from aiokafka import AIOKafkaProducer

from ..core.log import get_logger, swallow
from ..core.utils import dumps


class KafkaEventPublisher:
    """
    Minimal producer wrapper:
      - idempotent producer,
      - optional topic prefix (e.g. "prod." -> "prod.queue.completed"),
      - explicit start()/stop() owned by the host.
    """

    def __init__(self, bootstrap: str, *, topic_prefix: str = "", producer: AIOKafkaProducer | None = None) -> None:
        self.bootstrap = bootstrap
        self.topic_prefix = topic_prefix
        self._producer: AIOKafkaProducer | None = producer
        self.log = get_logger("transport.kafka")

    async def start(self) -> None:
        if self._producer is None:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap,
                value_serializer=dumps,
                enable_idempotence=True,
            )
        await self._producer.start()

    async def stop(self) -> None:
        if self._producer:
            with swallow(
                logger=self.log,
                code="events.kafka.producer.stop",
                msg="producer stop failed",
                level=logging.WARNING,
                expected=True,
            ):
                await self._producer.stop()
        self._producer = None

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        if self._producer is None:
            raise RuntimeError("KafkaEventPublisher is not started; call start() first")
        entry_id = payload.get("entry_id")
        key = str(entry_id).encode("utf-8") if entry_id else None
        await self._producer.send_and_wait(self.topic_prefix + topic, dict(payload), key=key)
