# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Event transport abstractions and implementations.
"""

from .events import EventEmitter, EventPublisher, NullPublisher
from .kafka_events import KafkaEventPublisher

__all__ = [
    "EventEmitter",
    "EventPublisher",
    "KafkaEventPublisher",
    "NullPublisher",
]
