from __future__ import annotations

"""
Wall clock used for every persisted timestamp and every scheduling decision.

Components take a `Clock` so tests can swap in `ManualClock` and move time
forward explicitly instead of sleeping.
"""

import asyncio
import time
from datetime import UTC, datetime
from typing import Protocol

from .types import Millis, TimestampMs


class Clock(Protocol):
    def now_ms(self) -> TimestampMs: ...
    def now_dt(self) -> datetime: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    def now_ms(self) -> TimestampMs:
        return time.time_ns() // 1_000_000

    def now_dt(self) -> datetime:
        return datetime.now(UTC)

    async def sleep_ms(self, ms: Millis) -> None:
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock:
    """
    Test clock frozen at `start_ms` (a realistic epoch, so ids and dates look
    like production ones). `sleep_ms` jumps forward instantly and yields to
    the loop once, which lets background executions take their next step.
    """

    def __init__(self, start_ms: TimestampMs = 1_700_000_000_000) -> None:
        self._now = start_ms

    def now_ms(self) -> TimestampMs:
        return self._now

    def now_dt(self) -> datetime:
        return datetime.fromtimestamp(self._now / 1000.0, tz=UTC)

    async def sleep_ms(self, ms: Millis) -> None:
        self._now += max(0, int(ms))
        await asyncio.sleep(0)
