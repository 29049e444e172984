from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from queuekit.storage.memory import InMemoryRecordStore


class RecordingStore(InMemoryRecordStore):
    """In-memory store remembering every persisted status per record id."""

    def __init__(self) -> None:
        super().__init__()
        self.history: dict[str, list[str]] = defaultdict(list)
        self.indexed: list[str] = []

    def _track(self, record: Mapping[str, Any]) -> None:
        status = record.get("status")
        if status is None:
            return
        seen = self.history[record["id"]]
        if not seen or seen[-1] != status:
            seen.append(status)

    async def ensure_indexes(self, *collections: str) -> None:
        self.indexed.extend(collections)

    async def create(self, collection: str, record: Mapping[str, Any]) -> None:
        await super().create(collection, record)
        self._track(record)

    async def update(self, collection: str, record_id: str, record: Mapping[str, Any]) -> None:
        await super().update(collection, record_id, record)
        self._track(record)


class BrokenListStore(InMemoryRecordStore):
    """Store whose `list` fails a given number of times."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def list(self, collection, *, limit=100, filters=None):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("store unavailable")
        return await super().list(collection, limit=limit, filters=filters)
