# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Typed access to queue and dead-letter records on top of a RecordStore.
"""

from ..core.types import DEAD_LETTER_COLLECTION, ENTRIES_COLLECTION
from ..protocol.models import DeadLetterEntry, EntryStatus, QueueEntry
from .records import RecordStore


class EntryRepository:
    """Converts between pydantic records and store documents; no caching."""

    def __init__(
        self,
        store: RecordStore,
        *,
        entries: str = ENTRIES_COLLECTION,
        dead_letters: str = DEAD_LETTER_COLLECTION,
    ) -> None:
        self.store = store
        self.entries = entries
        self.dead_letters = dead_letters

    async def ensure_indexes(self) -> None:
        await self.store.ensure_indexes(self.entries, self.dead_letters)

    # ---- queue entries

    async def create(self, entry: QueueEntry) -> None:
        await self.store.create(self.entries, entry.to_record())

    async def save(self, entry: QueueEntry) -> None:
        await self.store.update(self.entries, entry.id, entry.to_record())

    async def get(self, entry_id: str) -> QueueEntry | None:
        rec = await self.store.get(self.entries, entry_id)
        return QueueEntry.from_record(rec) if rec is not None else None

    async def list(self, *, limit: int, status: EntryStatus | None = None) -> list[QueueEntry]:
        filters = {"status": status.value} if status is not None else None
        recs = await self.store.list(self.entries, limit=limit, filters=filters)
        return [QueueEntry.from_record(r) for r in recs]

    # ---- dead letters

    async def create_dead_letter(self, dl: DeadLetterEntry) -> None:
        await self.store.create(self.dead_letters, dl.to_record())

    async def save_dead_letter(self, dl: DeadLetterEntry) -> None:
        await self.store.update(self.dead_letters, dl.id, dl.to_record())

    async def get_dead_letter(self, dl_id: str) -> DeadLetterEntry | None:
        rec = await self.store.get(self.dead_letters, dl_id)
        return DeadLetterEntry.from_record(rec) if rec is not None else None

    async def list_dead_letters(self, *, limit: int) -> list[DeadLetterEntry]:
        recs = await self.store.list(self.dead_letters, limit=limit)
        return [DeadLetterEntry.from_record(r) for r in recs]
