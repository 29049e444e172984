# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Record store interface (DB-agnostic).

The orchestrator persists two collections (queue entries and dead-letter
entries) through this narrow document contract. Implementations may use
Mongo, Postgres, files, etc.; selection of ready entries happens in memory
over `list()` results, so an indexed store can later push filters down
without touching orchestrator logic.
"""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "RecordStoreError",
    "RecordStore",
]


class RecordStoreError(RuntimeError):
    """Base error for record store operations."""


@runtime_checkable
class RecordStore(Protocol):
    """
    Async CRUD over JSON-like records keyed by their `id` field.

    Notes:
        - `create` MUST reject an id that already exists (RecordStoreError).
        - `update` replaces the whole record and MUST fail for unknown ids.
        - `list` returns records in insertion order, honoring `limit`, and MAY
          apply simple equality filters.
        - Returned records are copies; mutating them never changes the store.
        - `ensure_indexes` is called once by `QueueManager.start()`; stores
          without secondary indexes implement it as a no-op.
    """

    async def ensure_indexes(self, *collections: str) -> None: ...
    async def create(self, collection: str, record: Mapping[str, Any]) -> None: ...
    async def update(self, collection: str, record_id: str, record: Mapping[str, Any]) -> None: ...
    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None: ...
    async def list(
        self,
        collection: str,
        *,
        limit: int = 100,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]: ...
