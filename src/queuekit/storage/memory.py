# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Process-local RecordStore for tests, demos and single-process hosts.
"""

import copy
from collections.abc import Mapping
from typing import Any

from .records import RecordStoreError


class InMemoryRecordStore:
    """Dict-of-dicts store preserving insertion order; returns deep copies."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    def _coll(self, name: str) -> dict[str, dict[str, Any]]:
        return self._data.setdefault(name, {})

    async def ensure_indexes(self, *collections: str) -> None:
        # ids are dict keys; nothing to build
        return None

    async def create(self, collection: str, record: Mapping[str, Any]) -> None:
        rid = record.get("id")
        if not rid:
            raise RecordStoreError(f"{collection}: record without id")
        coll = self._coll(collection)
        if rid in coll:
            raise RecordStoreError(f"{collection}: duplicate id {rid}")
        coll[rid] = copy.deepcopy(dict(record))

    async def update(self, collection: str, record_id: str, record: Mapping[str, Any]) -> None:
        coll = self._coll(collection)
        if record_id not in coll:
            raise RecordStoreError(f"{collection}: unknown id {record_id}")
        coll[record_id] = copy.deepcopy(dict(record))

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        rec = self._coll(collection).get(record_id)
        return copy.deepcopy(rec) if rec is not None else None

    async def list(
        self,
        collection: str,
        *,
        limit: int = 100,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for rec in self._coll(collection).values():
            if len(out) >= limit:
                break
            if filters and any(rec.get(k) != v for k, v in filters.items()):
                continue
            out.append(copy.deepcopy(rec))
        return out

    def count(self, collection: str) -> int:
        return len(self._coll(collection))
