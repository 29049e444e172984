# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
RecordStore over a Motor-style async Mongo database.

`db` is injected by the host (e.g. `AsyncIOMotorClient(...)["queue"]`) and is
used through attribute access per collection, like the coordinator's `db`.
Collection names with dashes are mapped to underscores.
"""

from collections.abc import Mapping
from typing import Any

from .records import RecordStoreError


class MongoRecordStore:
    """Stores each record as a document with `id` as the business key."""

    def __init__(self, db: Any) -> None:
        self.db = db

    def _coll(self, name: str) -> Any:
        return getattr(self.db, name.replace("-", "_"))

    @staticmethod
    def _strip(doc: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if doc is None:
            return None
        out = dict(doc)
        out.pop("_id", None)
        return out

    async def ensure_indexes(self, *collections: str) -> None:
        for name in collections:
            await self._coll(name).create_index([("id", 1)], unique=True, name=f"uniq_{name}_id")

    async def create(self, collection: str, record: Mapping[str, Any]) -> None:
        if not record.get("id"):
            raise RecordStoreError(f"{collection}: record without id")
        await self._coll(collection).insert_one(dict(record))

    async def update(self, collection: str, record_id: str, record: Mapping[str, Any]) -> None:
        res = await self._coll(collection).replace_one({"id": record_id}, dict(record))
        if getattr(res, "matched_count", 1) == 0:
            raise RecordStoreError(f"{collection}: unknown id {record_id}")

    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        return self._strip(await self._coll(collection).find_one({"id": record_id}))

    async def list(
        self,
        collection: str,
        *,
        limit: int = 100,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        cur = self._coll(collection).find(dict(filters or {})).limit(limit)
        out: list[dict[str, Any]] = []
        async for doc in cur:
            stripped = self._strip(doc)
            if stripped is not None:
                out.append(stripped)
        return out
