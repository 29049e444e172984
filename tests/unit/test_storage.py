from __future__ import annotations

import pytest

from queuekit.protocol.models import EntryStatus, QueueEntry
from queuekit.storage import EntryRepository, InMemoryRecordStore, MongoRecordStore, RecordStoreError

pytestmark = [pytest.mark.unit]


def _entry(eid: str, status: str = "pending") -> QueueEntry:
    return QueueEntry(
        id=eid,
        job_id="j",
        job_name="J",
        status=status,
        enqueued_at=1,
        max_attempts=1,
        retry_delay_ms=0,
        timeout_ms=10,
        created_at=1,
        updated_at=1,
    )


@pytest.mark.asyncio
async def test_inmemory_crud_and_copies():
    s = InMemoryRecordStore()
    await s.create("c", {"id": "a", "v": [1]})
    with pytest.raises(RecordStoreError):
        await s.create("c", {"id": "a"})
    with pytest.raises(RecordStoreError):
        await s.update("c", "zzz", {"id": "zzz"})

    rec = await s.get("c", "a")
    rec["v"].append(2)
    assert (await s.get("c", "a"))["v"] == [1]
    assert await s.get("c", "missing") is None
    assert s.count("c") == 1


@pytest.mark.asyncio
async def test_inmemory_list_limit_and_filters():
    s = InMemoryRecordStore()
    for i in range(5):
        await s.create("c", {"id": str(i), "even": i % 2 == 0})
    assert [r["id"] for r in await s.list("c", limit=3)] == ["0", "1", "2"]
    assert [r["id"] for r in await s.list("c", limit=10, filters={"even": True})] == ["0", "2", "4"]


@pytest.mark.asyncio
async def test_repository_typed_access():
    repo = EntryRepository(InMemoryRecordStore())
    e = _entry("e1")
    await repo.create(e)
    await repo.create(_entry("e2", status="ready"))

    e.status = EntryStatus.ready
    await repo.save(e)
    got = await repo.get("e1")
    assert got is not None and got.status == EntryStatus.ready
    assert [x.id for x in await repo.list(limit=10, status=EntryStatus.ready)] == ["e1", "e2"]
    assert await repo.get_dead_letter("nope") is None


# ---- Mongo adapter against a tiny Motor-shaped fake


class _Res:
    def __init__(self, matched: int) -> None:
        self.matched_count = matched


class _Cursor:
    def __init__(self, docs):
        self._docs = docs

    def limit(self, n):
        return _Cursor(self._docs[:n])

    def __aiter__(self):
        self._it = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._it)
        except StopIteration:
            raise StopAsyncIteration from None


class _Coll:
    def __init__(self) -> None:
        self.docs: list[dict] = []
        self.indexes: list[tuple] = []

    async def create_index(self, keys, *, unique=False, name=None):
        self.indexes.append((tuple(keys), unique, name))
        return name

    async def insert_one(self, doc):
        self.docs.append({"_id": len(self.docs), **doc})

    async def replace_one(self, flt, doc):
        for i, d in enumerate(self.docs):
            if d["id"] == flt["id"]:
                self.docs[i] = {"_id": d["_id"], **doc}
                return _Res(1)
        return _Res(0)

    async def find_one(self, flt):
        return next((dict(d) for d in self.docs if d["id"] == flt["id"]), None)

    def find(self, flt):
        return _Cursor([dict(d) for d in self.docs if all(d.get(k) == v for k, v in flt.items())])


class _DB:
    def __init__(self) -> None:
        self.queue_entries = _Coll()
        self.dead_letter_entries = _Coll()


@pytest.mark.asyncio
async def test_mongo_store_strips_object_ids():
    db = _DB()
    s = MongoRecordStore(db)
    await s.create("queue-entries", {"id": "a", "status": "pending"})
    await s.update("queue-entries", "a", {"id": "a", "status": "ready"})
    assert await s.get("queue-entries", "a") == {"id": "a", "status": "ready"}
    assert await s.list("queue-entries", limit=5, filters={"status": "ready"}) == [{"id": "a", "status": "ready"}]
    with pytest.raises(RecordStoreError):
        await s.update("queue-entries", "b", {"id": "b"})


@pytest.mark.asyncio
async def test_mongo_indexes_are_unique_on_business_id():
    db = _DB()
    repo = EntryRepository(MongoRecordStore(db))
    await repo.ensure_indexes()
    assert db.queue_entries.indexes == [((("id", 1),), True, "uniq_queue_entries_id")]
    assert db.dead_letter_entries.indexes == [((("id", 1),), True, "uniq_dead_letter_entries_id")]
