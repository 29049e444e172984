# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
DB-agnostic storage interfaces and bundled adapters.
"""

from .entries import EntryRepository
from .memory import InMemoryRecordStore
from .mongo import MongoRecordStore
from .records import RecordStore, RecordStoreError

__all__ = [
    "EntryRepository",
    "InMemoryRecordStore",
    "MongoRecordStore",
    "RecordStore",
    "RecordStoreError",
]
