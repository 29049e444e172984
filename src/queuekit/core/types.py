from __future__ import annotations

"""
Time aliases and the few constants shared across queuekit.
"""

from typing import Final

Millis = int  # a duration
TimestampMs = int  # epoch milliseconds, UTC

# URL-safe NanoID alphabet
DEFAULT_NANOID_ALPHABET: Final[str] = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz-"
DEFAULT_NANOID_SIZE: Final[int] = 21

# random suffix of `queue-{job_id}-{enqueued_ms}-{suffix}`
ENTRY_ID_SUFFIX_SIZE: Final[int] = 9

ENTRIES_COLLECTION: Final[str] = "queue_entries"
DEAD_LETTER_COLLECTION: Final[str] = "dead_letter_entries"


__all__ = [
    "Millis",
    "TimestampMs",
    "DEFAULT_NANOID_ALPHABET",
    "DEFAULT_NANOID_SIZE",
    "ENTRY_ID_SUFFIX_SIZE",
    "ENTRIES_COLLECTION",
    "DEAD_LETTER_COLLECTION",
]
