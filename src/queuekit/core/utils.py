from __future__ import annotations

"""
queuekit.core.utils
===================

Low-level helpers with **no external dependencies**:
- Compact JSON (de)serialization helpers.
- NanoID generator (URL-safe, crypto-strong).
- Error text/stack extraction for persisted failure records.
"""

import json
import traceback
from secrets import choice
from typing import Any

from .types import DEFAULT_NANOID_ALPHABET, DEFAULT_NANOID_SIZE


def dumps(x: Any) -> bytes:
    """
    Compact JSON dump to UTF-8 bytes (ensure_ascii=False, no spaces).
    Used as the Kafka value serializer for queue events.
    """
    return json.dumps(x, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def loads(b: bytes) -> Any:
    """Inverse of dumps(): parse UTF-8 JSON bytes back to Python objects."""
    return json.loads(b.decode("utf-8"))


def nanoid(size: int = DEFAULT_NANOID_SIZE, alphabet: str = DEFAULT_NANOID_ALPHABET) -> str:
    """
    Generate a URL-safe NanoID (cryptographically strong).

    Args:
        size: number of characters.
        alphabet: allowed characters (default URL-safe).

    Returns:
        Random string of given size.
    """
    if size <= 0:
        raise ValueError("size must be positive")
    if not alphabet:
        raise ValueError("alphabet must be a non-empty string")
    return "".join(choice(alphabet) for _ in range(size))


def error_message(exc: BaseException) -> str:
    """Human-readable message for an exception; falls back to the type name."""
    msg = str(exc)
    return msg if msg else type(exc).__name__


def error_stack(exc: BaseException) -> str:
    """Formatted traceback of `exc` (empty frames are fine for synthetic errors)."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
