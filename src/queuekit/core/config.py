from __future__ import annotations

"""
queuekit.core.config
====================

Process-wide queue configuration.
- Plain dataclass, optional JSON file loading, small env overrides.
- Validated on construction and on every runtime update.
- Durations are integer milliseconds.

If a config file path is not provided or not found, defaults are used.
"""

import copy
import dataclasses
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..api.errors import ConfigError
from ..protocol.models import Priority, QueueMode, RetryBackoff


def _default_weights() -> dict[str, int]:
    return {"critical": 50, "high": 30, "normal": 15, "low": 5}


def _parse_limits_env(name: str) -> dict[str, int]:
    """Parse `key=limit,key2=limit2` into a dict."""
    val = os.getenv(name)
    if not val:
        return {}
    out: dict[str, int] = {}
    for part in val.split(","):
        key, sep, limit = part.strip().partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"{name}: expected key=limit pairs, got {part!r}")
        out[key.strip()] = int(limit)
    return out


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path or not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot read queue config {path}: {e}") from e


# ---------------------------------------------------------------------------


@dataclass
class QueueConfig:
    """Orchestrator configuration; mutable at runtime through QueueManager.update_config()."""

    # ---- Concurrency
    max_concurrency: int = 5
    concurrency_limits: dict[str, int] = field(default_factory=dict)

    # ---- Priority
    priority_weights: dict[str, int] = field(default_factory=_default_weights)

    # ---- Retry defaults
    default_max_attempts: int = 3
    default_retry_delay_ms: int = 5000
    default_retry_backoff: RetryBackoff = RetryBackoff.exponential
    default_timeout_ms: int = 300_000

    # ---- Dead letter
    dead_letter_enabled: bool = True
    dead_letter_threshold: int = 5

    # ---- Mode
    mode: QueueMode = QueueMode.active
    paused_at: int | None = None
    draining_started_at: int | None = None

    # ---- Polling / scans
    poll_interval_ms: int = 1000
    scan_limit: int = 1000
    stats_scan_limit: int = 10_000

    # ---- Retention (consumed by host-side cleanup)
    retention_days: int = 7

    created_at: int | None = None
    updated_at: int | None = None

    # ---- Methods ------------------------------------------------------------

    def __post_init__(self) -> None:
        try:
            self.default_retry_backoff = RetryBackoff(self.default_retry_backoff)
            self.mode = QueueMode(self.mode)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        self.validate()

    def validate(self) -> None:
        if self.max_concurrency < 1:
            raise ConfigError("max_concurrency must be >= 1")
        for key, limit in self.concurrency_limits.items():
            if not key or int(limit) < 1:
                raise ConfigError(f"concurrency limit for {key!r} must be >= 1")
        missing = {p.value for p in Priority} - set(self.priority_weights)
        if missing:
            raise ConfigError(f"priority_weights missing keys: {sorted(missing)}")
        if any(int(w) < 0 for w in self.priority_weights.values()):
            raise ConfigError("priority_weights must be non-negative")
        if sum(int(self.priority_weights[p.value]) for p in Priority) <= 0:
            raise ConfigError("priority_weights must have a positive sum")
        if self.default_max_attempts < 1:
            raise ConfigError("default_max_attempts must be >= 1")
        if self.default_retry_delay_ms < 0:
            raise ConfigError("default_retry_delay_ms must be >= 0")
        if self.default_timeout_ms <= 0:
            raise ConfigError("default_timeout_ms must be > 0")
        if self.dead_letter_threshold < 1:
            raise ConfigError("dead_letter_threshold must be >= 1")
        if self.poll_interval_ms <= 0:
            raise ConfigError("poll_interval_ms must be > 0")
        if self.scan_limit < 1 or self.stats_scan_limit < 1:
            raise ConfigError("scan limits must be >= 1")

    def weight(self, priority: Priority) -> int:
        return int(self.priority_weights[priority.value])

    def limit_for(self, key: str) -> int | None:
        """Configured per-key concurrency limit; None means unbounded."""
        lim = self.concurrency_limits.get(key)
        return int(lim) if lim is not None else None

    def updated(self, changes: dict[str, Any]) -> QueueConfig:
        """Return a validated copy with `changes` applied (unknown keys rejected)."""
        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {unknown}")
        return dataclasses.replace(copy.deepcopy(self), **copy.deepcopy(changes))

    def to_dict(self) -> dict[str, Any]:
        out = dataclasses.asdict(self)
        out["mode"] = self.mode.value
        out["default_retry_backoff"] = self.default_retry_backoff.value
        return out

    # Loader
    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> QueueConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - QUEUEKIT_MAX_CONCURRENCY
          - QUEUEKIT_POLL_INTERVAL_MS
          - QUEUEKIT_DEAD_LETTER_ENABLED (1/0, true/false)
          - QUEUEKIT_CONCURRENCY_LIMITS  (key=limit,key2=limit2)
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))

        if os.getenv("QUEUEKIT_MAX_CONCURRENCY"):
            data["max_concurrency"] = int(os.environ["QUEUEKIT_MAX_CONCURRENCY"])
        if os.getenv("QUEUEKIT_POLL_INTERVAL_MS"):
            data["poll_interval_ms"] = int(os.environ["QUEUEKIT_POLL_INTERVAL_MS"])
        if os.getenv("QUEUEKIT_DEAD_LETTER_ENABLED"):
            data["dead_letter_enabled"] = os.environ["QUEUEKIT_DEAD_LETTER_ENABLED"].lower() in ("1", "true", "yes", "on")
        limits = _parse_limits_env("QUEUEKIT_CONCURRENCY_LIMITS")
        if limits:
            data["concurrency_limits"] = {**data.get("concurrency_limits", {}), **limits}

        if overrides:
            data.update(overrides)

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {unknown}")
        return cls(**data)
