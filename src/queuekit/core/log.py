from __future__ import annotations

"""
queuekit.core.log
=================

Structured logging for the queue runtime, built on stdlib `logging`:
- Per-execution context (entry_id, job_id, attempt) carried via contextvars.
- JSON formatter for containers; compact human formatter for local runs.
- Logger adapter accepting arbitrary keyword fields (`log.info("msg", entry_id=...)`).
- `warn_once` for messages that would otherwise repeat on every tick.
- `swallow` for best-effort side effects (event publishing, metric updates).

The library is silent by default (NullHandler); hosts opt in with
`configure_from_env()` or `enable_stdout_logging()`.
"""

import contextvars
import json
import logging
import os
import sys
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

__all__ = [
    "bind_context",
    "configure_from_env",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "swallow",
    "warn_once",
]

_ROOT: Final[str] = "queuekit"
_STREAM_HANDLER_NAMES: Final[tuple[str, str]] = ("_queuekit_stdout", "_queuekit_stderr")
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})

# Keys surfaced by the human formatter when present in context.
_HUMAN_CTX_KEYS: Final[tuple[str, ...]] = ("entry_id", "job_id", "attempt", "mode")

# ---------- Context ----------

_ctx_var: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar("queuekit_log_ctx", default=None)


def _current_ctx() -> dict[str, Any]:
    ctx = _ctx_var.get()
    return dict(ctx) if ctx else {}


def bind_context(**fields: Any) -> None:
    """Merge non-None fields into the structured context of the current task."""
    ctx = _current_ctx()
    ctx.update({k: v for k, v in fields.items() if v is not None})
    _ctx_var.set(ctx)


@contextmanager
def log_context(**fields: Any):
    """Temporarily extend the structured context; restores the previous one on exit."""
    token = _ctx_var.set({**_current_ctx(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _ctx_var.reset(token)


# ---------- Formatters ----------

# LogRecord attributes that never leak into the JSON body.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


def _iso_utc_ms(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, context, extras, error."""

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _iso_utc_ms(record.created),
            "level": record.levelname,
            "logger": record.name,
        }
        msg = record.getMessage()
        if msg:
            out["message"] = msg
        out.update(_ctx_var.get() or {})
        for k, v in record.__dict__.items():
            if k not in _RECORD_ATTRS and k not in out:
                out[k] = v

        if record.exc_info:
            etype, evalue = record.exc_info[0], record.exc_info[1]
            err: dict[str, Any] = {
                "type": etype.__name__ if etype else "Exception",
                "message": str(evalue) if evalue else None,
            }
            if self.include_stack:
                err["stack"] = self.formatException(record.exc_info)
            out["error"] = err

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """Compact single-line formatter for local debugging."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s.%03d"

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record)} {record.levelname:<5} {record.name}: {record.getMessage()}"
        ctx = _ctx_var.get() or {}
        shown = [f"{k}={ctx[k]}" for k in _HUMAN_CTX_KEYS if ctx.get(k) is not None]
        if shown:
            line += "  [" + ", ".join(shown) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ---------- Filters / adapter ----------


class ContextFilter(logging.Filter):
    """Copy context fields onto the record so handlers can route on them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for k, v in (_ctx_var.get() or {}).items():
            record.__dict__.setdefault(k, v)
        return True


class _LevelBand(logging.Filter):
    def __init__(self, *, lo: int = logging.NOTSET, hi: int = logging.CRITICAL) -> None:
        super().__init__()
        self.lo = lo
        self.hi = hi

    def filter(self, record: logging.LogRecord) -> bool:
        return self.lo <= record.levelno <= self.hi


class _FieldsAdapter(logging.LoggerAdapter):
    """
    Adapter moving unknown keyword arguments into `extra`, so call sites can write
    `log.info("entry.started", entry_id=..., attempt=...)`.
    """

    _passthrough: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra")
        if not isinstance(extra, dict):
            extra = {}
        for k in [k for k in kwargs if k not in self._passthrough]:
            value = kwargs.pop(k)
            key = f"field_{k}" if k in _RECORD_ATTRS else k
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


def _as_adapter(logger: logging.Logger | logging.LoggerAdapter) -> logging.LoggerAdapter:
    return logger if isinstance(logger, logging.LoggerAdapter) else _FieldsAdapter(logger, {})


_warned: set[str] = set()
_warned_lock = threading.Lock()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log `msg` only the first time `code` is seen in this process."""
    with _warned_lock:
        if code in _warned:
            return
        _warned.add(code)
    _as_adapter(logger).log(level, msg, code=code, **extra)


# ---------- Configuration ----------

_bootstrapped = False


def _bootstrap() -> None:
    global _bootstrapped
    if _bootstrapped:
        return
    root = logging.getLogger(_ROOT)
    root.setLevel(logging.DEBUG)
    if not any(isinstance(h, logging.NullHandler) for h in root.handlers):
        root.addHandler(logging.NullHandler())
    if not any(isinstance(f, ContextFilter) for f in root.filters):
        root.addFilter(ContextFilter())
    _bootstrapped = True


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Namespaced logger adapter under `queuekit` accepting keyword fields."""
    _bootstrap()
    base = logging.getLogger(_ROOT)
    return _FieldsAdapter(base.getChild(name) if name else base, {})


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid level name: {level!r}")
    return resolved


def _set_level(level: int | str) -> None:
    """Change the library logger level at runtime (affects children)."""
    logging.getLogger(_ROOT).setLevel(_resolve_level(level))


def enable_stdout_logging(
    *,
    level: int | str = logging.DEBUG,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Attach stream handlers (replacing previously attached ones).
    `pretty=True` selects HumanFormatter; otherwise JSON or the plain stdlib format.
    """
    lvl = _resolve_level(level)
    _bootstrap()
    _disable_stdout_logging()

    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    out_name, err_name = _STREAM_HANDLER_NAMES
    targets: list[tuple[str, Any, logging.Filter | None, int]] = []
    if route_errors_to_stderr:
        targets.append((out_name, sys.stdout, _LevelBand(hi=logging.WARNING), lvl))
        targets.append((err_name, sys.stderr, _LevelBand(lo=logging.ERROR), max(lvl, logging.ERROR)))
    else:
        targets.append((out_name, sys.stdout, None, lvl))

    root = logging.getLogger(_ROOT)
    for name, stream, band, handler_level in targets:
        h = logging.StreamHandler(stream)
        h.set_name(name)
        h.setLevel(handler_level)
        if band is not None:
            h.addFilter(band)
        h.setFormatter(fmt)
        root.addHandler(h)


def _disable_stdout_logging() -> None:
    """Detach stream handlers installed by enable_stdout_logging()."""
    root = logging.getLogger(_ROOT)
    for h in list(root.handlers):
        if h.get_name() in _STREAM_HANDLER_NAMES:
            root.removeHandler(h)


def configure_from_env() -> None:
    """
    Call once from entrypoints/tests. Honors:
      - QUEUEKIT_LOG_STDOUT=1  -> attach a stdout handler
      - QUEUEKIT_LOG_LEVEL=INFO|DEBUG|...
      - QUEUEKIT_LOG_PRETTY=1  -> human formatter instead of JSON
      - QUEUEKIT_LOG_STACK=1   -> include stack traces in JSON logs
    """
    level = os.getenv("QUEUEKIT_LOG_LEVEL", "INFO")
    _bootstrap()
    _set_level(level)
    if os.getenv("QUEUEKIT_LOG_STDOUT", "").lower() in _TRUTHY:
        pretty = os.getenv("QUEUEKIT_LOG_PRETTY", "").lower() in _TRUTHY
        enable_stdout_logging(
            level=level,
            json_output=not pretty,
            pretty=pretty,
            include_stack=os.getenv("QUEUEKIT_LOG_STACK", "").lower() in _TRUTHY,
        )
    else:
        _disable_stdout_logging()


# ---------- Exception swallowing with trace ----------


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
    code: str,
    msg: str | None = None,
    reraise: bool = False,
    extra: Mapping[str, Any] | None = None,
    expected: bool = True,
):
    """
    Replace `try/except: pass` with a structured log line.

        with swallow(logger=log, code="events.publish", msg="publish failed", level=logging.WARNING):
            await sink.publish(topic, payload)
    """
    adapter = _as_adapter(logger or get_logger("swallow"))
    try:
        yield
    except Exception as e:
        payload: dict[str, Any] = {"code": code, "expected": expected, **dict(extra or {})}
        adapter.log(level, msg or "Suppressed exception", exc_info=e, **payload)
        if reraise:
            raise


_bootstrap()
