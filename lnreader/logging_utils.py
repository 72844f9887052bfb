"""NDJSON event sink for data-layer diagnostics, with payload redaction."""

from __future__ import annotations

import hashlib
import json
import os
import logging
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from concurrent_log_handler import ConcurrentRotatingFileHandler

from lnreader import __version__

SERVICE_NAME = "lnreader"

_TRUTHY = {"1", "true", "yes", "on"}

# Larger string values are replaced by a digest and a short preview.
MAX_FIELD_BYTES = int(os.getenv("LOG_MAX_FIELD_BYTES", "4096"))
PREVIEW_CHARS = 256

SENSITIVE_KEYS = frozenset({"password", "token", "api_key", "secret", "cookie"})
# Chapter bodies and summaries can be arbitrarily large.
NOISY_KEYS = frozenset({"summary", "text", "content", "html"})

_write_lock = threading.Lock()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _int_setting(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def events_enabled() -> bool:
    return _flag("LOG_EVENTS", "1")


def log_dir() -> Path:
    """Directory receiving ``events.ndjson`` (``LOG_DIR``, default ``data/telemetry``)."""

    return Path(os.getenv("LOG_DIR", os.path.join("data", "telemetry")))


def now_iso() -> str:
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def new_trace_id() -> str:
    return f"trc_{uuid.uuid4().hex[:10]}"


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8", "ignore")).hexdigest()


def _redact_string(value: str) -> Any:
    if len(value.encode("utf-8", "ignore")) <= MAX_FIELD_BYTES:
        return value
    return {"sha256": _digest(value), "preview": value[:PREVIEW_CHARS] + "...[truncated]"}


def _redact_entry(key: str, value: Any) -> Any:
    lowered = key.lower()
    if lowered in SENSITIVE_KEYS:
        return "[REDACTED]"
    if lowered in NOISY_KEYS:
        if isinstance(value, str):
            return {"sha256": _digest(value), "len": len(value)}
        return "[REDACTED_NOISY]"
    return redact(value)


def redact(value: Any) -> Any:
    """Return ``value`` with secrets masked and bulky text reduced to digests."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, dict):
        return {key: _redact_entry(str(key), item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [redact(item) for item in value]
    return str(value)


def event_base(level: str = "INFO", event: str = "log") -> Dict[str, Any]:
    return {
        "level": level.upper(),
        "event": event,
        "service": SERVICE_NAME,
        "version": __version__,
    }


def _feature_path(root: Path, event_name: str) -> Path:
    # "db.queue.retry" is mirrored under <root>/db/
    feature = event_name.split(".", 1)[0] if event_name else "app"
    if _flag("LOG_ROTATE_DAILY", "1"):
        return root / feature / f"{datetime.now(timezone.utc).date().isoformat()}.ndjson"
    return root / feature / "events.ndjson"


def _append(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with _write_lock:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


def _append_rotating(path: Path, line: str) -> None:
    # Daily files rotate by name, so the size cap only applies to the fixed file.
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = ConcurrentRotatingFileHandler(
        str(path),
        maxBytes=0 if _flag("LOG_ROTATE_DAILY", "1") else _int_setting("LOG_MAX_BYTES", 10485760),
        backupCount=_int_setting("LOG_BACKUP_COUNT", 7),
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    record = logging.LogRecord(
        name=path.parent.name,
        level=logging.INFO,
        pathname=__file__,
        lineno=0,
        msg=line,
        args=(),
        exc_info=None,
    )
    try:
        handler.emit(record)
    finally:
        handler.close()


def write_event(event: Dict[str, Any]) -> None:
    """Append ``event`` to the shared log and echo a one-line summary to stderr."""

    if not events_enabled():
        return
    event.setdefault("ts", now_iso())
    if isinstance(event.get("duration_ms"), float):
        event["duration_ms"] = int(event["duration_ms"])
    if "meta" in event:
        event["meta"] = redact(event["meta"])

    line = json.dumps(event, ensure_ascii=False, default=str)
    root = log_dir()
    try:
        _append(root / "events.ndjson", line)
        if _flag("LOG_SPLIT_BY_FEATURE", "1"):
            _append_rotating(_feature_path(root, str(event.get("event") or "")), line)
    except OSError as exc:
        sys.stderr.write(f"[lnreader] cannot write event log under {root}: {exc}\n")
    sys.stderr.write(f"[{event['level']}] {event['event']} {event.get('msg', '')}\n")


__all__ = [
    "event_base",
    "events_enabled",
    "log_dir",
    "new_trace_id",
    "now_iso",
    "redact",
    "write_event",
]
