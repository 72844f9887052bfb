"""``log_event``: build an event record and hand it to the NDJSON sink."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from lnreader.logging_utils import event_base, write_event

# Scalar fields promoted out of ``meta`` so queue and file events can be
# filtered without parsing nested payloads.
PROMOTED = frozenset(
    {
        "task_id",
        "attempt",
        "max_retries",
        "duration_ms",
        "rows",
        "error",
        "error_msg",
        "error_code",
    }
)

RENAMED = {"task": "task_id", "trace": "trace_id"}

_SCALARS = (str, int, float, bool, type(None))


def _split(fields: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    top: dict[str, Any] = {}
    rest: dict[str, Any] = {}
    for name, value in fields.items():
        name = RENAMED.get(name, name)
        if name in PROMOTED and isinstance(value, _SCALARS):
            top[name] = value
        else:
            rest[name] = value
    return top, rest


def log_event(
    level: str,
    event: str,
    *,
    trace: str | None = None,
    msg: str | None = None,
    meta: Mapping[str, Any] | None = None,
    **fields: Any,
) -> None:
    """Record ``event`` at ``level``.

    Known scalar ``fields`` (attempt counters, error details, durations) sit
    next to ``event``; anything else is folded into ``meta``.
    """

    record = event_base(level, event)
    if trace:
        record["trace_id"] = trace
    if msg is not None:
        record["msg"] = msg

    top, extra = _split(fields)
    record.update(top)

    details = {str(key): value for key, value in (meta or {}).items()}
    details.update(extra)
    if details:
        record["meta"] = details

    write_event(record)


__all__ = ["log_event"]
