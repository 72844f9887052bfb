"""Timing spans around migrations, bootstrap and queued writes."""

from __future__ import annotations

import contextvars
import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from lnreader.json_logger import log_event
from lnreader.logging_utils import new_trace_id, redact

LOGGER = logging.getLogger(__name__)

_TRACE_ENABLED = True
_SERVICE_NAME = "lnreader.db"
_current_trace: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "lnreader_trace", default=None
)


def configure_tracing(*, enabled: bool, service_name: str | None = None) -> None:
    global _TRACE_ENABLED, _SERVICE_NAME

    _TRACE_ENABLED = bool(enabled)
    if service_name:
        _SERVICE_NAME = service_name
    if not _TRACE_ENABLED:
        LOGGER.info("Span events disabled for %s", _SERVICE_NAME)


@contextmanager
def bind_trace(trace_id: str | None = None) -> Iterator[str]:
    """Tag every span opened inside the block with one trace id."""

    token = _current_trace.set(trace_id or new_trace_id())
    try:
        yield _current_trace.get()
    finally:
        _current_trace.reset(token)


class Span:
    """Attributes and outcome of one timed operation."""

    def __init__(self, name: str, attributes: Mapping[str, Any] | None = None) -> None:
        self.name = name
        self.attributes: dict[str, Any] = dict(attributes or {})
        self.error: dict[str, str] | None = None
        self._started = time.perf_counter()

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[str(key)] = value

    def record_exception(self, exc: BaseException) -> None:
        self.error = {"type": type(exc).__name__, "message": str(exc)}

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)

    def emit(self, phase: str, level: str, *, timed: bool = True) -> None:
        if not _TRACE_ENABLED:
            return
        meta: dict[str, Any] = {"service": _SERVICE_NAME}
        if self.attributes:
            meta["attributes"] = redact(self.attributes)
        if self.error:
            meta["error"] = redact(self.error)
        extra: dict[str, Any] = {"duration_ms": self.elapsed_ms()} if timed else {}
        log_event(
            level,
            f"{self.name}.{phase}",
            trace=_current_trace.get(),
            msg=self.name,
            meta=meta,
            **extra,
        )


@contextmanager
def start_span(name: str, *, attributes: Mapping[str, Any] | None = None) -> Iterator[Span]:
    """Emit ``<name>.start`` then ``<name>.end`` (or ``<name>.error``) events."""

    span = Span(name, attributes)
    span.emit("start", "DEBUG", timed=False)
    try:
        yield span
    except Exception as exc:
        span.record_exception(exc)
        span.emit("error", "ERROR")
        raise
    span.emit("end", "INFO")


__all__ = ["Span", "bind_trace", "configure_tracing", "start_span"]
