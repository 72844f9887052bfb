"""Single-writer FIFO task queue serialising database mutations."""

from __future__ import annotations

import asyncio
import contextvars
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Mapping, TypeVar

from lnreader.json_logger import log_event

from .types import QueueOptions

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TaskRunner = Callable[[], Awaitable[T]]


@dataclass(slots=True)
class DbTask(Generic[T]):
    id: str
    run: TaskRunner[T]
    future: asyncio.Future[T]
    # contextvars of the enqueuing caller
    context: contextvars.Context
    attempt: int = 0
    # diagnostics only
    errors: list[str] = field(default_factory=list)


def error_code(error: BaseException) -> int | None:
    """Return the primary SQLite result code carried by ``error``, if any."""

    code = getattr(error, "sqlite_errorcode", None)
    if isinstance(code, int):
        return code & 0xFF
    return None


async def _invoke(run: TaskRunner[T]) -> T:
    return await run()


class DbTaskQueue:
    """FIFO runner that executes at most one task at a time.

    A task whose ``run`` fails with a transient lock error is re-inserted at
    the head of the queue and retried after a flat backoff, so tasks queued
    behind it wait rather than overtake it. Any other failure rejects the
    caller's future and draining carries on with the next task.
    """

    def __init__(
        self,
        options: QueueOptions | Mapping[str, Any] | None = None,
        *,
        debug: bool = False,
    ) -> None:
        if isinstance(options, QueueOptions):
            self.options = options
        else:
            self.options = QueueOptions.model_validate(dict(options or {}))
        self.debug = debug
        self._queue: deque[DbTask[Any]] = deque()
        self._active = False
        self._drainer: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._active

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, task_id: str, run: TaskRunner[T]) -> asyncio.Future[T]:
        """Queue ``run`` and return a future settled with its final outcome."""

        if self.debug and len(self._queue) >= 1:
            LOGGER.warning("[db-queue] One or more tasks are already queued")
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._queue.append(
            DbTask(id=task_id, run=run, future=future, context=contextvars.copy_context())
        )
        if not self._active:
            self._active = True
            self._drainer = loop.create_task(self._drain(), name="db-queue-drain")
        return future

    async def _drain(self) -> None:
        try:
            while self._queue:
                task = self._queue.popleft()
                try:
                    result = await asyncio.create_task(_invoke(task.run), context=task.context)
                except Exception as exc:
                    if self.should_retry(exc, task.attempt):
                        task.attempt += 1
                        task.errors.append(str(exc))
                        self._queue.appendleft(task)
                        self._log_retry(task, exc)
                        await asyncio.sleep(self.options.retry.backoff_ms / 1000.0)
                        continue
                    self._log_rejection(task, exc)
                    if not task.future.done():
                        task.future.set_exception(exc)
                else:
                    if not task.future.done():
                        task.future.set_result(result)
        finally:
            self._active = False
            self._drainer = None

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        retry = self.options.retry
        if attempt >= retry.max_retries:
            return False
        return self.is_transient(error)

    def is_transient(self, error: BaseException) -> bool:
        """Classify ``error`` as lock contention worth retrying.

        A structured SQLite result code decides when the driver supplies one;
        message matching is used only for errors without a code.
        """

        retry = self.options.retry
        code = error_code(error)
        if code is not None:
            return code in retry.retry_on_error_codes
        message = str(error)
        return any(pattern in message for pattern in retry.retry_on_message_includes)

    def _log_retry(self, task: DbTask[Any], exc: BaseException) -> None:
        max_retries = self.options.retry.max_retries
        LOGGER.info(
            "db task %s attempt %s/%s hit lock contention (%s); retrying in %sms",
            task.id,
            task.attempt,
            max_retries + 1,
            exc,
            self.options.retry.backoff_ms,
        )
        log_event(
            "WARNING",
            "db.queue.retry",
            task=task.id,
            attempt=task.attempt,
            max_retries=max_retries,
            error=exc.__class__.__name__,
            error_msg=str(exc),
            error_code=error_code(exc),
        )

    def _log_rejection(self, task: DbTask[Any], exc: BaseException) -> None:
        LOGGER.debug("db task %s failed after %s attempt(s): %s", task.id, task.attempt + 1, exc)
        log_event(
            "ERROR",
            "db.queue.rejected",
            task=task.id,
            attempt=task.attempt,
            error=exc.__class__.__name__,
            error_msg=str(exc),
            error_code=error_code(exc),
            meta={"previous_errors": list(task.errors)} if task.errors else None,
        )


__all__ = ["DbTask", "DbTaskQueue", "error_code"]
