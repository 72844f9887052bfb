"""Write queue ordering, single-flight execution and retry policy."""

from __future__ import annotations

import asyncio
import contextvars
import logging
import sqlite3

import pytest
from pydantic import ValidationError

from lnreader.db.manager.queue import DbTaskQueue, error_code
from lnreader.db.manager.types import QueueOptions


def _queue(max_retries: int = 2, **kwargs) -> DbTaskQueue:
    return DbTaskQueue({"retry": {"max_retries": max_retries, "backoff_ms": 0}}, **kwargs)


def _sqlite_error(message: str, code: int) -> sqlite3.OperationalError:
    exc = sqlite3.OperationalError(message)
    exc.sqlite_errorcode = code
    return exc


def test_tasks_run_in_submission_order():
    async def _run():
        queue = _queue()
        order: list[int] = []

        def make(index: int):
            async def run() -> int:
                await asyncio.sleep(0)
                order.append(index)
                return index

            return run

        futures = [queue.enqueue("write", make(i)) for i in range(5)]
        results = await asyncio.gather(*futures)
        return order, results

    order, results = asyncio.run(_run())
    assert order == [0, 1, 2, 3, 4]
    assert results == [0, 1, 2, 3, 4]


def test_never_more_than_one_task_in_flight():
    async def _run():
        queue = _queue()
        in_flight = 0
        peak = 0

        async def run() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1

        await asyncio.gather(*(queue.enqueue("write", run) for _ in range(10)))
        return peak

    assert asyncio.run(_run()) == 1


def test_lock_errors_are_retried_until_exhausted():
    async def _run():
        queue = _queue(max_retries=2)
        attempts = 0

        async def run() -> None:
            nonlocal attempts
            attempts += 1
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            await queue.enqueue("write", run)
        return attempts

    assert asyncio.run(_run()) == 3


def test_transient_failure_then_success_resolves_once():
    async def _run():
        queue = _queue(max_retries=2)
        attempts = 0

        async def run() -> str:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("SQLITE_BUSY: database is locked")
            return "ok"

        result = await queue.enqueue("write", run)
        return attempts, result

    assert asyncio.run(_run()) == (2, "ok")


def test_other_errors_are_not_retried():
    async def _run():
        queue = _queue(max_retries=5)
        attempts = 0

        async def run() -> None:
            nonlocal attempts
            attempts += 1
            raise sqlite3.IntegrityError("UNIQUE constraint failed: Category.name")

        with pytest.raises(sqlite3.IntegrityError):
            await queue.enqueue("write", run)
        return attempts

    assert asyncio.run(_run()) == 1


def test_retried_task_stays_ahead_of_later_tasks():
    async def _run():
        queue = _queue(max_retries=3)
        order: list[str] = []
        failures = 0

        async def flaky() -> None:
            nonlocal failures
            if failures < 2:
                failures += 1
                order.append("a-failed")
                raise sqlite3.OperationalError("database is locked")
            order.append("a")

        async def second() -> None:
            order.append("b")

        first_future = queue.enqueue("write", flaky)
        second_future = queue.enqueue("write", second)
        await asyncio.gather(first_future, second_future)
        return order

    assert asyncio.run(_run()) == ["a-failed", "a-failed", "a", "b"]


def test_failure_does_not_stall_the_queue():
    async def _run():
        queue = _queue()

        async def boom() -> None:
            raise ValueError("bad input")

        async def fine() -> str:
            return "done"

        failed = queue.enqueue("write", boom)
        succeeded = queue.enqueue("write", fine)
        results = await asyncio.gather(failed, succeeded, return_exceptions=True)
        results.append(await queue.enqueue("write", fine))
        return results, queue.active, len(queue)

    results, active, pending = asyncio.run(_run())
    assert isinstance(results[0], ValueError)
    assert results[1:] == ["done", "done"]
    assert active is False
    assert pending == 0


def test_queue_restarts_after_going_idle():
    async def _run():
        queue = _queue()

        async def value() -> int:
            return 1

        first = await queue.enqueue("write", value)
        assert queue.active is False
        second = await queue.enqueue("write", value)
        return first + second

    assert asyncio.run(_run()) == 2


def test_structured_code_decides_over_message():
    queue = _queue()
    busy = _sqlite_error("something odd", 5)
    constraint = _sqlite_error("database is locked", 19)
    locked_extended = _sqlite_error("table locked", 6 | (1 << 8))

    assert error_code(busy) == 5
    assert error_code(locked_extended) == 6
    assert queue.is_transient(busy) is True
    assert queue.is_transient(locked_extended) is True
    assert queue.is_transient(constraint) is False


def test_message_fallback_without_code():
    queue = _queue()
    assert error_code(RuntimeError("database is locked")) is None
    assert queue.is_transient(RuntimeError("database is locked")) is True
    assert queue.is_transient(RuntimeError("disk I/O error")) is False


def test_should_retry_respects_attempt_budget():
    queue = _queue(max_retries=1)
    locked = RuntimeError("database is locked")
    assert queue.should_retry(locked, 0) is True
    assert queue.should_retry(locked, 1) is False


def test_real_lock_contention_is_retried(tmp_path):
    path = tmp_path / "locked.db"
    holder = sqlite3.connect(str(path), isolation_level=None)
    holder.execute("CREATE TABLE item (id INTEGER PRIMARY KEY)")
    writer = sqlite3.connect(str(path), isolation_level=None, timeout=0)
    holder.execute("BEGIN IMMEDIATE")

    async def _run():
        queue = _queue(max_retries=2)
        attempts = 0

        async def run() -> int:
            nonlocal attempts
            attempts += 1
            if attempts == 2:
                holder.execute("ROLLBACK")
            writer.execute("BEGIN IMMEDIATE")
            writer.execute("INSERT INTO item DEFAULT VALUES")
            writer.execute("COMMIT")
            return attempts

        return await queue.enqueue("write", run)

    try:
        assert asyncio.run(_run()) == 2
        assert writer.execute("SELECT COUNT(*) FROM item").fetchone()[0] == 1
    finally:
        holder.close()
        writer.close()


def test_debug_mode_warns_when_tasks_pile_up(caplog):
    async def _run():
        queue = _queue(debug=True)

        async def run() -> None:
            await asyncio.sleep(0)

        futures = [queue.enqueue("write", run) for _ in range(3)]
        await asyncio.gather(*futures)

    with caplog.at_level(logging.WARNING, logger="lnreader.db.manager.queue"):
        asyncio.run(_run())
    assert any("already queued" in record.getMessage() for record in caplog.records)


def test_concurrency_is_fixed_at_one():
    assert QueueOptions().concurrency == 1
    with pytest.raises(ValidationError):
        QueueOptions(concurrency=2)


def test_tasks_run_in_the_enqueuing_callers_context():
    request = contextvars.ContextVar("request", default=None)

    async def _run():
        queue = _queue()
        seen: list[str | None] = []

        async def run() -> None:
            await asyncio.sleep(0)
            seen.append(request.get())

        async def caller(name: str) -> None:
            request.set(name)
            await queue.enqueue("write", run)

        await asyncio.gather(caller("first"), caller("second"), caller("third"))
        return seen

    assert asyncio.run(_run()) == ["first", "second", "third"]
