"""Transactional execution handle over a single SQLite connection."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, TypeVar

from . import schema

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Params = Mapping[str, Any] | Sequence[Any] | None
FireOn = Sequence[Mapping[str, Any]]
ReactiveCallback = Callable[[dict[str, Any]], None]

_WRITE_ACTIONS = {
    sqlite3.SQLITE_INSERT,
    sqlite3.SQLITE_UPDATE,
    sqlite3.SQLITE_DELETE,
}


def row_to_dict(row: sqlite3.Row | Mapping[str, Any]) -> dict[str, Any]:
    """Return ``row`` as a dict with 0/1 flag columns surfaced as ``bool``."""

    data = dict(row)
    for key in schema.BOOLEAN_COLUMNS.intersection(data):
        value = data[key]
        if value is not None:
            data[key] = bool(value)
    return data


@dataclass(slots=True)
class ReactiveSubscription:
    query: str
    arguments: Params
    tables: frozenset[str]
    callback: ReactiveCallback
    # ids are kept for callers; matching is per table
    fire_on: list[dict[str, Any]] = field(default_factory=list)


class Database:
    """Owns one SQLite connection and the live queries registered on it.

    Writes are tracked through an authorizer: every table targeted by an
    INSERT, UPDATE or DELETE (trigger bodies included) lands in a pending set
    that :meth:`flush_pending_reactive_queries` consumes.
    """

    def __init__(self, connection: sqlite3.Connection, *, path: str | None = None) -> None:
        self._connection = connection
        self.path = path
        self._pending: set[str] = set()
        self._subscriptions: dict[int, ReactiveSubscription] = {}
        self._next_subscription = 0
        self._closed = False
        connection.set_authorizer(self._authorize)

    @classmethod
    def open(cls, db_path: str, *, timeout: float = 5.0) -> "Database":
        connection = schema.connect(db_path, timeout=timeout)
        return cls(connection, path=str(db_path))

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self._connection.in_transaction

    @property
    def pending_tables(self) -> frozenset[str]:
        return frozenset(self._pending)

    def _authorize(
        self,
        action: int,
        arg1: str | None,
        _arg2: str | None,
        _db_name: str | None,
        _trigger: str | None,
    ) -> int:
        if action in _WRITE_ACTIONS and arg1 and not arg1.startswith("sqlite_"):
            self._pending.add(arg1.lower())
        return sqlite3.SQLITE_OK

    # -- execution -----------------------------------------------------

    def execute(self, sql: str, params: Params = None) -> sqlite3.Cursor:
        return self._connection.execute(sql, params if params is not None else ())

    def execute_many(self, sql: str, rows: Iterable[Params]) -> int:
        cursor = self._connection.executemany(sql, rows)
        return cursor.rowcount

    def execute_sync(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        """Run ``sql`` immediately and return every row as a dict."""

        cursor = self.execute(sql, params)
        return [row_to_dict(row) for row in cursor.fetchall()]

    async def transaction(self, fn: Callable[["Database"], Awaitable[T]]) -> T:
        """Run ``fn`` between BEGIN and COMMIT, rolling back on any exception."""

        snapshot = set(self._pending)
        self._connection.execute("BEGIN IMMEDIATE")
        try:
            result = await fn(self)
            self._connection.execute("COMMIT")
        except BaseException:
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")
            self._pending = snapshot
            raise
        return result

    # -- reactive queries ----------------------------------------------

    def reactive_execute(
        self,
        query: str,
        arguments: Params,
        fire_on: FireOn,
        callback: ReactiveCallback,
    ) -> Callable[[], None]:
        """Register ``query`` to be re-run whenever a flushed write touches ``fire_on``.

        Returns a function that removes the subscription.
        """

        tables = frozenset(str(entry["table"]).lower() for entry in fire_on)
        subscription = ReactiveSubscription(
            query=query,
            arguments=arguments,
            tables=tables,
            callback=callback,
            fire_on=[dict(entry) for entry in fire_on],
        )
        key = self._next_subscription
        self._next_subscription += 1
        self._subscriptions[key] = subscription

        def unsubscribe() -> None:
            self._subscriptions.pop(key, None)

        return unsubscribe

    def flush_pending_reactive_queries(self) -> int:
        """Re-run subscriptions whose tables changed; return how many fired."""

        changed, self._pending = self._pending, set()
        if not changed:
            return 0
        fired = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.tables & changed:
                continue
            try:
                rows = self.execute_sync(subscription.query, subscription.arguments)
                subscription.callback({"rows": rows})
            except Exception:
                LOGGER.exception(
                    "reactive query on %s failed", ", ".join(sorted(subscription.tables))
                )
                continue
            fired += 1
        return fired

    def close(self) -> None:
        if self._closed:
            return
        self._subscriptions.clear()
        self._connection.close()
        self._closed = True


__all__ = ["Database", "ReactiveSubscription", "row_to_dict"]
