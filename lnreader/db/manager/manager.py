"""Query facade: reads run directly, writes go through the task queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Mapping,
    Sequence,
    TypeVar,
)

from sqlalchemy import Integer, Table, bindparam, cast, func, literal, select
from sqlalchemy.dialects import sqlite as sqlite_dialect
from sqlalchemy.sql.dml import Insert
from sqlalchemy.sql.expression import BindParameter, ClauseElement, ColumnElement, Select

from lnreader.observability import start_span

from .. import schema as db_schema
from ..connection import Database, FireOn, row_to_dict
from .queue import DbTaskQueue
from .types import QueueOptions

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Row = dict[str, Any]

_DIALECT = sqlite_dialect.dialect(paramstyle="named")

WRITE_TASK_ID = "write"

# Prefix keeping batch placeholders clear of column-named binds.
PLACEHOLDER_PREFIX = "ph_"

Statement = ClauseElement | str


@dataclass(frozen=True, slots=True)
class CompiledQuery:
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


def to_sql(stmt: Statement) -> CompiledQuery:
    """Compile ``stmt`` for SQLite with named parameters and expanded IN lists."""

    if isinstance(stmt, CompiledQuery):
        return stmt
    if isinstance(stmt, str):
        return CompiledQuery(stmt, {})
    compiled = stmt.compile(dialect=_DIALECT, compile_kwargs={"render_postcompile": True})
    return CompiledQuery(str(compiled), dict(compiled.params))


def cast_int(value: Any) -> ColumnElement[int]:
    """``CAST(value AS INTEGER)`` for columns and plain values alike."""

    if not isinstance(value, ClauseElement):
        value = literal(value)
    return cast(value, Integer)


def placeholder(key: str) -> BindParameter[Any]:
    return bindparam(f"{PLACEHOLDER_PREFIX}{key}", required=False)


@dataclass(frozen=True, slots=True)
class RunResult:
    rowcount: int
    lastrowid: int | None = None


class PreparedQuery:
    """One compiled statement executed repeatedly with per-row parameters."""

    def __init__(self, database: Database, stmt: Statement) -> None:
        self._database = database
        if isinstance(stmt, str):
            self.sql = stmt
            self.base_params: dict[str, Any] = {}
        else:
            # Placeholders have no value yet, so IN lists cannot be expanded here.
            compiled = stmt.compile(dialect=_DIALECT)
            self.sql = str(compiled)
            self.base_params = dict(compiled.params)

    def _bind(self, row: Mapping[str, Any]) -> dict[str, Any]:
        return {**self.base_params, **row}

    def run(self, row: Mapping[str, Any] | None = None) -> RunResult:
        cursor = self._database.execute(self.sql, self._bind(row or {}))
        return RunResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)

    def run_many(self, rows: Iterable[Mapping[str, Any]]) -> int:
        return self._database.execute_many(self.sql, (self._bind(row) for row in rows))

    def all(self, row: Mapping[str, Any] | None = None) -> list[Row]:
        return self._database.execute_sync(self.sql, self._bind(row or {}))


class Transaction:
    """Statement runner handed to ``write`` callbacks; valid only inside them."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def run(self, stmt: Statement) -> RunResult:
        compiled = to_sql(stmt)
        cursor = self._database.execute(compiled.sql, compiled.params)
        lastrowid = None
        if cursor.rowcount and _is_insert(stmt, compiled.sql):
            lastrowid = cursor.lastrowid
        return RunResult(rowcount=cursor.rowcount, lastrowid=lastrowid)

    def all(self, stmt: Statement) -> list[Row]:
        compiled = to_sql(stmt)
        return self._database.execute_sync(compiled.sql, compiled.params)

    def get(self, stmt: Statement) -> Row | None:
        compiled = to_sql(stmt)
        row = self._database.execute(compiled.sql, compiled.params).fetchone()
        return row_to_dict(row) if row is not None else None

    def values(self, stmt: Statement) -> list[tuple[Any, ...]]:
        compiled = to_sql(stmt)
        return [tuple(row) for row in self._database.execute(compiled.sql, compiled.params)]

    def count(self, table: Table, where: ColumnElement[bool] | None = None) -> int:
        row = self.values(_count_statement(table, where))
        return int(row[0][0]) if row else 0

    def prepare(self, stmt: Statement) -> PreparedQuery:
        return PreparedQuery(self._database, stmt)


def _is_insert(stmt: Statement, sql: str) -> bool:
    if isinstance(stmt, Insert):
        return True
    return sql.lstrip().upper().startswith(("INSERT", "REPLACE"))


def _count_statement(table: Table, where: ColumnElement[bool] | None) -> Select[Any]:
    stmt = select(func.count()).select_from(table)
    if where is not None:
        stmt = stmt.where(where)
    return stmt


class _WithBuilder:
    def __init__(self, ctes: Sequence[Any]) -> None:
        self._ctes = tuple(ctes)

    def select(self, *columns: Any) -> Select[Any]:
        return select(*columns).add_cte(*self._ctes)

    def select_distinct(self, *columns: Any) -> Select[Any]:
        return select(*columns).distinct().add_cte(*self._ctes)


class LiveQuery(Generic[T]):
    """Rows of ``stmt`` kept current by flushes that touch ``fire_on`` tables."""

    def __init__(self, database: Database, stmt: Statement, fire_on: FireOn) -> None:
        compiled = to_sql(stmt)
        self.query = compiled
        self.rows: list[Row] = database.execute_sync(compiled.sql, compiled.params)
        self._listeners: list[Callable[[list[Row]], None]] = []
        self._unsubscribe: Callable[[], None] | None = database.reactive_execute(
            compiled.sql, compiled.params, fire_on, self._on_change
        )

    def _on_change(self, result: dict[str, Any]) -> None:
        self.rows = list(result["rows"])
        for listener in list(self._listeners):
            listener(self.rows)

    def subscribe(self, listener: Callable[[list[Row]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @property
    def closed(self) -> bool:
        return self._unsubscribe is None

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()


class DbManager:
    """The single entry point query modules use to reach the database.

    ``select``/``get``/``all`` and friends read straight from the connection.
    ``write`` and ``batch`` are the only mutation paths: each wraps its work in
    a transaction and submits it to the owned :class:`DbTaskQueue`, so no two
    write transactions ever interleave.
    """

    def __init__(
        self,
        database: Database,
        *,
        queue_options: QueueOptions | Mapping[str, Any] | None = None,
        debug: bool = False,
    ) -> None:
        self.database = database
        self.queue = DbTaskQueue(queue_options, debug=debug)
        self.query: Mapping[str, Table] = dict(db_schema.schema)

    # -- builders --------------------------------------------------------

    @staticmethod
    def select(*columns: Any) -> Select[Any]:
        return select(*columns)

    @staticmethod
    def select_distinct(*columns: Any) -> Select[Any]:
        return select(*columns).distinct()

    @staticmethod
    def cte(stmt: Select[Any], name: str) -> Any:
        return stmt.cte(name)

    @staticmethod
    def with_(*ctes: Any) -> _WithBuilder:
        return _WithBuilder(ctes)

    # -- reads -------------------------------------------------------------

    async def all(self, stmt: Statement) -> list[Row]:
        return self.all_sync(stmt)

    async def get(self, stmt: Statement) -> Row | None:
        return self.get_sync(stmt)

    async def values(self, stmt: Statement) -> list[tuple[Any, ...]]:
        compiled = to_sql(stmt)
        return [tuple(row) for row in self.database.execute(compiled.sql, compiled.params)]

    async def count(self, table: Table, where: ColumnElement[bool] | None = None) -> int:
        rows = await self.values(_count_statement(table, where))
        return int(rows[0][0]) if rows else 0

    def get_sync(self, stmt: Statement) -> Row | None:
        """Return the first row of ``stmt`` or ``None``; errors propagate unretried."""

        compiled = to_sql(stmt)
        row = self.database.execute(compiled.sql, compiled.params).fetchone()
        return row_to_dict(row) if row is not None else None

    def all_sync(self, stmt: Statement) -> list[Row]:
        compiled = to_sql(stmt)
        return self.database.execute_sync(compiled.sql, compiled.params)

    # -- writes ------------------------------------------------------------

    async def write(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``fn`` in a queued transaction and notify live queries on commit."""

        async def run() -> T:
            with start_span("db.write", attributes={"task_id": WRITE_TASK_ID}):
                result = await self.database.transaction(lambda db: fn(Transaction(db)))
            self.database.flush_pending_reactive_queries()
            return result

        return await self.queue.enqueue(WRITE_TASK_ID, run)

    async def batch(
        self,
        data: Sequence[Mapping[str, Any]],
        fn: Callable[
            [Transaction, Callable[[str], BindParameter[Any]]],
            PreparedQuery | Statement,
        ],
    ) -> None:
        """Execute one prepared statement per item of ``data`` in a single write.

        ``fn`` receives the transaction and a ``placeholder(key)`` factory whose
        binds are filled from each item's ``key``.
        """

        rows = [
            {f"{PLACEHOLDER_PREFIX}{key}": value for key, value in item.items()}
            for item in data
        ]

        async def body(tx: Transaction) -> None:
            prepared = fn(tx, placeholder)
            if not isinstance(prepared, PreparedQuery):
                prepared = tx.prepare(prepared)
            prepared.run_many(rows)

        await self.write(body)

    def live_query(self, stmt: Statement, fire_on: FireOn) -> LiveQuery[Any]:
        return LiveQuery(self.database, stmt, fire_on)


__all__ = [
    "CompiledQuery",
    "DbManager",
    "LiveQuery",
    "PLACEHOLDER_PREFIX",
    "PreparedQuery",
    "RunResult",
    "Transaction",
    "WRITE_TASK_ID",
    "cast_int",
    "placeholder",
    "to_sql",
]
