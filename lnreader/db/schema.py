"""Table definitions and schema management for the library database."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects import sqlite as sqlite_dialect
from sqlalchemy.schema import CreateIndex, CreateTable

LOGGER = logging.getLogger(__name__)

MigrationFn = Callable[[sqlite3.Connection], None]

metadata = MetaData()


def _flag(name: str, default: bool) -> Column:
    return Column(
        name,
        Boolean(create_constraint=False),
        server_default=text("1" if default else "0"),
    )


category = Table(
    "Category",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("sort", Integer),
    Index("category_name_unique", "name", unique=True),
    Index("category_sort_idx", "sort"),
    sqlite_autoincrement=True,
)

novel = Table(
    "Novel",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("path", Text, nullable=False),
    Column("pluginId", Text, nullable=False),
    Column("name", Text, nullable=False),
    Column("cover", Text),
    Column("summary", Text),
    Column("author", Text),
    Column("artist", Text),
    Column("status", Text, server_default="Unknown"),
    Column("genres", Text),
    _flag("inLibrary", False),
    _flag("isLocal", False),
    Column("totalPages", Integer, server_default=text("0")),
    # The counters below are owned by the Chapter triggers.
    Column("chaptersDownloaded", Integer, server_default=text("0")),
    Column("chaptersUnread", Integer, server_default=text("0")),
    Column("totalChapters", Integer, server_default=text("0")),
    Column("lastReadAt", Text),
    Column("lastUpdatedAt", Text),
    Index("novel_path_plugin_unique", "path", "pluginId", unique=True),
    Index("NovelIndex", "pluginId", "path", "id", "inLibrary"),
    sqlite_autoincrement=True,
)

chapter = Table(
    "Chapter",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("novelId", Integer, nullable=False),
    Column("path", Text, nullable=False),
    Column("name", Text, nullable=False),
    Column("releaseTime", Text),
    _flag("bookmark", False),
    _flag("unread", True),
    Column("readTime", Text),
    _flag("isDownloaded", False),
    Column("updatedTime", Text),
    Column("chapterNumber", Float),
    Column("page", Text, server_default="1"),
    Column("position", Integer, server_default=text("0")),
    Column("progress", Integer),
    Index("chapter_novel_path_unique", "novelId", "path", unique=True),
    Index("chapterNovelIdIndex", "novelId", "position", "page", "id"),
    sqlite_autoincrement=True,
)

novel_category = Table(
    "NovelCategory",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("novelId", Integer, nullable=False),
    Column("categoryId", Integer, nullable=False),
    Index("novel_category_unique", "novelId", "categoryId", unique=True),
    sqlite_autoincrement=True,
)

repository = Table(
    "Repository",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("url", Text, nullable=False),
    Index("repository_url_unique", "url", unique=True),
    sqlite_autoincrement=True,
)

schema: dict[str, Table] = {
    "category": category,
    "novel": novel,
    "chapter": chapter,
    "novelCategory": novel_category,
    "repository": repository,
}

TABLE_NAMES = frozenset(table.name for table in schema.values())

BOOLEAN_COLUMNS = frozenset(
    column.name
    for table in schema.values()
    for column in table.columns
    if isinstance(column.type, Boolean)
)


def connect(db_path: Path | str, *, timeout: float = 5.0) -> sqlite3.Connection:
    """Return a SQLite connection with explicit transaction control.

    Pragmas are applied separately by the bootstrap step. The statement cache
    is disabled so that every statement passes through the authorizer used
    for change tracking.
    """

    connection = sqlite3.connect(
        str(db_path),
        timeout=timeout,
        isolation_level=None,
        check_same_thread=False,
        cached_statements=0,
    )
    connection.row_factory = sqlite3.Row
    return connection


def ddl_statements() -> list[str]:
    """Return CREATE TABLE / CREATE INDEX statements for every table."""

    dialect = sqlite_dialect.dialect()
    statements: list[str] = []
    for table in metadata.sorted_tables:
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip())
        for index in sorted(table.indexes, key=lambda item: item.name or ""):
            statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip())
    return statements


def migrate(connection: sqlite3.Connection) -> None:
    """Apply all known migrations in a re-entrant, idempotent fashion."""

    LOGGER.debug("Ensuring migration ledger")
    _ensure_ledger(connection)

    for migration_id, migration_fn in _MIGRATIONS:
        if _already_applied(connection, migration_id):
            continue
        LOGGER.info("Applying migration %s", migration_id)
        connection.execute("BEGIN")
        try:
            migration_fn(connection)
            _mark_applied(connection, migration_id)
        except Exception:
            connection.rollback()
            LOGGER.exception(
                "Migration %s failed. Inspect the _migrations ledger for partial state.",
                migration_id,
            )
            raise
        connection.commit()
        LOGGER.info("Applied migration %s", migration_id)


def _ensure_ledger(connection: sqlite3.Connection) -> None:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS _migrations (
            id TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    if connection.in_transaction:
        connection.commit()


def _already_applied(connection: sqlite3.Connection, migration_id: str) -> bool:
    row = connection.execute(
        "SELECT 1 FROM _migrations WHERE id=?",
        (migration_id,),
    ).fetchone()
    return row is not None


def _mark_applied(connection: sqlite3.Connection, migration_id: str) -> None:
    connection.execute(
        "INSERT OR REPLACE INTO _migrations(id, applied_at) VALUES(?, ?)",
        (migration_id, datetime.now(tz=timezone.utc).isoformat(timespec="seconds")),
    )


def table_exists(connection: sqlite3.Connection, table: str) -> bool:
    row = connection.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?",
        (table,),
    ).fetchone()
    return row is not None


def _migration_001_init(connection: sqlite3.Connection) -> None:
    if table_exists(connection, "Novel"):
        return
    for statement in ddl_statements():
        connection.execute(statement)


_MIGRATIONS: list[tuple[str, MigrationFn]] = [
    ("001_init", _migration_001_init),
]

MIGRATION_IDS = tuple(migration_id for migration_id, _ in _MIGRATIONS)


__all__ = [
    "BOOLEAN_COLUMNS",
    "MIGRATION_IDS",
    "TABLE_NAMES",
    "category",
    "chapter",
    "connect",
    "ddl_statements",
    "metadata",
    "migrate",
    "novel",
    "novel_category",
    "repository",
    "schema",
    "table_exists",
]
