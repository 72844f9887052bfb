"""Bootstrap SQL: pragmas, counter triggers, lookup indexes and seed rows."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from sqlalchemy.dialects import sqlite as sqlite_dialect
from sqlalchemy.schema import CreateIndex

from lnreader.observability import start_span

from . import schema

if TYPE_CHECKING:
    from lnreader.config import DatabaseConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_CATEGORY_ID = 1
LOCAL_CATEGORY_ID = 2

NOVEL_STATS_INSERT_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS update_novel_stats
AFTER INSERT ON Chapter
BEGIN
    UPDATE Novel
    SET
        totalChapters = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id),
        chaptersDownloaded = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id AND Chapter.isDownloaded = 1),
        chaptersUnread = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id AND Chapter.unread = 1),
        lastUpdatedAt = (SELECT MAX(updatedTime) FROM Chapter WHERE Chapter.novelId = Novel.id)
    WHERE id = NEW.novelId;
END
"""

NOVEL_STATS_UPDATE_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS update_novel_stats_on_update
AFTER UPDATE ON Chapter
BEGIN
    UPDATE Novel
    SET
        chaptersDownloaded = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id AND Chapter.isDownloaded = 1),
        chaptersUnread = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id AND Chapter.unread = 1),
        lastReadAt = (SELECT MAX(readTime) FROM Chapter WHERE Chapter.novelId = Novel.id),
        lastUpdatedAt = (SELECT MAX(updatedTime) FROM Chapter WHERE Chapter.novelId = Novel.id)
    WHERE id = NEW.novelId;
END
"""

NOVEL_STATS_DELETE_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS update_novel_stats_on_delete
AFTER DELETE ON Chapter
BEGIN
    UPDATE Novel
    SET
        chaptersDownloaded = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id AND Chapter.isDownloaded = 1),
        chaptersUnread = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id AND Chapter.unread = 1),
        totalChapters = (SELECT COUNT(*) FROM Chapter WHERE Chapter.novelId = Novel.id),
        lastReadAt = (SELECT MAX(readTime) FROM Chapter WHERE Chapter.novelId = Novel.id),
        lastUpdatedAt = (SELECT MAX(updatedTime) FROM Chapter WHERE Chapter.novelId = Novel.id)
    WHERE id = OLD.novelId;
END
"""

CATEGORY_SORT_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS add_category
AFTER INSERT ON Category
BEGIN
    UPDATE Category SET sort = (SELECT IFNULL(sort, new.id)) WHERE id = new.id;
END
"""

TRIGGERS = (
    ("add_category", CATEGORY_SORT_TRIGGER),
    ("update_novel_stats_on_delete", NOVEL_STATS_DELETE_TRIGGER),
    ("update_novel_stats", NOVEL_STATS_INSERT_TRIGGER),
    ("update_novel_stats_on_update", NOVEL_STATS_UPDATE_TRIGGER),
)

TRIGGER_NAMES = tuple(name for name, _ in TRIGGERS)

DEFAULT_CATEGORIES_QUERY = """
INSERT OR IGNORE INTO Category (id, name, sort) VALUES
    (1, :default_name, 1),
    (2, :local_name, 2)
"""


def index_queries() -> list[str]:
    """Return ``CREATE INDEX IF NOT EXISTS`` for the listing indexes."""

    dialect = sqlite_dialect.dialect()
    wanted = {"NovelIndex", "chapterNovelIdIndex"}
    statements = []
    for table in (schema.novel, schema.chapter):
        for index in table.indexes:
            if index.name in wanted:
                statements.append(
                    str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)).strip()
                )
    return statements


def set_pragmas(connection: sqlite3.Connection, config: "DatabaseConfig") -> None:
    LOGGER.info("Setting database pragmas")
    for pragma in config.pragmas():
        connection.execute(pragma)


def create_triggers(connection: sqlite3.Connection) -> None:
    LOGGER.info("Creating database triggers")
    for _name, statement in TRIGGERS:
        connection.execute(statement)


def create_indexes(connection: sqlite3.Connection) -> None:
    for statement in index_queries():
        connection.execute(statement)


def populate(connection: sqlite3.Connection, config: "DatabaseConfig") -> None:
    # A no-op once ids 1 and 2 exist, even if the user renamed them.
    LOGGER.info("Populating database")
    connection.execute(
        DEFAULT_CATEGORIES_QUERY,
        {
            "default_name": config.default_category_name,
            "local_name": config.local_category_name,
        },
    )


def run_bootstrap(connection: sqlite3.Connection, config: "DatabaseConfig") -> None:
    """Apply pragmas, then install triggers and indexes and seed categories.

    Every step is idempotent; running it on each start is expected.
    """

    with start_span("db.bootstrap", attributes={"db_path": str(config.db_path)}):
        set_pragmas(connection, config)
        create_triggers(connection)
        create_indexes(connection)
        populate(connection, config)
        if connection.in_transaction:
            connection.commit()


__all__ = [
    "DEFAULT_CATEGORY_ID",
    "LOCAL_CATEGORY_ID",
    "TRIGGER_NAMES",
    "create_indexes",
    "create_triggers",
    "index_queries",
    "populate",
    "run_bootstrap",
    "set_pragmas",
]
