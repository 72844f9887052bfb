from __future__ import annotations

import sqlite3
import tempfile
from pathlib import Path

import pytest

from lnreader.config import DatabaseConfig
from lnreader.db import schema, triggers


@pytest.mark.parametrize("passes", [1, 2])
def test_migrate_runs_without_error_multiple_times(passes: int) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "lnreader.db"
        conn = sqlite3.connect(db_path)
        try:
            for _ in range(passes):
                schema.migrate(conn)
            applied = [row[0] for row in conn.execute("SELECT id FROM _migrations ORDER BY id")]
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        finally:
            conn.close()

    assert applied == list(schema.MIGRATION_IDS)
    assert schema.TABLE_NAMES <= tables


def test_initial_migration_skips_existing_schema(tmp_path) -> None:
    conn = sqlite3.connect(tmp_path / "existing.db")
    try:
        conn.execute("CREATE TABLE Novel (id INTEGER PRIMARY KEY)")
        conn.commit()
        schema.migrate(conn)
        assert schema.table_exists(conn, "Novel")
        assert not schema.table_exists(conn, "Chapter")
    finally:
        conn.close()


def test_unique_indexes_are_created(tmp_path) -> None:
    conn = schema.connect(tmp_path / "indexes.db")
    try:
        schema.migrate(conn)
        names = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")
        }
    finally:
        conn.close()

    assert {
        "category_name_unique",
        "novel_path_plugin_unique",
        "chapter_novel_path_unique",
        "novel_category_unique",
        "repository_url_unique",
        "NovelIndex",
        "chapterNovelIdIndex",
    } <= names


def _bootstrapped(tmp_path: Path) -> tuple[sqlite3.Connection, DatabaseConfig]:
    config = DatabaseConfig(db_path=tmp_path / "boot.db", storage_dir=tmp_path / "Novels")
    conn = schema.connect(config.db_path)
    schema.migrate(conn)
    triggers.run_bootstrap(conn, config)
    return conn, config


def test_bootstrap_is_idempotent(tmp_path) -> None:
    conn, config = _bootstrapped(tmp_path)
    try:
        triggers.run_bootstrap(conn, config)
        names = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='trigger'")
        }
        categories = conn.execute("SELECT id, name, sort FROM Category ORDER BY id").fetchall()
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    finally:
        conn.close()

    assert set(triggers.TRIGGER_NAMES) <= names
    assert [tuple(row) for row in categories] == [(1, "Default", 1), (2, "Local", 2)]
    assert journal_mode.lower() == "wal"


def test_seed_does_not_overwrite_renamed_defaults(tmp_path) -> None:
    conn, config = _bootstrapped(tmp_path)
    try:
        conn.execute("UPDATE Category SET name = 'Reading' WHERE id = 1")
        triggers.run_bootstrap(conn, config)
        name = conn.execute("SELECT name FROM Category WHERE id = 1").fetchone()[0]
    finally:
        conn.close()
    assert name == "Reading"


def test_category_sort_defaults_to_id(tmp_path) -> None:
    conn, _ = _bootstrapped(tmp_path)
    try:
        conn.execute("INSERT INTO Category (name) VALUES ('Fantasy')")
        row = conn.execute("SELECT id, sort FROM Category WHERE name = 'Fantasy'").fetchone()
    finally:
        conn.close()
    assert row["sort"] == row["id"]


def test_chapter_triggers_maintain_novel_counters(tmp_path) -> None:
    conn, _ = _bootstrapped(tmp_path)
    try:
        conn.execute(
            "INSERT INTO Novel (id, path, pluginId, name) VALUES (1, '/n/1', 'plug', 'One')"
        )
        for index in range(3):
            conn.execute(
                "INSERT INTO Chapter (novelId, path, name, position, updatedTime) "
                "VALUES (1, ?, ?, ?, ?)",
                (f"/c/{index}", f"Chapter {index + 1}", index, f"2024-01-0{index + 1}"),
            )
        row = conn.execute(
            "SELECT totalChapters, chaptersUnread, chaptersDownloaded, lastUpdatedAt "
            "FROM Novel WHERE id = 1"
        ).fetchone()
        assert tuple(row) == (3, 3, 0, "2024-01-03")

        conn.execute("UPDATE Chapter SET unread = 0, readTime = '2024-02-01' WHERE path = '/c/0'")
        conn.execute("UPDATE Chapter SET isDownloaded = 1 WHERE path = '/c/1'")
        row = conn.execute(
            "SELECT chaptersUnread, chaptersDownloaded, lastReadAt FROM Novel WHERE id = 1"
        ).fetchone()
        assert tuple(row) == (2, 1, "2024-02-01")

        conn.execute("DELETE FROM Chapter WHERE path = '/c/1'")
        row = conn.execute(
            "SELECT totalChapters, chaptersUnread, chaptersDownloaded FROM Novel WHERE id = 1"
        ).fetchone()
        assert tuple(row) == (2, 1, 0)
    finally:
        conn.close()


def test_ddl_statements_cover_every_table() -> None:
    statements = schema.ddl_statements()
    for table in schema.TABLE_NAMES:
        assert any(f'CREATE TABLE "{table}"' in stmt for stmt in statements), table
