from __future__ import annotations

import asyncio

from sqlalchemy import select

from lnreader.db import open_database, schema
from lnreader.db.schema import category
from lnreader.db.types import BackupNovel, ChapterItem


def test_open_creates_directories_and_seeds(db_config):
    manager = open_database(db_config)
    try:
        assert db_config.db_path.exists()
        assert db_config.storage_dir.is_dir()
        rows = manager.all_sync(select(category.c.name).order_by(category.c.id))
        assert [row["name"] for row in rows] == ["Default", "Local"]
        assert manager.database.pending_tables == frozenset()
        assert manager.queue.options.retry.backoff_ms == 0
    finally:
        manager.database.close()


def test_reopen_keeps_data_and_ledger(db_config):
    manager = open_database(db_config)

    async def body(tx):
        tx.run(category.insert().values(name="Kept"))

    try:
        asyncio.run(manager.write(body))
    finally:
        manager.database.close()

    reopened = open_database(db_config)
    try:
        names = [row["name"] for row in reopened.all_sync(select(category.c.name))]
        ledger = reopened.database.execute_sync("SELECT id FROM _migrations")
    finally:
        reopened.database.close()

    assert "Kept" in names
    assert [row["id"] for row in ledger] == list(schema.MIGRATION_IDS)


def test_query_map_exposes_tables(manager):
    assert set(manager.query) == {"category", "novel", "chapter", "novelCategory", "repository"}
    assert manager.query["novelCategory"].name == "NovelCategory"


def test_chapter_item_from_mapping():
    item = ChapterItem.from_mapping(
        {"path": "/c/1", "releaseTime": "2024-01-01", "chapterNumber": 1.5}
    )
    assert item == ChapterItem(path="/c/1", name="", release_time="2024-01-01", chapter_number=1.5)


def test_backup_novel_row_drops_chapters_and_nulls():
    backup = BackupNovel(id=3, path="/n", pluginId="plug", name="N", chapters=[{"path": "/c"}])
    assert backup.novel_row() == {"id": 3, "path": "/n", "pluginId": "plug", "name": "N"}
