"""Ensure the project root is importable during tests."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("LOG_EVENTS", "0")

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lnreader.config import DatabaseConfig  # noqa: E402
from lnreader.db import open_database  # noqa: E402
from lnreader.db.queries import ChapterQueries, NovelQueries  # noqa: E402


@pytest.fixture
def db_config(tmp_path: Path) -> DatabaseConfig:
    return DatabaseConfig(
        db_path=tmp_path / "SQLite" / "lnreader.db",
        storage_dir=tmp_path / "Novels",
        queue_backoff_ms=0,
    )


@pytest.fixture
def manager(db_config: DatabaseConfig):
    db = open_database(db_config)
    try:
        yield db
    finally:
        db.database.close()


@pytest.fixture
def chapter_queries(manager, db_config: DatabaseConfig) -> ChapterQueries:
    return ChapterQueries(manager, db_config.storage_dir)


@pytest.fixture
def novel_queries(manager, chapter_queries: ChapterQueries) -> NovelQueries:
    return NovelQueries(manager, chapter_queries)
