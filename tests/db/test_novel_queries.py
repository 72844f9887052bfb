"""Novel storage, library membership and restore."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import insert, select

from lnreader.db.queries import NovelQueries
from lnreader.db.schema import category, novel_category
from lnreader.db.types import BackupNovel, ChapterItem, SourceNovel


def _source(path: str = "/novel/1", chapters: int = 2, **fields) -> SourceNovel:
    return SourceNovel(
        path=path,
        name=fields.pop("name", "Novel"),
        chapters=[ChapterItem(path=f"{path}/c/{index}") for index in range(chapters)],
        **fields,
    )


def _links(manager, novel_id: int) -> list[int]:
    rows = manager.all_sync(
        select(novel_category.c.categoryId)
        .where(novel_category.c.novelId == novel_id)
        .order_by(novel_category.c.categoryId)
    )
    return [row["categoryId"] for row in rows]


def test_insert_novel_once(novel_queries):
    source = _source(genres="Action, Drama", total_pages=3)
    novel_id = asyncio.run(novel_queries.insert_novel_and_chapters("plug", source))
    again = asyncio.run(novel_queries.insert_novel_and_chapters("plug", source))

    assert novel_id is not None
    assert again is None
    stored = asyncio.run(novel_queries.get_novel_by_id(novel_id))
    assert stored["genres"] == "Action, Drama"
    assert stored["totalPages"] == 3
    assert stored["totalChapters"] == 2
    assert stored["inLibrary"] is False
    assert novel_queries.get_novel_by_path("/novel/1", "plug")["id"] == novel_id
    assert novel_queries.get_novel_by_path("/novel/1", "other") is None


def test_switch_toggles_library_membership(novel_queries, manager):
    novel_id = asyncio.run(novel_queries.insert_novel_and_chapters("plug", _source()))

    added = asyncio.run(novel_queries.switch_novel_to_library("/novel/1", "plug"))
    assert added["inLibrary"] is True
    assert _links(manager, novel_id) == [1]

    removed = asyncio.run(novel_queries.switch_novel_to_library("/novel/1", "plug"))
    assert removed["inLibrary"] is False
    assert _links(manager, novel_id) == []
    assert asyncio.run(novel_queries.get_novel_by_id(novel_id))["inLibrary"] is False


def test_switch_links_local_novels_to_local_category(novel_queries, manager):
    novel_id = asyncio.run(novel_queries.insert_novel_and_chapters("local", _source()))
    asyncio.run(novel_queries.switch_novel_to_library("/novel/1", "local"))
    assert _links(manager, novel_id) == [1, 2]


def test_switch_fetches_unknown_novels(manager, chapter_queries):
    calls: list[tuple[str, str]] = []

    async def fetch(plugin_id: str, path: str) -> SourceNovel:
        calls.append((plugin_id, path))
        return _source(path, chapters=3, name="Fetched")

    queries = NovelQueries(manager, chapter_queries, fetch_novel=fetch)
    added = asyncio.run(queries.switch_novel_to_library("/novel/new", "plug"))

    assert calls == [("plug", "/novel/new")]
    assert added["name"] == "Fetched"
    assert added["inLibrary"] is True
    assert added["totalChapters"] == 3
    assert _links(manager, added["id"]) == [1]


def test_switch_without_fetcher_fails(novel_queries):
    with pytest.raises(RuntimeError):
        asyncio.run(novel_queries.switch_novel_to_library("/missing", "plug"))


def test_remove_and_cached_novels(novel_queries, manager):
    first = asyncio.run(novel_queries.insert_novel_and_chapters("plug", _source("/novel/a")))
    second = asyncio.run(novel_queries.insert_novel_and_chapters("plug", _source("/novel/b")))
    asyncio.run(novel_queries.switch_novel_to_library("/novel/a", "plug"))
    asyncio.run(novel_queries.switch_novel_to_library("/novel/b", "plug"))

    asyncio.run(novel_queries.remove_novels_from_library([first]))
    cached = asyncio.run(novel_queries.get_cached_novels())
    assert [row["id"] for row in cached] == [first]
    assert _links(manager, first) == []

    assert asyncio.run(novel_queries.delete_cached_novels()) == 1
    remaining = asyncio.run(novel_queries.get_all_novels())
    assert [row["id"] for row in remaining] == [second]


def test_restore_library_upserts_and_links(manager, chapter_queries):
    def fetch(plugin_id: str, path: str) -> SourceNovel:
        return _source(path, chapters=2, total_pages=1)

    queries = NovelQueries(manager, chapter_queries, fetch_novel=fetch)
    info = {"pluginId": "plug", "path": "/novel/r", "name": "Restored", "author": "Someone"}

    novel_id = asyncio.run(queries.restore_library(info))
    again = asyncio.run(queries.restore_library({**info, "name": "Renamed"}))

    assert again == novel_id
    stored = asyncio.run(queries.get_novel_by_id(novel_id))
    assert stored["name"] == "Renamed"
    assert stored["author"] == "Someone"
    assert stored["summary"] == ""
    assert stored["inLibrary"] is True
    assert stored["totalChapters"] == 2
    assert _links(manager, novel_id) == [1]


def test_update_info_and_cover(novel_queries):
    novel_id = asyncio.run(novel_queries.insert_novel_and_chapters("plug", _source()))
    asyncio.run(
        novel_queries.update_novel_info(
            {"id": novel_id, "name": "Edited", "path": "/novel/1", "isLocal": True}
        )
    )
    asyncio.run(novel_queries.update_novel_cover(novel_id, "file:///covers/1.png"))

    stored = asyncio.run(novel_queries.get_novel_by_id(novel_id))
    assert stored["name"] == "Edited"
    assert stored["isLocal"] is True
    assert stored["author"] == ""
    assert stored["cover"] == "file:///covers/1.png"


def test_update_categories_keeps_local_link(novel_queries, manager):
    novel_id = asyncio.run(novel_queries.insert_novel_and_chapters("local", _source()))
    asyncio.run(novel_queries.switch_novel_to_library("/novel/1", "local"))
    asyncio.run(novel_queries.update_novel_category_by_id(novel_id, [1]))

    async def add_category(tx):
        return tx.run(insert(category).values(name="Fantasy")).lastrowid

    fantasy = asyncio.run(manager.write(add_category))

    asyncio.run(novel_queries.update_novel_categories([novel_id], [fantasy]))
    assert _links(manager, novel_id) == [2, fantasy]

    asyncio.run(novel_queries.update_novel_categories([novel_id], []))
    assert _links(manager, novel_id) == [2]


def test_update_categories_falls_back_to_default(novel_queries, manager):
    novel_id = asyncio.run(novel_queries.insert_novel_and_chapters("plug", _source()))
    asyncio.run(novel_queries.switch_novel_to_library("/novel/1", "plug"))

    asyncio.run(novel_queries.update_novel_categories([novel_id], []))
    assert _links(manager, novel_id) == [1]


def test_restore_novel_and_chapters_replaces_rows(novel_queries, chapter_queries):
    novel_id = asyncio.run(novel_queries.insert_novel_and_chapters("plug", _source(chapters=4)))
    backup = BackupNovel(
        id=novel_id,
        path="/novel/1",
        pluginId="plug",
        name="From backup",
        inLibrary=True,
        chapters=[
            {
                "path": f"/novel/1/b/{index}",
                "name": f"Backup {index}",
                "position": index,
                "unread": index >= 100,
                "ignored": "not a column",
            }
            for index in range(150)
        ],
    )

    asyncio.run(novel_queries.restore_novel_and_chapters(backup))

    stored = asyncio.run(novel_queries.get_novel_by_id(novel_id))
    assert stored["name"] == "From backup"
    assert stored["inLibrary"] is True
    assert stored["totalChapters"] == 150
    assert stored["chaptersUnread"] == 50
    chapters = asyncio.run(chapter_queries.get_novel_chapters(novel_id))
    assert {row["path"] for row in chapters} == {f"/novel/1/b/{i}" for i in range(150)}
