"""Novel reads, library membership and restore helpers."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from lnreader.db.manager.manager import DbManager, Transaction
from lnreader.db.schema import category, chapter, novel, novel_category
from lnreader.db.triggers import LOCAL_CATEGORY_ID
from lnreader.db.types import BackupNovel, SourceNovel

from .chapter import ChapterQueries

LOGGER = logging.getLogger(__name__)

LOCAL_PLUGIN_ID = "local"
RESTORE_CHUNK_SIZE = 100

FetchNovel = Callable[[str, str], "SourceNovel | Awaitable[SourceNovel]"]

_CHAPTER_DEFAULTS: dict[str, Any] = {
    "bookmark": False,
    "unread": True,
    "isDownloaded": False,
    "page": "1",
    "position": 0,
}


def _or_empty(value: Any) -> Any:
    return value or ""


def _default_category_id(tx: Transaction) -> int | None:
    row = tx.get(select(category.c.id).where(category.c.sort == 1))
    return int(row["id"]) if row else None


def _link_category(tx: Transaction, novel_id: int, category_id: int) -> None:
    tx.run(
        sqlite_insert(novel_category)
        .values(novelId=novel_id, categoryId=category_id)
        .on_conflict_do_nothing()
    )


class NovelQueries:
    def __init__(
        self,
        manager: DbManager,
        chapters: ChapterQueries,
        fetch_novel: FetchNovel | None = None,
    ) -> None:
        self.manager = manager
        self.chapters = chapters
        self.fetch_novel = fetch_novel

    async def _fetch(self, plugin_id: str, novel_path: str) -> SourceNovel:
        if self.fetch_novel is None:
            raise RuntimeError("No novel fetcher configured")
        result = self.fetch_novel(plugin_id, novel_path)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def insert_novel_and_chapters(
        self, plugin_id: str, source_novel: SourceNovel
    ) -> int | None:
        """Insert a novel unless (path, pluginId) exists, then its chapters.

        Returns the new novel id, or ``None`` when the novel was already stored.
        """

        async def body(tx: Transaction) -> int | None:
            result = tx.run(
                sqlite_insert(novel)
                .values(
                    path=source_novel.path,
                    pluginId=plugin_id,
                    name=source_novel.name,
                    cover=source_novel.cover or None,
                    summary=source_novel.summary or None,
                    author=source_novel.author or None,
                    artist=source_novel.artist or None,
                    status=source_novel.status or None,
                    genres=source_novel.genres or None,
                    totalPages=source_novel.total_pages or 0,
                )
                .on_conflict_do_nothing()
            )
            return result.lastrowid

        novel_id = await self.manager.write(body)
        if novel_id:
            await self.chapters.insert_chapters(novel_id, source_novel.chapters)
        return novel_id

    async def get_all_novels(self) -> list[dict[str, Any]]:
        return await self.manager.all(select(novel))

    async def get_novel_by_id(self, novel_id: int) -> dict[str, Any] | None:
        return await self.manager.get(select(novel).where(novel.c.id == novel_id))

    def get_novel_by_path(self, novel_path: str, plugin_id: str) -> dict[str, Any] | None:
        return self.manager.get_sync(
            select(novel).where(novel.c.path == novel_path, novel.c.pluginId == plugin_id)
        )

    async def switch_novel_to_library(
        self, novel_path: str, plugin_id: str
    ) -> dict[str, Any] | None:
        """Toggle library membership, fetching and storing the novel if unknown."""

        existing = self.get_novel_by_path(novel_path, plugin_id)
        if existing:
            in_library = not existing["inLibrary"]
            novel_id = existing["id"]

            async def toggle(tx: Transaction) -> None:
                tx.run(update(novel).values(inLibrary=in_library).where(novel.c.id == novel_id))
                if not in_library:
                    tx.run(delete(novel_category).where(novel_category.c.novelId == novel_id))
                    return
                default_id = _default_category_id(tx)
                if default_id is not None:
                    _link_category(tx, novel_id, default_id)
                if existing["pluginId"] == LOCAL_PLUGIN_ID:
                    _link_category(tx, novel_id, LOCAL_CATEGORY_ID)

            await self.manager.write(toggle)
            LOGGER.info(
                "%s novel %s", "Added" if in_library else "Removed", novel_id
            )
            return {**existing, "inLibrary": in_library}

        source_novel = await self._fetch(plugin_id, novel_path)
        novel_id = await self.insert_novel_and_chapters(plugin_id, source_novel)
        if not novel_id:
            return None

        async def add(tx: Transaction) -> None:
            tx.run(update(novel).values(inLibrary=True).where(novel.c.id == novel_id))
            default_id = _default_category_id(tx)
            if default_id is not None:
                _link_category(tx, novel_id, default_id)

        await self.manager.write(add)
        LOGGER.info("Added novel %s", novel_id)
        return await self.get_novel_by_id(novel_id)

    async def remove_novels_from_library(self, novel_ids: Sequence[int]) -> None:
        if not novel_ids:
            return
        ids = list(novel_ids)

        async def body(tx: Transaction) -> None:
            tx.run(update(novel).values(inLibrary=False).where(novel.c.id.in_(ids)))
            tx.run(delete(novel_category).where(novel_category.c.novelId.in_(ids)))

        await self.manager.write(body)

    async def get_cached_novels(self) -> list[dict[str, Any]]:
        return await self.manager.all(select(novel).where(novel.c.inLibrary.is_(False)))

    async def delete_cached_novels(self) -> int:
        async def body(tx: Transaction) -> int:
            return tx.run(delete(novel).where(novel.c.inLibrary.is_(False))).rowcount

        deleted = await self.manager.write(body)
        LOGGER.info("Deleted %s cached novels", deleted)
        return deleted

    async def restore_library(self, info: Mapping[str, Any]) -> int | None:
        """Re-add a backed-up novel to the library using fresh source data."""

        source_novel = await self._fetch(info["pluginId"], info["path"])
        fields = {
            "name": info["name"],
            "cover": _or_empty(info.get("cover")),
            "summary": _or_empty(info.get("summary")),
            "author": _or_empty(info.get("author")),
            "artist": _or_empty(info.get("artist")),
            "status": _or_empty(info.get("status")),
            "genres": _or_empty(info.get("genres")),
            "totalPages": source_novel.total_pages or 0,
            "inLibrary": True,
        }

        async def body(tx: Transaction) -> int | None:
            stmt = sqlite_insert(novel).values(
                path=source_novel.path, pluginId=info["pluginId"], **fields
            )
            tx.run(
                stmt.on_conflict_do_update(
                    index_elements=[novel.c.path, novel.c.pluginId], set_=fields
                )
            )
            row = tx.get(
                select(novel.c.id).where(
                    novel.c.path == source_novel.path,
                    novel.c.pluginId == info["pluginId"],
                )
            )
            if row is None:
                return None
            default_id = _default_category_id(tx)
            if default_id is not None:
                _link_category(tx, row["id"], default_id)
            return int(row["id"])

        novel_id = await self.manager.write(body)
        if novel_id and source_novel.chapters:
            await self.chapters.insert_chapters(novel_id, source_novel.chapters)
        return novel_id

    async def update_novel_info(self, info: Mapping[str, Any]) -> None:
        values = {
            "name": info["name"],
            "cover": _or_empty(info.get("cover")),
            "path": info["path"],
            "summary": _or_empty(info.get("summary")),
            "author": _or_empty(info.get("author")),
            "artist": _or_empty(info.get("artist")),
            "genres": _or_empty(info.get("genres")),
            "status": _or_empty(info.get("status")),
            "isLocal": info.get("isLocal"),
        }

        async def body(tx: Transaction) -> None:
            tx.run(update(novel).values(**values).where(novel.c.id == info["id"]))

        await self.manager.write(body)

    async def update_novel_cover(self, novel_id: int, cover: str) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(update(novel).values(cover=cover).where(novel.c.id == novel_id))

        await self.manager.write(body)

    async def update_novel_category_by_id(
        self, novel_id: int, category_ids: Sequence[int]
    ) -> None:
        async def body(tx: Transaction) -> None:
            for category_id in category_ids:
                _link_category(tx, novel_id, category_id)

        await self.manager.write(body)

    async def update_novel_categories(
        self, novel_ids: Sequence[int], category_ids: Sequence[int]
    ) -> None:
        """Replace the categories of ``novel_ids``; the Local link is kept.

        With no categories selected, novels left without any link fall back to
        the category sorted first.
        """

        if not novel_ids:
            return
        ids = list(novel_ids)

        async def body(tx: Transaction) -> None:
            tx.run(
                delete(novel_category).where(
                    novel_category.c.novelId.in_(ids),
                    novel_category.c.categoryId != LOCAL_CATEGORY_ID,
                )
            )
            if category_ids:
                for novel_id in ids:
                    for category_id in category_ids:
                        _link_category(tx, novel_id, category_id)
                return
            default_id = _default_category_id(tx)
            if default_id is None:
                return
            for novel_id in ids:
                linked = tx.count(novel_category, novel_category.c.novelId == novel_id)
                if linked == 0:
                    _link_category(tx, novel_id, default_id)

        await self.manager.write(body)

    async def restore_novel_and_chapters(self, backup: BackupNovel) -> None:
        """Replace a novel and all its chapters with the backed-up rows."""

        novel_row = backup.novel_row()
        chapter_columns = set(chapter.c.keys())
        chapter_rows = []
        for raw in backup.chapters:
            row = {key: value for key, value in raw.items() if key in chapter_columns}
            row["novelId"] = backup.id
            chapter_rows.append(row)

        async def body(tx: Transaction) -> None:
            tx.run(delete(novel).where(novel.c.id == backup.id))
            tx.run(delete(chapter).where(chapter.c.novelId == backup.id))
            tx.run(insert(novel).values(**novel_row))
            for start in range(0, len(chapter_rows), RESTORE_CHUNK_SIZE):
                chunk = chapter_rows[start : start + RESTORE_CHUNK_SIZE]
                keys = sorted({key for row in chunk for key in row})
                tx.run(
                    insert(chapter).values(
                        [
                            {key: row.get(key, _CHAPTER_DEFAULTS.get(key)) for key in keys}
                            for row in chunk
                        ]
                    )
                )

        await self.manager.write(body)
        LOGGER.info("Restored novel %s with %s chapters", backup.id, len(chapter_rows))


__all__ = ["FetchNovel", "LOCAL_PLUGIN_ID", "NovelQueries"]
