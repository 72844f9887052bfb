"""Chapter reads and mutations."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import and_, func, not_, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from lnreader.db.constants import ChapterFilterKey, ChapterOrderKey
from lnreader.db.manager.manager import DbManager, Transaction, cast_int
from lnreader.db.parser import chapter_filter_to_sql, chapter_order_to_sql
from lnreader.db.schema import chapter, novel
from lnreader.db.types import ChapterItem
from lnreader.json_logger import log_event

LOGGER = logging.getLogger(__name__)

PAGE_BATCH_SIZE = 300


class ChapterFileError(RuntimeError):
    """Raised when a downloaded chapter folder cannot be removed."""


def clamp_progress(progress: float) -> int:
    return max(0, min(100, int(progress)))


def _chapter_item(value: ChapterItem | Mapping[str, Any]) -> ChapterItem:
    if isinstance(value, ChapterItem):
        return value
    return ChapterItem.from_mapping(value)


def _novel_columns() -> list[Any]:
    return [
        novel.c.pluginId,
        novel.c.name.label("novelName"),
        novel.c.cover.label("novelCover"),
        novel.c.path.label("novelPath"),
    ]


class ChapterQueries:
    def __init__(self, manager: DbManager, storage_dir: Path | str) -> None:
        self.manager = manager
        self.storage_dir = Path(storage_dir)

    # -- mutations -----------------------------------------------------

    async def insert_chapters(
        self,
        novel_id: int,
        chapters: Sequence[ChapterItem | Mapping[str, Any]] | None,
    ) -> None:
        """Upsert ``chapters`` for ``novel_id`` keyed on (novelId, path).

        Positions follow list order; missing names become ``Chapter N``.
        """

        if not chapters:
            return
        rows = []
        for index, raw in enumerate(chapters):
            item = _chapter_item(raw)
            rows.append(
                {
                    "path": item.path,
                    "name": item.name or f"Chapter {index + 1}",
                    "releaseTime": item.release_time or "",
                    "chapterNumber": item.chapter_number,
                    "page": item.page or "1",
                    "position": index,
                }
            )

        def build(tx: Transaction, ph):
            stmt = sqlite_insert(chapter).values(
                path=ph("path"),
                name=ph("name"),
                releaseTime=ph("releaseTime"),
                novelId=novel_id,
                chapterNumber=ph("chapterNumber"),
                page=ph("page"),
                position=ph("position"),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[chapter.c.novelId, chapter.c.path],
                set_={
                    "page": ph("page"),
                    "position": ph("position"),
                    "name": ph("name"),
                    "releaseTime": ph("releaseTime"),
                    "chapterNumber": ph("chapterNumber"),
                },
            )
            return tx.prepare(stmt)

        await self.manager.batch(rows, build)
        LOGGER.debug("Upserted %s chapters for novel %s", len(rows), novel_id)

    async def _set_unread(self, where: Any, unread: bool) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(update(chapter).values(unread=unread).where(where))

        await self.manager.write(body)

    async def mark_chapter_read(self, chapter_id: int) -> None:
        await self._set_unread(chapter.c.id == chapter_id, False)

    async def mark_chapters_read(self, chapter_ids: Sequence[int]) -> None:
        if not chapter_ids:
            return
        await self._set_unread(chapter.c.id.in_(list(chapter_ids)), False)

    async def mark_chapter_unread(self, chapter_id: int) -> None:
        await self._set_unread(chapter.c.id == chapter_id, True)

    async def mark_chapters_unread(self, chapter_ids: Sequence[int]) -> None:
        if not chapter_ids:
            return
        await self._set_unread(chapter.c.id.in_(list(chapter_ids)), True)

    async def mark_all_chapters_read(self, novel_id: int) -> None:
        await self._set_unread(chapter.c.novelId == novel_id, False)

    async def mark_all_chapters_unread(self, novel_id: int) -> None:
        await self._set_unread(chapter.c.novelId == novel_id, True)

    async def mark_previous_chapters_read(self, chapter_id: int, novel_id: int) -> None:
        await self._set_unread(
            and_(chapter.c.id <= chapter_id, chapter.c.novelId == novel_id), False
        )

    async def mark_previous_chapters_unread(self, chapter_id: int, novel_id: int) -> None:
        await self._set_unread(
            and_(chapter.c.id <= chapter_id, chapter.c.novelId == novel_id), True
        )

    def chapter_folder(self, plugin_id: str, novel_id: int, chapter_id: int) -> Path:
        return self.storage_dir / str(plugin_id) / str(novel_id) / str(chapter_id)

    def _delete_downloaded_files(self, plugin_id: str, novel_id: int, chapter_id: int) -> None:
        folder = self.chapter_folder(plugin_id, novel_id, chapter_id)
        try:
            if folder.is_dir():
                shutil.rmtree(folder)
            elif folder.exists():
                folder.unlink()
        except OSError as exc:
            log_event(
                "ERROR",
                "chapter.files.delete_failed",
                msg=str(folder),
                error=exc.__class__.__name__,
                error_msg=str(exc),
            )
            raise ChapterFileError(f"Cannot delete chapter folder {folder}") from exc

    async def _clear_downloaded(self, where: Any | None) -> None:
        async def body(tx: Transaction) -> None:
            stmt = update(chapter).values(isDownloaded=False)
            if where is not None:
                stmt = stmt.where(where)
            tx.run(stmt)

        await self.manager.write(body)

    async def delete_chapter(self, plugin_id: str, novel_id: int, chapter_id: int) -> None:
        self._delete_downloaded_files(plugin_id, novel_id, chapter_id)
        await self._clear_downloaded(chapter.c.id == chapter_id)

    async def delete_chapters(
        self,
        plugin_id: str,
        novel_id: int,
        chapters: Sequence[Mapping[str, Any]] | None,
    ) -> None:
        if not chapters:
            return
        chapter_ids = [int(item["id"]) for item in chapters]
        for chapter_id in chapter_ids:
            self._delete_downloaded_files(plugin_id, novel_id, chapter_id)
        await self._clear_downloaded(chapter.c.id.in_(chapter_ids))

    async def delete_downloads(self, chapters: Sequence[Mapping[str, Any]] | None) -> None:
        """Remove the given downloads from disk and clear every download flag."""

        if not chapters:
            return
        for item in chapters:
            self._delete_downloaded_files(item["pluginId"], item["novelId"], item["id"])
        await self._clear_downloaded(None)

    async def delete_read_chapters(self) -> int:
        """Delete downloads of read chapters; return how many were cleared."""

        rows = await self.manager.all(
            select(chapter.c.id, chapter.c.novelId, novel.c.pluginId)
            .select_from(chapter.join(novel, novel.c.id == chapter.c.novelId))
            .where(chapter.c.unread.is_(False), chapter.c.isDownloaded.is_(True))
        )
        for row in rows:
            self._delete_downloaded_files(row["pluginId"], row["novelId"], row["id"])
        chapter_ids = [row["id"] for row in rows]
        if chapter_ids:
            await self._clear_downloaded(chapter.c.id.in_(chapter_ids))
        LOGGER.info("Deleted %s read chapter downloads", len(chapter_ids))
        return len(chapter_ids)

    async def update_chapter_progress(self, chapter_id: int, progress: float) -> None:
        value = clamp_progress(progress)

        async def body(tx: Transaction) -> None:
            tx.run(update(chapter).values(progress=value).where(chapter.c.id == chapter_id))

        await self.manager.write(body)

    async def update_chapter_progress_by_ids(
        self, chapter_ids: Sequence[int], progress: float
    ) -> None:
        if not chapter_ids:
            return
        value = clamp_progress(progress)

        async def body(tx: Transaction) -> None:
            tx.run(
                update(chapter)
                .values(progress=value)
                .where(chapter.c.id.in_(list(chapter_ids)))
            )

        await self.manager.write(body)

    async def bookmark_chapter(self, chapter_id: int) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(
                update(chapter)
                .values(bookmark=not_(chapter.c.bookmark))
                .where(chapter.c.id == chapter_id)
            )

        await self.manager.write(body)

    async def clear_updates(self) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(update(chapter).values(updatedTime=None))

        await self.manager.write(body)

    # -- selectors -----------------------------------------------------

    async def get_custom_pages(self, novel_id: int) -> list[dict[str, Any]]:
        return await self.manager.all(
            self.manager.select_distinct(chapter.c.page)
            .where(chapter.c.novelId == novel_id)
            .order_by(cast_int(chapter.c.page).asc())
        )

    async def get_novel_chapters(self, novel_id: int) -> list[dict[str, Any]]:
        return await self.manager.all(select(chapter).where(chapter.c.novelId == novel_id))

    async def get_unread_novel_chapters(self, novel_id: int) -> list[dict[str, Any]]:
        return await self.manager.all(
            select(chapter).where(chapter.c.novelId == novel_id, chapter.c.unread.is_(True))
        )

    async def get_all_undownloaded_chapters(self, novel_id: int) -> list[dict[str, Any]]:
        return await self.manager.all(
            select(chapter).where(
                chapter.c.novelId == novel_id, chapter.c.isDownloaded.is_(False)
            )
        )

    async def get_all_undownloaded_and_unread_chapters(
        self, novel_id: int
    ) -> list[dict[str, Any]]:
        return await self.manager.all(
            select(chapter).where(
                chapter.c.novelId == novel_id,
                chapter.c.isDownloaded.is_(False),
                chapter.c.unread.is_(True),
            )
        )

    async def get_chapter(self, chapter_id: int) -> dict[str, Any] | None:
        return await self.manager.get(select(chapter).where(chapter.c.id == chapter_id))

    def _page_query(
        self,
        novel_id: int,
        filters: Iterable[ChapterFilterKey | str] | None,
        page: str | None,
    ):
        return select(chapter).where(
            and_(
                chapter.c.novelId == novel_id,
                chapter.c.page == (page or "1"),
                chapter_filter_to_sql(list(filters) if filters else None),
            )
        )

    async def get_page_chapters(
        self,
        novel_id: int,
        sort: ChapterOrderKey | str | None = None,
        filters: Iterable[ChapterFilterKey | str] | None = None,
        page: str | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        stmt = self._page_query(novel_id, filters, page)
        if sort:
            stmt = stmt.order_by(chapter_order_to_sql(sort))
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        return await self.manager.all(stmt)

    async def get_chapter_count(self, novel_id: int, page: str = "1") -> int:
        return await self.manager.count(
            chapter, and_(chapter.c.novelId == novel_id, chapter.c.page == page)
        )

    async def get_page_chapters_batched(
        self,
        novel_id: int,
        sort: ChapterOrderKey | str | None = None,
        filters: Iterable[ChapterFilterKey | str] | None = None,
        page: str | None = None,
        batch: int = 0,
    ) -> list[dict[str, Any]]:
        stmt = (
            self._page_query(novel_id, filters, page)
            .limit(PAGE_BATCH_SIZE)
            .offset(PAGE_BATCH_SIZE * batch)
        )
        if sort:
            stmt = stmt.order_by(chapter_order_to_sql(sort))
        return await self.manager.all(stmt)

    async def get_novel_chapters_by_number(
        self, novel_id: int, chapter_number: int
    ) -> list[dict[str, Any]]:
        return await self.manager.all(
            select(chapter).where(
                chapter.c.novelId == novel_id, chapter.c.position == chapter_number - 1
            )
        )

    async def get_first_unread_chapter(
        self,
        novel_id: int,
        filters: Iterable[ChapterFilterKey | str] | None = None,
        page: str | None = None,
    ) -> dict[str, Any] | None:
        stmt = (
            self._page_query(novel_id, filters, page)
            .where(chapter.c.unread.is_(True))
            .order_by(chapter.c.position.asc())
            .limit(1)
        )
        return await self.manager.get(stmt)

    async def get_novel_chapters_by_name(
        self, novel_id: int, search_text: str
    ) -> list[dict[str, Any]]:
        return await self.manager.all(
            select(chapter).where(
                chapter.c.novelId == novel_id, chapter.c.name.like(f"%{search_text}%")
            )
        )

    async def get_prev_chapter(
        self, novel_id: int, chapter_position: int, page: str
    ) -> dict[str, Any] | None:
        stmt = (
            select(chapter)
            .where(
                chapter.c.novelId == novel_id,
                or_(
                    and_(
                        chapter.c.page == cast_int(page),
                        chapter.c.position < cast_int(chapter_position),
                    ),
                    chapter.c.page < cast_int(page),
                ),
            )
            .order_by(
                cast_int(chapter.c.page).desc(),
                cast_int(chapter.c.position).desc(),
            )
        )
        return await self.manager.get(stmt)

    async def get_next_chapter(
        self, novel_id: int, chapter_position: int, page: str
    ) -> dict[str, Any] | None:
        stmt = (
            select(chapter)
            .where(
                chapter.c.novelId == novel_id,
                or_(
                    and_(
                        chapter.c.page == cast_int(page),
                        chapter.c.position > cast_int(chapter_position),
                    ),
                    and_(chapter.c.page > cast_int(page), chapter.c.position == 0),
                ),
            )
            .order_by(
                cast_int(chapter.c.page).asc(),
                cast_int(chapter.c.position).asc(),
            )
        )
        return await self.manager.get(stmt)

    async def get_downloaded_chapters(self) -> list[dict[str, Any]]:
        return await self.manager.all(
            select(chapter, *_novel_columns())
            .select_from(chapter.join(novel, chapter.c.novelId == novel.c.id))
            .where(chapter.c.isDownloaded.is_(True))
        )

    async def get_novel_downloaded_chapters(
        self,
        novel_id: int,
        start_position: int | None = None,
        end_position: int | None = None,
    ) -> list[dict[str, Any]]:
        """Downloaded chapters of a novel, optionally limited to a 1-based range."""

        conditions = [chapter.c.novelId == novel_id, chapter.c.isDownloaded.is_(True)]
        if start_position is not None and end_position is not None:
            conditions.append(chapter.c.position >= start_position - 1)
            conditions.append(chapter.c.position <= end_position - 1)
        return await self.manager.all(
            select(chapter).where(and_(*conditions)).order_by(chapter.c.position.asc())
        )

    async def get_updated_overview(self) -> list[dict[str, Any]]:
        update_date = func.date(chapter.c.updatedTime).label("updateDate")
        stmt = (
            select(
                novel.c.id.label("novelId"),
                novel.c.name.label("novelName"),
                novel.c.cover.label("novelCover"),
                novel.c.path.label("novelPath"),
                update_date,
                func.count().label("updatesPerDay"),
            )
            .select_from(chapter.join(novel, chapter.c.novelId == novel.c.id))
            .where(chapter.c.updatedTime.is_not(None))
            .group_by(novel.c.id, update_date)
            .order_by(update_date.desc(), novel.c.id)
        )
        return await self.manager.all(stmt)

    async def get_detailed_updates(
        self, novel_id: int, only_downloadable_chapters: bool = False
    ) -> list[dict[str, Any]]:
        condition = (
            chapter.c.isDownloaded.is_(True)
            if only_downloadable_chapters
            else chapter.c.updatedTime.is_not(None)
        )
        return await self.manager.all(
            select(chapter, *_novel_columns())
            .select_from(chapter.join(novel, chapter.c.novelId == novel.c.id))
            .where(novel.c.id == novel_id, condition)
            .order_by(chapter.c.updatedTime.desc())
        )

    def is_chapter_downloaded(self, chapter_id: int) -> bool:
        row = self.manager.get_sync(
            select(chapter.c.id).where(
                chapter.c.id == chapter_id, chapter.c.isDownloaded.is_(True)
            )
        )
        return row is not None


__all__ = ["ChapterFileError", "ChapterQueries", "PAGE_BATCH_SIZE", "clamp_progress"]
