"""Aggregate statistics over novels in the library."""

from __future__ import annotations

import re
from collections import Counter
from typing import Any

from sqlalchemy import distinct, func, select

from lnreader.db.manager.manager import DbManager
from lnreader.db.schema import chapter, novel

_LIST_SPLIT = re.compile(r"\s*,\s*")


def _count_list_values(values: list[str | None]) -> dict[str, int]:
    counter: Counter[str] = Counter()
    for value in values:
        if not value:
            continue
        counter.update(item for item in _LIST_SPLIT.split(value.strip()) if item)
    return dict(counter)


class StatsQueries:
    def __init__(self, manager: DbManager) -> None:
        self.manager = manager

    def _library_chapters(self, label: str, *conditions: Any):
        return (
            select(func.count().label(label))
            .select_from(chapter.join(novel, chapter.c.novelId == novel.c.id))
            .where(novel.c.inLibrary.is_(True), *conditions)
        )

    async def get_library_stats(self) -> dict[str, int]:
        row = await self.manager.get(
            select(
                func.count().label("novelsCount"),
                func.count(distinct(novel.c.pluginId)).label("sourcesCount"),
            ).where(novel.c.inLibrary.is_(True))
        )
        return row or {"novelsCount": 0, "sourcesCount": 0}

    async def get_chapters_total_count(self) -> dict[str, int]:
        row = await self.manager.get(self._library_chapters("chaptersCount"))
        return row or {"chaptersCount": 0}

    async def get_chapters_read_count(self) -> dict[str, int]:
        row = await self.manager.get(
            self._library_chapters("chaptersRead", chapter.c.unread.is_(False))
        )
        return row or {"chaptersRead": 0}

    async def get_chapters_unread_count(self) -> dict[str, int]:
        row = await self.manager.get(
            self._library_chapters("chaptersUnread", chapter.c.unread.is_(True))
        )
        return row or {"chaptersUnread": 0}

    async def get_chapters_downloaded_count(self) -> dict[str, int]:
        row = await self.manager.get(
            self._library_chapters("chaptersDownloaded", chapter.c.isDownloaded.is_(True))
        )
        return row or {"chaptersDownloaded": 0}

    async def get_novel_genres(self) -> dict[str, dict[str, int]]:
        rows = await self.manager.all(
            select(novel.c.genres).where(novel.c.inLibrary.is_(True))
        )
        return {"genres": _count_list_values([row["genres"] for row in rows])}

    async def get_novel_status(self) -> dict[str, dict[str, int]]:
        rows = await self.manager.all(
            select(novel.c.status).where(novel.c.inLibrary.is_(True))
        )
        return {"status": _count_list_values([row["status"] for row in rows])}


__all__ = ["StatsQueries"]
