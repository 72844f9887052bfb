"""Reading history, stored as ``Chapter.readTime``."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update

from lnreader.db.manager.manager import DbManager, Transaction
from lnreader.db.schema import chapter, novel

LOGGER = logging.getLogger(__name__)


class HistoryQueries:
    def __init__(self, manager: DbManager) -> None:
        self.manager = manager

    async def get_history(self) -> list[dict[str, Any]]:
        """The most recently read chapter of every novel, newest first."""

        stmt = (
            select(
                chapter,
                novel.c.pluginId,
                novel.c.name.label("novelName"),
                novel.c.path.label("novelPath"),
                novel.c.cover.label("novelCover"),
            )
            .select_from(chapter.join(novel, chapter.c.novelId == novel.c.id))
            .where(chapter.c.readTime.is_not(None))
            .group_by(chapter.c.novelId)
            .having(chapter.c.readTime == func.max(chapter.c.readTime))
            .order_by(chapter.c.readTime.desc())
        )
        return await self.manager.all(stmt)

    async def insert_history(self, chapter_id: int) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(
                update(chapter)
                .values(readTime=func.datetime("now", "localtime"))
                .where(chapter.c.id == chapter_id)
            )

        await self.manager.write(body)

    async def delete_chapter_history(self, chapter_id: int) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(update(chapter).values(readTime=None).where(chapter.c.id == chapter_id))

        await self.manager.write(body)

    async def delete_all_history(self) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(update(chapter).values(readTime=None))

        await self.manager.write(body)
        LOGGER.info("Cleared reading history")


__all__ = ["HistoryQueries"]
