"""Library listings."""

from __future__ import annotations

from typing import Any

from sqlalchemy import and_, or_, select

from lnreader.db.constants import LibraryFilter, LibrarySortOrder
from lnreader.db.manager.manager import DbManager, cast_int
from lnreader.db.parser import library_filter_to_sql, library_order_to_sql
from lnreader.db.schema import novel, novel_category

ONGOING_STATUS = "Ongoing"


class LibraryQueries:
    def __init__(self, manager: DbManager) -> None:
        self.manager = manager

    async def get_library_novels(
        self,
        sort_order: LibrarySortOrder | str | None = None,
        library_filter: LibraryFilter | str | None = None,
        search_text: str | None = None,
        downloaded_only_mode: bool = False,
        exclude_local_novels: bool = False,
    ) -> list[dict[str, Any]]:
        conditions: list[Any] = [novel.c.inLibrary.is_(True)]
        if exclude_local_novels:
            conditions.append(novel.c.isLocal.is_(False))
        if library_filter:
            conditions.append(library_filter_to_sql(library_filter))
        if downloaded_only_mode:
            conditions.append(
                or_(novel.c.chaptersDownloaded > cast_int(0), novel.c.isLocal.is_(True))
            )
        if search_text:
            conditions.append(novel.c.name.like(f"%{search_text}%"))

        stmt = select(novel).where(and_(*conditions))
        if sort_order:
            stmt = stmt.order_by(library_order_to_sql(sort_order))
        return await self.manager.all(stmt)

    async def get_library_with_category(
        self,
        category_id: int | None = None,
        only_update_ongoing_novels: bool = False,
        exclude_local_novels: bool = False,
    ) -> list[dict[str, Any]]:
        """Library novels linked to ``category_id`` (any category when omitted)."""

        id_query = self.manager.select_distinct(novel_category.c.novelId)
        if category_id:
            id_query = id_query.where(novel_category.c.categoryId == category_id)
        id_rows = await self.manager.all(id_query)
        if not id_rows:
            return []
        novel_ids = [row["novelId"] for row in id_rows]

        conditions: list[Any] = [novel.c.inLibrary.is_(True), novel.c.id.in_(novel_ids)]
        if exclude_local_novels:
            conditions.append(novel.c.isLocal.is_(False))
        if only_update_ongoing_novels:
            conditions.append(novel.c.status == ONGOING_STATUS)
        return await self.manager.all(select(novel).where(and_(*conditions)))


__all__ = ["LibraryQueries"]
