"""Category reads and mutations."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from sqlalchemy import delete, func, literal, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from lnreader.db.manager.manager import DbManager, Transaction
from lnreader.db.schema import category, novel_category
from lnreader.db.triggers import DEFAULT_CATEGORY_ID, LOCAL_CATEGORY_ID
from lnreader.db.types import BackupCategory

LOGGER = logging.getLogger(__name__)


class ProtectedCategoryError(RuntimeError):
    """Raised when deleting one of the two built-in categories."""


def _category_id(value: int | Mapping[str, Any]) -> int:
    if isinstance(value, Mapping):
        return int(value["id"])
    return int(value)


class CategoryQueries:
    def __init__(self, manager: DbManager) -> None:
        self.manager = manager

    async def get_categories(self) -> list[dict[str, Any]]:
        """Categories ordered by ``sort``, each with its sorted ``novelIds``."""

        rows = await self.manager.all(
            select(category.c.id, category.c.name, category.c.sort).order_by(category.c.sort)
        )
        links = await self.manager.all(
            select(novel_category.c.categoryId, novel_category.c.novelId).order_by(
                novel_category.c.novelId
            )
        )
        novel_ids: dict[int, list[int]] = {}
        for link in links:
            novel_ids.setdefault(link["categoryId"], []).append(link["novelId"])
        for row in rows:
            row["novelIds"] = novel_ids.get(row["id"], [])
        return rows

    async def get_categories_with_count(self, novel_ids: Sequence[int]) -> list[dict[str, Any]]:
        """Categories other than Local with how many of ``novel_ids`` they hold."""

        if not novel_ids:
            return await self.manager.all(
                select(
                    category.c.id,
                    category.c.name,
                    category.c.sort,
                    literal(0).label("novelsCount"),
                )
                .where(category.c.id != LOCAL_CATEGORY_ID)
                .order_by(category.c.sort)
            )
        counts = (
            select(
                novel_category.c.categoryId,
                func.count(novel_category.c.novelId).label("novelsCount"),
            )
            .where(novel_category.c.novelId.in_(list(novel_ids)))
            .group_by(novel_category.c.categoryId)
            .subquery("NC")
        )
        return await self.manager.all(
            select(
                category.c.id,
                category.c.name,
                category.c.sort,
                func.coalesce(counts.c.novelsCount, 0).label("novelsCount"),
            )
            .select_from(category.outerjoin(counts, category.c.id == counts.c.categoryId))
            .where(category.c.id != LOCAL_CATEGORY_ID)
            .order_by(category.c.sort)
        )

    async def create_category(self, name: str) -> dict[str, Any] | None:
        async def body(tx: Transaction) -> dict[str, Any] | None:
            total = tx.count(category)
            result = tx.run(sqlite_insert(category).values(name=name, sort=total + 1))
            return tx.get(select(category).where(category.c.id == result.lastrowid))

        return await self.manager.write(body)

    async def delete_category_by_id(self, value: int | Mapping[str, Any]) -> None:
        """Delete a category, moving novels it alone held to the default one."""

        category_id = _category_id(value)
        if category_id <= LOCAL_CATEGORY_ID:
            raise ProtectedCategoryError(f"Category {category_id} cannot be deleted")

        async def body(tx: Transaction) -> None:
            single = tx.all(
                select(novel_category.c.novelId)
                .group_by(novel_category.c.novelId)
                .having(func.count(novel_category.c.categoryId) == 1)
            )
            novel_ids = [row["novelId"] for row in single]
            if novel_ids:
                tx.run(
                    update(novel_category)
                    .values(categoryId=DEFAULT_CATEGORY_ID)
                    .where(
                        novel_category.c.novelId.in_(novel_ids),
                        novel_category.c.categoryId == category_id,
                    )
                )
            tx.run(delete(novel_category).where(novel_category.c.categoryId == category_id))
            tx.run(delete(category).where(category.c.id == category_id))

        await self.manager.write(body)
        LOGGER.info("Deleted category %s", category_id)

    async def update_category(self, category_id: int, name: str) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(update(category).values(name=name).where(category.c.id == category_id))

        await self.manager.write(body)

    def is_category_name_duplicate(self, name: str) -> bool:
        row = self.manager.get_sync(select(category.c.id).where(category.c.name == name))
        return row is not None

    async def update_category_order(self, categories: Sequence[Mapping[str, Any]]) -> None:
        if not categories:
            return

        async def body(tx: Transaction) -> None:
            for item in categories:
                tx.run(
                    update(category)
                    .values(sort=item["sort"])
                    .where(category.c.id == item["id"])
                )

        await self.manager.write(body)

    async def get_all_novel_categories(self) -> list[dict[str, Any]]:
        return await self.manager.all(select(novel_category))

    async def restore_category(self, backup: BackupCategory) -> None:
        async def body(tx: Transaction) -> None:
            clash = category.c.id == backup.id
            if backup.sort is not None:
                clash = or_(clash, category.c.sort == backup.sort)
            tx.run(delete(category).where(clash))
            tx.run(
                sqlite_insert(category)
                .values(id=backup.id, name=backup.name, sort=backup.sort)
                .on_conflict_do_nothing()
            )
            for novel_id in backup.novel_ids:
                tx.run(
                    sqlite_insert(novel_category)
                    .values(categoryId=backup.id, novelId=novel_id)
                    .on_conflict_do_nothing()
                )

        await self.manager.write(body)


__all__ = ["CategoryQueries", "ProtectedCategoryError"]
