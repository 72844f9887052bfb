"""Plugin repository URLs."""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, insert, select, update

from lnreader.db.manager.manager import DbManager, Transaction
from lnreader.db.schema import repository


class RepositoryQueries:
    def __init__(self, manager: DbManager) -> None:
        self.manager = manager

    async def get_repositories(self) -> list[dict[str, Any]]:
        return await self.manager.all(select(repository))

    async def is_repo_url_duplicated(self, url: str) -> bool:
        row = await self.manager.get(select(repository.c.id).where(repository.c.url == url))
        return row is not None

    async def create_repository(self, url: str) -> dict[str, Any] | None:
        async def body(tx: Transaction) -> dict[str, Any] | None:
            result = tx.run(insert(repository).values(url=url))
            return tx.get(select(repository).where(repository.c.id == result.lastrowid))

        return await self.manager.write(body)

    async def delete_repository_by_id(self, repository_id: int) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(delete(repository).where(repository.c.id == repository_id))

        await self.manager.write(body)

    async def update_repository(self, repository_id: int, url: str) -> None:
        async def body(tx: Transaction) -> None:
            tx.run(update(repository).values(url=url).where(repository.c.id == repository_id))

        await self.manager.write(body)


__all__ = ["RepositoryQueries"]
