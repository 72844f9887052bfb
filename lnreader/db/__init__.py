"""Embedded SQLite data layer: schema, write queue, manager and queries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lnreader.observability import start_span

from .connection import Database
from .manager import DbManager
from .schema import migrate
from .triggers import run_bootstrap

if TYPE_CHECKING:
    from lnreader.config import DatabaseConfig

LOGGER = logging.getLogger(__name__)


def open_database(config: "DatabaseConfig | None" = None) -> DbManager:
    """Open, migrate and bootstrap the store, returning its manager.

    Call once per process and pass the returned manager to every query class.
    """

    if config is None:
        from lnreader.config import DatabaseConfig

        config = DatabaseConfig.from_env()
    config.ensure_dirs()

    database = Database.open(str(config.db_path), timeout=config.busy_timeout_ms / 1000.0)
    try:
        with start_span("db.migrate", attributes={"db_path": str(config.db_path)}):
            migrate(database.connection)
        run_bootstrap(database.connection, config)
    except Exception:
        database.close()
        raise
    # Seed rows written before anyone could subscribe.
    database.flush_pending_reactive_queries()
    LOGGER.info("Opened database at %s", config.db_path)
    return DbManager(database, queue_options=config.queue_options(), debug=config.debug)


__all__ = ["Database", "DbManager", "open_database"]
