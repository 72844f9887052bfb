"""Write queue and query manager."""

from .manager import (
    CompiledQuery,
    DbManager,
    LiveQuery,
    PreparedQuery,
    RunResult,
    Transaction,
    cast_int,
    to_sql,
)
from .queue import DbTask, DbTaskQueue
from .types import QueueOptions, RetryOptions

__all__ = [
    "CompiledQuery",
    "DbManager",
    "DbTask",
    "DbTaskQueue",
    "LiveQuery",
    "PreparedQuery",
    "QueueOptions",
    "RetryOptions",
    "RunResult",
    "Transaction",
    "cast_int",
    "to_sql",
]
