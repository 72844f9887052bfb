"""Pydantic models describing write-queue behaviour."""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field

DEFAULT_RETRY_ON = ("SQLITE_BUSY", "database is locked")

# SQLite primary result codes: SQLITE_BUSY, SQLITE_LOCKED.
DEFAULT_RETRY_CODES = (5, 6)


class RetryOptions(BaseModel):
    """Bounded retry policy for transient lock contention."""

    max_retries: int = Field(default=2, ge=0)
    # flat delay before every retry, not exponential
    backoff_ms: int = Field(default=50, ge=0)
    retry_on_message_includes: List[str] = Field(default_factory=lambda: list(DEFAULT_RETRY_ON))
    retry_on_error_codes: List[int] = Field(default_factory=lambda: list(DEFAULT_RETRY_CODES))


class QueueOptions(BaseModel):
    """Options accepted by :class:`~lnreader.db.manager.queue.DbTaskQueue`."""

    # The drain loop never runs two tasks at once; the field mirrors the
    # options shape of other task runners.
    concurrency: Literal[1] = 1
    retry: RetryOptions = Field(default_factory=RetryOptions)


__all__ = ["DEFAULT_RETRY_CODES", "DEFAULT_RETRY_ON", "QueueOptions", "RetryOptions"]
