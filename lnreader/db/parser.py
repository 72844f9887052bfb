"""Render chapter sort and filter keys into SQL fragments."""

from __future__ import annotations

from typing import Iterable, assert_never

from sqlalchemy import text
from sqlalchemy.sql.expression import TextClause

from .constants import ChapterFilterKey, ChapterOrderKey, LibraryFilter, LibrarySortOrder


def _order_fragment(order: ChapterOrderKey) -> str:
    match order:
        case ChapterOrderKey.READ_TIME_ASC:
            return "readTime ASC"
        case ChapterOrderKey.READ_TIME_DESC:
            return "readTime DESC"
        case ChapterOrderKey.POSITION_ASC:
            return "position ASC"
        case ChapterOrderKey.POSITION_DESC:
            return "position DESC"
        case ChapterOrderKey.NAME_ASC:
            return "name ASC"
        case ChapterOrderKey.NAME_DESC:
            return "name DESC"
        case _:
            assert_never(order)


def _filter_fragment(key: ChapterFilterKey) -> str:
    match key:
        case ChapterFilterKey.DOWNLOADED:
            return "isDownloaded=1"
        case ChapterFilterKey.READ:
            return "`unread`=0"
        case ChapterFilterKey.BOOKMARKED:
            return "bookmark=1"
        case ChapterFilterKey.NOT_DOWNLOADED:
            return "isDownloaded=0"
        case ChapterFilterKey.NOT_READ:
            return "`unread`=1"
        case ChapterFilterKey.NOT_BOOKMARKED:
            return "bookmark=0"
        case _:
            assert_never(key)


def chapter_order_to_sql(order: ChapterOrderKey | str | None = None) -> TextClause:
    """Return the ORDER BY fragment for ``order``; unknown keys sort by position."""

    try:
        key = ChapterOrderKey(order) if order is not None else ChapterOrderKey.POSITION_ASC
    except ValueError:
        key = ChapterOrderKey.POSITION_ASC
    return text(_order_fragment(key))


def chapter_filter_to_sql(
    filters: Iterable[ChapterFilterKey | str] | None = None,
) -> TextClause:
    """Return the WHERE fragment for ``filters`` joined with ``AND``.

    An empty or missing list renders the tautology ``true``. Keys outside
    :class:`ChapterFilterKey` raise :class:`ValueError`.
    """

    if not filters:
        return text("true")
    fragments = [_filter_fragment(ChapterFilterKey(value)) for value in filters]
    if not fragments:
        return text("true")
    return text(" AND ".join(fragments))


def library_order_to_sql(order: LibrarySortOrder | str) -> TextClause:
    """Raise :class:`ValueError` unless ``order`` is a known library sort."""

    return text(LibrarySortOrder(order).value)


def library_filter_to_sql(library_filter: LibraryFilter | str) -> TextClause:
    return text(LibraryFilter(library_filter).value)


__all__ = [
    "chapter_filter_to_sql",
    "chapter_order_to_sql",
    "library_filter_to_sql",
    "library_order_to_sql",
]
