"""Closed key sets for chapter sorting and filtering."""

from __future__ import annotations

from enum import Enum


class ChapterOrderKey(str, Enum):
    READ_TIME_ASC = "readTimeAsc"
    READ_TIME_DESC = "readTimeDesc"
    POSITION_ASC = "positionAsc"
    POSITION_DESC = "positionDesc"
    NAME_ASC = "nameAsc"
    NAME_DESC = "nameDesc"


class ChapterFilterPositiveKey(str, Enum):
    DOWNLOADED = "downloaded"
    READ = "read"
    BOOKMARKED = "bookmarked"


class ChapterFilterKey(str, Enum):
    DOWNLOADED = "downloaded"
    READ = "read"
    BOOKMARKED = "bookmarked"
    NOT_DOWNLOADED = "not-downloaded"
    NOT_READ = "not-read"
    NOT_BOOKMARKED = "not-bookmarked"


class LibrarySortOrder(str, Enum):
    ALPHABETICALLY_ASC = "name ASC"
    ALPHABETICALLY_DESC = "name DESC"
    UNREAD_ASC = "chaptersUnread ASC"
    UNREAD_DESC = "chaptersUnread DESC"
    DOWNLOADS_ASC = "chaptersDownloaded ASC"
    DOWNLOADS_DESC = "chaptersDownloaded DESC"
    TOTAL_CHAPTERS_ASC = "totalChapters ASC"
    TOTAL_CHAPTERS_DESC = "totalChapters DESC"
    DATE_ADDED_ASC = "id ASC"
    DATE_ADDED_DESC = "id DESC"
    LAST_READ_ASC = "lastReadAt ASC"
    LAST_READ_DESC = "lastReadAt DESC"
    LAST_UPDATED_ASC = "lastUpdatedAt ASC"
    LAST_UPDATED_DESC = "lastUpdatedAt DESC"


# Values are the SQL predicates rendered for each library filter.
class LibraryFilter(str, Enum):
    DOWNLOADED = "chaptersDownloaded > 0"
    UNREAD = "chaptersUnread > 0"
    COMPLETED = "status = 'Completed'"
    STARTED = "chaptersUnread < totalChapters"


__all__ = [
    "ChapterFilterKey",
    "ChapterFilterPositiveKey",
    "ChapterOrderKey",
    "LibraryFilter",
    "LibrarySortOrder",
]
