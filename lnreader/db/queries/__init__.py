"""Per-entity query classes built on :class:`~lnreader.db.manager.DbManager`."""

from .category import CategoryQueries, ProtectedCategoryError
from .chapter import ChapterFileError, ChapterQueries
from .history import HistoryQueries
from .library import LibraryQueries
from .novel import NovelQueries
from .repository import RepositoryQueries
from .stats import StatsQueries

__all__ = [
    "CategoryQueries",
    "ChapterFileError",
    "ChapterQueries",
    "HistoryQueries",
    "LibraryQueries",
    "NovelQueries",
    "ProtectedCategoryError",
    "RepositoryQueries",
    "StatsQueries",
]
