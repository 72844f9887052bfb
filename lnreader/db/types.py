"""Input records accepted by the query modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping


@dataclass(slots=True)
class ChapterItem:
    """A chapter as reported by a source plugin."""

    path: str
    name: str = ""
    release_time: str | None = None
    chapter_number: float | None = None
    page: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChapterItem":
        return cls(
            path=str(data["path"]),
            name=str(data.get("name") or ""),
            release_time=data.get("releaseTime"),
            chapter_number=data.get("chapterNumber"),
            page=data.get("page"),
        )


@dataclass(slots=True)
class SourceNovel:
    path: str
    name: str
    cover: str | None = None
    summary: str | None = None
    author: str | None = None
    artist: str | None = None
    status: str | None = None
    genres: str | None = None
    total_pages: int | None = None
    chapters: list[ChapterItem] = field(default_factory=list)


@dataclass(slots=True)
class BackupNovel:
    """A ``Novel`` row plus its ``Chapter`` rows, keyed by column name."""

    id: int
    path: str
    pluginId: str
    name: str
    cover: str | None = None
    summary: str | None = None
    author: str | None = None
    artist: str | None = None
    status: str | None = None
    genres: str | None = None
    inLibrary: bool | None = None
    isLocal: bool | None = None
    totalPages: int | None = None
    chapters: list[dict[str, Any]] = field(default_factory=list)

    def novel_row(self) -> dict[str, Any]:
        row = asdict(self)
        row.pop("chapters")
        return {key: value for key, value in row.items() if value is not None}


@dataclass(slots=True)
class BackupCategory:
    id: int
    name: str
    sort: int | None = None
    novel_ids: list[int] = field(default_factory=list)


__all__ = ["BackupCategory", "BackupNovel", "ChapterItem", "SourceNovel"]
