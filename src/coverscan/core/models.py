"""Data models for scanned book records and recognition output."""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

FIELDS = ("title", "author", "publisher", "isbn", "price")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Book:
    title: str
    author: str = ""
    publisher: str = ""
    isbn: str = ""
    price: str = ""
    scanned_time: int = field(default_factory=_now_ms, compare=False)

    def __post_init__(self) -> None:
        if not self.title:
            raise ValueError("Book title must not be empty")

    @property
    def key(self) -> int:
        """Stable identifier for list operations."""
        return self.scanned_time

    @property
    def formatted_time(self) -> str:
        return datetime.fromtimestamp(self.scanned_time / 1000).strftime(TIME_FORMAT)

    @property
    def detail_info(self) -> str:
        details = []
        if self.author:
            details.append(f"作者: {self.author}")
        if self.publisher:
            details.append(f"出版: {self.publisher}")
        if self.isbn:
            details.append(f"ISBN: {self.isbn}")
        if self.price:
            details.append(f"价格: {self.price}")
        return " | ".join(details) if details else "暂无详细信息"

    @property
    def has_complete_info(self) -> bool:
        return bool(self.author and self.publisher and self.isbn)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class PartialBookInfo:
    """Book fields recognized so far; any of them may be missing."""

    title: str | None = None
    author: str | None = None
    publisher: str | None = None
    isbn: str | None = None
    price: str | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in FIELDS)

    def merge(self, other: PartialBookInfo) -> PartialBookInfo:
        """Fill this record's gaps from ``other``. Values already here win."""
        return PartialBookInfo(
            **{
                name: getattr(self, name) if getattr(self, name) is not None else getattr(other, name)
                for name in FIELDS
            }
        )

    def replace(self, **changes: str | None) -> PartialBookInfo:
        return dataclasses.replace(self, **changes)

    def to_book(self) -> Book | None:
        """Build a final Book, or None while the title is still unknown."""
        if not self.title:
            return None
        return Book(
            title=self.title,
            author=self.author or "",
            publisher=self.publisher or "",
            isbn=self.isbn or "",
            price=self.price or "",
        )

    def to_dict(self) -> dict[str, str | None]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> PartialBookInfo:
        return cls(**{name: data.get(name) or None for name in FIELDS})


def merge(a: PartialBookInfo, b: PartialBookInfo) -> PartialBookInfo:
    return a.merge(b)


def to_book(info: PartialBookInfo) -> Book | None:
    return info.to_book()


class ScanStep(str, Enum):
    NONE = "none"
    NEED_ISBN = "need_isbn"
    NEED_TITLE = "need_title"
    NEED_AUTHOR = "need_author"
    NEED_PUBLISHER = "need_publisher"


# -- Recognition output --------------------------------------------------------


@dataclass(frozen=True)
class BoundingBox:
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class TextLine:
    text: str


@dataclass(frozen=True)
class TextBlock:
    lines: list[TextLine]
    bounding_box: BoundingBox | None = None

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)


@dataclass(frozen=True)
class RecognitionResult:
    full_text: str = ""
    blocks: list[TextBlock] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.full_text.strip() and not self.blocks

    @classmethod
    def from_dict(cls, data: dict) -> RecognitionResult:
        """Parse the JSON shape posted by a device-side recognizer.

        Blocks may give ``lines`` as strings or ``{"text": ...}`` objects, and an
        optional ``bounding_box`` (or ``boundingBox``) with left/top/right/bottom.
        Raises ValueError or TypeError when the payload has another shape.
        """
        blocks = []
        for raw in data.get("blocks") or []:
            if not isinstance(raw, dict):
                raise ValueError("each block must be an object")
            lines = []
            for line in raw.get("lines") or []:
                text = (line.get("text") or "") if isinstance(line, dict) else line
                if not isinstance(text, str):
                    raise ValueError("line text must be a string")
                lines.append(TextLine(text=text))
            box = raw.get("bounding_box") or raw.get("boundingBox")
            bounding_box = None
            if box:
                bounding_box = BoundingBox(
                    left=int(box.get("left", 0)),
                    top=int(box.get("top", 0)),
                    right=int(box.get("right", 0)),
                    bottom=int(box.get("bottom", 0)),
                )
            blocks.append(TextBlock(lines=lines, bounding_box=bounding_box))
        full_text = data.get("full_text") or data.get("fullText")
        if full_text is None:
            full_text = "\n".join(block.text for block in blocks)
        if not isinstance(full_text, str):
            raise ValueError("full_text must be a string")
        return cls(full_text=full_text, blocks=blocks)
