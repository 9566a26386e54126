"""Pick book fields out of text recognized on a cover image.

Each field is extracted by an ordered list of rules. A rule is a pure function
returning the field value or None; the first rule that returns a value wins.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable

import structlog

from .models import PartialBookInfo, RecognitionResult, TextBlock

log = structlog.get_logger()

LineRule = Callable[[str], "str | None"]

_CJK = r"\u4e00-\u9fa5"
_WHITESPACE_RE = re.compile(r"\s+")
_BAR_RE = re.compile(r"[|｜]")
_EDGE_PUNCTUATION = ".。,，;；:：!！?？\"'`[]【】()（）<>《》“”‘’"

_SQUARE_TAG_RE = re.compile(r"\[.*?\]")
_PAREN_RE = re.compile(r"\((.*?)\)")
_COLON_RE = re.compile(r"[：:]")

_PUBLISHER_HOUSE_RE = re.compile(rf"[{_CJK}]{{2,20}}出版社")
_PUBLISHER_GROUP_RE = re.compile(rf"[{_CJK}]{{2,20}}出版[社集团传媒]{{0,4}}")

_ISBN_RE = re.compile(
    r"(?:ISBN[:\s-]*)?(?:978|979)[-\s]?[0-9]{1,5}[-\s]?[0-9]{1,7}[-\s]?[0-9]{1,7}[-\s]?[0-9]"
)
_PRICE_RE = re.compile(r"(?:定价|价格)[：:￥¥]?\s*([0-9.]+)\s*元")


def _contains_cjk(text: str) -> bool:
    return any("\u4e00" <= ch <= "\u9fff" for ch in text)


def _split_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def _first_match(rules: Iterable[LineRule], lines: list[str], line_major: bool) -> str | None:
    rules = list(rules)
    if line_major:
        pairs = ((line, rule) for line in lines for rule in rules)
    else:
        pairs = ((line, rule) for rule in rules for line in lines)
    for line, rule in pairs:
        value = rule(line)
        if value:
            return value
    return None


# -- Title ---------------------------------------------------------------------


def clean_title(title: str) -> str:
    title = _WHITESPACE_RE.sub(" ", title.strip())
    title = _BAR_RE.sub("", title).strip()
    return title.strip(_EDGE_PUNCTUATION).strip()


def is_valid_title(title: str | None) -> bool:
    if not title or len(title) < 2:
        return False
    if all(ch.isdigit() or ch.isspace() for ch in title):
        return False
    if not any(ch.isalnum() for ch in title):
        return False
    return True


def _length_score(length: int) -> float:
    if 2 <= length <= 4:
        return 500.0
    if 5 <= length <= 10:
        return 1000.0
    if 11 <= length <= 20:
        return 800.0
    return 300.0


def score_block(block: TextBlock, image_height: int) -> float:
    """Rank a block as a title candidate.

    Large, wide, high-up, moderately long and CJK-bearing blocks score higher.
    """
    text = block.text.strip()
    score = 0.0
    box = block.bounding_box
    if box is not None:
        score += box.area * 0.5
        score += (1.0 - box.top / image_height) * 1000
        score += box.width * 0.3
    score += _length_score(len(text))
    if _contains_cjk(text):
        score += 500.0
    return score


def extract_title(result: RecognitionResult) -> str | None:
    candidates = [
        block
        for block in result.blocks
        if len(block.text.strip()) >= 2 and not block.text.strip().isdigit()
    ]
    if not candidates:
        return None

    # Image height is approximated by the lowest block edge.
    image_height = max(
        1, max((b.bounding_box.bottom for b in result.blocks if b.bounding_box), default=1)
    )
    best = max(candidates, key=lambda block: score_block(block, image_height))
    title = best.text.strip()
    if len(title) < 4 and len(best.lines) > 1:
        title = " ".join(line.text.strip() for line in best.lines[:2])
    return clean_title(title) or None


# -- Author --------------------------------------------------------------------


def author_by_marker(line: str) -> str | None:
    """``[美] 某某 (Name) 著`` or ``某某 编``."""
    if not ("著" in line or "编" in line) or not 3 <= len(line) <= 80:
        return None
    author = _SQUARE_TAG_RE.sub("", line)
    author = _PAREN_RE.sub("", author)
    for word in ("著", "编", "作者"):
        author = author.replace(word, "")
    author = _COLON_RE.sub("", author).strip()

    original_name = _PAREN_RE.search(line)
    if original_name and original_name.group(1):
        author = f"{author} ({original_name.group(1)})"
    if 2 <= len(author) <= 50:
        return author
    return None


def author_by_label(line: str) -> str | None:
    """``作者：某某``."""
    if not line.startswith("作者") or len(line) >= 50:
        return None
    author = _COLON_RE.sub("", line.replace("作者", "")).strip()
    if 2 <= len(author) <= 30:
        return author
    return None


def author_by_compiler(line: str) -> str | None:
    """``某某 编著``."""
    if "编著" not in line or not 3 <= len(line) <= 50:
        return None
    author = _SQUARE_TAG_RE.sub("", line).replace("编著", "")
    author = _COLON_RE.sub("", author).strip()
    if 2 <= len(author) <= 30:
        return author
    return None


AUTHOR_RULES: list[LineRule] = [author_by_marker, author_by_label, author_by_compiler]


def extract_author(text: str) -> str | None:
    return _first_match(AUTHOR_RULES, _split_lines(text), line_major=True)


# -- Publisher -----------------------------------------------------------------


def publisher_house(line: str) -> str | None:
    if "出版社" not in line or len(line) >= 50:
        return None
    match = _PUBLISHER_HOUSE_RE.search(line)
    if match:
        return match.group(0)
    if line.endswith("出版社") and "著" not in line and "作者" not in line:
        return line
    return None


def publisher_group(line: str) -> str | None:
    if "出版" not in line or len(line) >= 30:
        return None
    match = _PUBLISHER_GROUP_RE.search(line)
    return match.group(0) if match else None


# Each rule scans every line before the next rule is tried.
PUBLISHER_RULES: list[LineRule] = [publisher_house, publisher_group]


def extract_publisher(text: str) -> str | None:
    return _first_match(PUBLISHER_RULES, _split_lines(text), line_major=False)


# -- ISBN and price ------------------------------------------------------------


def extract_isbn(text: str) -> str | None:
    match = _ISBN_RE.search(text)
    if not match:
        return None
    digits = re.sub(r"[^0-9]", "", match.group(0))
    if len(digits) != 13:
        return None
    return f"ISBN {digits}"


def extract_price(text: str) -> str | None:
    match = _PRICE_RE.search(text)
    if not match:
        return None
    return f"¥{match.group(1)}"


class FieldExtractor:
    """Turns one recognition result into a PartialBookInfo."""

    def extract(self, result: RecognitionResult) -> PartialBookInfo:
        text = result.full_text
        info = PartialBookInfo(
            title=extract_title(result),
            author=extract_author(text),
            publisher=extract_publisher(text),
            isbn=extract_isbn(text),
            price=extract_price(text),
        )
        log.debug("fields_extracted", **info.to_dict())
        return info
