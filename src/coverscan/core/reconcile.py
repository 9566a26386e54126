"""Turn online lookup records into PartialBookInfo for merging with scanned data."""

from __future__ import annotations

import re

import httpx
import structlog

from .lookup import MAX_TITLE_RESULTS, BookLookup
from .models import PartialBookInfo

log = structlog.get_logger()


# Malformed upstream records surface as one of these while being converted.
LOOKUP_ERRORS = (httpx.HTTPError, ValueError, TypeError, AttributeError, KeyError)


def format_price(amount: float | str | None, currency: str) -> str | None:
    if amount is None:
        return None
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        return None
    if amount <= 0:
        return None
    if currency == "CNY":
        return f"¥{amount:.2f}"
    if currency == "USD":
        return f"${amount:.2f}"
    return f"{amount:.2f} {currency}"


def _join_title(record: dict) -> str | None:
    title = record.get("title") or ""
    subtitle = record.get("subtitle") or ""
    if not title:
        return None
    return f"{title}: {subtitle}" if subtitle else title


def info_from_record(record: dict, isbn: str | None = None, with_price: bool = True) -> PartialBookInfo:
    authors = [a for a in record.get("authors") or [] if a]
    record_isbn = isbn or record.get("isbn") or ""
    price = None
    if with_price:
        price = format_price(record.get("price_amount"), record.get("currency_code") or "")
    return PartialBookInfo(
        title=_join_title(record),
        author=", ".join(authors) or None,
        publisher=record.get("publisher") or None,
        isbn=f"ISBN {record_isbn}" if record_isbn else None,
        price=price,
    )


class LookupReconciler:
    """Best-effort enrichment: failures come back as None or an empty list."""

    def __init__(self, lookup: BookLookup) -> None:
        self.lookup = lookup

    async def search_by_isbn(self, isbn: str) -> PartialBookInfo | None:
        digits = re.sub(r"[^0-9]", "", isbn)
        if not 10 <= len(digits) <= 13:
            log.warning("invalid_isbn", isbn=isbn)
            return None
        try:
            record = await self.lookup.lookup_by_isbn(digits)
            if record is None:
                log.info("isbn_lookup_no_result", isbn=digits)
                return None
            info = info_from_record(record, isbn=digits)
        except LOOKUP_ERRORS as e:
            log.warning("isbn_lookup_failed", isbn=digits, error=str(e))
            return None
        log.info("isbn_lookup_hit", isbn=digits, title=info.title)
        return info

    async def search_by_title(self, title: str) -> list[PartialBookInfo]:
        try:
            records = await self.lookup.lookup_by_title(title)
            return [
                info_from_record(record, with_price=False)
                for record in records[:MAX_TITLE_RESULTS]
            ]
        except LOOKUP_ERRORS as e:
            log.warning("title_lookup_failed", title=title, error=str(e))
            return []
