"""Export the scanned book list as a CSV spreadsheet."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from pathlib import Path

import structlog

from .models import Book
from .store import StorageError

log = structlog.get_logger()

COLUMNS = ["Index", "Title", "Author", "Publisher", "ISBN", "Price", "Scanned At"]


def _book_to_row(index: int, book: Book) -> dict[str, str]:
    return {
        "Index": str(index),
        "Title": book.title,
        "Author": book.author,
        "Publisher": book.publisher,
        "ISBN": book.isbn,
        "Price": book.price,
        "Scanned At": book.formatted_time,
    }


def _write_rows(f, books: list[Book]) -> None:
    writer = csv.DictWriter(f, fieldnames=COLUMNS)
    writer.writeheader()
    for i, book in enumerate(books, start=1):
        writer.writerow(_book_to_row(i, book))


def write_csv(books: list[Book], output: Path) -> None:
    """Write books to a CSV file (UTF-8 with BOM so spreadsheet apps detect it)."""
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        with output.open("w", newline="", encoding="utf-8-sig") as f:
            _write_rows(f, books)
    except OSError as e:
        raise StorageError(f"could not write {output}: {e}") from e
    log.info("csv_written", path=str(output), books=len(books))


def generate_csv_bytes(books: list[Book]) -> bytes:
    """Generate CSV content as bytes (for web download)."""
    buf = io.StringIO()
    _write_rows(buf, books)
    return buf.getvalue().encode("utf-8-sig")


def export_books(books: list[Book], export_dir: Path) -> Path | None:
    """Write a timestamped export file; returns None when there is nothing to export."""
    if not books:
        log.warning("export_skipped_empty")
        return None
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output = export_dir / f"books_{stamp}.csv"
    write_csv(books, output)
    return output


def read_csv(path: Path) -> list[dict[str, str]]:
    with path.open(newline="", encoding="utf-8-sig") as f:
        return list(csv.DictReader(f))
