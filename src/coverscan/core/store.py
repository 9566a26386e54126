"""SQLite-backed storage for the scanned book list."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

import structlog

from .models import Book

log = structlog.get_logger()


class StorageError(Exception):
    """Loading or saving books failed."""


class BookStore:
    """Keep the book list in a local SQLite database.

    ``save`` replaces the whole list inside one transaction, so a failed save
    leaves the previous list intact.
    """

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = Path(os.environ.get("LIBRARY_DB", ".data/coverscan.db"))
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS books (
                position INTEGER PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT,
                publisher TEXT,
                isbn TEXT,
                price TEXT,
                scanned_time INTEGER
            )"""
        )
        self._conn.commit()

    def load(self) -> list[Book]:
        try:
            rows = self._conn.execute(
                "SELECT title, author, publisher, isbn, price, scanned_time "
                "FROM books ORDER BY position"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"could not load books: {e}") from e

        books = []
        for title, author, publisher, isbn, price, scanned_time in rows:
            if not title:
                log.warning("stored_book_without_title", scanned_time=scanned_time)
                continue
            books.append(
                Book(
                    title=title,
                    author=author or "",
                    publisher=publisher or "",
                    isbn=isbn or "",
                    price=price or "",
                    scanned_time=scanned_time,
                )
            )
        log.debug("books_loaded", count=len(books))
        return books

    def save(self, books: list[Book]) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM books")
                self._conn.executemany(
                    "INSERT INTO books (position, title, author, publisher, isbn, price, scanned_time) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (i, b.title, b.author, b.publisher, b.isbn, b.price, b.scanned_time)
                        for i, b in enumerate(books)
                    ],
                )
        except sqlite3.Error as e:
            raise StorageError(f"could not save books: {e}") from e
        log.debug("books_saved", count=len(books))

    def close(self) -> None:
        self._conn.close()
