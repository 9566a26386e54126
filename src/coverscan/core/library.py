"""The user's list of scanned books, newest first."""

from __future__ import annotations

import dataclasses

import structlog

from .models import Book
from .store import BookStore

log = structlog.get_logger()


class BookList:
    """In-memory book list persisted through a BookStore after every change.

    Changes are applied in memory first. If saving fails the StorageError is
    raised and the in-memory list keeps the change, so the next successful save
    writes it out.
    """

    def __init__(self, store: BookStore) -> None:
        self.store = store
        self._books: list[Book] = store.load()

    @property
    def books(self) -> list[Book]:
        return list(self._books)

    def __len__(self) -> int:
        return len(self._books)

    def _index(self, key: int) -> int | None:
        for i, book in enumerate(self._books):
            if book.key == key:
                return i
        return None

    def get(self, key: int) -> Book | None:
        i = self._index(key)
        return None if i is None else self._books[i]

    def add(self, book: Book) -> Book:
        """Insert at the front. A key already in the list is moved on by 1 ms."""
        while self._index(book.key) is not None:
            book = dataclasses.replace(book, scanned_time=book.scanned_time + 1)
        self._books.insert(0, book)
        log.info("book_added", title=book.title, total=len(self._books))
        self.store.save(self._books)
        return book

    def remove(self, key: int) -> bool:
        i = self._index(key)
        if i is None:
            return False
        del self._books[i]
        self.store.save(self._books)
        return True

    def rename(self, key: int, title: str) -> Book | None:
        title = title.strip()
        if not title:
            raise ValueError("title must not be empty")
        i = self._index(key)
        if i is None:
            return None
        renamed = dataclasses.replace(self._books[i], title=title)
        self._books[i] = renamed
        self.store.save(self._books)
        return renamed

    def clear(self) -> None:
        self._books = []
        self.store.save(self._books)
