"""
Shared fixtures and builders for the tests.

HTTP is served by httpx.MockTransport; storage uses real SQLite files in
temporary directories.
"""

import json

import httpx
import pytest

from coverscan.core.library import BookList
from coverscan.core.lookup import BookLookup
from coverscan.core.models import BoundingBox, RecognitionResult, TextBlock, TextLine
from coverscan.core.store import BookStore


def block(text, box=None):
    """Build a TextBlock; ``text`` may hold several newline-separated lines."""
    bounding_box = BoundingBox(*box) if box else None
    return TextBlock(lines=[TextLine(t) for t in text.split("\n")], bounding_box=bounding_box)


def recognition(*blocks, full_text=None):
    if full_text is None:
        full_text = "\n".join(b.text for b in blocks)
    return RecognitionResult(full_text=full_text, blocks=list(blocks))


def google_volume(
    title,
    subtitle="",
    authors=(),
    publisher="",
    amount=None,
    currency="CNY",
    isbn="",
):
    info = {"title": title, "authors": list(authors)}
    if subtitle:
        info["subtitle"] = subtitle
    if publisher:
        info["publisher"] = publisher
    if isbn:
        info["industryIdentifiers"] = [{"type": "ISBN_13", "identifier": isbn}]
    item = {"volumeInfo": info}
    if amount is not None:
        item["saleInfo"] = {"listPrice": {"amount": amount, "currencyCode": currency}}
    return item


class Routes:
    """Route table for httpx.MockTransport keyed by host + path."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, host, path, payload, status=200):
        self.routes[(host, path)] = (status, payload)

    def handler(self, request):
        self.requests.append(request)
        status, payload = self.routes.get((request.url.host, request.url.path), (404, {}))
        return httpx.Response(status, content=json.dumps(payload).encode())

    def lookup(self, **kwargs):
        return BookLookup(transport=httpx.MockTransport(self.handler), ol_min_interval=0, **kwargs)


@pytest.fixture
def routes():
    return Routes()


@pytest.fixture
def store(tmp_path):
    s = BookStore(tmp_path / "library.db")
    yield s
    s.close()


@pytest.fixture
def book_list(store):
    return BookList(store)
