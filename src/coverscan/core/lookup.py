"""Look up book metadata online by ISBN or by title."""

from __future__ import annotations

import asyncio
import os
import time

import httpx
import structlog

log = structlog.get_logger()

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
MAX_TITLE_RESULTS = 5

# Open Library API compliance (https://openlibrary.org/developers/api)
# Identified requests get 3 req/s; unidentified get 1 req/s.
_OL_CONTACT = os.environ.get("OL_CONTACT_EMAIL", "")
_OL_USER_AGENT = f"CoverScan/0.1.0 ({_OL_CONTACT})" if _OL_CONTACT else "CoverScan/0.1.0"
_OL_MIN_INTERVAL = 0.35  # seconds between Open Library requests


def _record(
    title: str = "",
    subtitle: str = "",
    authors: list[str] | None = None,
    publisher: str = "",
    price_amount: float | None = None,
    currency_code: str = "",
    isbn: str = "",
) -> dict:
    return {
        "title": title,
        "subtitle": subtitle,
        "authors": authors or [],
        "publisher": publisher,
        "price_amount": price_amount,
        "currency_code": currency_code,
        "isbn": isbn,
    }


def _json_object(resp: httpx.Response) -> dict:
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _google_record(item: dict) -> dict:
    info = item.get("volumeInfo") or {}
    isbn = ""
    for identifier in info.get("industryIdentifiers") or []:
        if isinstance(identifier, dict) and "ISBN" in str(identifier.get("type", "")):
            isbn = identifier.get("identifier", "")
            break
    list_price = (item.get("saleInfo") or {}).get("listPrice") or {}
    publisher = info.get("publisher") or ""
    return _record(
        title=info.get("title") or "",
        subtitle=info.get("subtitle") or "",
        authors=[a for a in info.get("authors") or [] if a],
        publisher="" if publisher == "null" else publisher,
        price_amount=list_price.get("amount"),
        currency_code=list_price.get("currencyCode") or "",
        isbn=isbn,
    )


class BookLookup:
    """Queries Google Books (primary) and Open Library (fallback).

    Records come back as plain dicts with title, subtitle, authors, publisher,
    price_amount, currency_code and isbn keys.
    """

    def __init__(
        self,
        api_key: str = "",
        lang: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
        ol_min_interval: float = _OL_MIN_INTERVAL,
    ) -> None:
        self.api_key = api_key
        self.lang = lang
        self.transport = transport
        self.ol_min_interval = ol_min_interval
        self._ol_last_request: float = 0.0  # monotonic timestamp of last OL request

    @classmethod
    def from_env(cls) -> BookLookup:
        return cls(
            api_key=os.environ.get("GOOGLE_BOOKS_API_KEY", ""),
            lang=os.environ.get("GOOGLE_BOOKS_LANG", "zh-CN"),
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=10)

    async def _ol_get(
        self, client: httpx.AsyncClient, url: str, **kwargs: object
    ) -> httpx.Response:
        """Rate-limited GET for Open Library endpoints."""
        kwargs.setdefault("headers", {})
        kwargs["headers"]["User-Agent"] = _OL_USER_AGENT  # type: ignore[index]

        elapsed = time.monotonic() - self._ol_last_request
        if elapsed < self.ol_min_interval:
            await asyncio.sleep(self.ol_min_interval - elapsed)
        self._ol_last_request = time.monotonic()

        return await client.get(url, **kwargs)

    async def _google_get(self, client: httpx.AsyncClient, params: dict) -> list[dict]:
        if self.api_key:
            params["key"] = self.api_key
        resp = await client.get(GOOGLE_BOOKS_URL, params=params)
        resp.raise_for_status()
        items = _json_object(resp).get("items") or []
        if not isinstance(items, list):
            raise ValueError("items is not a list")
        return [item for item in items if isinstance(item, dict)]

    async def fetch_google_isbn(self, client: httpx.AsyncClient, isbn: str) -> dict | None:
        try:
            items = await self._google_get(client, {"q": f"isbn:{isbn}"})
        except (httpx.HTTPError, ValueError) as e:
            log.debug("google_isbn_error", isbn=isbn, error=str(e))
            return None
        if not items:
            log.debug("google_isbn_no_match", isbn=isbn)
            return None
        record = _google_record(items[0])
        log.debug("google_isbn_hit", isbn=isbn, title=record["title"])
        return record

    async def fetch_openlibrary_isbn(
        self, client: httpx.AsyncClient, isbn: str
    ) -> dict | None:
        """Fetch an edition from Open Library, resolving author names."""
        url = f"https://openlibrary.org/isbn/{isbn}.json"
        try:
            resp = await self._ol_get(client, url, follow_redirects=True)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = _json_object(resp)
            authors = []
            for entry in data.get("authors") or []:
                key = entry.get("key") if isinstance(entry, dict) else None
                if not key:
                    continue
                a_resp = await self._ol_get(client, f"https://openlibrary.org{key}.json")
                if a_resp.status_code == 200:
                    name = _json_object(a_resp).get("name", "")
                    if name:
                        authors.append(name)
            publishers = data.get("publishers") or []
            record = _record(
                title=data.get("title", ""),
                subtitle=data.get("subtitle", ""),
                authors=authors,
                publisher=publishers[0] if publishers else "",
                isbn=isbn,
            )
            log.debug("openlibrary_isbn_hit", isbn=isbn, title=record["title"])
            return record
        except (httpx.HTTPError, ValueError) as e:
            log.debug("openlibrary_isbn_error", isbn=isbn, error=str(e))
            return None

    async def lookup_by_isbn(self, isbn: str) -> dict | None:
        """Google Books first, Open Library when Google has nothing."""
        async with self._client() as client:
            record = await self.fetch_google_isbn(client, isbn)
            if record and record["title"]:
                return record
            record = await self.fetch_openlibrary_isbn(client, isbn)
            if record and record["title"]:
                return record
        return None

    async def fetch_google_title(self, client: httpx.AsyncClient, title: str) -> list[dict]:
        params = {"q": f"intitle:{title}", "maxResults": MAX_TITLE_RESULTS}
        if self.lang:
            params["langRestrict"] = self.lang
        try:
            items = await self._google_get(client, params)
        except (httpx.HTTPError, ValueError) as e:
            log.debug("google_title_error", title=title, error=str(e))
            return []
        records = [_google_record(item) for item in items[:MAX_TITLE_RESULTS]]
        return [r for r in records if r["title"]]

    async def fetch_openlibrary_title(
        self, client: httpx.AsyncClient, title: str
    ) -> list[dict]:
        url = "https://openlibrary.org/search.json"
        try:
            resp = await self._ol_get(
                client, url, params={"title": title, "limit": MAX_TITLE_RESULTS}
            )
            resp.raise_for_status()
            docs = _json_object(resp).get("docs") or []
        except (httpx.HTTPError, ValueError) as e:
            log.debug("openlibrary_title_error", title=title, error=str(e))
            return []
        records = []
        for doc in docs[:MAX_TITLE_RESULTS]:
            if not isinstance(doc, dict) or not doc.get("title"):
                continue
            publishers = doc.get("publisher") or []
            isbns = doc.get("isbn") or []
            records.append(
                _record(
                    title=doc["title"],
                    subtitle=doc.get("subtitle", ""),
                    authors=doc.get("author_name") or [],
                    publisher=publishers[0] if publishers else "",
                    isbn=isbns[0] if isbns else "",
                )
            )
        return records

    async def lookup_by_title(self, title: str) -> list[dict]:
        async with self._client() as client:
            records = await self.fetch_google_title(client, title)
            if not records:
                records = await self.fetch_openlibrary_title(client, title)
        log.debug("title_lookup_done", title=title, results=len(records))
        return records[:MAX_TITLE_RESULTS]
