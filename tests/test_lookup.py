"""Tests for core/lookup and core/reconcile"""

import asyncio

import httpx
from conftest import google_volume

from coverscan.core.lookup import BookLookup
from coverscan.core.models import PartialBookInfo
from coverscan.core.reconcile import LookupReconciler, format_price, info_from_record

GOOGLE = "www.googleapis.com"
OL = "openlibrary.org"


def run(coro):
    return asyncio.run(coro)


# ============================================================================
# Record conversion
# ============================================================================


def test_format_price():
    assert format_price(39.8, "CNY") == "¥39.80"
    assert format_price(12, "USD") == "$12.00"
    assert format_price(7.5, "EUR") == "7.50 EUR"
    assert format_price(0, "CNY") is None
    assert format_price(None, "CNY") is None
    assert format_price("20", "CNY") == "¥20.00"
    assert format_price("n/a", "CNY") is None


def test_info_from_record_joins_subtitle_and_authors():
    record = {
        "title": "Clean Code",
        "subtitle": "A Handbook",
        "authors": ["Robert C. Martin", "Other"],
        "publisher": "Prentice Hall",
        "price_amount": 30,
        "currency_code": "USD",
    }
    info = info_from_record(record, isbn="9780132350884")
    assert info == PartialBookInfo(
        title="Clean Code: A Handbook",
        author="Robert C. Martin, Other",
        publisher="Prentice Hall",
        isbn="ISBN 9780132350884",
        price="$30.00",
    )


# ============================================================================
# searchByISBN
# ============================================================================


def test_search_by_isbn_google_hit(routes):
    routes.add(
        GOOGLE,
        "/books/v1/volumes",
        {"items": [google_volume("活着", authors=["余华"], publisher="作家出版社", amount=20, currency="CNY")]},
    )
    reconciler = LookupReconciler(routes.lookup())

    info = run(reconciler.search_by_isbn("ISBN 978-7-5063-6543-7"))

    assert info == PartialBookInfo(
        title="活着", author="余华", publisher="作家出版社", isbn="ISBN 9787506365437", price="¥20.00"
    )
    assert routes.requests[0].url.params["q"] == "isbn:9787506365437"


def test_search_by_isbn_falls_back_to_open_library(routes):
    routes.add(GOOGLE, "/books/v1/volumes", {"totalItems": 0})
    routes.add(
        OL,
        "/isbn/9780441172719.json",
        {"title": "Dune", "publishers": ["Ace"], "authors": [{"key": "/authors/OL1A"}]},
    )
    routes.add(OL, "/authors/OL1A.json", {"name": "Frank Herbert"})
    reconciler = LookupReconciler(routes.lookup())

    info = run(reconciler.search_by_isbn("9780441172719"))

    assert info == PartialBookInfo(
        title="Dune", author="Frank Herbert", publisher="Ace", isbn="ISBN 9780441172719"
    )
    assert routes.requests[1].headers["User-Agent"].startswith("CoverScan/")


def test_search_by_isbn_no_match_anywhere(routes):
    routes.add(GOOGLE, "/books/v1/volumes", {"items": []})
    reconciler = LookupReconciler(routes.lookup())

    assert run(reconciler.search_by_isbn("9780000000000")) is None


def test_search_by_isbn_rejects_bad_length(routes):
    reconciler = LookupReconciler(routes.lookup())

    assert run(reconciler.search_by_isbn("ISBN 12345")) is None
    assert run(reconciler.search_by_isbn("97871116419810000")) is None
    assert routes.requests == []


def test_search_by_isbn_absorbs_server_errors(routes):
    routes.add(GOOGLE, "/books/v1/volumes", {"error": "boom"}, status=500)
    routes.add(OL, "/isbn/9787111641981.json", {"error": "boom"}, status=503)
    reconciler = LookupReconciler(routes.lookup())

    assert run(reconciler.search_by_isbn("9787111641981")) is None


def test_search_by_isbn_absorbs_network_errors():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    lookup = BookLookup(transport=httpx.MockTransport(handler), ol_min_interval=0)

    assert run(LookupReconciler(lookup).search_by_isbn("9787111641981")) is None


def test_search_by_isbn_absorbs_invalid_json():
    def handler(request):
        return httpx.Response(200, content=b"<html>")

    lookup = BookLookup(transport=httpx.MockTransport(handler), ol_min_interval=0)

    assert run(LookupReconciler(lookup).search_by_isbn("9787111641981")) is None


def test_search_by_isbn_absorbs_non_object_body(routes):
    routes.add(GOOGLE, "/books/v1/volumes", [])
    routes.add(OL, "/isbn/9787111641981.json", ["not", "an", "edition"])
    reconciler = LookupReconciler(routes.lookup())

    assert run(reconciler.search_by_isbn("9787111641981")) is None


def test_search_by_isbn_skips_non_object_items(routes):
    routes.add(GOOGLE, "/books/v1/volumes", {"items": ["oops", google_volume("活着")]})
    reconciler = LookupReconciler(routes.lookup())

    info = run(reconciler.search_by_isbn("9787506365437"))

    assert info.title == "活着"


def test_search_by_isbn_string_price_amount(routes):
    routes.add(GOOGLE, "/books/v1/volumes", {"items": [google_volume("活着", amount="20")]})
    reconciler = LookupReconciler(routes.lookup())

    assert run(reconciler.search_by_isbn("9787506365437")).price == "¥20.00"


class BrokenLookup:
    async def lookup_by_isbn(self, isbn):
        raise AttributeError("unexpected record shape")

    async def lookup_by_title(self, title):
        raise TypeError("unexpected record shape")


def test_reconciler_absorbs_non_http_errors():
    reconciler = LookupReconciler(BrokenLookup())

    assert run(reconciler.search_by_isbn("9787506365437")) is None
    assert run(reconciler.search_by_title("活着")) == []


def test_reconciler_absorbs_malformed_records():
    class OddRecords:
        async def lookup_by_isbn(self, isbn):
            return {"title": "活着", "authors": [1, 2]}

        async def lookup_by_title(self, title):
            return [{"title": "活着", "authors": 5}]

    reconciler = LookupReconciler(OddRecords())

    assert run(reconciler.search_by_isbn("9787506365437")) is None
    assert run(reconciler.search_by_title("活着")) == []


# ============================================================================
# searchByTitle
# ============================================================================


def test_search_by_title_caps_at_five_and_drops_price(routes):
    items = [
        google_volume(f"三体 {i}", authors=["刘慈欣"], amount=23, isbn=f"978000000000{i}")
        for i in range(7)
    ]
    routes.add(GOOGLE, "/books/v1/volumes", {"items": items})
    reconciler = LookupReconciler(routes.lookup(lang="zh-CN"))

    results = run(reconciler.search_by_title("三体"))

    assert len(results) == 5
    assert results[0] == PartialBookInfo(title="三体 0", author="刘慈欣", isbn="ISBN 9780000000000")
    assert all(r.price is None for r in results)
    params = routes.requests[0].url.params
    assert params["q"] == "intitle:三体"
    assert params["langRestrict"] == "zh-CN"


def test_search_by_title_falls_back_to_open_library(routes):
    routes.add(GOOGLE, "/books/v1/volumes", {"items": []})
    routes.add(
        OL,
        "/search.json",
        {
            "docs": [
                {
                    "title": "Dune",
                    "author_name": ["Frank Herbert"],
                    "publisher": ["Ace"],
                    "isbn": ["0441172717"],
                }
            ]
        },
    )
    reconciler = LookupReconciler(routes.lookup())

    results = run(reconciler.search_by_title("Dune"))

    assert results == [
        PartialBookInfo(title="Dune", author="Frank Herbert", publisher="Ace", isbn="ISBN 0441172717")
    ]


def test_search_by_title_non_object_body_is_empty_list(routes):
    routes.add(GOOGLE, "/books/v1/volumes", ["oops"])
    routes.add(OL, "/search.json", {"docs": ["oops", 3]})
    reconciler = LookupReconciler(routes.lookup())

    assert run(reconciler.search_by_title("Dune")) == []


def test_search_by_title_failure_is_empty_list(routes):
    routes.add(GOOGLE, "/books/v1/volumes", {}, status=500)
    routes.add(OL, "/search.json", {}, status=500)
    reconciler = LookupReconciler(routes.lookup())

    assert run(reconciler.search_by_title("Dune")) == []
