"""FastAPI web application for CoverScan."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import structlog
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from ..core.catalog import export_books, generate_csv_bytes
from ..core.library import BookList
from ..core.lookup import BookLookup
from ..core.models import Book, RecognitionResult
from ..core.reconcile import LookupReconciler
from ..core.recognition import first_usable
from ..core.session import ScanBusyError, ScanSessionError, ScanStepController, StepOutcome
from ..core.store import BookStore, StorageError

load_dotenv()

log = structlog.get_logger()

MAX_BODY_BYTES = 2_000_000  # recognition payloads carry every text block
EXPORT_DIR = Path(os.environ.get("EXPORT_DIR", "exports"))

library: BookList | None = None
controller: ScanStepController | None = None


def configure(store: BookStore | None = None, lookup: BookLookup | None = None) -> None:
    """Build the book list and scan controller. Called lazily on first request."""
    global library, controller
    library = BookList(store or BookStore())
    reconciler = LookupReconciler(lookup or BookLookup.from_env())
    controller = ScanStepController(reconciler, on_book=library.add)


def _state() -> tuple[BookList, ScanStepController]:
    if library is None or controller is None:
        configure()
    return library, controller


def _book_json(book: Book) -> dict:
    return {
        **book.to_dict(),
        "key": book.key,
        "formatted_time": book.formatted_time,
        "detail_info": book.detail_info,
    }


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _session_error(e: ScanSessionError) -> JSONResponse:
    if isinstance(e, ScanBusyError):
        return _error("A scan is still being processed. Please wait.", 409)
    return _error(str(e), 409)


def _outcome_json(outcome: StepOutcome) -> dict:
    data = outcome.to_dict()
    if outcome.book is not None:
        data["book"] = _book_json(outcome.book)
    return data


app = FastAPI(title="CoverScan", docs_url=None, redoc_url=None)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.get("/health")
async def health():
    books, scans = _state()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "0.1.0",
        "environment": os.environ.get("ENV", "dev"),
        "books": len(books),
        "scan_step": scans.step.value,
    }


# -- Scanning ----------------------------------------------------------------


@app.get("/api/scan")
async def scan_state():
    _, scans = _state()
    return _outcome_json(scans.current())


@app.post("/api/scan")
async def scan(request: Request):
    """Run one recognition pass.

    The body is either a single recognition result or ``{"results": [...]}``
    holding alternative recognizer outputs in preference order.
    """
    _, scans = _state()
    if scans.busy:
        return _session_error(ScanBusyError())

    content_length = request.headers.get("content-length")
    if content_length and int(content_length) > MAX_BODY_BYTES:
        return _error("Request too large.", 413)

    body = await request.json()
    if not isinstance(body, dict):
        return _error("Recognition result must be a JSON object.", 400)
    raw_results = body["results"] if "results" in body else [body]
    if not isinstance(raw_results, list) or not all(isinstance(r, dict) for r in raw_results):
        return _error("Invalid recognition result.", 400)
    try:
        results = [RecognitionResult.from_dict(r) for r in raw_results]
    except (TypeError, ValueError, AttributeError) as e:
        log.warning("invalid_recognition_result", error=str(e))
        return _error("Invalid recognition result.", 400)
    info = first_usable(results)
    if info.is_empty:
        log.info("nothing_detected")

    try:
        outcome = await scans.handle_pass(info)
    except ScanSessionError as e:
        return _session_error(e)
    except StorageError as e:
        log.error("book_save_failed", error=str(e))
        return _error("The book was added but the list could not be saved.", 500)
    return _outcome_json(outcome)


@app.post("/api/scan/skip")
async def scan_skip():
    _, scans = _state()
    try:
        outcome = scans.skip()
    except ScanSessionError as e:
        return _session_error(e)
    except StorageError as e:
        log.error("book_save_failed", error=str(e))
        return _error("The book was added but the list could not be saved.", 500)
    return _outcome_json(outcome)


@app.post("/api/scan/cancel")
async def scan_cancel():
    _, scans = _state()
    try:
        outcome = scans.cancel()
    except ScanSessionError as e:
        return _session_error(e)
    return _outcome_json(outcome)


@app.post("/api/scan/suggest")
async def scan_suggest():
    _, scans = _state()
    try:
        candidates = await scans.suggest()
    except ScanSessionError as e:
        return _session_error(e)
    return {"candidates": [c.to_dict() for c in candidates]}


@app.post("/api/scan/apply/{index}")
async def scan_apply(index: int):
    _, scans = _state()
    try:
        outcome = scans.apply_candidate(index)
    except ScanSessionError as e:
        return _session_error(e)
    except StorageError as e:
        log.error("book_save_failed", error=str(e))
        return _error("The book was added but the list could not be saved.", 500)
    return _outcome_json(outcome)


# -- Book list ---------------------------------------------------------------


@app.get("/api/books")
async def list_books():
    books, _ = _state()
    return {"books": [_book_json(b) for b in books.books]}


@app.patch("/api/books/{key}")
async def rename_book(key: int, request: Request):
    books, _ = _state()
    body = await request.json()
    title = str(body.get("title", "")) if isinstance(body, dict) else ""
    try:
        book = books.rename(key, title)
    except ValueError:
        return _error("Title must not be empty.", 400)
    except StorageError as e:
        log.error("book_save_failed", error=str(e))
        return _error("The list could not be saved.", 500)
    if book is None:
        return _error("Book not found.", 404)
    return _book_json(book)


@app.delete("/api/books/{key}")
async def delete_book(key: int):
    books, _ = _state()
    try:
        removed = books.remove(key)
    except StorageError as e:
        log.error("book_save_failed", error=str(e))
        return _error("The list could not be saved.", 500)
    if not removed:
        return _error("Book not found.", 404)
    return {"deleted": key}


@app.delete("/api/books")
async def clear_books():
    books, _ = _state()
    try:
        books.clear()
    except StorageError as e:
        log.error("book_save_failed", error=str(e))
        return _error("The list could not be saved.", 500)
    return {"books": []}


# -- Export ------------------------------------------------------------------


@app.get("/api/download/csv")
async def download_csv():
    books, _ = _state()
    if not len(books):
        return _error("No books to export.", 400)
    csv_bytes = generate_csv_bytes(books.books)
    return Response(
        content=csv_bytes,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="books.csv"'},
    )


@app.post("/api/export")
async def export():
    books, _ = _state()
    try:
        path = export_books(books.books, EXPORT_DIR)
    except StorageError as e:
        log.error("export_failed", error=str(e))
        return _error("Export failed.", 500)
    if path is None:
        return _error("No books to export.", 400)
    return {"path": str(path)}


def main():
    port = int(os.environ.get("PORT", "8000"))
    is_dev = os.environ.get("ENV", "dev") == "dev"
    uvicorn.run(
        "coverscan.web.app:app",
        host="0.0.0.0",
        port=port,
        reload=is_dev,
    )
