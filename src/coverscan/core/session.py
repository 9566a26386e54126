"""Drive a scan session from the first recognition pass to a saved Book.

The controller owns a single session slot. Each recognition pass either
completes the record or asks the user for one more field, in this order:
title (mandatory), author, publisher.
"""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from typing import Callable

import structlog

from .models import Book, PartialBookInfo, ScanStep
from .reconcile import LookupReconciler

log = structlog.get_logger()

PROMPTS = {
    ScanStep.NEED_ISBN: "Scan the back cover for the ISBN",
    ScanStep.NEED_TITLE: "Scan the front cover for the title",
    ScanStep.NEED_AUTHOR: "Scan for the author",
    ScanStep.NEED_PUBLISHER: "Scan for the publisher",
}

SKIPPABLE = frozenset({ScanStep.NEED_ISBN, ScanStep.NEED_AUTHOR, ScanStep.NEED_PUBLISHER})

_STEP_FIELD = {
    ScanStep.NEED_ISBN: "isbn",
    ScanStep.NEED_TITLE: "title",
    ScanStep.NEED_AUTHOR: "author",
    ScanStep.NEED_PUBLISHER: "publisher",
}


class ScanSessionError(Exception):
    """The requested action does not fit the current session state."""


class ScanBusyError(ScanSessionError):
    """A recognition or lookup round trip is still outstanding."""


@dataclass(frozen=True)
class ScanSession:
    step: ScanStep = ScanStep.NONE
    info: PartialBookInfo | None = None
    skipped: frozenset[str] = frozenset()
    candidates: tuple[PartialBookInfo, ...] = ()


@dataclass(frozen=True)
class StepOutcome:
    """What the surface should show after a controller call."""

    step: ScanStep
    prompt: str | None = None
    skippable: bool = False
    info: PartialBookInfo | None = None
    book: Book | None = None
    nothing_detected: bool = False

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "prompt": self.prompt,
            "skippable": self.skippable,
            "info": self.info.to_dict() if self.info else None,
            "book": self.book.to_dict() if self.book else None,
            "nothing_detected": self.nothing_detected,
        }


class ScanStepController:
    def __init__(
        self, reconciler: LookupReconciler, on_book: Callable[[Book], None]
    ) -> None:
        self.reconciler = reconciler
        self.on_book = on_book
        self._session = ScanSession()
        self._lock = asyncio.Lock()

    @property
    def session(self) -> ScanSession:
        return self._session

    @property
    def step(self) -> ScanStep:
        return self._session.step

    @property
    def accumulated(self) -> PartialBookInfo | None:
        return self._session.info

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def current(self) -> StepOutcome:
        if self._session.step is ScanStep.NONE:
            return StepOutcome(step=ScanStep.NONE)
        return self._prompt(self._session.step)

    async def handle_pass(self, info: PartialBookInfo) -> StepOutcome:
        """Feed the fields extracted from one recognition pass."""
        if self._lock.locked():
            raise ScanBusyError("a scan is already in progress")
        async with self._lock:
            step = self._session.step
            if step in (ScanStep.NONE, ScanStep.NEED_ISBN):
                return await self._start(info)

            field = _STEP_FIELD[step]
            value = getattr(info, field)
            if value:
                accumulated = self._session.info or PartialBookInfo()
                self._update(info=accumulated.replace(**{field: value}))
                return self._check_next_step()
            if step is ScanStep.NEED_TITLE:
                return self._prompt(step, nothing_detected=info.is_empty)
            # Author and publisher are optional; a pass without them moves on.
            self._update(skipped=self._session.skipped | {field})
            return self._check_next_step(nothing_detected=info.is_empty)

    def skip(self) -> StepOutcome:
        step = self._require_session()
        if step is ScanStep.NEED_TITLE:
            log.info("title_skip_refused")
            return self._prompt(step)
        self._update(skipped=self._session.skipped | {_STEP_FIELD[step]})
        log.info("scan_step_skipped", step=step.value)
        return self._check_next_step()

    def cancel(self) -> StepOutcome:
        self._require_session()
        log.info("scan_session_cancelled", info=self._session.info)
        self._session = ScanSession()
        return StepOutcome(step=ScanStep.NONE)

    async def suggest(self) -> list[PartialBookInfo]:
        """Search the lookup service by the scanned title for candidate records."""
        self._require_session()
        info = self._session.info
        if info is None or not info.title:
            raise ScanSessionError("a title is needed before searching")
        async with self._lock:
            candidates = await self.reconciler.search_by_title(info.title)
        self._update(candidates=tuple(candidates))
        return candidates

    def apply_candidate(self, index: int) -> StepOutcome:
        self._require_session()
        candidates = self._session.candidates
        if not 0 <= index < len(candidates):
            raise ScanSessionError(f"no candidate at index {index}")
        merged = (self._session.info or PartialBookInfo()).merge(candidates[index])
        self._update(info=merged, candidates=())
        return self._check_next_step()

    # -- internals -------------------------------------------------------------

    def _require_session(self) -> ScanStep:
        if self._lock.locked():
            raise ScanBusyError("a scan is already in progress")
        if self._session.step is ScanStep.NONE:
            raise ScanSessionError("no scan session is active")
        return self._session.step

    def _update(self, **changes) -> None:
        self._session = dataclasses.replace(self._session, **changes)

    async def _start(self, info: PartialBookInfo) -> StepOutcome:
        if self._session.info is not None:
            info = self._session.info.merge(info)

        if info.isbn:
            found = await self.reconciler.search_by_isbn(info.isbn)
            if found is not None:
                info = found.merge(info)
            self._session = ScanSession(step=self._session.step, info=info)
            return self._check_next_step()

        if info.title:
            self._session = ScanSession(step=self._session.step, info=info)
            return self._check_next_step()

        self._session = ScanSession(
            step=ScanStep.NEED_ISBN, info=None if info.is_empty else info
        )
        return self._prompt(ScanStep.NEED_ISBN, nothing_detected=info.is_empty)

    def _check_next_step(self, nothing_detected: bool = False) -> StepOutcome:
        info = self._session.info or PartialBookInfo()
        skipped = self._session.skipped
        if not info.title:
            next_step = ScanStep.NEED_TITLE
        elif not info.author and "author" not in skipped:
            next_step = ScanStep.NEED_AUTHOR
        elif not info.publisher and "publisher" not in skipped:
            next_step = ScanStep.NEED_PUBLISHER
        else:
            return self._finalize()
        self._update(step=next_step)
        return self._prompt(next_step, nothing_detected=nothing_detected)

    def _finalize(self) -> StepOutcome:
        info = self._session.info or PartialBookInfo()
        book = info.to_book()
        if book is None:
            self._update(step=ScanStep.NEED_TITLE)
            return self._prompt(ScanStep.NEED_TITLE)
        self._session = ScanSession()
        log.info("book_finalized", title=book.title, isbn=book.isbn)
        self.on_book(book)
        return StepOutcome(step=ScanStep.NONE, info=info, book=book)

    def _prompt(self, step: ScanStep, nothing_detected: bool = False) -> StepOutcome:
        return StepOutcome(
            step=step,
            prompt=PROMPTS[step],
            skippable=step in SKIPPABLE,
            info=self._session.info,
            nothing_detected=nothing_detected,
        )
