"""Run text recognizers in preference order until one yields usable fields.

Two entry points share the same selection rule. The web service receives
results already produced on the device and calls ``first_usable``.
``RecognitionChain`` is the in-process API for callers that hold an image and
recognizer objects, such as a desktop or batch scanner embedding the engine.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Protocol

import structlog

from .extractor import FieldExtractor, is_valid_title
from .models import PartialBookInfo, RecognitionResult

log = structlog.get_logger()


class RecognitionError(Exception):
    """Raised by a recognizer that could not process an image."""


class TextRecognizer(Protocol):
    name: str

    def recognize(self, image: Any) -> RecognitionResult: ...


def first_usable(
    results: Iterable[RecognitionResult], extractor: FieldExtractor | None = None
) -> PartialBookInfo:
    """Extract fields from each result in turn and return the first non-empty one.

    A title that is too short, numeric or pure punctuation does not count.
    """
    extractor = extractor or FieldExtractor()
    for i, result in enumerate(results):
        if result.is_empty:
            continue
        info = extractor.extract(result)
        if info.title is not None and not is_valid_title(info.title):
            info = info.replace(title=None)
        if not info.is_empty:
            log.debug("recognition_variant_used", variant=i)
            return info
    return PartialBookInfo()


class RecognitionChain:
    """Ordered list of recognizers, e.g. a CJK model first and a Latin one second.

    Recognizers are blocking, so each one runs in a worker thread.
    """

    def __init__(
        self, recognizers: list[TextRecognizer], extractor: FieldExtractor | None = None
    ) -> None:
        self.recognizers = recognizers
        self.extractor = extractor or FieldExtractor()

    async def recognize(self, image: Any) -> PartialBookInfo:
        for recognizer in self.recognizers:
            try:
                result = await asyncio.to_thread(recognizer.recognize, image)
            except RecognitionError as e:
                log.warning("recognizer_failed", recognizer=recognizer.name, error=str(e))
                continue
            info = first_usable([result], self.extractor)
            if not info.is_empty:
                log.debug("recognizer_hit", recognizer=recognizer.name, title=info.title)
                return info
            log.debug("recognizer_empty", recognizer=recognizer.name)
        return PartialBookInfo()
