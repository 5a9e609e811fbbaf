"""
fallback.py — local identification used when the remote service can't help.

Cascade, in order (each stage is total, nothing here raises):
  1. resolve detected text (remote-provided text, else the on-device recognizer)
  2. no text          → generic "Product - Please specify", confidence 0
  3. normalize        → text_heuristics.normalize_text
  4. brand match      → "<Brand> (detected) - Please specify product"
  5. meaningful words → the extracted phrase
     nothing usable   → "Product (detected) - Please specify"

The on-device recognizer is a pluggable TextRecognizer; the default one finds
nothing, so today the only text source is what the remote service surfaced.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

from identification import IdentificationResult
from text_heuristics import (
    BRAND_KEYWORDS,
    extract_meaningful_words,
    match_brand,
    normalize_text,
)

logger = logging.getLogger(__name__)

GENERIC_TITLE = "Product - Please specify"
DETECTED_TITLE = "Product (detected) - Please specify"
BRAND_TITLE = "{brand} (detected) - Please specify product"

FALLBACK_CONFIDENCE = 0.5


# ── On-device text recognition hook ───────────────────────────────────────────

class TextRecognizer(ABC):
    """Reads text printed on the product straight from the photo."""

    @abstractmethod
    async def recognize(self, photo: bytes) -> Optional[str]:
        ...


class NullTextRecognizer(TextRecognizer):
    """Default recognizer: there is no local OCR yet, so it never finds text."""

    async def recognize(self, photo: bytes) -> Optional[str]:
        return None


# ── Engine ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FallbackOutcome:
    result: IdentificationResult
    title: str              # the only value to pre-fill into the editable draft


def generic_outcome() -> FallbackOutcome:
    return FallbackOutcome(
        result=IdentificationResult(
            best_guess_title=None,
            best_guess_category=None,
            keywords=(),
            confidence=0.0,
            suggested_products=(),
        ),
        title=GENERIC_TITLE,
    )


class LocalFallbackEngine:

    def __init__(
        self,
        brands: Iterable[str] = BRAND_KEYWORDS,
        recognizer: Optional[TextRecognizer] = None,
        min_words: int = 2,
        max_words: int = 6,
    ) -> None:
        self._brands = tuple(brands)
        self._recognizer = recognizer or NullTextRecognizer()
        self._min_words = min_words
        self._max_words = max_words

    async def run_fallback(
        self,
        photo: bytes,
        api_detected_text: Optional[str] = None,
    ) -> FallbackOutcome:
        text = await self._resolve_text(photo, api_detected_text)
        if not text:
            logger.info("Fallback: no detected text, using generic title")
            return generic_outcome()

        normalized = normalize_text(text)
        keywords = tuple(normalized.split())

        brand = match_brand(normalized, self._brands)
        if brand:
            title = BRAND_TITLE.format(brand=brand)
            logger.info("Fallback: brand match %r", brand)
        else:
            phrase = extract_meaningful_words(normalized, self._min_words, self._max_words)
            title = phrase or DETECTED_TITLE
            logger.info("Fallback: %s", f"meaningful words {phrase!r}" if phrase else "text unusable")

        return FallbackOutcome(
            result=IdentificationResult(
                best_guess_title=text,
                best_guess_category=None,
                keywords=keywords,
                confidence=FALLBACK_CONFIDENCE,
                suggested_products=(),
            ),
            title=title,
        )

    async def _resolve_text(self, photo: bytes, api_detected_text: Optional[str]) -> Optional[str]:
        if api_detected_text and api_detected_text.strip():
            return api_detected_text
        try:
            recognized = await self._recognizer.recognize(photo)
        except Exception as exc:
            logger.warning("Local text recognizer failed, ignoring: %s", exc)
            return None
        return recognized if recognized and recognized.strip() else None
