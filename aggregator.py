"""
aggregator.py — builds the one IdentificationResult shape the UI consumes,
whether the data came from remote matches or from the local fallback, and
derives the editable title / image from it.
"""
from __future__ import annotations

import dataclasses
from typing import Optional

from fallback import GENERIC_TITLE, FallbackOutcome
from identification import IdentificationResult, RemoteResponse, SuggestedProduct
from text_heuristics import normalize_text


class ResultAggregator:

    def from_remote(self, response: RemoteResponse) -> IdentificationResult:
        """Result for a remote reply with at least one match."""
        first = response.matches[0]
        query = response.query
        source = " ".join(t for t in (query.detected_brand, query.detected_text) if t)
        keywords = tuple(dict.fromkeys(normalize_text(source).split()))
        return IdentificationResult(
            best_guess_title=first.name,
            best_guess_category=query.guessed_category,
            keywords=keywords,
            confidence=first.confidence,
            suggested_products=tuple(
                SuggestedProduct(title=m.name, image_url=m.image_url, likely_url=m.store_url)
                for m in response.matches
            ),
        )

    def from_fallback(
        self,
        outcome: FallbackOutcome,
        category: Optional[str] = None,
    ) -> IdentificationResult:
        """Fallback result, borrowing the remote category guess when there is one."""
        result = outcome.result
        if category and not result.best_guess_category:
            result = dataclasses.replace(result, best_guess_category=category)
        return result

    def seed_draft(
        self,
        result: Optional[IdentificationResult],
        selected_index: Optional[int] = None,
        fallback_title: Optional[str] = None,
    ) -> tuple[str, Optional[str]]:
        """
        (title, image_url) to pre-fill into the editable draft.

        A selected match wins; otherwise the fallback title, then the raw best
        guess. The title is never empty.
        """
        if result is not None and selected_index is not None:
            if 0 <= selected_index < len(result.suggested_products):
                match = result.suggested_products[selected_index]
                return (match.title or "").strip() or GENERIC_TITLE, match.image_url
        candidates = (fallback_title, result.best_guess_title if result else None)
        for title in candidates:
            if title and title.strip():
                return title.strip(), None
        return GENERIC_TITLE, None
