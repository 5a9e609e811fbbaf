"""
identification.py — canonical home of the identification data model.

Every other module imports these types from here:
  from identification import IdentificationResult, SuggestedProduct, AnalysisState

Results are frozen: a retry builds a brand-new IdentificationResult, it never
edits the previous one.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


def clamp_confidence(value) -> float:
    """Coerce anything number-like into [0, 1]; garbage becomes 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:        # NaN
        return 0.0
    return max(0.0, min(1.0, number))


# ── Result shown to the user ──────────────────────────────────────────────────

@dataclass(frozen=True)
class SuggestedProduct:
    """One remote match, in the order the service returned it (first = most likely)."""
    title: str
    image_url: Optional[str] = None
    likely_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {"title": self.title, "imageUrl": self.image_url, "likelyUrl": self.likely_url}


@dataclass(frozen=True)
class IdentificationResult:
    """
    Outcome of one analysis attempt.

    An empty suggested_products tuple means the fallback branch produced this
    result. It is never used to mean "still loading".
    """
    best_guess_title: Optional[str]
    best_guess_category: Optional[str]
    keywords: tuple[str, ...] = ()
    confidence: float = 0.0
    suggested_products: tuple[SuggestedProduct, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "keywords", tuple(self.keywords))
        object.__setattr__(self, "suggested_products", tuple(self.suggested_products))
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @property
    def is_fallback(self) -> bool:
        return not self.suggested_products

    def to_dict(self) -> dict:
        return {
            "bestGuessTitle": self.best_guess_title,
            "bestGuessCategory": self.best_guess_category,
            "keywords": list(self.keywords),
            "confidence": self.confidence,
            "suggestedProducts": [p.to_dict() for p in self.suggested_products],
        }


# ── Remote service boundary ───────────────────────────────────────────────────

@dataclass(frozen=True)
class RemoteQuery:
    detected_text: Optional[str] = None
    detected_brand: Optional[str] = None
    guessed_category: Optional[str] = None


@dataclass(frozen=True)
class RemoteMatch:
    name: str
    image_url: Optional[str] = None
    confidence: float = 0.0
    store_url: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))


@dataclass(frozen=True)
class RemoteResponse:
    """Parsed reply of a RemoteIdentifier."""
    query: RemoteQuery = field(default_factory=RemoteQuery)
    matches: tuple[RemoteMatch, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "matches", tuple(self.matches))


@dataclass(frozen=True)
class LocaleContext:
    """Location settings supplied by the user's profile. country_code may be missing."""
    country_code: Optional[str]
    currency_code: Optional[str] = None
    language_code: str = "en"


# ── State machine ─────────────────────────────────────────────────────────────

class AnalysisState(enum.Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    RESOLVED_WITH_MATCHES = "resolved_with_matches"
    RESOLVED_EMPTY = "resolved_empty"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (
            AnalysisState.RESOLVED_WITH_MATCHES,
            AnalysisState.RESOLVED_EMPTY,
            AnalysisState.FAILED,
            AnalysisState.SKIPPED,
        )


# ── Draft owned by the presentation layer ─────────────────────────────────────

@dataclass
class EditableDraft:
    """Seeded once from an IdentificationResult, then edited freely by the user."""
    title: str
    image_url: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    notes: str = ""
