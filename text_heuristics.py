"""
text_heuristics.py — pure string helpers used by the local fallback.

  normalize_text()           raw detected text → "lowercase tokens & digits"
  match_brand()              longest known brand contained in normalized text
  extract_meaningful_words() short readable phrase when no brand is found

None of these raise; bad input just produces an empty / None result.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

_DISALLOWED = re.compile(r"[^a-z0-9 &]")
_SPACES = re.compile(r" {2,}")

# Stored already normalized (lowercase, no punctuation) so matching is a plain
# substring test. Multi-word names win over the shorter names they contain.
_BRANDS = (
    "nike", "adidas", "puma", "reebok", "new balance", "under armour", "asics",
    "converse", "vans", "the north face", "patagonia", "columbia", "levi s",
    "zara", "h&m", "uniqlo", "gucci", "prada", "louis vuitton", "chanel", "dior",
    "hermes", "burberry", "versace", "dolce & gabbana", "michael kors", "coach",
    "ray ban", "oakley", "rolex", "omega", "casio", "seiko", "fossil",
    "kerastase", "l oreal", "loreal", "lancome", "estee lauder", "clinique",
    "maybelline", "nivea", "olaplex", "dyson", "the ordinary", "la roche posay",
    "cerave", "apple", "samsung", "sony", "bose", "beats", "jbl", "sennheiser",
    "canon", "nikon", "fujifilm", "gopro", "lenovo", "dell", "microsoft",
    "nintendo", "playstation", "xbox", "logitech", "philips", "braun", "lego",
    "ikea", "le creuset", "kitchenaid", "nespresso", "delonghi", "smeg",
    "stanley", "yeti", "hydro flask", "tupperware",
)

BRAND_KEYWORDS: tuple[str, ...] = tuple(sorted(_BRANDS, key=len, reverse=True))

STOP_WORDS: frozenset[str] = frozenset({
    # articles / conjunctions / prepositions
    "the", "and", "for", "with", "from", "into", "onto", "over", "under", "but",
    "nor", "yet", "per", "via", "off", "out",
    # pronouns
    "you", "your", "yours", "our", "ours", "its", "his", "her", "hers", "him",
    "she", "they", "them", "their", "this", "that", "these", "those", "who",
    "what", "which", "mine",
    # auxiliary verbs
    "are", "was", "were", "been", "being", "have", "has", "had", "does", "did",
    "can", "could", "will", "would", "shall", "should", "may", "might", "must",
    # units and packaging noise
    "ml", "oz", "kg", "size", "color", "colour", "net", "wt", "fl", "lb", "lbs",
    "cm", "mm", "inch", "inches", "gram", "grams", "litre", "liter", "litres",
    "liters", "pack", "pcs", "pieces", "count", "new",
})


def normalize_text(raw: Optional[str]) -> str:
    """
    Canonical token stream: only [a-z0-9 &], single spaces, no outer whitespace.

    Accented letters are folded to ASCII first so "Kérastase" keeps its
    letters instead of being split at the accent.
    """
    if not raw:
        return ""
    folded = unicodedata.normalize("NFKD", str(raw).casefold())
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    cleaned = _DISALLOWED.sub(" ", folded.lower())
    return _SPACES.sub(" ", cleaned).strip()


def title_case(phrase: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in phrase.split())


def match_brand(text: str, keywords: Iterable[str] = BRAND_KEYWORDS) -> Optional[str]:
    """
    Return the longest keyword found inside text, title-cased, or None.

    Equal-length keywords keep their input order (stable sort), so the result
    is deterministic for a given keyword list.
    """
    if not text:
        return None
    haystack = text.lower()
    for keyword in sorted(keywords, key=len, reverse=True):
        needle = keyword.lower().strip()
        if needle and needle in haystack:
            return title_case(needle)
    return None


def _is_meaningful(token: str) -> bool:
    return len(token) > 2 and not token.isdigit() and token not in STOP_WORDS


def extract_meaningful_words(
    text: str,
    min_words: int = 2,
    max_words: int = 6,
) -> Optional[str]:
    """
    Build a readable phrase out of the informative tokens of normalized text.

    Drops short tokens, pure numbers and STOP_WORDS, keeps up to max_words in
    their original order. Fewer than min_words is still returned as-is.
    """
    if not text:
        return None
    words = [t for t in text.split() if _is_meaningful(t)][:max(0, max_words)]
    if not words:
        return None
    if len(words) < min_words:
        logger.debug("Only %d meaningful word(s) in %r (wanted %d)", len(words), text, min_words)
    return " ".join(title_case(w) for w in words)
