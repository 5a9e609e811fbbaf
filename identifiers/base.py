"""
Shared types and base class for all remote identifiers.

Every identifier answers the same question — "what product is in this photo,
for a shopper in this country?" — and returns the same RemoteResponse, so the
coordinator never cares which service is behind it.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from identification import RemoteMatch, RemoteQuery, RemoteResponse

logger = logging.getLogger(__name__)


# ── Errors ─────────────────────────────────────────────────────────────────────

class IdentificationError(Exception):
    """Base for everything the remote step can fail with."""

    def __init__(self, reason: str, detected_text: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        # Text the service managed to report before it failed, if any
        self.detected_text = detected_text


class PreconditionMissing(IdentificationError):
    """No country configured — the service must not be called at all."""


class RemoteTransportError(IdentificationError):
    """Network / SDK / HTTP-status failure."""


class MalformedResponse(IdentificationError):
    """The service answered, but not in the agreed shape."""


# ── Prompt (shared across the LLM identifiers) ────────────────────────────────

SYSTEM_PROMPT = """You are a product identification assistant for a shopping wishlist.
Analyse the product photo and return ONLY a valid JSON object — no markdown, no prose.

JSON schema:
{
  "query": {
    "detectedText":    "all readable text printed on the product, or null",
    "detectedBrand":   "brand name or null",
    "guessedCategory": "category such as Electronics, Beauty, Clothing, or null"
  },
  "matches": [
    {"name": "brand + product name", "imageUrl": null, "confidence": 0.0}
  ]
}

Rules:
- matches: 0-5 candidate products, most likely first
- confidence: number between 0 and 1
- If you cannot identify the product, return an empty matches list but still
  fill detectedText with whatever text you can read
"""


def build_user_prompt(
    country_code: str,
    currency_code: Optional[str] = None,
    language_code: Optional[str] = None,
) -> str:
    parts = [
        "Identify this product and return the JSON.",
        f"The shopper is in country {country_code}",
    ]
    if currency_code:
        parts.append(f"and pays in {currency_code}")
    prompt = " ".join(parts) + "."
    if language_code and language_code.lower() != "en":
        prompt += f" Write product names as they are sold in language '{language_code}'."
    return prompt


def detect_mime(image_bytes: bytes) -> str:
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF":
        return "image/webp"
    return "image/jpeg"


# ── Parsing ───────────────────────────────────────────────────────────────────

def parse_json_response(raw: Optional[str], identifier_name: str) -> dict:
    """
    Parse JSON from a model response, handling markdown fences gracefully.
    Raises MalformedResponse on parse failure.
    """
    text = (raw or "").strip()
    # Strip ```json ... ``` or ``` ... ``` fences if present
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("[%s] Non-JSON response: %s", identifier_name, (raw or "")[:300])
        raise MalformedResponse(f"[{identifier_name}] JSON parse error: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponse(f"[{identifier_name}] expected a JSON object, got {type(data).__name__}")
    return data


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_remote_payload(payload: Any, identifier_name: str = "remote") -> RemoteResponse:
    """
    Turn the service's {query, matches} JSON into a RemoteResponse.

    Structural problems raise MalformedResponse (keeping query.detectedText
    when it was readable); untitled matches are dropped, missing or junk
    confidences become 0.
    """
    if not isinstance(payload, dict):
        raise MalformedResponse(f"[{identifier_name}] response is not an object")

    raw_query = payload.get("query") or {}
    if not isinstance(raw_query, dict):
        raise MalformedResponse(f"[{identifier_name}] 'query' is not an object")
    detected_text = _opt_str(raw_query.get("detectedText"))

    query = RemoteQuery(
        detected_text=detected_text,
        detected_brand=_opt_str(raw_query.get("detectedBrand")),
        guessed_category=_opt_str(raw_query.get("guessedCategory")),
    )

    raw_matches = payload.get("matches")
    if raw_matches is None:
        raw_matches = []
    if not isinstance(raw_matches, list):
        raise MalformedResponse(f"[{identifier_name}] 'matches' is not a list", detected_text)

    matches: list[RemoteMatch] = []
    for raw in raw_matches:
        if not isinstance(raw, dict):
            raise MalformedResponse(f"[{identifier_name}] match entry is not an object", detected_text)
        name = _opt_str(raw.get("name"))
        if not name:
            continue
        matches.append(RemoteMatch(
            name=name,
            image_url=_opt_str(raw.get("imageUrl")),
            confidence=raw.get("confidence", 0.0),
            store_url=_opt_str(raw.get("storeUrl")),
        ))

    return RemoteResponse(query=query, matches=tuple(matches))


# ── Abstract base ──────────────────────────────────────────────────────────────

class RemoteIdentifier(ABC):
    """Base class all remote identifiers must implement."""

    name: str           # e.g. "openai/gpt-4o"

    async def identify(
        self,
        photo: bytes,
        country_code: Optional[str],
        currency_code: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> RemoteResponse:
        """
        Validate the location precondition, call the service, parse its reply.

        Raises PreconditionMissing, RemoteTransportError or MalformedResponse.
        """
        if not country_code:
            raise PreconditionMissing("Location is not configured (no country code)")
        try:
            payload = await self._request(photo, country_code, currency_code, language_code)
        except IdentificationError:
            raise
        except Exception as exc:
            logger.warning("[%s] Request failed: %s", self.name, exc)
            raise RemoteTransportError(f"[{self.name}] {exc}") from exc
        response = parse_remote_payload(payload, self.name)
        logger.info("[%s] %d match(es)", self.name, len(response.matches))
        return response

    @abstractmethod
    async def _request(
        self,
        photo: bytes,
        country_code: str,
        currency_code: Optional[str],
        language_code: Optional[str],
    ) -> Any:
        """Call the service and return its decoded JSON payload."""
        ...
