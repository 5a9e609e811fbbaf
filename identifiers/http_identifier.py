"""
HTTP identification service backend.

Talks to a hosted "identify product from image" endpoint that already speaks
the {query, matches} contract, so no prompt engineering happens here.

Request:  POST {IDENTIFY_SERVICE_URL}
          {"imageBase64": ..., "countryCode": ..., "currencyCode": ..., "languageCode": ...}
Response: {"query": {"detectedText", "detectedBrand", "guessedCategory"},
           "matches": [{"name", "imageUrl", "confidence", "storeUrl"?}]}
"""
from __future__ import annotations

import base64
import logging
from typing import Optional

import aiohttp

from identifiers.base import MalformedResponse, RemoteIdentifier, RemoteTransportError

logger = logging.getLogger(__name__)


class HttpIdentifier(RemoteIdentifier):

    def __init__(self, url: str, api_key: Optional[str] = None, timeout: float = 12.0) -> None:
        self._url = url
        self._timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self.name = "http/identify-service"

    async def _request(
        self,
        photo: bytes,
        country_code: str,
        currency_code: Optional[str],
        language_code: Optional[str],
    ) -> dict:
        body = {
            "imageBase64": base64.b64encode(photo).decode(),
            "countryCode": country_code,
            "currencyCode": currency_code,
            "languageCode": language_code,
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self._url,
                headers=self._headers,
                json=body,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RemoteTransportError(f"Identify service error {resp.status}: {text[:200]}")
                try:
                    return await resp.json(content_type=None)
                except ValueError as exc:
                    raise MalformedResponse(f"Identify service returned non-JSON: {exc}") from exc
