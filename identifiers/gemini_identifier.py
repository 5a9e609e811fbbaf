"""
Google Gemini vision identifier — uses the google-genai SDK (v1 API).
Cheapest of the LLM identifiers for a single product photo.
"""
from __future__ import annotations

import logging
from typing import Optional

from google import genai
from google.genai import types as genai_types

from identifiers.base import (
    SYSTEM_PROMPT, build_user_prompt, detect_mime,
    RemoteIdentifier, parse_json_response,
)

logger = logging.getLogger(__name__)


class GeminiIdentifier(RemoteIdentifier):

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash", timeout: float = 12.0):
        self.model_id = model
        self.name = f"google/{model}"
        # http_options timeout is in milliseconds
        self._client = genai.Client(
            api_key=api_key,
            http_options={"api_version": "v1", "timeout": int(timeout * 1000)},
        )

    async def _request(
        self,
        photo: bytes,
        country_code: str,
        currency_code: Optional[str],
        language_code: Optional[str],
    ) -> dict:
        gen_config = genai_types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            temperature=0,
            max_output_tokens=800,
        )
        response = await self._client.aio.models.generate_content(
            model=self.model_id,
            contents=[
                genai_types.Part.from_bytes(data=photo, mime_type=detect_mime(photo)),
                build_user_prompt(country_code, currency_code, language_code),
            ],
            config=gen_config,
        )
        return parse_json_response(response.text, self.name)
