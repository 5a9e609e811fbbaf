"""
OpenAI vision identifier — gpt-4o / gpt-4o-mini with JSON-object output.
"""
from __future__ import annotations

import base64
import logging
import time
from typing import Optional

from openai import AsyncOpenAI

from identifiers.base import (
    SYSTEM_PROMPT, build_user_prompt, detect_mime,
    RemoteIdentifier, parse_json_response,
)

logger = logging.getLogger(__name__)


class OpenAIIdentifier(RemoteIdentifier):

    def __init__(self, api_key: str, model: str = "gpt-4o", timeout: float = 12.0):
        self.model_id = model
        self.name = f"openai/{model}"
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout)

    async def _request(
        self,
        photo: bytes,
        country_code: str,
        currency_code: Optional[str],
        language_code: Optional[str],
    ) -> dict:
        b64 = base64.b64encode(photo).decode()
        t0 = time.monotonic()

        response = await self._client.chat.completions.create(
            model=self.model_id,
            max_tokens=800,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{detect_mime(photo)};base64,{b64}",
                                "detail": "high",
                            },
                        },
                        {
                            "type": "text",
                            "text": build_user_prompt(country_code, currency_code, language_code),
                        },
                    ],
                },
            ],
        )

        logger.debug("[%s] answered in %dms", self.name, int((time.monotonic() - t0) * 1000))
        raw = response.choices[0].message.content
        return parse_json_response(raw, self.name)
