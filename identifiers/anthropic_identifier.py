"""
Anthropic vision identifier — Claude models, which read small printed text
(ingredients, model numbers, labels) well; useful when detectedText matters.
"""
from __future__ import annotations

import base64
import logging
from typing import Optional

import anthropic

from identifiers.base import (
    SYSTEM_PROMPT, build_user_prompt, detect_mime,
    RemoteIdentifier, parse_json_response,
)

logger = logging.getLogger(__name__)


class AnthropicIdentifier(RemoteIdentifier):

    def __init__(self, api_key: str, model: str = "claude-3-5-haiku-latest", timeout: float = 12.0):
        self.model_id = model
        self.name = f"anthropic/{model}"
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

    async def _request(
        self,
        photo: bytes,
        country_code: str,
        currency_code: Optional[str],
        language_code: Optional[str],
    ) -> dict:
        message = await self._client.messages.create(
            model=self.model_id,
            max_tokens=800,
            system=SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": detect_mime(photo),
                                "data": base64.b64encode(photo).decode(),
                            },
                        },
                        {
                            "type": "text",
                            "text": build_user_prompt(country_code, currency_code, language_code),
                        },
                    ],
                }
            ],
        )
        raw = message.content[0].text if message.content else ""
        return parse_json_response(raw, self.name)
