"""
Identifier manager — picks and caches the remote identifier.

Keys are read from key_store (DB → .env fallback) when the identifier is
built, so clearing the cache with reset() picks up a changed key without a
restart.

IDENTIFY_BACKEND:
  auto      — http service → OpenAI → Gemini → Anthropic, first one configured
  openai | anthropic | gemini | http — that one, or RuntimeError if unconfigured
"""
from __future__ import annotations

import logging
from typing import Optional

import config
import key_store
from identifiers.base import RemoteIdentifier

logger = logging.getLogger(__name__)

_identifier: Optional[RemoteIdentifier] = None


def reset() -> None:
    global _identifier
    _identifier = None


async def get_identifier() -> RemoteIdentifier:
    """Return the active identifier, building it once on first call."""
    global _identifier
    if _identifier is not None:
        return _identifier
    _identifier = await _build_identifier()
    logger.info("Remote identifier: %s", _identifier.name)
    return _identifier


async def identifier_name() -> str:
    try:
        return (await get_identifier()).name
    except RuntimeError:
        return "not configured"


async def _build_identifier() -> RemoteIdentifier:
    mode = config.IDENTIFY_BACKEND.lower()

    openai_key    = await key_store.get("openai_api_key")
    anthropic_key = await key_store.get("anthropic_api_key")
    google_key    = await key_store.get("google_api_key")
    service_key   = await key_store.get("identify_service_key")

    if mode == "http":
        if not config.IDENTIFY_SERVICE_URL:
            raise RuntimeError("IDENTIFY_BACKEND=http but IDENTIFY_SERVICE_URL is not set.")
        return _make_http(service_key)

    if mode == "openai":
        if not openai_key:
            raise RuntimeError("IDENTIFY_BACKEND=openai but OPENAI_API_KEY is not set.")
        return _make_openai(openai_key)

    if mode == "gemini":
        if not google_key:
            raise RuntimeError("IDENTIFY_BACKEND=gemini but GOOGLE_API_KEY is not set.")
        return _make_gemini(google_key)

    if mode == "anthropic":
        if not anthropic_key:
            raise RuntimeError("IDENTIFY_BACKEND=anthropic but ANTHROPIC_API_KEY is not set.")
        return _make_anthropic(anthropic_key)

    # auto mode
    if config.IDENTIFY_SERVICE_URL:
        logger.info("Auto-selected HTTP identify service")
        return _make_http(service_key)
    if openai_key:
        logger.info("Auto-selected OpenAI identifier")
        return _make_openai(openai_key)
    if google_key:
        logger.info("Auto-selected Gemini identifier")
        return _make_gemini(google_key)
    if anthropic_key:
        logger.info("Auto-selected Anthropic identifier")
        return _make_anthropic(anthropic_key)

    raise RuntimeError(
        "No remote identifier configured.\n"
        "Set IDENTIFY_SERVICE_URL or one of OPENAI_API_KEY, GOOGLE_API_KEY, ANTHROPIC_API_KEY."
    )


def _make_http(api_key: Optional[str]) -> RemoteIdentifier:
    from identifiers.http_identifier import HttpIdentifier
    return HttpIdentifier(config.IDENTIFY_SERVICE_URL, api_key, timeout=config.IDENTIFY_TIMEOUT_SECS)


def _make_openai(api_key: str) -> RemoteIdentifier:
    from identifiers.openai_identifier import OpenAIIdentifier
    return OpenAIIdentifier(api_key, config.OPENAI_MODEL, timeout=config.IDENTIFY_TIMEOUT_SECS)


def _make_gemini(api_key: str) -> RemoteIdentifier:
    from identifiers.gemini_identifier import GeminiIdentifier
    return GeminiIdentifier(api_key, config.GEMINI_MODEL, timeout=config.IDENTIFY_TIMEOUT_SECS)


def _make_anthropic(api_key: str) -> RemoteIdentifier:
    from identifiers.anthropic_identifier import AnthropicIdentifier
    return AnthropicIdentifier(api_key, config.ANTHROPIC_MODEL, timeout=config.IDENTIFY_TIMEOUT_SECS)
