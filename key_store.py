"""
key_store.py — resolves the credentials the remote identifiers need.

Lookup order for every key:
  1. api_keys table (set with /setkey)   — wins
  2. environment / .env                  — bootstrap value

DB names are lowercase; the env var is the same name upper-cased:
  openai_api_key        →  OPENAI_API_KEY
  anthropic_api_key     →  ANTHROPIC_API_KEY
  google_api_key        →  GOOGLE_API_KEY
  identify_service_key  →  IDENTIFY_SERVICE_KEY

Values are never cached here; identifiers/manager.py caches the identifier
it builds and drops it on reset().
"""
from __future__ import annotations

import logging
import os
from typing import Optional

import database as db

logger = logging.getLogger(__name__)

KEY_NAMES = (
    "openai_api_key",
    "anthropic_api_key",
    "google_api_key",
    "identify_service_key",
)


async def get(key_name: str) -> Optional[str]:
    """Stored value for key_name, else its env var, else None."""
    try:
        stored = await db.get_api_key(key_name)
    except Exception as exc:
        logger.warning("Key lookup in DB failed for %s, using env: %s", key_name, exc)
        stored = None
    if stored:
        return stored
    return os.getenv(key_name.upper()) or None


async def set(key_name: str, value: str, admin_id: int) -> None:
    """Persist a key; it overrides the env value from now on."""
    if key_name not in KEY_NAMES:
        raise ValueError(f"Unknown key '{key_name}'. Known: {', '.join(KEY_NAMES)}")
    await db.set_api_key(key_name, value.strip(), admin_id)
    logger.info("Key %s updated by %d", key_name, admin_id)


async def delete(key_name: str) -> None:
    await db.delete_api_key(key_name)


async def get_all_keys() -> dict[str, Optional[str]]:
    return {name: await get(name) for name in KEY_NAMES}


async def masked_keys() -> dict[str, str]:
    """Every known key, masked for display in /status."""
    return {name: mask(value) for name, value in (await get_all_keys()).items()}


def mask(value: Optional[str]) -> str:
    if not value:
        return "❌ not set"
    if len(value) <= 8:
        return "✅ ****"
    hidden = "*" * (len(value) - 8)
    return f"✅ {value[:4]}{hidden}{value[-4:]}"
