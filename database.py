"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  user_locations  — country / currency / language per Telegram user
  wishlist_items  — saved drafts (plain insert, no duplicate check here)
  api_keys        — DB overrides for key_store.py

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

from identification import EditableDraft, LocaleContext

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "bot_data.db")
_lock = asyncio.Lock()          # serialise schema creation


# ── Data models ───────────────────────────────────────────────────────────────

@dataclass
class WishlistItem:
    id: int
    user_id: int
    title: str
    image_url: Optional[str]
    price: Optional[float]
    currency: Optional[str]
    notes: str
    created_at: datetime


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS user_locations (
    user_id       INTEGER PRIMARY KEY,
    country_code  TEXT NOT NULL,
    currency_code TEXT,
    language_code TEXT NOT NULL DEFAULT 'en',
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS wishlist_items (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    INTEGER NOT NULL,
    title      TEXT    NOT NULL,
    image_url  TEXT,
    price      REAL,
    currency   TEXT,
    notes      TEXT    NOT NULL DEFAULT '',
    created_at TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_wishlist_items_user ON wishlist_items (user_id);

-- API keys that override .env values
CREATE TABLE IF NOT EXISTS api_keys (
    key_name   TEXT PRIMARY KEY,
    key_value  TEXT NOT NULL,
    updated_by INTEGER NOT NULL,
    updated_at TEXT    NOT NULL
);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


# ── Location (settings provider) ──────────────────────────────────────────────

async def get_location(user_id: int) -> LocaleContext:
    """Return the user's saved locale; country_code is None when never set."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT country_code, currency_code, language_code FROM user_locations WHERE user_id = ?",
            (user_id,),
        ) as cur:
            row = await cur.fetchone()
    if not row:
        return LocaleContext(country_code=None)
    return LocaleContext(country_code=row[0], currency_code=row[1], language_code=row[2] or "en")


async def set_location(
    user_id: int,
    country_code: str,
    currency_code: Optional[str] = None,
    language_code: str = "en",
) -> LocaleContext:
    now = datetime.now(timezone.utc).isoformat()
    country = country_code.strip().upper()
    currency = currency_code.strip().upper() if currency_code else None
    language = (language_code or "en").strip().lower()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO user_locations (user_id, country_code, currency_code, language_code, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                 country_code=excluded.country_code,
                 currency_code=excluded.currency_code,
                 language_code=excluded.language_code,
                 updated_at=excluded.updated_at""",
            (user_id, country, currency, language, now),
        )
        await db.commit()
    return LocaleContext(country_code=country, currency_code=currency, language_code=language)


# ── Wishlist items ────────────────────────────────────────────────────────────

async def add_wishlist_item(user_id: int, draft: EditableDraft) -> WishlistItem:
    """Insert the final draft as a wishlist item."""
    title = draft.title.strip()
    if not title:
        raise ValueError("Wishlist item title cannot be empty")
    now = datetime.now(timezone.utc)
    async with aiosqlite.connect(DB_PATH) as db:
        cur = await db.execute(
            """INSERT INTO wishlist_items (user_id, title, image_url, price, currency, notes, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (user_id, title, draft.image_url, draft.price, draft.currency, draft.notes, now.isoformat()),
        )
        await db.commit()
        item_id = cur.lastrowid
    logger.info("Saved wishlist item %d for user %d: %s", item_id, user_id, title)
    return WishlistItem(
        id=item_id, user_id=user_id, title=title, image_url=draft.image_url,
        price=draft.price, currency=draft.currency, notes=draft.notes, created_at=now,
    )


async def get_wishlist_items(user_id: int, limit: int = 20) -> list[WishlistItem]:
    """Most recent items first."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            """SELECT id, user_id, title, image_url, price, currency, notes, created_at
               FROM wishlist_items WHERE user_id = ? ORDER BY id DESC LIMIT ?""",
            (user_id, limit),
        ) as cur:
            rows = await cur.fetchall()
    return [
        WishlistItem(
            id=r[0], user_id=r[1], title=r[2], image_url=r[3], price=r[4],
            currency=r[5], notes=r[6], created_at=datetime.fromisoformat(r[7]),
        )
        for r in rows
    ]


# ── API key operations ────────────────────────────────────────────────────────

async def get_api_key(key_name: str) -> Optional[str]:
    """Return DB-stored value for key_name, or None if not set."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT key_value FROM api_keys WHERE key_name = ?", (key_name,)
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None


async def set_api_key(key_name: str, key_value: str, admin_id: int) -> None:
    """Insert or replace an API key in the DB."""
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO api_keys (key_name, key_value, updated_by, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(key_name) DO UPDATE SET
                 key_value=excluded.key_value,
                 updated_by=excluded.updated_by,
                 updated_at=excluded.updated_at""",
            (key_name, key_value, admin_id, now),
        )
        await db.commit()


async def delete_api_key(key_name: str) -> None:
    """Remove a key from DB (falls back to .env value)."""
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("DELETE FROM api_keys WHERE key_name = ?", (key_name,))
        await db.commit()
