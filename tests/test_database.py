"""
Tests for database.py.

Covers:
  - DB path defaults to data/ subdirectory
  - Schema creation (init_db is idempotent)
  - Locations: unset user, upsert, case normalisation
  - Wishlist items: add, empty title rejected, newest first, per-user
  - API key CRUD: set, get, delete
"""
from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

import database as db
from identification import EditableDraft, LocaleContext


@pytest_asyncio.fixture(autouse=True)
async def init(tmp_data_dir):
    """Initialise the DB schema before every test."""
    await db.init_db()


# ── DB path ────────────────────────────────────────────────────────────────────

class TestDbPath:
    def test_db_path_inside_data_dir(self, tmp_data_dir):
        assert Path(db.DB_PATH).parent == tmp_data_dir


# ── init_db ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestInitDb:
    async def test_idempotent(self):
        """Calling init_db twice must not raise."""
        await db.init_db()
        await db.init_db()

    async def test_db_file_created(self, tmp_data_dir):
        assert Path(db.DB_PATH).exists()


# ── Locations ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestLocations:
    async def test_unset_user_has_no_country(self):
        locale = await db.get_location(42)
        assert locale == LocaleContext(country_code=None)

    async def test_set_and_get(self):
        saved = await db.set_location(42, "fr", "eur", "FR")
        assert saved == LocaleContext("FR", "EUR", "fr")
        assert await db.get_location(42) == saved

    async def test_update_overwrites(self):
        await db.set_location(42, "US", "USD")
        await db.set_location(42, "IL", "ILS", "he")
        assert await db.get_location(42) == LocaleContext("IL", "ILS", "he")

    async def test_currency_optional(self):
        await db.set_location(7, "de")
        locale = await db.get_location(7)
        assert locale.currency_code is None
        assert locale.language_code == "en"

    async def test_users_are_independent(self):
        await db.set_location(1, "US", "USD")
        assert (await db.get_location(2)).country_code is None


# ── Wishlist items ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestWishlistItems:
    async def test_add_and_list(self):
        draft = EditableDraft(title="  Nike Air Max  ", image_url="https://img/n.jpg",
                              price=129.9, currency="USD", notes="size 43")
        item = await db.add_wishlist_item(5, draft)
        assert item.id > 0
        assert item.title == "Nike Air Max"

        items = await db.get_wishlist_items(5)
        assert len(items) == 1
        assert items[0].title == "Nike Air Max"
        assert items[0].price == 129.9
        assert items[0].currency == "USD"
        assert items[0].notes == "size 43"
        assert items[0].image_url == "https://img/n.jpg"

    async def test_empty_title_rejected(self):
        with pytest.raises(ValueError):
            await db.add_wishlist_item(5, EditableDraft(title="   "))
        assert await db.get_wishlist_items(5) == []

    async def test_newest_first(self):
        for title in ("first", "second", "third"):
            await db.add_wishlist_item(5, EditableDraft(title=title))
        assert [i.title for i in await db.get_wishlist_items(5)] == ["third", "second", "first"]

    async def test_limit(self):
        for n in range(5):
            await db.add_wishlist_item(5, EditableDraft(title=f"item {n}"))
        assert len(await db.get_wishlist_items(5, limit=2)) == 2

    async def test_duplicates_allowed(self):
        await db.add_wishlist_item(5, EditableDraft(title="Same"))
        await db.add_wishlist_item(5, EditableDraft(title="Same"))
        assert len(await db.get_wishlist_items(5)) == 2

    async def test_per_user(self):
        await db.add_wishlist_item(1, EditableDraft(title="mine"))
        assert await db.get_wishlist_items(2) == []


# ── API keys ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestApiKeys:
    async def test_set_and_get(self):
        await db.set_api_key("openai_api_key", "sk-test123", admin_id=1)
        val = await db.get_api_key("openai_api_key")
        assert val == "sk-test123"

    async def test_get_missing_returns_none(self):
        val = await db.get_api_key("nonexistent_key")
        assert val is None

    async def test_update_existing_key(self):
        await db.set_api_key("openai_api_key", "sk-old", admin_id=1)
        await db.set_api_key("openai_api_key", "sk-new", admin_id=2)
        assert await db.get_api_key("openai_api_key") == "sk-new"

    async def test_delete_key(self):
        await db.set_api_key("openai_api_key", "sk-test", admin_id=1)
        await db.delete_api_key("openai_api_key")
        assert await db.get_api_key("openai_api_key") is None
