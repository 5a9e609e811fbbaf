"""
Shared pytest fixtures.

Every test gets a clean temporary DATA_DIR (fresh SQLite file) and an empty
remote-identifier cache, so tests are isolated from each other and from the
real bot_data.db / .env keys.
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Minimal JPEG header; identifiers only base64 it, nothing decodes the pixels
FAKE_JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00fake-photo-bytes"


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    Module-level DB_PATH was already computed at import time, so patch it too.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    import database
    monkeypatch.setattr(database, "DB_PATH", str(data / "bot_data.db"))
    monkeypatch.setattr(database, "_DATA_DIR", data)
    monkeypatch.setattr(database, "_lock", asyncio.Lock())

    yield data


@pytest.fixture(autouse=True)
def reset_identifier_cache():
    from identifiers import manager
    manager.reset()
    yield
    manager.reset()


@pytest.fixture
def photo() -> bytes:
    return FAKE_JPEG
