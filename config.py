"""
Central configuration — reads from .env file.

API keys are NOT read here: key_store.py resolves them on every build
(DB first, then the uppercase env var), so a key change needs no restart.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Telegram ──────────────────────────────────────────────────────────────────
# Only required when the bot is actually started (main.py checks it).
TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

# Comma-separated Telegram user IDs allowed to see key details in /status
ADMIN_IDS: set[int] = {
    int(x.strip())
    for x in os.getenv("ADMIN_IDS", "").split(",")
    if x.strip().isdigit()
}

# ── Remote identification ─────────────────────────────────────────────────────
#   auto      → http service if configured, else openai, gemini, anthropic
#   openai | anthropic | gemini | http → force one identifier
IDENTIFY_BACKEND: str = os.getenv("IDENTIFY_BACKEND", "auto")

OPENAI_MODEL: str    = os.getenv("OPENAI_MODEL", "gpt-4o")
ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest")
GEMINI_MODEL: str    = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

# Hosted identify endpoint for IDENTIFY_BACKEND=http (key: IDENTIFY_SERVICE_KEY)
IDENTIFY_SERVICE_URL: str | None = os.getenv("IDENTIFY_SERVICE_URL", "").strip() or None

# Transport timeout inside an identifier. The coordinator itself never times out;
# the user's escape hatch is the Skip button.
IDENTIFY_TIMEOUT_SECS: float = float(os.getenv("IDENTIFY_TIMEOUT_SECS", "12"))

# ── Analysis UX ───────────────────────────────────────────────────────────────
SKIP_AFTER_SECS: float      = float(os.getenv("SKIP_AFTER_SECS", "6"))
FALLBACK_MIN_WORDS: int     = int(os.getenv("FALLBACK_MIN_WORDS", "2"))
FALLBACK_MAX_WORDS: int     = int(os.getenv("FALLBACK_MAX_WORDS", "6"))
MAX_SUGGESTIONS_SHOWN: int  = int(os.getenv("MAX_SUGGESTIONS_SHOWN", "5"))

# ── Storage ───────────────────────────────────────────────────────────────────
DATA_DIR: str = os.getenv("DATA_DIR", "data")
