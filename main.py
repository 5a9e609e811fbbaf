"""
main.py — Single entry point.

Runs the Telegram bot (polling) in one asyncio event loop.
"""
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import config
from bot import build_application

# Log file lives in the same data/ directory as the database so that a single
# Docker volume mount (./data:/app/data) captures both.
_data_dir = Path(os.getenv("DATA_DIR", "data"))
_data_dir.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(_data_dir / "bot.log"), encoding="utf-8"),
    ],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def run() -> None:
    if not config.TELEGRAM_BOT_TOKEN:
        raise SystemExit("TELEGRAM_BOT_TOKEN is not set. Add it to .env and restart.")

    # ── Database bootstrap (must happen before anything else) ─────────────────
    # PTB's post_init hook also calls init_db(), but a failure there is easy to
    # miss; doing it here makes it fatal and visible.
    import database as _db
    try:
        await _db.init_db()
        logger.info("Database ready at %s", _db.DB_PATH)
    except Exception as exc:
        logger.critical("FATAL: database init failed: %s", exc, exc_info=True)
        raise

    from identifiers import manager
    logger.info("Remote identifier: %s", await manager.identifier_name())

    ptb_app = build_application()

    stop_event = asyncio.Event()

    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # Windows doesn't support add_signal_handler for all signals
            pass

    async with ptb_app:
        await ptb_app.start()
        await ptb_app.updater.start_polling(
            allowed_updates=["message", "callback_query"],
            drop_pending_updates=True,
        )
        logger.info("✅ Bot is running. Press Ctrl+C to stop.")

        try:
            await stop_event.wait()
        except (KeyboardInterrupt, SystemExit):
            pass

        logger.info("Shutting down…")
        await ptb_app.updater.stop()
        await ptb_app.stop()

    logger.info("Goodbye.")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
