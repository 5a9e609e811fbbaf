"""
bot.py — Telegram bot handlers.

All visual formatting is delegated to style.py.
All identification logic is delegated to coordinator.py; handlers only forward
user events to it and re-render whatever snapshot comes back.
Session state is kept in-memory per user_id.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

import config
import database as db
import key_store
import style
from coordinator import AnalysisCoordinator, AnalysisSnapshot
from fallback import GENERIC_TITLE, LocalFallbackEngine
from identification import AnalysisState, EditableDraft, LocaleContext
from identifiers import manager

logger = logging.getLogger(__name__)

# ── Callback data ──────────────────────────────────────────────────────────────
CB_SELECT  = "select:"          # + index
CB_NONE    = "none"
CB_RETRY   = "retry"
CB_SKIP    = "skip"
CB_DISMISS = "dismiss"
CB_SAVE    = "save"


# ── Session ────────────────────────────────────────────────────────────────────

@dataclass
class UserSession:
    coordinator: Optional[AnalysisCoordinator] = None
    message: Optional[Message] = None           # the analysis card we keep editing
    locale: Optional[LocaleContext] = None

    # Seeded from the first terminal snapshot of each attempt, user-owned after that
    draft: Optional[EditableDraft] = None
    draft_attempt: int = 0

    skip_task: Optional[asyncio.Task] = None
    skip_revealed: bool = False

    def cancel_skip_timer(self) -> None:
        if self.skip_task is not None and not self.skip_task.done():
            self.skip_task.cancel()
        self.skip_task = None


_sessions: dict[int, UserSession] = {}


# ── Rate limiter ───────────────────────────────────────────────────────────────
RATE_MAX_REQUESTS = 5
RATE_WINDOW_SECS  = 60
_rate_buckets: dict[int, deque] = defaultdict(deque)


def _is_rate_limited(user_id: int) -> bool:
    now    = time.monotonic()
    bucket = _rate_buckets[user_id]
    while bucket and now - bucket[0] > RATE_WINDOW_SECS:
        bucket.popleft()
    if len(bucket) >= RATE_MAX_REQUESTS:
        return True
    bucket.append(now)
    return False


def _is_admin(user_id: int) -> bool:
    return user_id in config.ADMIN_IDS


# ── Keyboards ──────────────────────────────────────────────────────────────────

def keyboard_for(
    snapshot: AnalysisSnapshot,
    skip_revealed: bool = False,
    max_shown: int = config.MAX_SUGGESTIONS_SHOWN,
) -> Optional[InlineKeyboardMarkup]:
    """Inline buttons for a snapshot. None means no keyboard at all."""
    state = snapshot.state
    if state is AnalysisState.IDLE:
        return None
    if state is AnalysisState.ANALYZING:
        if not skip_revealed:
            return None
        return InlineKeyboardMarkup([
            [InlineKeyboardButton("⏭  Skip, I'll type it", callback_data=CB_SKIP)],
        ])

    rows = []
    if state is AnalysisState.RESOLVED_WITH_MATCHES and snapshot.result is not None:
        for i, product in enumerate(snapshot.result.suggested_products[:max_shown]):
            marker = "✅" if i == snapshot.selected_index else "▫️"
            rows.append([InlineKeyboardButton(
                f"{marker}  {i + 1}. {product.title[:40]}",
                callback_data=f"{CB_SELECT}{i}",
            )])
        rows.append([InlineKeyboardButton("🙅  None of these", callback_data=CB_NONE)])
    if state is AnalysisState.FAILED and snapshot.error is not None:
        rows.append([InlineKeyboardButton("✖️  Dismiss", callback_data=CB_DISMISS)])
    rows.append([
        InlineKeyboardButton("🔄  Retry", callback_data=CB_RETRY),
        InlineKeyboardButton("💾  Save", callback_data=CB_SAVE),
    ])
    return InlineKeyboardMarkup(rows)


async def _edit(message: Message, text: str, keyboard: Optional[InlineKeyboardMarkup]) -> None:
    try:
        await message.edit_text(text, parse_mode="MarkdownV2", reply_markup=keyboard)
    except BadRequest as exc:
        # Re-rendering an unchanged card is harmless
        if "not modified" not in str(exc).lower():
            raise


# ── Coordinator wiring ─────────────────────────────────────────────────────────

def _make_listener(session: UserSession):
    async def on_change(snapshot: AnalysisSnapshot) -> None:
        if snapshot.state is AnalysisState.ANALYZING:
            session.draft = None
            _start_skip_timer(session, snapshot.attempt)
        else:
            session.cancel_skip_timer()
            if snapshot.state.is_terminal and session.draft_attempt != snapshot.attempt:
                session.draft = EditableDraft(
                    title=snapshot.draft_title or GENERIC_TITLE,
                    image_url=snapshot.draft_image_url,
                    currency=session.locale.currency_code if session.locale else None,
                )
                session.draft_attempt = snapshot.attempt
        if session.message is not None:
            await _edit(
                session.message,
                style.render(snapshot, config.MAX_SUGGESTIONS_SHOWN),
                keyboard_for(snapshot, session.skip_revealed),
            )
    return on_change


def _start_skip_timer(session: UserSession, attempt: int) -> None:
    session.cancel_skip_timer()
    session.skip_revealed = False
    session.skip_task = asyncio.create_task(_reveal_skip(session, attempt))


async def _reveal_skip(session: UserSession, attempt: int) -> None:
    await asyncio.sleep(config.SKIP_AFTER_SECS)
    snapshot = session.coordinator.snapshot
    if snapshot.state is not AnalysisState.ANALYZING or snapshot.attempt != attempt:
        return
    session.skip_revealed = True
    try:
        await _edit(session.message, style.render(snapshot), keyboard_for(snapshot, True))
    except TelegramError as exc:
        logger.warning("Could not reveal Skip for attempt %d: %s", attempt, exc)


async def _current_identifier():
    try:
        return await manager.get_identifier()
    except RuntimeError as exc:
        logger.warning("No remote identifier, running local fallback only: %s", exc)
        return None


# ── Handlers ───────────────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.welcome(), parse_mode="MarkdownV2")


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.help_text(), parse_mode="MarkdownV2")


async def cmd_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    args = context.args or []
    if not args or len(args[0]) != 2 or not args[0].isalpha():
        await update.message.reply_text(style.location_usage(), parse_mode="MarkdownV2")
        return
    currency = args[1] if len(args) > 1 else None
    language = args[2] if len(args) > 2 else "en"
    locale = await db.set_location(update.effective_user.id, args[0], currency, language)
    session = _sessions.get(update.effective_user.id)
    if session is not None:
        session.locale = locale
    await update.message.reply_text(style.location_saved(locale), parse_mode="MarkdownV2")


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    locale  = await db.get_location(user_id)
    keys = None
    if _is_admin(user_id):
        keys = await key_store.masked_keys()
    await update.message.reply_text(
        style.status_card(await manager.identifier_name(), locale, keys),
        parse_mode="MarkdownV2",
    )


async def cmd_setkey(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    if not _is_admin(user_id):
        await update.message.reply_text(style.admin_only(), parse_mode="MarkdownV2")
        return
    args = context.args or []
    if len(args) != 2:
        await update.message.reply_text(style.setkey_usage(key_store.KEY_NAMES), parse_mode="MarkdownV2")
        return
    name, value = args[0].lower(), args[1]
    try:
        await key_store.set(name, value, user_id)
    except ValueError:
        await update.message.reply_text(style.setkey_usage(key_store.KEY_NAMES), parse_mode="MarkdownV2")
        return
    manager.reset()
    logger.info("Admin %d updated %s", user_id, name)
    try:
        await update.message.delete()
    except TelegramError as exc:
        logger.warning("Could not delete /setkey message: %s", exc)
    await update.effective_chat.send_message(style.key_saved(name), parse_mode="MarkdownV2")


async def cmd_delkey(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id
    if not _is_admin(user_id):
        await update.message.reply_text(style.admin_only(), parse_mode="MarkdownV2")
        return
    args = context.args or []
    name = args[0].lower() if len(args) == 1 else ""
    if name not in key_store.KEY_NAMES:
        await update.message.reply_text(style.delkey_usage(key_store.KEY_NAMES), parse_mode="MarkdownV2")
        return
    await key_store.delete(name)
    manager.reset()
    logger.info("Admin %d removed %s", user_id, name)
    await update.message.reply_text(style.key_deleted(name), parse_mode="MarkdownV2")


async def cmd_price(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = _sessions.get(update.effective_user.id)
    if session is None or session.draft is None:
        await update.message.reply_text(style.no_draft(), parse_mode="MarkdownV2")
        return
    args = context.args or []
    try:
        price = float(args[0].replace(",", "."))
    except (IndexError, ValueError):
        await update.message.reply_text(style.price_usage(), parse_mode="MarkdownV2")
        return
    if price < 0:
        await update.message.reply_text(style.price_usage(), parse_mode="MarkdownV2")
        return
    session.draft.price = price
    if len(args) > 1:
        session.draft.currency = args[1].upper()
    await update.message.reply_text(style.draft_card(session.draft), parse_mode="MarkdownV2")


async def cmd_note(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = _sessions.get(update.effective_user.id)
    if session is None or session.draft is None:
        await update.message.reply_text(style.no_draft(), parse_mode="MarkdownV2")
        return
    session.draft.notes = " ".join(context.args or []).strip()
    await update.message.reply_text(style.draft_card(session.draft), parse_mode="MarkdownV2")


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id = update.effective_user.id

    if _is_rate_limited(user_id):
        await update.message.reply_text(
            style.error_rate_limited(RATE_MAX_REQUESTS, RATE_WINDOW_SECS),
            parse_mode="MarkdownV2",
        )
        return

    previous = _sessions.get(user_id)
    if previous is not None:
        previous.cancel_skip_timer()

    session = UserSession()
    _sessions[user_id] = session

    session.message = await update.message.reply_text(style.analyzing(1), parse_mode="MarkdownV2")

    photo      = update.message.photo[-1]
    photo_file = await context.bot.get_file(photo.file_id)
    image_bytes = bytes(await photo_file.download_as_bytearray())

    session.locale = await db.get_location(user_id)
    session.coordinator = AnalysisCoordinator(
        await _current_identifier(),
        fallback=LocalFallbackEngine(
            min_words=config.FALLBACK_MIN_WORDS,
            max_words=config.FALLBACK_MAX_WORDS,
        ),
        listener=_make_listener(session),
    )
    await session.coordinator.start(image_bytes, session.locale)


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Free text renames the current draft; without one, ask for a photo."""
    session = _sessions.get(update.effective_user.id)
    title = (update.message.text or "").strip()
    if session is None or session.draft is None:
        analyzing = (
            session is not None
            and session.coordinator is not None
            and session.coordinator.state is AnalysisState.ANALYZING
        )
        reply = style.still_analyzing() if analyzing else style.not_a_photo()
        await update.message.reply_text(reply, parse_mode="MarkdownV2")
        return
    if not title:
        return
    session.draft.title = title[:200]
    await update.message.reply_text(style.draft_card(session.draft), parse_mode="MarkdownV2")


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    user_id = update.effective_user.id
    session = _sessions.get(user_id)
    data    = query.data or ""

    if (
        session is None
        or session.coordinator is None
        or session.message is None
        or query.message is None
        or query.message.message_id != session.message.message_id
    ):
        await query.edit_message_text(style.session_expired(), parse_mode="MarkdownV2")
        return

    coordinator = session.coordinator

    if data.startswith(CB_SELECT):
        try:
            index = int(data[len(CB_SELECT):])
        except ValueError:
            logger.warning("Bad select callback from %d: %r", user_id, data)
            return
        snapshot = await coordinator.select_match(index)
        _sync_draft(session, snapshot)
        return

    if data == CB_NONE:
        snapshot = await coordinator.none_of_these()
        _sync_draft(session, snapshot)
        return

    if data == CB_SKIP:
        await coordinator.skip()
        return

    if data == CB_DISMISS:
        await coordinator.dismiss_error()
        return

    if data == CB_RETRY:
        session.locale = await db.get_location(user_id)
        await coordinator.retry(session.locale)
        return

    if data == CB_SAVE:
        await _save_draft(update, session)
        return

    logger.debug("Unhandled callback %r", data)


def _sync_draft(session: UserSession, snapshot: AnalysisSnapshot) -> None:
    """Match selection re-seeds the draft title and image; price and notes stay."""
    if session.draft is None or snapshot.attempt != session.draft_attempt:
        return
    session.draft.title = snapshot.draft_title or session.draft.title
    session.draft.image_url = snapshot.draft_image_url


async def _save_draft(update: Update, session: UserSession) -> None:
    user_id = update.effective_user.id
    if session.draft is None:
        await update.effective_chat.send_message(style.no_draft(), parse_mode="MarkdownV2")
        return
    try:
        item = await db.add_wishlist_item(user_id, session.draft)
    except ValueError:
        await update.effective_chat.send_message(style.no_draft(), parse_mode="MarkdownV2")
        return
    except Exception as exc:
        logger.error("Saving wishlist item failed for %d: %s", user_id, exc, exc_info=True)
        await update.effective_chat.send_message(style.error_generic(), parse_mode="MarkdownV2")
        return
    session.cancel_skip_timer()
    _sessions.pop(user_id, None)
    await update.effective_chat.send_message(style.saved(item.title), parse_mode="MarkdownV2")


# ── App factory ────────────────────────────────────────────────────────────────

async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error in handler: %s", context.error, exc_info=context.error)
    if isinstance(update, Update) and update.effective_chat is not None:
        try:
            await update.effective_chat.send_message(style.error_generic(), parse_mode="MarkdownV2")
        except TelegramError as exc:
            logger.warning("Could not report error to chat: %s", exc)


async def _post_init(application: Application) -> None:
    await db.init_db()


def build_application() -> Application:
    app = (
        Application.builder()
        .token(config.TELEGRAM_BOT_TOKEN)
        .concurrent_updates(True)
        .post_init(_post_init)
        .build()
    )

    app.add_handler(CommandHandler("start",    cmd_start))
    app.add_handler(CommandHandler("help",     cmd_help))
    app.add_handler(CommandHandler("location", cmd_location))
    app.add_handler(CommandHandler("status",   cmd_status))
    app.add_handler(CommandHandler("setkey",   cmd_setkey))
    app.add_handler(CommandHandler("delkey",   cmd_delkey))
    app.add_handler(CommandHandler("price",    cmd_price))
    app.add_handler(CommandHandler("note",     cmd_note))
    app.add_handler(MessageHandler(filters.PHOTO,                   handle_photo))
    app.add_handler(CallbackQueryHandler(handle_callback))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_error_handler(_on_error)
    return app
