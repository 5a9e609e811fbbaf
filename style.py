"""
style.py — visual style for every message the bot sends.

Design language:
  • Structured cards with consistent emoji icons
  • Unicode box-drawing dividers
  • Clear visual hierarchy: header → body → footer
  • MarkdownV2 throughout

All text that goes into Telegram messages should be formatted through this module.
"""
from __future__ import annotations

from typing import Optional

from identification import AnalysisState, EditableDraft, LocaleContext

# ── Escape ────────────────────────────────────────────────────────────────────

def esc(text: str) -> str:
    """Escape all MarkdownV2 special characters."""
    for ch in r"\_*[]()~`>#+-=|{}.!":
        text = text.replace(ch, f"\\{ch}")
    return text


# ── Visual constants ──────────────────────────────────────────────────────────

DIV   = "━━━━━━━━━━━━━━━━━━━━━━━━━━"    # thick divider
SDIV  = "┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄"    # subtle divider

TELEGRAM_LIMIT = 4050


def conf_icon(confidence: float) -> str:
    if confidence >= 0.8:
        return "🟢"
    if confidence >= 0.5:
        return "🟡"
    return "🔴"


def fmt_confidence(confidence: float) -> str:
    return esc(f"{confidence * 100:.0f}%")


def fmt_price(price: Optional[float], currency: Optional[str]) -> str:
    if price is None:
        return "_not set_"
    return esc(f"{price:,.2f} {currency or ''}".strip())


# ══════════════════════════════════════════════════════════════════════════════
# START / HELP
# ══════════════════════════════════════════════════════════════════════════════

def welcome() -> str:
    return (
        f"🎁 *PHOTO WISHLIST*\n"
        f"{DIV}\n\n"
        f"Send a photo of something you want and I'll work out\n"
        f"what it is, so you can save it to your wishlist\\.\n\n"
        f"✨  *What I can do*\n"
        f"▸ Recognise products from a photo\n"
        f"▸ Suggest matching products to pick from\n"
        f"▸ Read brand names when nothing matches\n"
        f"▸ Save the item with price and notes\n\n"
        f"{DIV}\n"
        f"_📍 Set your location first: /location US USD en_"
    )


def help_text() -> str:
    return (
        f"📖 *HOW TO USE*\n"
        f"{DIV}\n\n"
        f"*1️⃣  Set your location*\n"
        f"_/location <country\\> <currency\\> \\[language\\]_\n\n"
        f"*2️⃣  Send a photo*\n"
        f"_Clear, well\\-lit, brand text visible_\n\n"
        f"*3️⃣  Pick a match or edit the title*\n"
        f"_Send any text to rename the item_\n\n"
        f"*4️⃣  Add details and save*\n"
        f"_/price 49\\.90 · /note gift idea · 💾 Save_\n\n"
        f"{DIV}\n"
        f"_Commands: /start · /help · /location · /price · /note · /status_"
    )


# ══════════════════════════════════════════════════════════════════════════════
# ANALYSIS STATES
# ══════════════════════════════════════════════════════════════════════════════

def analyzing(attempt: int = 1) -> str:
    again = " again" if attempt > 1 else ""
    return (
        f"🔍 *Analysing your photo{again}*\n"
        f"{SDIV}\n"
        f"⠋ Identifying product…"
    )


def location_required_hint() -> str:
    return (
        "📍 _Location not set, so I only looked at the photo locally\\._\n"
        "_Set it with /location US USD en and tap Retry\\._"
    )


def error_banner(reason: str) -> str:
    return f"⚠️ _Identification service problem: {esc(reason[:120])}_\n_Tap 🔄 Retry to try again\\._"


def matches_card(snapshot, max_shown: int = 5) -> str:
    result = snapshot.result
    lines = [
        f"✅ *PRODUCT FOUND*",
        f"{DIV}",
    ]
    if result.best_guess_category:
        lines.append(f"🏷️  {esc(result.best_guess_category)}")
    lines.append("")
    for i, product in enumerate(result.suggested_products[:max_shown]):
        marker = "▶" if i == snapshot.selected_index else "▸"
        lines.append(f"{marker} *{i + 1}\\.* {esc(product.title)}")
    lines += ["", SDIV, f"📝 Title: *{esc(snapshot.draft_title or '')}*"]
    if snapshot.selected_index is None:
        lines.append("_None of these\\. Send text to edit the title_")
    lines.append(f"{conf_icon(result.confidence)} Confidence: {fmt_confidence(result.confidence)}")
    return _truncate("\n".join(lines))


def fallback_card(snapshot) -> str:
    result = snapshot.result
    header = "🤔 *NO EXACT MATCH*" if snapshot.state is AnalysisState.RESOLVED_EMPTY else "🛠️ *COULDN'T REACH THE SERVICE*"
    lines = [header, DIV, ""]
    if snapshot.location_required:
        lines += [location_required_hint(), ""]
    elif snapshot.state is AnalysisState.FAILED and snapshot.error is not None:
        lines += [error_banner(snapshot.error.reason), ""]
    lines.append(f"📝 Title: *{esc(snapshot.draft_title or '')}*")
    if result is not None and result.best_guess_category:
        lines.append(f"🏷️  {esc(result.best_guess_category)}")
    if result is not None and result.best_guess_title:
        lines.append(f"🔤 Text on product: _{esc(result.best_guess_title[:120])}_")
    lines += ["", "_Send text to set the real product name_"]
    return _truncate("\n".join(lines))


def skipped_card(snapshot) -> str:
    return (
        f"✍️ *MANUAL ENTRY*\n"
        f"{DIV}\n\n"
        f"📝 Title: *{esc(snapshot.draft_title or '')}*\n\n"
        f"_Send text to name the product, or tap 🔄 Retry\\._"
    )


def render(snapshot, max_shown: int = 5) -> str:
    """Full message text for any coordinator snapshot."""
    state = snapshot.state
    if state is AnalysisState.ANALYZING or state is AnalysisState.IDLE:
        return analyzing(snapshot.attempt)
    if state is AnalysisState.SKIPPED:
        return skipped_card(snapshot)
    if state is AnalysisState.RESOLVED_WITH_MATCHES:
        return matches_card(snapshot, max_shown)
    return fallback_card(snapshot)


# ══════════════════════════════════════════════════════════════════════════════
# DRAFT / SAVE
# ══════════════════════════════════════════════════════════════════════════════

def draft_card(draft: EditableDraft) -> str:
    notes = esc(draft.notes) if draft.notes else "_none_"
    return (
        f"📝 *WISHLIST DRAFT*\n"
        f"{SDIV}\n"
        f"🏷️ *{esc(draft.title)}*\n"
        f"💰 Price: {fmt_price(draft.price, draft.currency)}\n"
        f"🗒️ Notes: {notes}"
    )


def saved(title: str) -> str:
    return f"💾 *Saved to your wishlist*\n{SDIV}\n🏷️ {esc(title)}"


def no_draft() -> str:
    return "📸 Send a product photo first\\."


def still_analyzing() -> str:
    return "⏳ Still identifying your photo\\. You can rename it once it's done\\."


def price_usage() -> str:
    return "💰 Usage: /price 49\\.90"


# ══════════════════════════════════════════════════════════════════════════════
# LOCATION / STATUS / ERRORS
# ══════════════════════════════════════════════════════════════════════════════

def location_usage() -> str:
    return (
        "📍 *Set your location*\n"
        f"{SDIV}\n"
        "Usage: /location <country\\> <currency\\> \\[language\\]\n"
        "_Example: /location FR EUR fr_"
    )


def location_saved(locale: LocaleContext) -> str:
    currency = esc(locale.currency_code or "—")
    return (
        f"📍 Location saved: *{esc(locale.country_code or '')}* · {currency} · "
        f"{esc(locale.language_code)}"
    )


def status_card(identifier: str, locale: LocaleContext, keys: Optional[dict[str, str]] = None) -> str:
    lines = [
        "⚙️ *STATUS*",
        DIV,
        f"🤖 Identifier: {esc(identifier)}",
        f"📍 Location: {esc(locale.country_code or 'not set')}"
        f" · {esc(locale.currency_code or '—')} · {esc(locale.language_code)}",
    ]
    if keys:
        lines += ["", "🔑 *Keys*"]
        lines += [f"▸ {esc(name)}: {esc(masked)}" for name, masked in keys.items()]
    return "\n".join(lines)


def not_a_photo() -> str:
    return "📸 Please send a *photo* of the product\\."


def error_rate_limited(max_requests: int, window_secs: int) -> str:
    return (
        f"⏳ *Slow down a little*\n"
        f"{SDIV}\n"
        f"Max {max_requests} photos per {window_secs} seconds\\. Try again shortly\\."
    )


def error_generic() -> str:
    return "❌ Something went wrong\\. Please try again\\."


def _truncate(text: str) -> str:
    if len(text) <= TELEGRAM_LIMIT:
        return text
    return text[:TELEGRAM_LIMIT] + "\n…"


def session_expired() -> str:
    return "⚠️ Session expired, please send a new photo\\."


# ══════════════════════════════════════════════════════════════════════════════
# ADMIN
# ══════════════════════════════════════════════════════════════════════════════

def admin_only() -> str:
    return "🔒 This command is for admins only\\."


def setkey_usage(names) -> str:
    listed = "\n".join(f"▸ `{n}`" for n in names)
    return (
        f"🔑 *Set an API key*\n"
        f"{SDIV}\n"
        f"Usage: `/setkey <name> <value>`\n\n"
        f"{listed}"
    )


def key_saved(name: str) -> str:
    return f"🔑 `{name}` saved\\. Identifier will be rebuilt on the next photo\\."


def delkey_usage(names) -> str:
    listed = "\n".join(f"▸ `{n}`" for n in names)
    return (
        f"🗑️ *Remove a stored API key*\n"
        f"{SDIV}\n"
        f"Usage: `/delkey <name>`\n\n"
        f"{listed}"
    )


def key_deleted(name: str) -> str:
    return f"🗑️ `{name}` removed\\. The \\.env value applies again\\."
