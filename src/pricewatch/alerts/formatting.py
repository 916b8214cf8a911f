from __future__ import annotations

import re
from datetime import datetime
from typing import Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from pricewatch.catalog import get_asset
from pricewatch.utils.types import FIAT_SYMBOLS, IntentKind, NotificationIntent, Quote

# Telegram MarkdownV2 reserved characters
_MD_SPECIAL = re.compile(r"([_*\[\]()~`>#+=|{}.!\\-])")


def escape_md(text: str) -> str:
    return _MD_SPECIAL.sub(r"\\\1", str(text))


def _fmt_ts(ts_s: float, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    return datetime.fromtimestamp(ts_s, tz).strftime("%H:%M:%S %Z")


def fmt_price(value: float) -> str:
    """2 decimals for normal prices, up to 8 for sub-unit coins."""
    if abs(value) >= 1:
        return f"{value:,.2f}"
    s = f"{value:,.8f}".rstrip("0")
    whole, _, frac = s.partition(".")
    return f"{whole}.{frac.ljust(2, '0')}"


def _label(asset_id: str) -> tuple[str, str]:
    a = get_asset(asset_id)
    if a is None:
        return asset_id, asset_id.upper()
    return a.name, a.symbol


def trend_text(current: Quote, previous: Optional[Quote], fiat: str) -> str:
    if previous is None or not previous.prices.get(fiat):
        return "Initial"
    prev = previous.prices[fiat]
    now = current.prices.get(fiat, prev)
    diff_pct = (now - prev) / prev * 100.0
    if abs(diff_pct) < 0.1:
        return "Stable"
    return "Rising" if diff_pct > 0 else "Falling"


def render_prices(
    quotes: Sequence[Quote],
    fiat: str,
    previous: Optional[Mapping[str, Quote]] = None,
    tz_name: str = "UTC",
) -> str:
    """Scheduled digest: one block per quote, in the order given. Quotes without a price in `fiat` are left out."""
    quotes = [q for q in quotes if q.prices.get(fiat)]
    if not quotes:
        return "❌ No price data available\\."
    cur = FIAT_SYMBOLS.get(fiat, "")
    previous = previous or {}
    lines = ["💰 *CRYPTO PRICES*", ""]
    for q in quotes:
        name, symbol = _label(q.asset_id)
        price = q.price(fiat)
        chg = q.change_24h_pct(fiat)
        up = chg >= 0
        sign = "\\+" if up else ""
        lines.append(f"{'📈' if up else '📉'} *{escape_md(name)} \\({escape_md(symbol)}\\)*")
        lines.append(f"💵 {escape_md(cur)}{escape_md(fmt_price(price))}")
        lines.append(f"{'🟢' if up else '🔴'} {sign}{escape_md(f'{chg:.2f}')}% \\(24h\\)")
        lines.append(f"➡️ {escape_md(trend_text(q, previous.get(q.asset_id), fiat))}")
        lines.append("")
    lines.append(f"🕐 *Updated:* {escape_md(_fmt_ts(quotes[0].ts, tz_name))}")
    return "\n".join(lines)


def render_intent(intent: NotificationIntent) -> str:
    name, symbol = _label(intent.asset_id)
    cur = escape_md(FIAT_SYMBOLS.get(intent.fiat, ""))
    now = escape_md(fmt_price(intent.current))
    sym = escape_md(symbol)

    if intent.kind is IntentKind.THRESHOLD:
        alert = intent.alert
        trigger = escape_md(fmt_price(alert.price)) if alert else "?"
        arrow = "📈" if intent.direction == "above" else "📉"
        return (
            f"🚨 *PRICE ALERT*\n\n"
            f"{arrow} {sym} is now *{escape_md(intent.direction or '')}* {cur}{trigger}\n"
            f"💰 Current: {cur}{now}"
        )

    pct = intent.pct or 0.0
    delta = ""
    if intent.delta_pct is not None:
        delta = f"\n↕️ Since last update: {escape_md(f'{intent.delta_pct:+.2f}')}%"

    if intent.kind is IntentKind.CRASH:
        return (
            f"🚨 *CRASH ALERT*\n\n"
            f"💥 {escape_md(name)} \\({sym}\\) dropped *{escape_md(f'{abs(pct):.2f}')}%* in 24h\\!\n\n"
            f"💰 Current: {cur}{now}{delta}"
        )
    if intent.kind is IntentKind.PUMP:
        return (
            f"🚀 *PUMP ALERT*\n\n"
            f"🚀 {escape_md(name)} \\({sym}\\) pumped *{escape_md(f'{pct:.2f}')}%* in 24h\\!\n\n"
            f"💰 Current: {cur}{now}{delta}"
        )
    direction = "UP" if pct > 0 else "DOWN"
    emoji = "🚀" if pct > 0 else "💥"
    return (
        f"{emoji} *EXTREME VOLATILITY*\n\n"
        f"⚠️ {escape_md(name)} \\({sym}\\) moved *{escape_md(f'{abs(pct):.2f}')}%* {direction} in 24h\\!\n\n"
        f"💰 Current: {cur}{now}\n"
        f"📊 24h change: {escape_md(f'{pct:+.2f}')}%{delta}"
    )
