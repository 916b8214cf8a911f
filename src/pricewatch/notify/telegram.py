from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from pricewatch.utils.backoff import backoff_iter, jitter, parse_retry_after
from pricewatch.utils.types import DeliveryStatus

log = structlog.get_logger("telegram")

# Telegram error descriptions that mean "this chat is gone for us"
_UNREACHABLE_HINTS = (
    "bot was blocked by the user",
    "user is deactivated",
    "bot was kicked",
    "chat not found",
    "user not found",
    "peer_id_invalid",
    "bot can't initiate conversation",
)

# --------- small rate limiter (token bucket) ----------

class RateLimiter:
    def __init__(self, rate_per_sec: float, burst: int = 1):
        self.rate = float(rate_per_sec)
        self.capacity = int(burst)
        self.tokens = float(burst)
        self.updated = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            now = time.monotonic()
            # refill
            self.tokens = min(self.capacity, self.tokens + (now - self.updated) * self.rate)
            self.updated = now
            # wait if no token
            if self.tokens < 1.0:
                needed = 1.0 - self.tokens
                await asyncio.sleep(needed / self.rate)
                self.updated = time.monotonic()
                self.tokens = 1.0
            self.tokens -= 1.0

# --------- config & client ----------

@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    parse_mode: Optional[str] = "MarkdownV2"  # "HTML", "MarkdownV2" or None
    api_base: str = "https://api.telegram.org"
    timeout_s: float = 8.0
    rate_per_sec: float = 25.0     # global bot limit is ~30 msg/s
    burst: int = 5
    max_retries: int = 3
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0


def is_unreachable(status: int, description: str) -> bool:
    if status not in (400, 403):
        return False
    d = description.lower()
    return status == 403 or any(h in d for h in _UNREACHABLE_HINTS)


class TelegramTransport:
    """
    send(chat_id, text) -> DeliveryStatus, with rate limiting and retry w/ backoff.

    - 200                       → SENT
    - 403 / "chat not found"    → UNREACHABLE (caller drops the subscriber)
    - 429                       → wait retry_after, retry
    - 5xx / network error       → backoff, retry
    - other 4xx, retries spent  → FAILED (subscriber kept, next tick tries again)
    """
    def __init__(self, cfg: TelegramConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._own_session = session is None
        self._rl = RateLimiter(rate_per_sec=cfg.rate_per_sec, burst=cfg.burst)

    async def start(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._own_session = True

    async def stop(self):
        if self._session and self._own_session:
            await self._session.close()
            self._session = None

    async def send(self, recipient_id: int, text: str) -> DeliveryStatus:
        if self._session is None:
            await self.start()
        url = f"{self.cfg.api_base}/bot{self.cfg.bot_token}/sendMessage"
        payload = {"chat_id": str(recipient_id), "text": text}
        if self.cfg.parse_mode:
            payload["parse_mode"] = self.cfg.parse_mode

        backoff = backoff_iter(self.cfg.initial_backoff_s, self.cfg.max_backoff_s)
        for attempt in range(1, self.cfg.max_retries + 1):
            await self._rl.acquire()
            try:
                async with self._session.post(url, data=payload) as resp:
                    if resp.status == 200:
                        return DeliveryStatus.SENT
                    body = await _maybe_json(resp)
                    desc = str(body.get("description", ""))
                    if is_unreachable(resp.status, desc):
                        log.info("telegram_recipient_unreachable", chat_id=recipient_id,
                                 status=resp.status, description=desc)
                        return DeliveryStatus.UNREACHABLE
                    log.warning("telegram_send_failed", chat_id=recipient_id, status=resp.status,
                                description=desc, attempt=attempt)
                    if resp.status == 429:
                        params = body.get("parameters") or {}
                        ra = parse_retry_after(params.get("retry_after"))
                        if ra is not None:
                            await asyncio.sleep(min(ra, self.cfg.max_backoff_s * 4))
                            continue
                    if 500 <= resp.status < 600 or resp.status == 429:
                        await asyncio.sleep(jitter(next(backoff)))
                        continue
                    # other 4xx: don't retry
                    return DeliveryStatus.FAILED
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", chat_id=recipient_id, err=str(e), attempt=attempt)
                await asyncio.sleep(jitter(next(backoff)))
        log.error("telegram_give_up_after_retries", chat_id=recipient_id)
        return DeliveryStatus.FAILED


async def _maybe_json(resp) -> dict:
    try:
        data = await resp.json(content_type=None)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}
