from __future__ import annotations

import json
from typing import Iterable, Optional

import structlog
from redis.asyncio import Redis

from pricewatch.utils.types import MAX_ALERTS_PER_SUBSCRIBER, SubscriberConfig, ThresholdAlert
from storage.subscribers import (
    AlertLimitError,
    UnknownSubscriberError,
    alert_from_dict,
    alert_to_dict,
    new_alert_id,
    settings_from_dict,
    settings_to_dict,
)

log = structlog.get_logger("redis_store")

PREFIX = "pw"


def subscribers_key(prefix: str = PREFIX) -> str:
    return f"{prefix}:subscribers"


def settings_key(subscriber_id: int, prefix: str = PREFIX) -> str:
    # pw:sub:{ID}
    return f"{prefix}:sub:{subscriber_id}"


def alerts_key(subscriber_id: int, prefix: str = PREFIX) -> str:
    # pw:alerts:{ID} -> hash alert_id -> json
    return f"{prefix}:alerts:{subscriber_id}"


class RedisStore:
    """
    Subscriber store on redis.asyncio.

      {prefix}:subscribers        SET of subscriber ids
      {prefix}:sub:{id}           JSON settings
      {prefix}:alerts:{id}        HASH alert_id -> JSON alert

    Expects a client created with decode_responses=True.
    """

    def __init__(self, r: Redis, prefix: str = PREFIX):
        self._r = r
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = PREFIX) -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True), prefix=prefix)

    async def close(self) -> None:
        await self._r.aclose()

    async def subscriber_ids(self) -> set[int]:
        members = await self._r.smembers(subscribers_key(self.prefix))
        out: set[int] = set()
        for m in members:
            try:
                out.add(int(m))
            except (TypeError, ValueError):
                log.error("redis_bad_subscriber_id", value=m)
        return out

    async def add_subscriber(self, config: SubscriberConfig) -> None:
        added = await self._r.sadd(subscribers_key(self.prefix), str(config.subscriber_id))
        if added:
            await self._r.set(settings_key(config.subscriber_id, self.prefix), json.dumps(settings_to_dict(config)))

    async def load_settings(self, subscriber_id: int) -> SubscriberConfig:
        raw = await self._r.get(settings_key(subscriber_id, self.prefix))
        if raw is None:
            if await self._r.sismember(subscribers_key(self.prefix), str(subscriber_id)):
                return SubscriberConfig(subscriber_id)
            raise UnknownSubscriberError(subscriber_id)
        return settings_from_dict(json.loads(raw))

    async def save_settings(self, config: SubscriberConfig) -> None:
        if not await self._r.sismember(subscribers_key(self.prefix), str(config.subscriber_id)):
            raise UnknownSubscriberError(config.subscriber_id)
        await self._r.set(settings_key(config.subscriber_id, self.prefix), json.dumps(settings_to_dict(config)))

    async def load_alerts(self, subscriber_ids: Optional[Iterable[int]] = None) -> list[ThresholdAlert]:
        sids = await self.subscriber_ids() if subscriber_ids is None else subscriber_ids
        out: list[ThresholdAlert] = []
        for sid in sids:
            rows = await self._r.hgetall(alerts_key(sid, self.prefix))
            for alert_id, raw in rows.items():
                try:
                    alert = alert_from_dict(json.loads(raw))
                except (ValueError, KeyError, TypeError) as e:
                    log.error("redis_bad_alert", subscriber=sid, alert_id=alert_id, err=str(e))
                    continue
                if alert.active:
                    out.append(alert)
        return out

    async def add_alert(self, subscriber_id: int, asset_id: str, direction: str, price: float) -> ThresholdAlert:
        if not await self._r.sismember(subscribers_key(self.prefix), str(subscriber_id)):
            raise UnknownSubscriberError(subscriber_id)
        key = alerts_key(subscriber_id, self.prefix)
        if await self._r.hlen(key) >= MAX_ALERTS_PER_SUBSCRIBER:
            raise AlertLimitError(f"at most {MAX_ALERTS_PER_SUBSCRIBER} alerts per subscriber")
        alert = ThresholdAlert(new_alert_id(), subscriber_id, asset_id, direction, price)
        await self._r.hset(key, alert.alert_id, json.dumps(alert_to_dict(alert)))
        return alert

    async def delete_alert(self, alert: ThresholdAlert) -> None:
        await self._r.hdel(alerts_key(alert.subscriber_id, self.prefix), alert.alert_id)

    async def remove_subscriber(self, subscriber_id: int) -> None:
        await self._r.srem(subscribers_key(self.prefix), str(subscriber_id))
        await self._r.delete(settings_key(subscriber_id, self.prefix), alerts_key(subscriber_id, self.prefix))
        log.info("subscriber_removed", subscriber=subscriber_id)
