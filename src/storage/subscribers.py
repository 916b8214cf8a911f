from __future__ import annotations

import uuid
from dataclasses import asdict
from typing import Any, Iterable, Optional, Protocol

from pricewatch.utils.types import (
    MAX_ALERTS_PER_SUBSCRIBER,
    Cadence,
    SubscriberConfig,
    ThresholdAlert,
)


class UnknownSubscriberError(KeyError):
    pass


class AlertLimitError(ValueError):
    pass


class SubscriberStore(Protocol):
    """What the scheduler needs from persistence. All calls may raise; callers log and skip."""

    async def subscriber_ids(self) -> set[int]: ...
    async def add_subscriber(self, config: SubscriberConfig) -> None: ...
    async def load_settings(self, subscriber_id: int) -> SubscriberConfig: ...
    async def save_settings(self, config: SubscriberConfig) -> None: ...
    async def load_alerts(self, subscriber_ids: Optional[Iterable[int]] = None) -> list[ThresholdAlert]: ...
    async def add_alert(self, subscriber_id: int, asset_id: str, direction: str, price: float) -> ThresholdAlert: ...
    async def delete_alert(self, alert: ThresholdAlert) -> None: ...
    async def remove_subscriber(self, subscriber_id: int) -> None: ...


# ---- (de)serialization shared by the backends ----

def settings_to_dict(cfg: SubscriberConfig) -> dict[str, Any]:
    d = asdict(cfg)
    d["tracked"] = list(cfg.tracked)
    d["cadence"] = cfg.cadence.value
    return d


def settings_from_dict(d: dict[str, Any]) -> SubscriberConfig:
    return SubscriberConfig(
        subscriber_id=int(d["subscriber_id"]),
        fiat=d.get("fiat", "usd"),
        tracked=tuple(d.get("tracked", ("bitcoin", "ethereum"))),
        cadence=Cadence(d.get("cadence", Cadence.HOUR_1.value)),
        emergency_alerts=bool(d.get("emergency_alerts", True)),
        emergency_threshold=float(d.get("emergency_threshold", 10.0)),
    )


def alert_to_dict(alert: ThresholdAlert) -> dict[str, Any]:
    return asdict(alert)


def alert_from_dict(d: dict[str, Any]) -> ThresholdAlert:
    return ThresholdAlert(
        alert_id=str(d["alert_id"]),
        subscriber_id=int(d["subscriber_id"]),
        asset_id=str(d["asset_id"]),
        direction=d["direction"],
        price=float(d["price"]),
        active=bool(d.get("active", True)),
    )


def new_alert_id() -> str:
    return uuid.uuid4().hex[:12]


class MemoryStore:
    """Dict-backed store for tests and local runs."""

    def __init__(self, configs: Iterable[SubscriberConfig] = (), alerts: Iterable[ThresholdAlert] = ()):
        self._settings: dict[int, SubscriberConfig] = {}
        self._alerts: dict[int, dict[str, ThresholdAlert]] = {}
        self.removed: list[int] = []
        self.deleted_alerts: list[str] = []
        for c in configs:
            self._settings[c.subscriber_id] = c
        for a in alerts:
            self._alerts.setdefault(a.subscriber_id, {})[a.alert_id] = a

    async def subscriber_ids(self) -> set[int]:
        return set(self._settings)

    async def add_subscriber(self, config: SubscriberConfig) -> None:
        self._settings.setdefault(config.subscriber_id, config)

    async def load_settings(self, subscriber_id: int) -> SubscriberConfig:
        try:
            return self._settings[subscriber_id]
        except KeyError:
            raise UnknownSubscriberError(subscriber_id) from None

    async def save_settings(self, config: SubscriberConfig) -> None:
        if config.subscriber_id not in self._settings:
            raise UnknownSubscriberError(config.subscriber_id)
        self._settings[config.subscriber_id] = config

    async def load_alerts(self, subscriber_ids: Optional[Iterable[int]] = None) -> list[ThresholdAlert]:
        sids = self._alerts.keys() if subscriber_ids is None else subscriber_ids
        out: list[ThresholdAlert] = []
        for sid in sids:
            out.extend(a for a in self._alerts.get(sid, {}).values() if a.active)
        return out

    async def add_alert(self, subscriber_id: int, asset_id: str, direction: str, price: float) -> ThresholdAlert:
        if subscriber_id not in self._settings:
            raise UnknownSubscriberError(subscriber_id)
        mine = self._alerts.setdefault(subscriber_id, {})
        if len(mine) >= MAX_ALERTS_PER_SUBSCRIBER:
            raise AlertLimitError(f"at most {MAX_ALERTS_PER_SUBSCRIBER} alerts per subscriber")
        alert = ThresholdAlert(new_alert_id(), subscriber_id, asset_id, direction, price)
        mine[alert.alert_id] = alert
        return alert

    async def delete_alert(self, alert: ThresholdAlert) -> None:
        mine = self._alerts.get(alert.subscriber_id, {})
        if mine.pop(alert.alert_id, None) is not None:
            self.deleted_alerts.append(alert.alert_id)

    async def remove_subscriber(self, subscriber_id: int) -> None:
        self._settings.pop(subscriber_id, None)
        self._alerts.pop(subscriber_id, None)
        self.removed.append(subscriber_id)

