from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

from pricewatch.alerts.dedup import EmergencyAlertState
from pricewatch.alerts.rules import EmergencyRule
from pricewatch.alerts.state import AlertBook
from pricewatch.utils.time import utc_now_s
from pricewatch.utils.types import IntentKind, NotificationIntent, Quote, SubscriberConfig

log = structlog.get_logger("evaluator")


@dataclass(slots=True)
class EvaluatorConfig:
    rule: EmergencyRule = field(default_factory=EmergencyRule)


class AlertEvaluator:
    """
    Decides which notifications fire for one subscriber and one fresh quote.

    Threshold alerts (one-shot):
      above → price >= trigger, below → price <= trigger, in the subscriber's
      fiat. A triggered alert is consumed from the AlertBook before the
      intents are returned, so calling again can't fire it twice.

    Emergency alerts (recurring, deduplicated per subscriber/asset/kind):
      crash, pump and extreme are checked independently on the 24h change and
      each goes through EmergencyAlertState. They need the emergency flag, the
      asset in the tracked set, and a previous quote as baseline.

    Never raises on bad input: a missing quote/baseline or a quote without the
    subscriber's fiat just produces fewer intents (and a log line).
    """

    def __init__(
        self,
        alerts: AlertBook,
        state: Optional[EmergencyAlertState] = None,
        cfg: Optional[EvaluatorConfig] = None,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.cfg = cfg or EvaluatorConfig()
        self.rule = self.cfg.rule
        self.alerts = alerts
        self.state = state or EmergencyAlertState(
            window_s=self.rule.dedup_window_s, retention_s=self.rule.retention_s, clock=clock,
        )
        self._clock = clock

    # ---------- entry points ----------

    def evaluate(
        self,
        config: SubscriberConfig,
        current: Optional[Quote],
        previous: Optional[Quote],
        *,
        now: Optional[float] = None,
    ) -> list[NotificationIntent]:
        if current is None:
            log.warning("evaluate_without_quote", subscriber=config.subscriber_id)
            return []
        intents = self.evaluate_thresholds(config, current)
        intents.extend(self.evaluate_emergency(config, current, previous, now=now))
        return intents

    def evaluate_thresholds(self, config: SubscriberConfig, current: Quote) -> list[NotificationIntent]:
        mine = [a for a in self.alerts.for_subscriber(config.subscriber_id)
                if a.asset_id == current.asset_id and a.active]
        if not mine:
            return []
        price = self._price(config, current)
        if price is None:
            return []

        intents: list[NotificationIntent] = []
        for alert in mine:
            if not alert.crossed(price):
                continue
            if not self.alerts.consume(alert):
                # already consumed by an interleaved evaluation
                continue
            log.info("threshold_alert_triggered", subscriber=config.subscriber_id, asset=current.asset_id,
                     direction=alert.direction, trigger=alert.price, price=price)
            intents.append(NotificationIntent(
                kind=IntentKind.THRESHOLD,
                subscriber_id=config.subscriber_id,
                asset_id=current.asset_id,
                fiat=config.fiat,
                current=price,
                ts=current.ts,
                direction=alert.direction,
                alert=alert,
            ))
        return intents

    def evaluate_emergency(
        self,
        config: SubscriberConfig,
        current: Quote,
        previous: Optional[Quote],
        *,
        now: Optional[float] = None,
    ) -> list[NotificationIntent]:
        if not config.emergency_alerts or not config.tracks(current.asset_id):
            return []
        if previous is None:
            # first observation of this asset: nothing to compare against yet
            return []
        price = self._price(config, current)
        if price is None:
            return []

        change = current.change_24h_pct(config.fiat)
        thr = config.emergency_threshold
        kinds: list[IntentKind] = []
        if self.rule.crash(change, thr):
            kinds.append(IntentKind.CRASH)
        if self.rule.pump(change, thr):
            kinds.append(IntentKind.PUMP)
        if self.rule.extreme(change):
            kinds.append(IntentKind.EXTREME)
        if not kinds:
            return []

        now = self._clock() if now is None else now
        delta = _pct_delta(previous, price, config.fiat)
        intents: list[NotificationIntent] = []
        for kind in kinds:
            key = (config.subscriber_id, current.asset_id, kind.value)
            if not self.state.try_fire(key, now):
                log.debug("emergency_alert_suppressed", subscriber=config.subscriber_id,
                          asset=current.asset_id, kind=kind.value)
                continue
            log.info("emergency_alert_fired", subscriber=config.subscriber_id, asset=current.asset_id,
                     kind=kind.value, change_24h=round(change, 2))
            intents.append(NotificationIntent(
                kind=kind,
                subscriber_id=config.subscriber_id,
                asset_id=current.asset_id,
                fiat=config.fiat,
                current=price,
                ts=current.ts,
                direction="up" if change > 0 else "down",
                pct=change,
                delta_pct=delta,
            ))
        return intents

    def prune(self, now: Optional[float] = None) -> int:
        return self.state.prune(now)

    # ---------- helpers ----------

    @staticmethod
    def _price(config: SubscriberConfig, quote: Quote) -> Optional[float]:
        try:
            price = quote.price(config.fiat)
        except (KeyError, TypeError, ValueError):
            log.warning("quote_missing_fiat", subscriber=config.subscriber_id, asset=quote.asset_id,
                        fiat=config.fiat)
            return None
        if not price > 0:
            log.warning("quote_bad_price", asset=quote.asset_id, fiat=config.fiat, price=price)
            return None
        return price


def _pct_delta(previous: Quote, price: float, fiat: str) -> Optional[float]:
    prev = previous.prices.get(fiat)
    if not prev or prev <= 0:
        return None
    return (price - prev) / prev * 100.0
