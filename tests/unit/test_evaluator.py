import pytest

from pricewatch.alerts.evaluator import AlertEvaluator
from pricewatch.alerts.state import AlertBook
from pricewatch.utils.types import IntentKind, SubscriberConfig, ThresholdAlert
from tests.helpers.fakes import FakeClock, make_quote

HOUR = 3600.0


def _cfg(**kw):
    base = dict(subscriber_id=1, tracked=("bitcoin", "ethereum"), emergency_threshold=10.0)
    base.update(kw)
    return SubscriberConfig(**base)


def _evaluator(*alerts, clock=None):
    return AlertEvaluator(AlertBook(alerts), clock=clock or FakeClock(0.0))


def _kinds(intents):
    return sorted(i.kind.value for i in intents)


def test_threshold_fires_once_across_ticks():
    alert = ThresholdAlert("a1", 1, "bitcoin", "above", 60_000.0)
    ev = _evaluator(alert)
    cfg = _cfg()
    tick_t = ev.evaluate(cfg, make_quote("bitcoin", 61_000.0, ts=1.0), None)
    assert [(i.kind, i.alert.alert_id) for i in tick_t] == [(IntentKind.THRESHOLD, "a1")]
    # still above on the next tick: nothing
    tick_t1 = ev.evaluate(cfg, make_quote("bitcoin", 62_000.0, ts=2.0), make_quote("bitcoin", 61_000.0, ts=1.0))
    assert tick_t1 == []
    assert ev.alerts.pending_deletions() == [alert]

def test_threshold_direction_and_fiat():
    below = ThresholdAlert("b1", 1, "bitcoin", "below", 45_000.0)
    ev = _evaluator(below)
    eur_cfg = _cfg(fiat="eur")
    # usd 50k but eur 44k: the subscriber's fiat decides
    q = make_quote("bitcoin", 50_000.0, eur=44_000.0)
    intents = ev.evaluate_thresholds(eur_cfg, q)
    assert len(intents) == 1
    assert intents[0].current == 44_000.0
    assert intents[0].direction == "below"

def test_threshold_not_crossed_stays_armed():
    alert = ThresholdAlert("a1", 1, "bitcoin", "above", 60_000.0)
    ev = _evaluator(alert)
    assert ev.evaluate_thresholds(_cfg(), make_quote("bitcoin", 59_999.0)) == []
    assert ev.alerts.for_subscriber(1) == [alert]

def test_threshold_without_baseline_still_evaluated():
    ev = _evaluator(ThresholdAlert("a1", 1, "bitcoin", "below", 100.0))
    assert _kinds(ev.evaluate(_cfg(), make_quote("bitcoin", 90.0, change=-30.0), None)) == ["threshold"]

def test_crash_dedup_window():
    clock = FakeClock(0.0)
    ev = _evaluator(clock=clock)
    cfg = _cfg()
    prev = make_quote("bitcoin", 100.0, ts=0.0)
    crash = make_quote("bitcoin", 88.0, change=-12.0, ts=1.0)
    assert _kinds(ev.evaluate(cfg, crash, prev)) == ["crash"]
    clock.advance(0.5 * HOUR)
    assert ev.evaluate(cfg, crash, prev) == []
    clock.advance(0.5 * HOUR)
    assert _kinds(ev.evaluate(cfg, crash, prev)) == ["crash"]

def test_pump_needs_one_and_a_half_threshold():
    ev = _evaluator()
    prev = make_quote("bitcoin", 100.0)
    assert _kinds(ev.evaluate(_cfg(), make_quote("bitcoin", 116.0, change=16.0), prev)) == ["pump"]
    ev2 = _evaluator()
    assert ev2.evaluate(_cfg(), make_quote("bitcoin", 114.0, change=14.0), prev) == []

@pytest.mark.parametrize("change", [22.0, -22.0])
def test_extreme_ignores_subscriber_threshold(change):
    ev = _evaluator()
    cfg = _cfg(emergency_threshold=25.0)
    intents = ev.evaluate(cfg, make_quote("bitcoin", 100.0, change=change), make_quote("bitcoin", 100.0))
    assert _kinds(intents) == ["extreme"]
    assert intents[0].pct == change
    assert intents[0].direction == ("up" if change > 0 else "down")

def test_crash_and_extreme_fire_independently():
    ev = _evaluator()
    intents = ev.evaluate(_cfg(), make_quote("bitcoin", 75.0, change=-25.0), make_quote("bitcoin", 100.0))
    assert _kinds(intents) == ["crash", "extreme"]
    crash = next(i for i in intents if i.kind is IntentKind.CRASH)
    assert crash.delta_pct == pytest.approx(-25.0)

def test_emergency_needs_flag_tracking_and_baseline():
    big_drop = make_quote("bitcoin", 50.0, change=-50.0)
    prev = make_quote("bitcoin", 100.0)
    assert _evaluator().evaluate(_cfg(emergency_alerts=False), big_drop, prev) == []
    assert _evaluator().evaluate(_cfg(tracked=("ethereum",)), big_drop, prev) == []
    assert _evaluator().evaluate(_cfg(), big_drop, None) == []

def test_missing_fiat_and_missing_quote_are_not_fatal():
    ev = _evaluator(ThresholdAlert("a1", 1, "bitcoin", "above", 1.0))
    q = make_quote("bitcoin", 100.0, change=-50.0)
    usd_only = type(q)(q.asset_id, {"usd": 100.0}, q.change_24h, q.change_7d, q.market_cap, q.volume_24h, q.ts)
    assert ev.evaluate(_cfg(fiat="eur"), usd_only, q) == []
    assert ev.evaluate(_cfg(), None, None) == []
    # alert still armed for a later, complete quote
    assert len(ev.alerts) == 1

def test_prune_delegates_to_state():
    clock = FakeClock(0.0)
    ev = _evaluator(clock=clock)
    ev.evaluate(_cfg(), make_quote("bitcoin", 80.0, change=-20.0), make_quote("bitcoin", 100.0))
    assert len(ev.state) == 2
    clock.advance(5 * HOUR)
    assert ev.prune() == 2
