import pytest

from pricewatch.utils.types import Cadence, SubscriberConfig, ThresholdAlert
from storage.subscribers import (
    AlertLimitError,
    MemoryStore,
    UnknownSubscriberError,
    settings_from_dict,
    settings_to_dict,
)

@pytest.mark.asyncio
async def test_subscriber_lifecycle():
    s = MemoryStore()
    await s.add_subscriber(SubscriberConfig(1))
    assert await s.subscriber_ids() == {1}
    cfg = SubscriberConfig(1, fiat="eur", tracked=("solana",), cadence=Cadence.MIN_30)
    await s.save_settings(cfg)
    assert await s.load_settings(1) == cfg
    await s.remove_subscriber(1)
    assert await s.subscriber_ids() == set()
    with pytest.raises(UnknownSubscriberError):
        await s.load_settings(1)

@pytest.mark.asyncio
async def test_add_subscriber_keeps_existing_settings():
    s = MemoryStore([SubscriberConfig(1, fiat="eur")])
    await s.add_subscriber(SubscriberConfig(1))
    assert (await s.load_settings(1)).fiat == "eur"

@pytest.mark.asyncio
async def test_alert_limit_and_delete():
    s = MemoryStore([SubscriberConfig(1)])
    made = [await s.add_alert(1, "bitcoin", "above", 100.0 + i) for i in range(5)]
    assert len({a.alert_id for a in made}) == 5
    with pytest.raises(AlertLimitError):
        await s.add_alert(1, "bitcoin", "above", 1.0)
    await s.delete_alert(made[0])
    assert len(await s.load_alerts()) == 4
    assert s.deleted_alerts == [made[0].alert_id]

@pytest.mark.asyncio
async def test_load_alerts_filters_by_subscriber():
    s = MemoryStore(
        [SubscriberConfig(1), SubscriberConfig(2)],
        [ThresholdAlert("a", 1, "bitcoin", "above", 1.0), ThresholdAlert("b", 2, "bitcoin", "below", 1.0)],
    )
    assert [a.alert_id for a in await s.load_alerts([2])] == ["b"]
    with pytest.raises(UnknownSubscriberError):
        await s.add_alert(9, "bitcoin", "above", 1.0)

def test_settings_roundtrip_through_dict():
    cfg = SubscriberConfig(5, fiat="eur", tracked=("bitcoin", "solana"), cadence=Cadence.HOUR_2,
                           emergency_alerts=False, emergency_threshold=7.5)
    d = settings_to_dict(cfg)
    assert d["cadence"] == "2h"
    assert d["tracked"] == ["bitcoin", "solana"]
    assert settings_from_dict(d) == cfg

def test_settings_validation():
    with pytest.raises(ValueError):
        SubscriberConfig(1, fiat="gbp")
    with pytest.raises(ValueError):
        SubscriberConfig(1, tracked=("a", "b", "c", "d", "e", "f"))
    with pytest.raises(ValueError):
        SubscriberConfig(1, emergency_threshold=0)
    assert SubscriberConfig(1, cadence="15min").cadence is Cadence.MIN_15
