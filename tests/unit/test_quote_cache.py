import pytest

from pricewatch.data.quote_cache import QuoteCache, QuoteHistory
from tests.helpers.fakes import make_quote

def test_history_trims_to_half_on_overflow():
    h = QuoteHistory(capacity=50)
    for i in range(50):
        h.append(make_quote("bitcoin", 100.0 + i, ts=float(i)))
    assert h.size == 50
    h.append(make_quote("bitcoin", 999.0, ts=50.0))
    assert h.size == 25
    assert h.last().price("usd") == 999.0
    # the newest entries survive
    assert [q.ts for q in h][0] == 26.0

def test_history_needs_room_for_a_baseline():
    with pytest.raises(ValueError):
        QuoteHistory(capacity=1)

def test_previous_is_none_until_second_quote():
    c = QuoteCache()
    assert c.previous("bitcoin") is None
    c.update(make_quote("bitcoin", 100.0, ts=1.0))
    assert c.latest("bitcoin").price("usd") == 100.0
    assert c.previous("bitcoin") is None
    c.update(make_quote("bitcoin", 110.0, ts=2.0))
    assert c.previous("bitcoin").price("usd") == 100.0
    assert c.latest("bitcoin").price("usd") == 110.0

def test_out_of_order_quote_is_refused():
    c = QuoteCache()
    assert c.update(make_quote("bitcoin", 100.0, ts=10.0))
    assert not c.update(make_quote("bitcoin", 90.0, ts=9.0))
    assert c.latest("bitcoin").ts == 10.0
    # same timestamp is fine (non-decreasing)
    assert c.update(make_quote("bitcoin", 101.0, ts=10.0))

def test_assets_are_independent():
    c = QuoteCache()
    c.update(make_quote("bitcoin", 1.0, ts=5.0))
    c.update(make_quote("ethereum", 1.0, ts=1.0))
    assert sorted(c.assets()) == ["bitcoin", "ethereum"]
    assert len(c) == 2
    assert len(c.history("bitcoin")) == 1
    assert c.history("solana") == []
