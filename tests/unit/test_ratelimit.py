import pytest

from pricewatch.providers.ratelimit import IntervalGate
from tests.helpers.fakes import FakeClock, FakeSleep

@pytest.mark.asyncio
async def test_first_call_is_free_then_spaced():
    clock, sleep = FakeClock(100.0), FakeSleep()
    gate = IntervalGate(clock=clock, sleep=sleep)
    assert await gate.wait("coingecko", 1.5) == 0.0
    assert await gate.wait("coingecko", 1.5) == pytest.approx(1.5)
    # third caller queued behind the second
    assert await gate.wait("coingecko", 1.5) == pytest.approx(3.0)
    assert sleep.delays == [pytest.approx(1.5), pytest.approx(3.0)]

@pytest.mark.asyncio
async def test_endpoints_are_independent():
    clock, sleep = FakeClock(0.0), FakeSleep()
    gate = IntervalGate(clock=clock, sleep=sleep)
    await gate.wait("a", 5.0)
    assert await gate.wait("b", 5.0) == 0.0
    assert sleep.delays == []

@pytest.mark.asyncio
async def test_no_wait_once_interval_elapsed():
    clock, sleep = FakeClock(0.0), FakeSleep()
    gate = IntervalGate(clock=clock, sleep=sleep)
    await gate.wait("a", 1.0)
    clock.advance(0.4)
    assert await gate.wait("a", 1.0) == pytest.approx(0.6)
    clock.advance(10.0)
    assert await gate.wait("a", 1.0) == 0.0
