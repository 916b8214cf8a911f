from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from pricewatch.utils.time import monotonic_s

Sleep = Callable[[float], Awaitable[None]]


class IntervalGate:
    """
    Minimum spacing between calls, per endpoint name.

    wait(name, min_interval) computes
        wait = max(0, min_interval - (now - last_call))
    and suspends for it. The slot is reserved *before* suspending, so two
    coroutines hitting the same endpoint back-to-back queue up one interval
    apart instead of both waking at the same instant.
    """

    def __init__(self, clock: Callable[[], float] = monotonic_s, sleep: Sleep = asyncio.sleep):
        self._clock = clock
        self._sleep = sleep
        self._next_free: dict[str, float] = {}  # name -> earliest start of next call

    async def wait(self, name: str, min_interval_s: float) -> float:
        now = self._clock()
        start = max(now, self._next_free.get(name, now))
        self._next_free[name] = start + max(0.0, min_interval_s)
        delay = start - now
        if delay > 0:
            await self._sleep(delay)
        return delay
