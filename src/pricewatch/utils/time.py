from __future__ import annotations

import math
import time


def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()


def monotonic_s() -> float:
    """Monotonic clock for rate-limit bookkeeping (never goes backwards)."""
    return time.monotonic()


def next_boundary(now: float, period_s: float) -> float:
    """
    Next wall-clock instant aligned to `period_s` strictly after `now`.
    900s -> :00/:15/:30/:45, 3600s -> top of the hour.
    """
    if period_s <= 0:
        raise ValueError("period_s must be > 0")
    return (math.floor(now / period_s) + 1) * period_s


def seconds_until(ts_target: float, now: float | None = None) -> float:
    """Non-negative time until target (clamped at 0)."""
    if now is None:
        now = utc_now_s()
    return max(0.0, ts_target - now)
