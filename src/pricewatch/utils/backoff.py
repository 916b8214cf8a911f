from __future__ import annotations

import random
from typing import Iterator, Optional


def exp_backoff(attempt: int, base: float, cap: float = 60.0) -> float:
    """
    Delay before retry number `attempt` (1-based): base * 2**attempt, capped.
    base=1 -> 2, 4, 8, ...
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(base * (2.0 ** attempt), cap)


def retry_delay(attempt: int, base: float, *, retry_after: Optional[float] = None,
                cap: float = 60.0) -> float:
    """
    Provider-supplied retry-after wins over the computed backoff.
    Both are clamped to `cap` so one upstream can't park a tick forever.
    """
    if retry_after is not None and retry_after >= 0:
        return min(float(retry_after), cap)
    return exp_backoff(attempt, base, cap)


def jitter(v: float, *, ratio: float = 0.2) -> float:
    """
    Add ±ratio jitter. ratio=0.2 -> multiply by [0.8, 1.2].
    """
    lo = 1.0 - ratio
    hi = 1.0 + ratio
    return v * (lo + (hi - lo) * random.random())


def backoff_iter(initial: float = 0.25, cap: float = 30.0) -> Iterator[float]:
    """
    Deterministic (no jitter) iterator of backoff values:
    0.25, 0.5, 1, 2, 4, ... (capped).
    """
    v = initial
    while True:
        yield v
        v = min(v * 2.0, cap)


def parse_retry_after(value) -> Optional[float]:
    """Retry-After header / body value -> seconds, or None if absent/garbage."""
    if value is None:
        return None
    try:
        secs = float(value)
    except (TypeError, ValueError):
        return None
    return secs if secs >= 0 else None
