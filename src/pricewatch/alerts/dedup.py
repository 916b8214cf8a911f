from __future__ import annotations

from typing import Callable, Optional

from pricewatch.utils.time import utc_now_s

# (subscriber_id, asset_id, kind)
DedupKey = tuple[int, str, str]


class EmergencyAlertState:
    """
    Last-fired timestamps for recurring emergency alerts.

    - try_fire(key): False if the key fired within `window_s`, else records
      the fire time and returns True.
    - prune(): drops keys older than `retention_s`; run periodically.

    A key's timestamp only moves forward, and only when an alert is actually
    emitted. In-memory on purpose: a restart just forgets recent fires.
    """

    def __init__(self, window_s: float = 3600.0, retention_s: float = 4 * 3600.0,
                 clock: Callable[[], float] = utc_now_s):
        if retention_s < window_s:
            raise ValueError("retention_s must cover the dedup window")
        self.window_s = window_s
        self.retention_s = retention_s
        self._clock = clock
        self._fired: dict[DedupKey, float] = {}

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def last_fired(self, key: DedupKey) -> Optional[float]:
        return self._fired.get(key)

    def seen_recently(self, key: DedupKey, now: Optional[float] = None) -> bool:
        last = self._fired.get(key)
        if last is None:
            return False
        return (self._now(now) - last) < self.window_s

    def mark(self, key: DedupKey, now: Optional[float] = None) -> None:
        ts = self._now(now)
        prev = self._fired.get(key)
        if prev is None or ts > prev:
            self._fired[key] = ts

    def try_fire(self, key: DedupKey, now: Optional[float] = None) -> bool:
        now = self._now(now)
        if self.seen_recently(key, now):
            return False
        self.mark(key, now)
        return True

    def prune(self, now: Optional[float] = None) -> int:
        cutoff = self._now(now) - self.retention_s
        stale = [k for k, ts in self._fired.items() if ts < cutoff]
        for k in stale:
            self._fired.pop(k, None)
        return len(stale)

    def __len__(self) -> int:
        return len(self._fired)
