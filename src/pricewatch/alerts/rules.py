from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class EmergencyRule:
    """
    Volatility conditions on the 24h % change, in the subscriber's fiat.
    - crash   → change <= -threshold
    - pump    → change >= threshold * pump_multiplier
    - extreme → |change| >= extreme_pct, whatever the subscriber's threshold
    """
    pump_multiplier: float = 1.5
    extreme_pct: float = 20.0
    dedup_window_s: float = 3600.0         # one fire per (subscriber, asset, kind) per hour
    retention_s: float = 4 * 3600.0        # dedup entries older than this get pruned

    def crash(self, change_pct: float, threshold: float) -> bool:
        return change_pct <= -threshold

    def pump(self, change_pct: float, threshold: float) -> bool:
        return change_pct >= threshold * self.pump_multiplier

    def extreme(self, change_pct: float) -> bool:
        return abs(change_pct) >= self.extreme_pct
