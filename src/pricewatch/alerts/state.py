from __future__ import annotations

from typing import Iterable, Optional

from pricewatch.utils.types import ThresholdAlert


class AlertBook:
    """
    Working set of active threshold alerts, per subscriber.

    consume() removes an alert and remembers its id until the store confirms
    the deletion, so a reload from a lagging store can't re-arm it.

    Reloads can overlap. Each one takes a generation from begin_snapshot()
    before reading the store; a snapshot older than the one already applied
    is ignored, and a confirmed deletion leaves a tombstone that only a
    snapshot started after the confirmation can clear.
    """

    def __init__(self, alerts: Iterable[ThresholdAlert] = ()):
        self._by_sub: dict[int, dict[str, ThresholdAlert]] = {}
        self._consumed: dict[str, ThresholdAlert] = {}
        self._deleted: dict[str, int] = {}  # alert_id -> generation at confirmation
        self._generation = 0
        self._applied = 0
        for a in alerts:
            self.add(a)

    def add(self, alert: ThresholdAlert) -> bool:
        if not alert.active or alert.alert_id in self._consumed or alert.alert_id in self._deleted:
            return False
        self._by_sub.setdefault(alert.subscriber_id, {})[alert.alert_id] = alert
        return True

    def begin_snapshot(self) -> int:
        self._generation += 1
        return self._generation

    def sync(self, alerts: Iterable[ThresholdAlert], generation: Optional[int] = None) -> bool:
        """
        Replace the working set with a store snapshot. Consumed and deleted
        ids stay out. Returns False when the snapshot is outdated and was
        dropped.
        """
        if generation is not None:
            if generation < self._applied:
                return False
            self._applied = generation
        alerts = list(alerts)
        self._by_sub = {}
        for a in alerts:
            self.add(a)
        if generation is not None:
            seen = {a.alert_id for a in alerts}
            self._deleted = {
                aid: gen for aid, gen in self._deleted.items() if gen >= generation or aid in seen
            }
        return True

    def for_subscriber(self, subscriber_id: int) -> list[ThresholdAlert]:
        return list(self._by_sub.get(subscriber_id, {}).values())

    def owners(self) -> set[int]:
        return {sid for sid, alerts in self._by_sub.items() if alerts}

    def assets_for(self, subscriber_ids: Iterable[int]) -> set[str]:
        out: set[str] = set()
        for sid in subscriber_ids:
            out.update(a.asset_id for a in self._by_sub.get(sid, {}).values())
        return out

    def consume(self, alert: ThresholdAlert) -> bool:
        """Remove a triggered alert. True only the first time."""
        alerts = self._by_sub.get(alert.subscriber_id)
        if not alerts or alert.alert_id not in alerts:
            return False
        del alerts[alert.alert_id]
        if not alerts:
            del self._by_sub[alert.subscriber_id]
        self._consumed[alert.alert_id] = alert
        return True

    def confirm_deleted(self, alert_id: str) -> None:
        if self._consumed.pop(alert_id, None) is not None:
            self._deleted[alert_id] = self._generation

    def pending_deletions(self) -> list[ThresholdAlert]:
        """Consumed alerts whose store deletion has not been confirmed yet."""
        return list(self._consumed.values())

    def drop_subscriber(self, subscriber_id: int) -> None:
        self._by_sub.pop(subscriber_id, None)

    def __len__(self) -> int:
        return sum(len(a) for a in self._by_sub.values())
