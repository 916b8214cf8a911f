from __future__ import annotations

from typing import Iterator, Optional

import structlog

from pricewatch.utils.types import Quote

log = structlog.get_logger("quote_cache")

HISTORY_CAPACITY = 50


class QuoteHistory:
    """
    Bounded per-asset history, oldest first.
    On overflow the older half is dropped in one go (capacity 50 -> keep 25),
    so appends stay cheap and the tail is always the freshest data.
    """
    __slots__ = ("capacity", "_items")

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        if capacity < 2:
            raise ValueError("capacity must be >= 2 to keep a baseline")
        self.capacity = int(capacity)
        self._items: list[Quote] = []

    def append(self, quote: Quote) -> None:
        self._items.append(quote)
        if len(self._items) > self.capacity:
            self._items = self._items[-(self.capacity // 2):]

    @property
    def size(self) -> int:
        return len(self._items)

    def last(self) -> Optional[Quote]:
        return self._items[-1] if self._items else None

    def before_last(self) -> Optional[Quote]:
        return self._items[-2] if len(self._items) >= 2 else None

    def __iter__(self) -> Iterator[Quote]:
        return iter(list(self._items))


class QuoteCache:
    """
    Latest quote per asset plus a short history.

    Not a source of truth: losing it (restart) only means one round where
    previous() answers "no baseline". Concurrent ticks writing the same asset
    are last-write-wins, except that a quote older than the stored one is
    refused so timestamps never go backwards per asset.
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        self.capacity = capacity
        self._hist: dict[str, QuoteHistory] = {}

    def update(self, quote: Quote) -> bool:
        h = self._hist.get(quote.asset_id)
        if h is None:
            h = QuoteHistory(self.capacity)
            self._hist[quote.asset_id] = h
        last = h.last()
        if last is not None and quote.ts < last.ts:
            log.info("quote_out_of_order_dropped", asset=quote.asset_id, ts=quote.ts, latest_ts=last.ts)
            return False
        h.append(quote)
        return True

    def latest(self, asset_id: str) -> Optional[Quote]:
        h = self._hist.get(asset_id)
        return h.last() if h else None

    def previous(self, asset_id: str) -> Optional[Quote]:
        """Quote before the latest one, or None when there is no baseline yet."""
        h = self._hist.get(asset_id)
        return h.before_last() if h else None

    def history(self, asset_id: str) -> list[Quote]:
        h = self._hist.get(asset_id)
        return list(h) if h else []

    def assets(self) -> list[str]:
        return list(self._hist.keys())

    def __len__(self) -> int:
        return len(self._hist)
