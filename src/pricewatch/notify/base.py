from __future__ import annotations

from typing import Protocol

from pricewatch.utils.types import DeliveryStatus


class Transport(Protocol):
    """Chat delivery. UNREACHABLE must only be returned when the recipient is gone for good."""

    async def send(self, recipient_id: int, text: str) -> DeliveryStatus:
        ...
