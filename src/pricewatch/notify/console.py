from __future__ import annotations

import structlog

from pricewatch.utils.types import DeliveryStatus

log = structlog.get_logger("notifier")


class ConsoleTransport:
    """Prints messages instead of sending them; for running without a bot token."""

    def __init__(self):
        self.sent: list[tuple[int, str]] = []

    async def send(self, recipient_id: int, text: str) -> DeliveryStatus:
        self.sent.append((recipient_id, text))
        print(f"[to {recipient_id}]\n{text}\n", flush=True)
        return DeliveryStatus.SENT
