from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional, Union

Fiat = Literal["usd", "eur"]
Direction = Literal["above", "below"]

SUPPORTED_FIATS: tuple[str, ...] = ("usd", "eur")
FIAT_SYMBOLS: dict[str, str] = {"usd": "$", "eur": "€"}

MAX_TRACKED_ASSETS = 5
MAX_ALERTS_PER_SUBSCRIBER = 5
DEFAULT_EMERGENCY_THRESHOLD = 10.0


class Cadence(str, enum.Enum):
    """Update frequencies a subscriber can pick from."""
    MIN_15 = "15min"
    MIN_30 = "30min"
    HOUR_1 = "1h"
    HOUR_2 = "2h"

    @property
    def seconds(self) -> int:
        return _CADENCE_SECONDS[self]

    @property
    def label(self) -> str:
        return _CADENCE_LABELS[self]


_CADENCE_SECONDS = {
    Cadence.MIN_15: 15 * 60,
    Cadence.MIN_30: 30 * 60,
    Cadence.HOUR_1: 60 * 60,
    Cadence.HOUR_2: 2 * 60 * 60,
}

_CADENCE_LABELS = {
    Cadence.MIN_15: "Every 15 minutes",
    Cadence.MIN_30: "Every 30 minutes",
    Cadence.HOUR_1: "Every hour",
    Cadence.HOUR_2: "Every 2 hours",
}


# ---- catalog ----

@dataclass(frozen=True, slots=True)
class Asset:
    """
    A tracked coin. `id` is the stable identifier used across the system
    (CoinGecko-style slug); `provider_ids` maps provider name -> that
    provider's own symbol when it differs (e.g. {"binance": "BTCUSDT"}).
    """
    id: str
    symbol: str
    name: str
    provider_ids: Mapping[str, str] = field(default_factory=dict)

    def id_for(self, provider: str) -> Optional[str]:
        if provider in self.provider_ids:
            return self.provider_ids[provider]
        return self.id


@dataclass(frozen=True, slots=True)
class ProviderEndpoint:
    """
    Static description of an upstream.
    rank: asset_class -> priority (lower is tried first).
    """
    name: str
    base_url: str
    min_interval_s: float = 0.5
    rank: Mapping[str, int] = field(default_factory=dict)


# ---- upstream results ----

@dataclass(frozen=True, slots=True)
class Quote:
    asset_id: str
    prices: Mapping[str, float]
    change_24h: Mapping[str, float]
    change_7d: Mapping[str, float]
    market_cap: Mapping[str, float]
    volume_24h: Mapping[str, float]
    ts: float  # epoch seconds
    source: str = ""

    def price(self, fiat: str) -> float:
        return float(self.prices[fiat])

    def change_24h_pct(self, fiat: str) -> float:
        return float(self.change_24h.get(fiat, 0.0))


@dataclass(frozen=True, slots=True)
class Balance:
    """Native balance of an on-chain address, already converted from base units."""
    network: str
    address: str
    amount: float
    symbol: str
    ts: float
    source: str = ""


Resolved = Union[Quote, Balance]


@dataclass(frozen=True, slots=True)
class WalletBalance:
    address: str
    network: str
    balance: float
    balance_usd: float
    balance_eur: float
    symbol: str


# ---- subscriber side (owned by the store; read-only snapshots here) ----

@dataclass(frozen=True, slots=True)
class SubscriberConfig:
    subscriber_id: int
    fiat: Fiat = "usd"
    tracked: tuple[str, ...] = ("bitcoin", "ethereum")
    cadence: Cadence = Cadence.HOUR_1
    emergency_alerts: bool = True
    emergency_threshold: float = DEFAULT_EMERGENCY_THRESHOLD

    def __post_init__(self):
        if self.fiat not in SUPPORTED_FIATS:
            raise ValueError(f"unsupported fiat: {self.fiat!r}")
        if len(self.tracked) > MAX_TRACKED_ASSETS:
            raise ValueError(f"at most {MAX_TRACKED_ASSETS} tracked assets")
        if len(set(self.tracked)) != len(self.tracked):
            raise ValueError("tracked assets must be unique")
        if self.emergency_threshold <= 0:
            raise ValueError("emergency_threshold must be > 0")
        if not isinstance(self.cadence, Cadence):
            object.__setattr__(self, "cadence", Cadence(self.cadence))

    def tracks(self, asset_id: str) -> bool:
        return asset_id in self.tracked


@dataclass(frozen=True, slots=True)
class ThresholdAlert:
    alert_id: str
    subscriber_id: int
    asset_id: str
    direction: Direction
    price: float
    active: bool = True

    def __post_init__(self):
        if self.direction not in ("above", "below"):
            raise ValueError(f"bad direction: {self.direction!r}")
        if self.price <= 0:
            raise ValueError("alert price must be > 0")

    def crossed(self, current: float) -> bool:
        if self.direction == "above":
            return current >= self.price
        return current <= self.price


# ---- evaluator output ----

class IntentKind(str, enum.Enum):
    THRESHOLD = "threshold"
    CRASH = "crash"
    PUMP = "pump"
    EXTREME = "extreme"


@dataclass(frozen=True, slots=True)
class NotificationIntent:
    """
    Discriminated payload handed to the renderer.
      - THRESHOLD: direction + alert set, pct is None
      - CRASH/PUMP/EXTREME: pct is the 24h change in the subscriber's fiat
    """
    kind: IntentKind
    subscriber_id: int
    asset_id: str
    fiat: str
    current: float
    ts: float
    direction: Optional[str] = None
    pct: Optional[float] = None
    delta_pct: Optional[float] = None  # change since the previous quote, if any
    alert: Optional[ThresholdAlert] = None


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    UNREACHABLE = "unreachable"  # blocked / deleted chat; drop the subscriber
    FAILED = "failed"            # transient; keep the subscriber
