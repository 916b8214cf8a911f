from __future__ import annotations

import re
from typing import Callable, Optional

import structlog

from pricewatch.catalog import NETWORK_NATIVE, NETWORKS, PRICE, balance_class
from pricewatch.data.quote_cache import QuoteCache
from pricewatch.providers.base import ResolutionError
from pricewatch.providers.resolver import ProviderResolver
from pricewatch.utils.time import utc_now_s
from pricewatch.utils.types import Balance, Quote, WalletBalance

log = structlog.get_logger("wallets")

_EVM = re.compile(r"^0x[a-fA-F0-9]{40}$")
_BTC_LEGACY = re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$")
_BTC_BECH32 = re.compile(r"^bc1[a-z0-9]{39,59}$")
_SOLANA = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class InvalidAddressError(ValueError):
    pass


def detect_network(address: str) -> Optional[str]:
    """Best guess from the address shape. EVM addresses default to ethereum."""
    address = address.strip()
    if _EVM.match(address):
        return "ethereum"
    if _BTC_LEGACY.match(address) or _BTC_BECH32.match(address):
        return "bitcoin"
    if _SOLANA.match(address):
        return "solana"
    return None


def validate_address(address: str, network: str) -> bool:
    network = network.lower()
    if network in ("ethereum", "bsc"):
        return bool(_EVM.match(address))
    if network == "bitcoin":
        return bool(_BTC_LEGACY.match(address) or _BTC_BECH32.match(address))
    if network == "solana":
        return bool(_SOLANA.match(address))
    return False


class WalletService:
    """
    Native balance of an address, valued in usd and eur.

    The balance goes through the resolver's balance:<network> chain; the
    price comes from the quote cache when fresh enough, else from one price
    resolution. A failed price leaves the fiat values at 0 instead of failing
    the whole lookup.
    """

    def __init__(self, resolver: ProviderResolver, cache: Optional[QuoteCache] = None, *,
                 max_quote_age_s: float = 300.0, clock: Callable[[], float] = utc_now_s):
        self.resolver = resolver
        self.cache = cache
        self.max_quote_age_s = max_quote_age_s
        self._clock = clock

    async def balance(self, network: str, address: str) -> WalletBalance:
        network = network.lower().strip()
        address = address.strip()
        if network not in NETWORKS:
            raise InvalidAddressError(f"unsupported network: {network}")
        if not validate_address(address, network):
            raise InvalidAddressError(f"not a valid {network} address: {address}")

        bal = await self.resolver.resolve(balance_class(network), address)
        if not isinstance(bal, Balance):
            raise TypeError(f"balance chain returned {type(bal).__name__}")

        quote = await self._native_quote(network)
        usd = eur = 0.0
        if quote is not None:
            usd = bal.amount * float(quote.prices.get("usd", 0.0))
            eur = bal.amount * float(quote.prices.get("eur", 0.0))
        return WalletBalance(
            address=address,
            network=network,
            balance=bal.amount,
            balance_usd=usd,
            balance_eur=eur,
            symbol=bal.symbol,
        )

    async def _native_quote(self, network: str) -> Optional[Quote]:
        asset_id = NETWORK_NATIVE[network]
        if self.cache is not None:
            cached = self.cache.latest(asset_id)
            if cached is not None and self._clock() - cached.ts <= self.max_quote_age_s:
                return cached
        try:
            quote = await self.resolver.resolve(PRICE, asset_id)
        except ResolutionError as e:
            log.warning("wallet_price_unavailable", network=network, asset=asset_id, err=str(e))
            return None
        if self.cache is not None and isinstance(quote, Quote):
            self.cache.update(quote)
        return quote if isinstance(quote, Quote) else None
