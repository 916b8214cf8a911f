from __future__ import annotations

from typing import Any, Callable, Optional

import aiohttp

from pricewatch.catalog import balance_class
from pricewatch.providers.base import (
    HttpProvider,
    PermanentProviderError,
    RateLimitedError,
    TransientProviderError,
    UnsupportedAssetError,
)
from pricewatch.utils.time import utc_now_s
from pricewatch.utils.types import Balance, ProviderEndpoint

Clock = Callable[[], float]

# network -> (ticker, decimals of the base unit)
NETWORK_UNITS: dict[str, tuple[str, int]] = {
    "ethereum": ("ETH", 18),
    "bitcoin": ("BTC", 8),
    "bsc": ("BNB", 18),
    "solana": ("SOL", 9),
}


class BalanceProvider(HttpProvider):
    """Native-coin balance for one network; asset_id is the address."""

    def __init__(self, endpoint: ProviderEndpoint, session: aiohttp.ClientSession, network: str,
                 *, clock: Clock = utc_now_s):
        super().__init__(endpoint, session)
        if network not in NETWORK_UNITS:
            raise ValueError(f"unsupported network: {network}")
        self.network = network
        self.symbol, self.decimals = NETWORK_UNITS[network]
        self._clock = clock

    def serves(self, asset_class: str) -> bool:
        # one instance per network, even when the endpoint ranks several
        return asset_class == balance_class(self.network) and super().serves(asset_class)

    def _balance(self, address: str, base_units: float) -> Balance:
        return Balance(
            network=self.network,
            address=address,
            amount=float(base_units) / (10 ** self.decimals),
            symbol=self.symbol,
            ts=self._clock(),
            source=self.name,
        )

    def _malformed(self, payload: Any) -> TransientProviderError:
        return TransientProviderError(self.name, f"unexpected payload: {str(payload)[:200]}")


class EtherscanProvider(BalanceProvider):
    """Etherscan-family explorers (Etherscan, BscScan) share one API shape."""

    def __init__(self, endpoint: ProviderEndpoint, session: aiohttp.ClientSession, network: str,
                 *, api_key: Optional[str] = None, clock: Clock = utc_now_s):
        super().__init__(endpoint, session, network, clock=clock)
        self._api_key = api_key

    async def fetch(self, asset_id: str) -> Balance:
        params = {"module": "account", "action": "balance", "address": asset_id, "tag": "latest"}
        if self._api_key:
            params["apikey"] = self._api_key
        data = await self._get_json(self.endpoint.base_url, params=params)
        if not isinstance(data, dict):
            raise self._malformed(data)
        if str(data.get("status")) == "1":
            try:
                return self._balance(asset_id, int(data["result"]))
            except (KeyError, TypeError, ValueError):
                raise self._malformed(data)
        result = str(data.get("result", ""))
        if "rate limit" in result.lower():
            raise RateLimitedError(self.name, result)
        raise PermanentProviderError(self.name, f"{data.get('message')}: {result}")


_BLOCKCYPHER_CHAINS = {"ethereum": "eth/main", "bitcoin": "btc/main"}


class BlockCypherProvider(BalanceProvider):
    async def fetch(self, asset_id: str) -> Balance:
        chain = _BLOCKCYPHER_CHAINS.get(self.network)
        if chain is None:
            raise UnsupportedAssetError(self.name, f"network {self.network}")
        data = await self._get_json(f"{self.endpoint.base_url}/{chain}/addrs/{asset_id}/balance")
        if not isinstance(data, dict) or data.get("balance") is None:
            raise self._malformed(data)
        return self._balance(asset_id, data["balance"])


class BlockstreamProvider(BalanceProvider):
    async def fetch(self, asset_id: str) -> Balance:
        data = await self._get_json(f"{self.endpoint.base_url}/address/{asset_id}")
        stats = data.get("chain_stats") if isinstance(data, dict) else None
        if not isinstance(stats, dict):
            raise self._malformed(data)
        sats = int(stats.get("funded_txo_sum", 0)) - int(stats.get("spent_txo_sum", 0))
        return self._balance(asset_id, sats)


class BlockchairProvider(BalanceProvider):
    async def fetch(self, asset_id: str) -> Balance:
        data = await self._get_json(f"{self.endpoint.base_url}/{self.network}/dashboards/address/{asset_id}")
        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, dict):
            raise self._malformed(data)
        # blockchair lowercases EVM addresses in the response keys
        row = rows.get(asset_id) or rows.get(asset_id.lower())
        try:
            return self._balance(asset_id, float(row["address"]["balance"]))
        except (KeyError, TypeError, ValueError):
            raise self._malformed(data)


class _JsonRpcProvider(BalanceProvider):
    async def _rpc(self, method: str, params: list) -> Any:
        data = await self._post_json(
            self.endpoint.base_url,
            {"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        if not isinstance(data, dict):
            raise self._malformed(data)
        err = data.get("error")
        if err:
            code = err.get("code") if isinstance(err, dict) else None
            if code == 429:
                raise RateLimitedError(self.name, f"rpc error: {err}")
            raise PermanentProviderError(self.name, f"rpc error: {err}")
        if data.get("result") is None:
            raise self._malformed(data)
        return data["result"]


class EvmRpcProvider(_JsonRpcProvider):
    async def fetch(self, asset_id: str) -> Balance:
        result = await self._rpc("eth_getBalance", [asset_id, "latest"])
        try:
            return self._balance(asset_id, int(result, 16))
        except (TypeError, ValueError):
            raise self._malformed(result)


class SolanaRpcProvider(_JsonRpcProvider):
    async def fetch(self, asset_id: str) -> Balance:
        result = await self._rpc("getBalance", [asset_id])
        try:
            return self._balance(asset_id, result["value"])
        except (KeyError, TypeError):
            raise self._malformed(result)
