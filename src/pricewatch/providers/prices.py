from __future__ import annotations

import json
from typing import Any, Callable, Iterable, Mapping, Optional

import aiohttp
import structlog

from pricewatch.catalog import ASSETS_BY_ID
from pricewatch.providers.base import HttpProvider, TransientProviderError, UnsupportedAssetError
from pricewatch.utils.time import utc_now_s
from pricewatch.utils.types import Asset, ProviderEndpoint, Quote

log = structlog.get_logger("providers.prices")

Clock = Callable[[], float]


def _f(v: Any) -> Optional[float]:
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


# ---------------------------
# CoinGecko (primary, batch)
# ---------------------------

def parse_simple_price(payload: Any, asset_ids: Iterable[str], ts: float,
                       fiats: Iterable[str] = ("usd", "eur"), source: str = "coingecko") -> dict[str, Quote]:
    """
    /simple/price payload -> {asset_id: Quote}.
    Assets missing from the payload, or without a usable price in every
    requested fiat, are left out (the resolver reports them as unresolved).
    Optional fields default to 0 like the upstream does when it omits them.
    """
    out: dict[str, Quote] = {}
    if not isinstance(payload, dict):
        return out
    fiats = tuple(fiats)
    for aid in asset_ids:
        row = payload.get(aid)
        if not isinstance(row, dict):
            continue
        prices = {f: _f(row.get(f)) for f in fiats}
        if any(p is None or p <= 0 for p in prices.values()):
            log.warning("coingecko_malformed_row", asset=aid, row=str(row)[:200])
            continue
        out[aid] = Quote(
            asset_id=aid,
            prices=prices,
            change_24h={f: _f(row.get(f"{f}_24h_change")) or 0.0 for f in fiats},
            change_7d={f: _f(row.get(f"{f}_7d_change")) or 0.0 for f in fiats},
            market_cap={f: _f(row.get(f"{f}_market_cap")) or 0.0 for f in fiats},
            volume_24h={f: _f(row.get(f"{f}_24h_vol")) or 0.0 for f in fiats},
            ts=ts,
            source=source,
        )
    return out


class CoinGeckoProvider(HttpProvider):
    supports_batch = True

    def __init__(self, endpoint: ProviderEndpoint, session: aiohttp.ClientSession, *,
                 api_key: Optional[str] = None, clock: Clock = utc_now_s):
        headers = {"x-cg-demo-api-key": api_key} if api_key else None
        super().__init__(endpoint, session, headers=headers)
        self._clock = clock

    async def fetch(self, asset_id: str) -> Quote:
        got = await self.fetch_many([asset_id])
        if asset_id not in got:
            raise UnsupportedAssetError(self.name, f"no data for {asset_id}")
        return got[asset_id]

    async def fetch_many(self, asset_ids: Iterable[str]) -> dict[str, Quote]:
        ids = [a for a in asset_ids if a]
        if not ids:
            return {}
        params = {
            "ids": ",".join(ids),
            "vs_currencies": "usd,eur",
            "include_24hr_change": "true",
            "include_7d_change": "true",
            "include_market_cap": "true",
            "include_24hr_vol": "true",
        }
        payload = await self._get_json(f"{self.endpoint.base_url}/simple/price", params=params)
        status = payload.get("status") if isinstance(payload, dict) else None
        if isinstance(status, dict) and "error_code" in status:
            # CoinGecko reports throttling inside a 200 body on some plans
            raise TransientProviderError(self.name, f"status payload: {status}")
        return parse_simple_price(payload, ids, self._clock(), source=self.name)


# ---------------------------
# Binance (fallback, batch, USDT-quoted)
# ---------------------------

EUR_PAIR = "EURUSDT"


def parse_binance_tickers(rows: Any, assets: Iterable[Asset], ts: float,
                          source: str = "binance") -> dict[str, Quote]:
    """
    /api/v3/ticker/24hr rows -> {asset_id: Quote}.
    USDT is taken as USD. EUR is derived through EURUSDT when present;
    market cap is not available from an exchange ticker and stays 0.
    """
    out: dict[str, Quote] = {}
    if not isinstance(rows, list):
        return out
    by_symbol = {r.get("symbol"): r for r in rows if isinstance(r, dict)}

    eur_row = by_symbol.get(EUR_PAIR)
    eur_usd = _f(eur_row.get("lastPrice")) if eur_row else None
    eur_chg = (_f(eur_row.get("priceChangePercent")) or 0.0) if eur_row else 0.0

    for asset in assets:
        row = by_symbol.get(asset.id_for("binance"))
        if row is None:
            continue
        usd = _f(row.get("lastPrice"))
        if usd is None or usd <= 0:
            log.warning("binance_malformed_row", asset=asset.id, row=str(row)[:200])
            continue
        chg_usd = _f(row.get("priceChangePercent")) or 0.0
        vol_usd = _f(row.get("quoteVolume")) or 0.0

        prices = {"usd": usd}
        change_24h = {"usd": chg_usd}
        volume = {"usd": vol_usd}
        if eur_usd:
            prices["eur"] = usd / eur_usd
            change_24h["eur"] = ((1.0 + chg_usd / 100.0) / (1.0 + eur_chg / 100.0) - 1.0) * 100.0
            volume["eur"] = vol_usd / eur_usd

        out[asset.id] = Quote(
            asset_id=asset.id,
            prices=prices,
            change_24h=change_24h,
            change_7d={f: 0.0 for f in prices},
            market_cap={f: 0.0 for f in prices},
            volume_24h=volume,
            ts=ts,
            source=source,
        )
    return out


class BinanceProvider(HttpProvider):
    supports_batch = True

    def __init__(self, endpoint: ProviderEndpoint, session: aiohttp.ClientSession, *,
                 assets: Mapping[str, Asset] = ASSETS_BY_ID, clock: Clock = utc_now_s):
        super().__init__(endpoint, session)
        self._assets = assets
        self._clock = clock

    async def fetch(self, asset_id: str) -> Quote:
        got = await self.fetch_many([asset_id])
        if asset_id not in got:
            raise UnsupportedAssetError(self.name, f"no ticker for {asset_id}")
        return got[asset_id]

    async def fetch_many(self, asset_ids: Iterable[str]) -> dict[str, Quote]:
        assets = [self._assets[a] for a in asset_ids if a in self._assets]
        if not assets:
            return {}
        symbols = [a.id_for("binance") for a in assets] + [EUR_PAIR]
        params = {"symbols": json.dumps(symbols, separators=(",", ":"))}
        rows = await self._get_json(f"{self.endpoint.base_url}/api/v3/ticker/24hr", params=params)
        return parse_binance_tickers(rows, assets, self._clock(), source=self.name)
