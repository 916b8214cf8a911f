from __future__ import annotations

from pricewatch.utils.types import Asset, ProviderEndpoint

# ---------------------------
# Asset classes
# ---------------------------

PRICE = "price"
BALANCE_PREFIX = "balance:"

NETWORKS = ("ethereum", "bitcoin", "bsc", "solana")


def balance_class(network: str) -> str:
    return f"{BALANCE_PREFIX}{network.lower()}"


# ---------------------------
# Supported coins
# ---------------------------

ASSETS: tuple[Asset, ...] = (
    Asset("bitcoin", "BTC", "Bitcoin", {"binance": "BTCUSDT"}),
    Asset("ethereum", "ETH", "Ethereum", {"binance": "ETHUSDT"}),
    Asset("binancecoin", "BNB", "BNB", {"binance": "BNBUSDT"}),
    Asset("solana", "SOL", "Solana", {"binance": "SOLUSDT"}),
    Asset("ripple", "XRP", "XRP", {"binance": "XRPUSDT"}),
    Asset("cardano", "ADA", "Cardano", {"binance": "ADAUSDT"}),
    Asset("dogecoin", "DOGE", "Dogecoin", {"binance": "DOGEUSDT"}),
    Asset("polkadot", "DOT", "Polkadot", {"binance": "DOTUSDT"}),
    Asset("chainlink", "LINK", "Chainlink", {"binance": "LINKUSDT"}),
    Asset("litecoin", "LTC", "Litecoin", {"binance": "LTCUSDT"}),
)

ASSETS_BY_ID: dict[str, Asset] = {a.id: a for a in ASSETS}
ASSETS_BY_SYMBOL: dict[str, Asset] = {a.symbol: a for a in ASSETS}

# native coin of each supported network (for wallet valuation)
NETWORK_NATIVE: dict[str, str] = {
    "ethereum": "ethereum",
    "bitcoin": "bitcoin",
    "bsc": "binancecoin",
    "solana": "solana",
}


def get_asset(asset_id_or_symbol: str) -> Asset | None:
    """Look up by id ("bitcoin") or ticker ("BTC"), case-insensitive."""
    key = asset_id_or_symbol.strip()
    return ASSETS_BY_ID.get(key.lower()) or ASSETS_BY_SYMBOL.get(key.upper())


# ---------------------------
# Upstream endpoints
# ---------------------------
# rank: lower value = tried first within that asset class.

COINGECKO = ProviderEndpoint(
    name="coingecko",
    base_url="https://api.coingecko.com/api/v3",
    min_interval_s=1.5,
    rank={PRICE: 0},
)
BINANCE = ProviderEndpoint(
    name="binance",
    base_url="https://api.binance.com",
    min_interval_s=0.2,
    rank={PRICE: 1},
)
ETHERSCAN = ProviderEndpoint(
    name="etherscan",
    base_url="https://api.etherscan.io/api",
    min_interval_s=0.5,
    rank={balance_class("ethereum"): 0},
)
BLOCKCYPHER = ProviderEndpoint(
    name="blockcypher",
    base_url="https://api.blockcypher.com/v1",
    min_interval_s=0.5,
    rank={balance_class("ethereum"): 1, balance_class("bitcoin"): 0},
)
BLOCKSTREAM = ProviderEndpoint(
    name="blockstream",
    base_url="https://blockstream.info/api",
    min_interval_s=0.5,
    rank={balance_class("bitcoin"): 1},
)
BLOCKCHAIR = ProviderEndpoint(
    name="blockchair",
    base_url="https://api.blockchair.com",
    min_interval_s=1.0,
    rank={balance_class("ethereum"): 2, balance_class("bitcoin"): 2},
)
BSCSCAN = ProviderEndpoint(
    name="bscscan",
    base_url="https://api.bscscan.com/api",
    min_interval_s=0.5,
    rank={balance_class("bsc"): 0},
)
BSC_RPC = ProviderEndpoint(
    name="bsc_rpc",
    base_url="https://bsc-dataseed1.binance.org",
    min_interval_s=0.5,
    rank={balance_class("bsc"): 1},
)
SOLANA_RPCS: tuple[ProviderEndpoint, ...] = (
    ProviderEndpoint("solana_mainnet", "https://api.mainnet-beta.solana.com", 0.5,
                     {balance_class("solana"): 0}),
    ProviderEndpoint("solana_serum", "https://solana-api.projectserum.com", 0.5,
                     {balance_class("solana"): 1}),
    ProviderEndpoint("solana_ankr", "https://rpc.ankr.com/solana", 0.5,
                     {balance_class("solana"): 2}),
)
