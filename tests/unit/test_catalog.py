from pricewatch.catalog import (
    ASSETS,
    NETWORK_NATIVE,
    NETWORKS,
    PRICE,
    SOLANA_RPCS,
    balance_class,
    get_asset,
)

def test_asset_lookup_by_id_or_symbol():
    assert get_asset("bitcoin").symbol == "BTC"
    assert get_asset("eth").id == "ethereum"
    assert get_asset("nope") is None

def test_every_asset_has_a_binance_pair():
    assert all(a.id_for("binance").endswith("USDT") for a in ASSETS)
    assert get_asset("BTC").id_for("coingecko") == "bitcoin"

def test_networks_have_native_coins():
    ids = {a.id for a in ASSETS}
    assert set(NETWORK_NATIVE) == set(NETWORKS)
    assert set(NETWORK_NATIVE.values()) <= ids

def test_solana_rpc_ranks_are_ordered():
    ranks = [ep.rank[balance_class("solana")] for ep in SOLANA_RPCS]
    assert ranks == sorted(ranks) == [0, 1, 2]
    assert balance_class("Ethereum") == "balance:ethereum"
    assert PRICE not in SOLANA_RPCS[0].rank
