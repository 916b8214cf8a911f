import pytest

from pricewatch.catalog import (
    BLOCKCHAIR,
    BLOCKCYPHER,
    BLOCKSTREAM,
    BSC_RPC,
    ETHERSCAN,
    SOLANA_RPCS,
    balance_class,
)
from pricewatch.providers.base import PermanentProviderError, RateLimitedError, TransientProviderError
from pricewatch.providers.chain import (
    BlockchairProvider,
    BlockCypherProvider,
    BlockstreamProvider,
    EtherscanProvider,
    EvmRpcProvider,
    SolanaRpcProvider,
)
from tests.helpers.fake_http import FakeResponse, FakeSession

ETH_ADDR = "0x" + "ab" * 20
BTC_ADDR = "bc1" + "q" * 39


@pytest.mark.asyncio
async def test_etherscan_converts_wei():
    session = FakeSession(FakeResponse(200, {"status": "1", "message": "OK", "result": "1500000000000000000"}))
    p = EtherscanProvider(ETHERSCAN, session, "ethereum", api_key="key", clock=lambda: 5.0)
    bal = await p.fetch(ETH_ADDR)
    assert bal.amount == pytest.approx(1.5)
    assert bal.symbol == "ETH"
    assert bal.source == "etherscan"
    assert session.calls[0][2]["params"]["apikey"] == "key"

@pytest.mark.asyncio
async def test_etherscan_error_payloads():
    session = FakeSession(
        FakeResponse(200, {"status": "0", "message": "NOTOK", "result": "Max rate limit reached"}),
        FakeResponse(200, {"status": "0", "message": "NOTOK", "result": "Invalid address format"}),
    )
    p = EtherscanProvider(ETHERSCAN, session, "ethereum")
    with pytest.raises(RateLimitedError):
        await p.fetch(ETH_ADDR)
    with pytest.raises(PermanentProviderError):
        await p.fetch(ETH_ADDR)

@pytest.mark.asyncio
async def test_blockcypher_uses_network_path():
    session = FakeSession(FakeResponse(200, {"balance": 250_000_000}))
    p = BlockCypherProvider(BLOCKCYPHER, session, "bitcoin")
    bal = await p.fetch(BTC_ADDR)
    assert bal.amount == pytest.approx(2.5)
    assert "/btc/main/addrs/" in session.calls[0][1]

@pytest.mark.asyncio
async def test_blockstream_funded_minus_spent():
    payload = {"chain_stats": {"funded_txo_sum": 300_000_000, "spent_txo_sum": 100_000_000}}
    p = BlockstreamProvider(BLOCKSTREAM, FakeSession(FakeResponse(200, payload)), "bitcoin")
    assert (await p.fetch(BTC_ADDR)).amount == pytest.approx(2.0)

@pytest.mark.asyncio
async def test_blockchair_lowercased_keys():
    payload = {"data": {ETH_ADDR.lower(): {"address": {"balance": "2000000000000000000"}}}}
    p = BlockchairProvider(BLOCKCHAIR, FakeSession(FakeResponse(200, payload)), "ethereum")
    assert (await p.fetch(ETH_ADDR.upper().replace("0X", "0x"))).amount == pytest.approx(2.0)

@pytest.mark.asyncio
async def test_blockchair_malformed_is_transient():
    p = BlockchairProvider(BLOCKCHAIR, FakeSession(FakeResponse(200, {"data": {}})), "bitcoin")
    with pytest.raises(TransientProviderError):
        await p.fetch(BTC_ADDR)

@pytest.mark.asyncio
async def test_evm_rpc_hex_balance():
    session = FakeSession(FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": hex(3 * 10**18)}))
    p = EvmRpcProvider(BSC_RPC, session, "bsc")
    bal = await p.fetch(ETH_ADDR)
    assert bal.amount == pytest.approx(3.0)
    assert bal.symbol == "BNB"
    method, _, kw = session.calls[0]
    assert method == "POST"
    assert kw["json"]["method"] == "eth_getBalance"

@pytest.mark.asyncio
async def test_solana_rpc_errors():
    session = FakeSession(
        FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": {"value": 2_500_000_000}}),
        FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "error": {"code": 429, "message": "Too many requests"}}),
        FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}}),
    )
    p = SolanaRpcProvider(SOLANA_RPCS[0], session, "solana")
    assert (await p.fetch("So11111111111111111111111111111111111111112")).amount == pytest.approx(2.5)
    with pytest.raises(RateLimitedError):
        await p.fetch("x")
    with pytest.raises(PermanentProviderError):
        await p.fetch("x")

def test_balance_provider_serves_only_its_network():
    eth = BlockCypherProvider(BLOCKCYPHER, FakeSession(), "ethereum")
    btc = BlockCypherProvider(BLOCKCYPHER, FakeSession(), "bitcoin")
    assert eth.serves(balance_class("ethereum")) and not eth.serves(balance_class("bitcoin"))
    assert btc.serves(balance_class("bitcoin")) and not btc.serves(balance_class("ethereum"))
    assert eth.rank_for(balance_class("ethereum")) == 1
    assert btc.rank_for(balance_class("bitcoin")) == 0

def test_unknown_network_rejected():
    with pytest.raises(ValueError):
        BlockstreamProvider(BLOCKSTREAM, FakeSession(), "dogechain")
