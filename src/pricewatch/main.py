# src/pricewatch/main.py
import argparse
import asyncio
import signal
import sys
from typing import Optional

import aiohttp
import structlog
from dotenv import load_dotenv

from pricewatch.alerts.evaluator import EvaluatorConfig
from pricewatch.catalog import (
    BINANCE,
    BLOCKCHAIR,
    BLOCKCYPHER,
    BLOCKSTREAM,
    BSC_RPC,
    BSCSCAN,
    COINGECKO,
    ETHERSCAN,
    NETWORKS,
    SOLANA_RPCS,
)
from pricewatch.notify.console import ConsoleTransport
from pricewatch.notify.telegram import TelegramTransport
from pricewatch.providers.base import Provider, ResolutionError
from pricewatch.providers.chain import (
    BlockchairProvider,
    BlockCypherProvider,
    BlockstreamProvider,
    EtherscanProvider,
    EvmRpcProvider,
    SolanaRpcProvider,
)
from pricewatch.providers.prices import BinanceProvider, CoinGeckoProvider
from pricewatch.providers.resolver import ProviderResolver
from pricewatch.scheduler.scheduler import UpdateScheduler
from pricewatch.settings import ApiKeys, Settings, settings_from_env
from pricewatch.utils.logsetup import configure_logging
from pricewatch.utils.types import WalletBalance
from pricewatch.wallets import InvalidAddressError, WalletService, detect_network
from storage.redis_subscribers import RedisStore
from storage.subscribers import MemoryStore

log = structlog.get_logger()


def build_providers(session: aiohttp.ClientSession, keys: ApiKeys) -> list[Provider]:
    """Every upstream we know about; the resolver orders them per asset class by rank."""
    providers: list[Provider] = [
        CoinGeckoProvider(COINGECKO, session, api_key=keys.coingecko),
        BinanceProvider(BINANCE, session),
        # ethereum
        EtherscanProvider(ETHERSCAN, session, "ethereum", api_key=keys.etherscan),
        BlockCypherProvider(BLOCKCYPHER, session, "ethereum"),
        BlockchairProvider(BLOCKCHAIR, session, "ethereum"),
        # bitcoin
        BlockCypherProvider(BLOCKCYPHER, session, "bitcoin"),
        BlockstreamProvider(BLOCKSTREAM, session, "bitcoin"),
        BlockchairProvider(BLOCKCHAIR, session, "bitcoin"),
        # bsc
        EtherscanProvider(BSCSCAN, session, "bsc", api_key=keys.bscscan),
        EvmRpcProvider(BSC_RPC, session, "bsc"),
    ]
    providers.extend(SolanaRpcProvider(ep, session, "solana") for ep in SOLANA_RPCS)
    return providers


def build_store(settings: Settings):
    if settings.store_backend == "redis":
        return RedisStore.from_url(settings.redis_url)
    log.warning("memory_store_in_use", hint="subscribers are lost on restart; set STORE_BACKEND=redis")
    return MemoryStore()


async def main() -> None:
    load_dotenv()
    settings = settings_from_env()
    configure_logging(settings.log_level, json=settings.log_json)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    timeout = aiohttp.ClientTimeout(total=settings.http_timeout_s)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        resolver = ProviderResolver(build_providers(session, settings.keys), policy=settings.retry)
        store = build_store(settings)

        if settings.telegram is not None:
            transport = TelegramTransport(settings.telegram, session=session)
        else:
            log.warning("telegram_disabled", reason="TELEGRAM_BOT_TOKEN not set; printing messages")
            transport = ConsoleTransport()

        scheduler = UpdateScheduler(
            resolver,
            store,
            transport,
            cfg=settings.scheduler,
            evaluator_cfg=EvaluatorConfig(rule=settings.rule),
        )
        await scheduler.start()
        log.info("pricewatch_running", store=settings.store_backend,
                 transport=type(transport).__name__)
        try:
            await stop.wait()
        finally:
            await scheduler.stop()
            if isinstance(store, RedisStore):
                await store.close()
    log.info("pricewatch_stopped")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


async def show_balance(network: str, address: str) -> WalletBalance:
    """One-off wallet valuation with the same providers the service uses."""
    load_dotenv()
    settings = settings_from_env()
    configure_logging(settings.log_level, json=settings.log_json)
    timeout = aiohttp.ClientTimeout(total=settings.http_timeout_s)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        resolver = ProviderResolver(build_providers(session, settings.keys), policy=settings.retry)
        return await WalletService(resolver).balance(network, address)


def balance_cli(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="pricewatch-balance",
                                 description="Print the native balance of a wallet, valued in USD and EUR.")
    ap.add_argument("address", help="Wallet address")
    ap.add_argument("--network", choices=NETWORKS,
                    help="Chain to query (guessed from the address when omitted; EVM addresses default to ethereum)")
    args = ap.parse_args(argv)

    network = args.network or detect_network(args.address)
    if network is None:
        ap.error("can't tell the network from the address; pass --network")
    try:
        wb = asyncio.run(show_balance(network, args.address))
    except InvalidAddressError as e:
        ap.error(str(e))
    except ResolutionError as e:
        print(f"balance lookup failed: {e}", file=sys.stderr)
        return 1
    print(f"{wb.network} {wb.address}")
    print(f"  {wb.balance:.8f} {wb.symbol}  ${wb.balance_usd:,.2f}  €{wb.balance_eur:,.2f}")
    return 0


if __name__ == "__main__":
    run()
