"""
Main entry point for the Solana arbitrage and MEV bundle engine.
"""
import asyncio
import logging
import signal
import sys
from typing import List, Optional

import base58
from solders.keypair import Keypair

from .arbitrage_scheduler import ArbitrageScheduler
from .bundle_scheduler import BundleScheduler
from .config import AppConfig, ConfigError, load_config
from .jito_client import JitoClient
from .jupiter_client import JupiterClient
from .mev_detector import MEVDetector
from .mev_strategy import MEVStrategy
from .notifier import Notifier
from .price_cache import PriceCache
from .price_source import JupiterPriceSource
from .solana_client import SolanaClient
from .spread_scanner import SpreadScanner
from .strategy import BaseStrategy
from .swap_executor import SwapExecutor
from .transaction_stream import TransactionStream
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


def setup_logging(level: int = logging.INFO, log_file: str = 'mevarb.log') -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def load_wallet(private_key_str: Optional[str]) -> Optional[Keypair]:
    """Load wallet from a base58 private key."""
    if not private_key_str:
        logger.warning("No wallet private key provided")
        return None

    try:
        return Keypair.from_bytes(base58.b58decode(private_key_str))
    except ValueError as e:
        logger.error(f"Error loading wallet: {e}")
        return None


class Services:
    """External clients shared by the strategies, closed together at shutdown."""

    def __init__(self, config: AppConfig, wallet: Optional[Keypair]):
        self.jupiter = JupiterClient(config.jupiter_api_url, api_key=config.jupiter_api_key)
        self.solana = SolanaClient(config.rpc_url, wallet, fallback_rpc_url=config.fallback_rpc_url)
        self.jito = JitoClient(
            config.jito_url,
            dry_run=config.mode != 'live',
            timeout=config.mev.relay_timeout_seconds
        )
        self.notifier = Notifier(config.notifications)

    async def close(self) -> None:
        await self.notifier.close()
        for client in (self.jupiter, self.solana, self.jito):
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")


def build_strategies(config: AppConfig, services: Services, cache: Optional[PriceCache] = None) -> List[BaseStrategy]:
    """Build the strategies enabled in config, sharing one price cache."""
    cache = cache if cache is not None else PriceCache(config.arbitrage.significant_change_pct)
    strategies: List[BaseStrategy] = []

    if 'arbitrage' in config.strategies:
        price_source = JupiterPriceSource(services.jupiter, config.tokens)
        executor = SwapExecutor(services.jupiter, services.solana, config.tokens, mode=config.mode)
        strategies.append(ArbitrageScheduler(
            config.arbitrage,
            price_source,
            executor,
            notifier=services.notifier,
            mode=config.mode,
            cache=cache
        ))

    if 'mev' in config.strategies:
        scheduler = BundleScheduler(
            services.jito,
            ttl_seconds=config.mev.bundle_ttl_seconds,
            sweep_interval_seconds=config.mev.sweep_interval_seconds,
            relay_timeout_seconds=config.mev.relay_timeout_seconds,
            history_size=config.mev.history_size
        )
        detector = MEVDetector(
            scheduler,
            dex_programs=config.mev.dex_programs,
            large_trade_min_bytes=config.mev.large_trade_min_bytes,
            cache=cache if 'arbitrage' in config.strategies else None,
            scanner=SpreadScanner(
                fee_pct=config.arbitrage.fee_pct,
                max_age=config.arbitrage.price_max_age_seconds,
                max_results=config.arbitrage.max_opportunities
            ),
            tokens=config.arbitrage.tokens,
            base_tokens=config.arbitrage.base_tokens,
            venues=config.arbitrage.venues,
            min_spread_pct=config.arbitrage.min_spread_pct
        )
        stream = TransactionStream(config.stream_url, config.mev.dex_programs.keys())
        strategies.append(MEVStrategy(stream, detector, scheduler, config.mev.shutdown_grace_seconds))

    return strategies


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows: KeyboardInterrupt from asyncio.run() handles Ctrl+C
            pass


async def main(mode: Optional[str] = None):
    """Main function."""
    logger.info("Starting Solana arbitrage engine")

    config = load_config()
    if mode:
        config.mode = mode
        config.validate()

    wallet = load_wallet(config.wallet_private_key)
    if wallet is None and config.mode != 'scan':
        logger.error("Wallet required for simulate/live modes")
        return

    logger.info(
        f"Network: {colors['CYAN']}{config.network}{colors['RESET']} | "
        f"Mode: {colors['CYAN']}{config.mode.upper()}{colors['RESET']} | "
        f"Strategies: {', '.join(config.strategies)}"
    )
    if config.mode == 'live':
        logger.warning("=" * 60)
        logger.warning("LIVE MODE ENABLED - REAL TRANSACTIONS WILL BE SENT!")
        logger.warning("=" * 60)

    services = Services(config, wallet)
    strategies = build_strategies(config, services)
    if not strategies:
        logger.error("No strategies enabled")
        await services.close()
        return

    if wallet:
        balance = await services.solana.get_balance()
        logger.info(f"Wallet balance: {balance / 1e9:.4f} SOL")

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    started: List[BaseStrategy] = []
    try:
        for strategy in strategies:
            await strategy.initialize()
            await strategy.start()
            started.append(strategy)
        services.notifier.notify(f"Engine started ({config.network}, {config.mode}): {', '.join(config.strategies)}")
        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        for strategy in reversed(started):
            try:
                await strategy.stop()
            except Exception as e:
                logger.error(f"Error stopping {strategy.name} strategy: {e}", exc_info=True)
        await services.close()
        logger.info("Engine stopped")


if __name__ == '__main__':
    setup_logging()
    try:
        asyncio.run(main())
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
