"""
Periodic driver for cross-venue arbitrage.

Two independent loops: price refresh (fan-out quotes into the PriceCache) and
scan (find, re-validate and execute opportunities as two sequential swaps).
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import ArbitrageConfig
from .notifier import Notifier
from .opportunity_validator import OpportunityValidator
from .price_cache import PriceCache
from .price_source import PriceUnavailableError
from .spread_scanner import ArbitrageOpportunity, SpreadScanner
from .strategy import BaseStrategy, PeriodicTask
from .swap_executor import SwapResult
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class ArbitrageScheduler(BaseStrategy):
    """Refreshes prices, scans for spreads and executes direct two-leg arbitrage."""

    def __init__(
        self,
        config: ArbitrageConfig,
        price_source,
        executor,
        notifier: Optional[Notifier] = None,
        mode: str = 'scan',
        cache: Optional[PriceCache] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            config: Arbitrage settings (universe, thresholds, intervals)
            price_source: Object with async get_price(token, base_token, venue) -> float
            executor: Object with async swap(from_token, to_token, amount, venue) -> SwapResult
            notifier: Optional notification sink
            mode: 'scan' only logs opportunities; 'simulate'/'live' execute them
            cache: PriceCache to own (a new one by default)
            clock: Time source shared with the cache
        """
        super().__init__('arbitrage')
        self.config = config
        self.price_source = price_source
        self.executor = executor
        self.notifier = notifier
        self.mode = mode.lower()
        self.clock = clock
        self.cache = cache if cache is not None else PriceCache(config.significant_change_pct)
        self.scanner = SpreadScanner(
            fee_pct=config.fee_pct,
            max_age=config.price_max_age_seconds,
            max_results=config.max_opportunities
        )
        self.validator = OpportunityValidator(fee_pct=config.fee_pct)
        self.allowed_venues = frozenset(config.venues)
        self.allowed_tokens = frozenset(config.tokens) | frozenset(config.base_tokens)

        self.consecutive_failures = 0
        self.stats: Dict[str, int] = {
            'refreshes': 0,
            'scans': 0,
            'executed': 0,
            'buy_failed': 0,
            'sell_failed': 0,
        }
        self.last_opportunities: List[ArbitrageOpportunity] = []
        self._refresh_task = PeriodicTask('price-refresh', config.refresh_interval_seconds, self.refresh_prices)
        self._scan_task = PeriodicTask('arbitrage-scan', config.scan_interval_seconds, self.scan_and_execute)

    def price_keys(self) -> List[Tuple[str, str, str]]:
        """Every (token, base_token, venue) the refresh loop quotes."""
        return [
            (token, base_token, venue)
            for token in self.config.tokens
            for base_token in self.config.base_tokens
            if token != base_token
            for venue in self.config.venues
        ]

    async def initialize(self) -> None:
        await super().initialize()
        logger.info(
            f"Monitoring {colors['GREEN']}{len(self.price_keys())}{colors['RESET']} prices | "
            f"min spread {colors['YELLOW']}{self.config.min_spread_pct}%{colors['RESET']} | "
            f"min profit {colors['YELLOW']}{self.config.min_profit_pct}%{colors['RESET']} | "
            f"trade size {colors['GREEN']}{self.config.trade_size}{colors['RESET']} | "
            f"mode {colors['CYAN']}{self.mode}{colors['RESET']}"
        )

    async def start(self) -> None:
        await super().start()
        self._refresh_task.start()
        self._scan_task.start()

    async def stop(self) -> None:
        await self._refresh_task.stop()
        await self._scan_task.stop()
        await super().stop()

    async def _fetch_price(self, token: str, base_token: str, venue: str) -> Optional[float]:
        try:
            return await asyncio.wait_for(
                self.price_source.get_price(token, base_token, venue),
                timeout=self.config.quote_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.debug(f"Price lookup timed out: {token}/{base_token} on {venue}")
        except PriceUnavailableError as e:
            logger.debug(f"Price unavailable: {e}")
        except Exception as e:
            logger.error(f"Error getting price for {token}/{base_token} on {venue}: {e}")
        return None

    async def refresh_prices(self) -> None:
        """
        Quote every (token, base, venue) concurrently and fold results into the cache.

        Consecutive failures are counted across lookups (any success resets
        the count); crossing the ceiling only logs a warning.
        """
        keys = self.price_keys()
        prices = await asyncio.gather(*(self._fetch_price(*key) for key in keys))
        now = self.clock()

        updated = 0
        for (token, base_token, venue), price in zip(keys, prices):
            if price is None:
                self.consecutive_failures += 1
                continue
            self.consecutive_failures = 0
            if self.cache.update(token, base_token, venue, price, now):
                updated += 1

        self.stats['refreshes'] += 1
        logger.debug(f"Price refresh: {updated}/{len(keys)} updated")
        if self.consecutive_failures > self.config.max_consecutive_failures:
            logger.warning(
                f"{colors['RED']}Too many consecutive price lookup errors "
                f"({self.consecutive_failures}){colors['RESET']}, consider checking network connection"
            )

    async def scan_and_execute(self) -> None:
        """Scan the cache, then validate and execute each opportunity in rank order."""
        opportunities = self.scanner.scan(
            self.cache.snapshot(),
            self.config.tokens,
            self.config.base_tokens,
            self.config.venues,
            self.clock(),
            self.config.min_spread_pct
        )
        self.last_opportunities = opportunities
        self.stats['scans'] += 1
        if not opportunities:
            logger.debug("No arbitrage opportunities found")
            return

        logger.info(f"Found {colors['GREEN']}{len(opportunities)}{colors['RESET']} opportunities")
        for opportunity in opportunities:
            if not self.validator.is_still_profitable(
                opportunity, self.cache, self.clock(), self.config.min_profit_pct
            ):
                continue
            if not self.validator.is_eligible(opportunity, self.allowed_venues, self.allowed_tokens):
                logger.warning(f"Arbitrage opportunity is no longer valid: {opportunity.describe()}")
                continue
            if self.mode == 'scan':
                logger.info(f"{colors['DIM']}[scan]{colors['RESET']} {opportunity.describe()}")
                continue
            try:
                await self.execute_direct_arbitrage(opportunity)
            except Exception as e:
                logger.error(f"Arbitrage execution failed for {opportunity.pair}: {e}", exc_info=True)

    async def _swap(self, from_token: str, to_token: str, amount: float, venue: str) -> SwapResult:
        try:
            return await asyncio.wait_for(
                self.executor.swap(from_token, to_token, amount, venue),
                timeout=self.config.swap_timeout_seconds
            )
        except asyncio.TimeoutError:
            return SwapResult(False, error=f"swap timed out after {self.config.swap_timeout_seconds}s")
        except Exception as e:
            return SwapResult(False, error=str(e))

    async def execute_direct_arbitrage(self, opportunity: ArbitrageOpportunity) -> bool:
        """
        Buy on the cheap venue, then sell on the expensive one.

        `trade_size` is denominated in the traded token, so the two legs pass
        different amounts: the buy leg spends trade_size * buy_price of the
        base token, and the sell leg sells trade_size of the token. Only the
        sell leg uses the configured trade size as its amount. A failed buy
        skips the sell. A failed sell is reported but not unwound.

        Returns:
            True if both legs succeeded
        """
        amount = self.config.trade_size
        logger.info(
            f"{colors['CYAN']}Executing arbitrage:{colors['RESET']} {colors['CYAN']}{opportunity.pair}{colors['RESET']} - "
            f"Buy: {opportunity.buy_venue} ({colors['YELLOW']}{opportunity.buy_price:.4f}{colors['RESET']}), "
            f"Sell: {opportunity.sell_venue} ({colors['YELLOW']}{opportunity.sell_price:.4f}{colors['RESET']}), "
            f"Spread: {colors['YELLOW']}{opportunity.spread_pct:.2f}%{colors['RESET']}"
        )

        buy = await self._swap(
            opportunity.base_token, opportunity.token, amount * opportunity.buy_price, opportunity.buy_venue
        )
        if not buy.success:
            self.stats['buy_failed'] += 1
            logger.error(f"{colors['RED']}Direct arbitrage failed: buy failed: {buy.error}{colors['RESET']}")
            return False

        sell = await self._swap(opportunity.token, opportunity.base_token, amount, opportunity.sell_venue)
        if not sell.success:
            self.stats['sell_failed'] += 1
            message = (
                f"Sell leg failed after buy {buy.signature or '(simulated)'} on {opportunity.pair}: "
                f"{sell.error}. Holding {amount} {opportunity.token} unhedged."
            )
            logger.error(f"{colors['RED']}{message}{colors['RESET']}")
            if self.notifier:
                self.notifier.notify(message)
            return False

        self.stats['executed'] += 1
        logger.info(f"{colors['GREEN']}Direct arbitrage completed successfully{colors['RESET']}")
        if self.notifier:
            self.notifier.notify(
                f"Arbitrage executed: {opportunity.describe()} | buy {buy.signature} | sell {sell.signature}"
            )
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Current opportunities, monitored universe and counters."""
        opportunities = self.scanner.scan(
            self.cache.snapshot(),
            self.config.tokens,
            self.config.base_tokens,
            self.config.venues,
            self.clock(),
            self.config.min_spread_pct
        )
        monitored = self.cache.monitored()
        return {
            'active_opportunities': len(opportunities),
            'best_opportunity': opportunities[0] if opportunities else None,
            'monitored_tokens': sorted(monitored['tokens']),
            'monitored_venues': sorted(monitored['venues']),
            'monitored_pairs': sorted(monitored['pairs']),
            'consecutive_failures': self.consecutive_failures,
            **self.stats,
        }
