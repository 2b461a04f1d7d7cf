"""
Tests for arbitrage_scheduler.py
"""
import asyncio
import dataclasses
import pytest
from unittest.mock import AsyncMock, MagicMock, call

from mevarb.arbitrage_scheduler import ArbitrageScheduler
from mevarb.config import ArbitrageConfig
from mevarb.price_source import PriceUnavailableError
from mevarb.swap_executor import SwapResult


PRICES = {'raydium': 100.0, 'orca': 101.5}


def make_scheduler(config, clock, mode='simulate', price_source=None, executor=None, notifier=None):
    if price_source is None:
        price_source = AsyncMock()
        price_source.get_price.side_effect = lambda token, base, venue: PRICES[venue]
    return ArbitrageScheduler(
        config,
        price_source,
        executor or AsyncMock(),
        notifier=notifier,
        mode=mode,
        clock=clock
    )


class TestRefreshPrices:
    """Tests for the price-refresh tick."""

    @pytest.mark.asyncio
    async def test_refresh_populates_cache(self, arbitrage_config, clock):
        scheduler = make_scheduler(arbitrage_config, clock)

        await scheduler.refresh_prices()

        assert scheduler.cache.get('SOL', 'USDC', 'raydium').price == 100.0
        assert scheduler.cache.get('SOL', 'USDC', 'orca').price == 101.5
        assert scheduler.cache.get('SOL', 'USDC', 'orca').observed_at == clock.now
        assert scheduler.consecutive_failures == 0
        assert scheduler.stats['refreshes'] == 1

    def test_price_keys_skip_token_equal_to_base(self, clock):
        config = ArbitrageConfig(tokens=['SOL', 'USDC'], base_tokens=['USDC'], venues=['raydium', 'orca'])
        scheduler = make_scheduler(config, clock)
        assert scheduler.price_keys() == [('SOL', 'USDC', 'raydium'), ('SOL', 'USDC', 'orca')]

    @pytest.mark.asyncio
    async def test_failure_ceiling_warns(self, arbitrage_config, clock, caplog):
        price_source = AsyncMock()
        price_source.get_price.side_effect = PriceUnavailableError("no route")
        scheduler = make_scheduler(arbitrage_config, clock, price_source=price_source)

        with caplog.at_level('WARNING', logger='mevarb.arbitrage_scheduler'):
            await scheduler.refresh_prices()
            assert scheduler.consecutive_failures == 2
            assert 'Too many consecutive' not in caplog.text

            await scheduler.refresh_prices()
            assert scheduler.consecutive_failures == 4
            assert 'Too many consecutive' in caplog.text

        assert len(scheduler.cache) == 0

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, arbitrage_config, clock):
        price_source = AsyncMock()

        def get_price(token, base, venue):
            if venue == 'raydium':
                raise PriceUnavailableError("no route")
            return 101.5

        price_source.get_price.side_effect = get_price
        scheduler = make_scheduler(arbitrage_config, clock, price_source=price_source)
        scheduler.consecutive_failures = 7

        await scheduler.refresh_prices()

        assert scheduler.consecutive_failures == 0
        assert scheduler.cache.get('SOL', 'USDC', 'orca').price == 101.5

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, arbitrage_config, clock):
        config = dataclasses.replace(arbitrage_config, quote_timeout_seconds=0.01)
        price_source = AsyncMock()

        async def slow_price(token, base, venue):
            await asyncio.sleep(1)
            return 100.0

        price_source.get_price.side_effect = slow_price
        scheduler = make_scheduler(config, clock, price_source=price_source)

        await scheduler.refresh_prices()

        assert scheduler.consecutive_failures == 2
        assert len(scheduler.cache) == 0


class TestScanAndExecute:
    """Tests for the scan tick and two-leg execution."""

    @pytest.mark.asyncio
    async def test_executes_both_legs(self, arbitrage_config, clock):
        executor = AsyncMock()
        executor.swap.return_value = SwapResult(True, signature="sig")
        scheduler = make_scheduler(arbitrage_config, clock, executor=executor)
        await scheduler.refresh_prices()

        await scheduler.scan_and_execute()

        assert executor.swap.await_args_list == [
            call('USDC', 'SOL', pytest.approx(10.0), 'raydium'),
            call('SOL', 'USDC', 0.1, 'orca'),
        ]
        assert scheduler.stats['executed'] == 1
        assert len(scheduler.last_opportunities) == 1

    @pytest.mark.asyncio
    async def test_no_swaps_on_decayed_opportunity(self, arbitrage_config, clock, sol_usdc_opportunity):
        """The opportunity was found at 100/101.5 but orca has since dropped to 100.05."""
        executor = AsyncMock()
        scheduler = make_scheduler(arbitrage_config, clock, executor=executor)
        scheduler.cache.update('SOL', 'USDC', 'raydium', 100.0, clock.now)
        scheduler.cache.update('SOL', 'USDC', 'orca', 100.05, clock.now)
        scheduler.scanner.scan = MagicMock(return_value=[sol_usdc_opportunity])

        await scheduler.scan_and_execute()

        executor.swap.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ineligible_opportunity_skipped(self, arbitrage_config, clock, sol_usdc_opportunity):
        executor = AsyncMock()
        scheduler = make_scheduler(arbitrage_config, clock, executor=executor)
        await scheduler.refresh_prices()
        scheduler.allowed_venues = frozenset({'raydium'})

        await scheduler.scan_and_execute()

        executor.swap.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scan_mode_does_not_execute(self, arbitrage_config, clock):
        executor = AsyncMock()
        scheduler = make_scheduler(arbitrage_config, clock, mode='scan', executor=executor)
        await scheduler.refresh_prices()

        await scheduler.scan_and_execute()

        executor.swap.assert_not_awaited()
        assert len(scheduler.last_opportunities) == 1

    @pytest.mark.asyncio
    async def test_buy_failure_skips_sell(self, arbitrage_config, clock, sol_usdc_opportunity):
        executor = AsyncMock()
        executor.swap.return_value = SwapResult(False, error="slippage")
        scheduler = make_scheduler(arbitrage_config, clock, executor=executor)

        result = await scheduler.execute_direct_arbitrage(sol_usdc_opportunity)

        assert result is False
        assert executor.swap.await_count == 1
        assert scheduler.stats['buy_failed'] == 1

    @pytest.mark.asyncio
    async def test_buy_exception_skips_sell(self, arbitrage_config, clock, sol_usdc_opportunity):
        executor = AsyncMock()
        executor.swap.side_effect = RuntimeError("rpc down")
        scheduler = make_scheduler(arbitrage_config, clock, executor=executor)

        assert await scheduler.execute_direct_arbitrage(sol_usdc_opportunity) is False
        assert executor.swap.await_count == 1

    @pytest.mark.asyncio
    async def test_sell_failure_is_reported(self, arbitrage_config, clock, sol_usdc_opportunity):
        executor = AsyncMock()
        executor.swap.side_effect = [SwapResult(True, signature="buy_sig"), SwapResult(False, error="no route")]
        notifier = MagicMock()
        scheduler = make_scheduler(arbitrage_config, clock, executor=executor, notifier=notifier)

        result = await scheduler.execute_direct_arbitrage(sol_usdc_opportunity)

        assert result is False
        assert executor.swap.await_count == 2
        assert scheduler.stats['sell_failed'] == 1
        notifier.notify.assert_called_once()
        assert 'unhedged' in notifier.notify.call_args[0][0]

    @pytest.mark.asyncio
    async def test_swap_timeout_is_failure(self, arbitrage_config, clock, sol_usdc_opportunity):
        config = dataclasses.replace(arbitrage_config, swap_timeout_seconds=0.01)
        executor = AsyncMock()

        async def slow_swap(*args):
            await asyncio.sleep(1)
            return SwapResult(True, signature="late")

        executor.swap.side_effect = slow_swap
        scheduler = make_scheduler(config, clock, executor=executor)

        assert await scheduler.execute_direct_arbitrage(sol_usdc_opportunity) is False
        assert executor.swap.await_count == 1


class TestLifecycleAndStats:
    """Tests for start/stop and get_stats."""

    @pytest.mark.asyncio
    async def test_get_stats(self, arbitrage_config, clock):
        scheduler = make_scheduler(arbitrage_config, clock)
        await scheduler.refresh_prices()

        stats = scheduler.get_stats()

        assert stats['active_opportunities'] == 1
        assert stats['best_opportunity'].sell_venue == 'orca'
        assert stats['monitored_tokens'] == ['SOL', 'USDC']
        assert stats['monitored_venues'] == ['orca', 'raydium']
        assert stats['monitored_pairs'] == ['SOL/USDC']
        assert stats['consecutive_failures'] == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, arbitrage_config, clock):
        scheduler = make_scheduler(arbitrage_config, clock, mode='scan')

        await scheduler.initialize()
        await scheduler.start()
        assert scheduler.is_running is True
        await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.stats['refreshes'] >= 1
        assert not scheduler._refresh_task.running
        assert not scheduler._scan_task.running
