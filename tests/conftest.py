"""
Pytest configuration and fixtures for the arbitrage engine tests.
"""
import pytest
from unittest.mock import AsyncMock
from solders.keypair import Keypair

from mevarb.config import DEFAULT_TOKENS, ArbitrageConfig
from mevarb.price_cache import PriceCache
from mevarb.spread_scanner import ArbitrageOpportunity


class FakeClock:
    """Manually advanced clock for deterministic timing."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Clock starting at t=100s."""
    return FakeClock(100.0)


@pytest.fixture
def tokens():
    """Default token registry."""
    return dict(DEFAULT_TOKENS)


@pytest.fixture
def cache():
    """Empty PriceCache."""
    return PriceCache()


@pytest.fixture
def sol_usdc_cache(cache, clock):
    """SOL/USDC priced at 100 on raydium and 101.5 on orca."""
    cache.update('SOL', 'USDC', 'raydium', 100.0, clock.now)
    cache.update('SOL', 'USDC', 'orca', 101.5, clock.now)
    return cache


@pytest.fixture
def sol_usdc_opportunity():
    """Raydium -> orca opportunity matching sol_usdc_cache."""
    return ArbitrageOpportunity(
        token='SOL',
        base_token='USDC',
        buy_venue='raydium',
        sell_venue='orca',
        buy_price=100.0,
        sell_price=101.5,
        spread_pct=1.5,
        estimated_profit_pct=1.3
    )


@pytest.fixture
def arbitrage_config():
    """ArbitrageConfig restricted to SOL/USDC on raydium and orca."""
    return ArbitrageConfig(
        tokens=['SOL'],
        base_tokens=['USDC'],
        venues=['raydium', 'orca'],
        min_spread_pct=0.3,
        fee_pct=0.2,
        min_profit_pct=0.3,
        trade_size=0.1,
        max_consecutive_failures=2
    )


@pytest.fixture
def mock_keypair():
    """Create a keypair for testing."""
    return Keypair()


@pytest.fixture
def mock_jupiter_client():
    """Create a mock JupiterClient for testing."""
    return AsyncMock()


@pytest.fixture
def mock_solana_client():
    """Create a mock SolanaClient for testing."""
    return AsyncMock()


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
