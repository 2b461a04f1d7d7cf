"""
Cross-venue spread scanner.
Finds the best buy/sell venue for every (token, base token) pair in a price snapshot.
"""
import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Union

from .price_cache import DEFAULT_MAX_AGE_SECONDS, PriceCache, PriceKey, PriceSample, is_fresh

logger = logging.getLogger(__name__)

DEFAULT_MIN_SPREAD_PCT = 0.3
DEFAULT_FEE_PCT = 0.2  # percentage points subtracted from the spread
DEFAULT_MAX_RESULTS = 5

PriceSource = Union[PriceCache, Mapping[PriceKey, PriceSample]]


def spread_pct(buy_price: float, sell_price: float) -> float:
    """Spread of sell over buy, in percent of the buy price."""
    return (sell_price - buy_price) / buy_price * 100


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """A cross-venue price discrepancy. Derived each scan cycle, never persisted."""
    token: str
    base_token: str
    buy_venue: str
    sell_venue: str
    buy_price: float
    sell_price: float
    spread_pct: float
    estimated_profit_pct: float

    @property
    def pair(self) -> str:
        return f"{self.token}/{self.base_token}"

    def describe(self) -> str:
        return (
            f"{self.pair} buy {self.buy_venue} @ {self.buy_price:.4f}, "
            f"sell {self.sell_venue} @ {self.sell_price:.4f}, spread {self.spread_pct:.2f}%"
        )


def _lookup(prices: PriceSource, key: PriceKey) -> Optional[PriceSample]:
    if isinstance(prices, PriceCache):
        return prices.get(*key)
    return prices.get(key)


class SpreadScanner:
    """Enumerates token pairs and ranks cross-venue spreads."""

    def __init__(
        self,
        fee_pct: float = DEFAULT_FEE_PCT,
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
        max_results: int = DEFAULT_MAX_RESULTS
    ):
        self.fee_pct = fee_pct
        self.max_age = max_age
        self.max_results = max_results

    def fresh_samples(
        self,
        prices: PriceSource,
        token: str,
        base_token: str,
        venues: Sequence[str],
        now: float
    ) -> List[PriceSample]:
        """Fresh samples for one pair, in venue order."""
        samples = []
        for venue in venues:
            sample = _lookup(prices, (token, base_token, venue))
            if sample is not None and sample.price > 0 and is_fresh(sample, now, self.max_age):
                samples.append(sample)
        return samples

    def best_for_pair(
        self,
        prices: PriceSource,
        token: str,
        base_token: str,
        venues: Sequence[str],
        now: float,
        min_spread_pct: float
    ) -> Optional[ArbitrageOpportunity]:
        """
        Best opportunity for a single pair, or None.

        Ties on min/max price go to the venue that comes first in `venues`.
        """
        samples = self.fresh_samples(prices, token, base_token, venues, now)
        if len(samples) < 2:
            return None

        buy = samples[0]
        sell = samples[0]
        for sample in samples[1:]:
            # strict comparisons keep the first venue on ties
            if sample.price < buy.price:
                buy = sample
            if sample.price > sell.price:
                sell = sample

        if buy.venue == sell.venue:
            return None

        spread = spread_pct(buy.price, sell.price)
        if spread <= min_spread_pct:
            return None

        return ArbitrageOpportunity(
            token=token,
            base_token=base_token,
            buy_venue=buy.venue,
            sell_venue=sell.venue,
            buy_price=buy.price,
            sell_price=sell.price,
            spread_pct=spread,
            estimated_profit_pct=spread - self.fee_pct
        )

    def scan(
        self,
        prices: PriceSource,
        tokens: Sequence[str],
        base_tokens: Sequence[str],
        venues: Sequence[str],
        now: float,
        min_spread_pct: float = DEFAULT_MIN_SPREAD_PCT
    ) -> List[ArbitrageOpportunity]:
        """
        Scan every (token, base token) pair for cross-venue spreads.

        Args:
            prices: PriceCache or a snapshot of it
            tokens: Traded tokens
            base_tokens: Quote tokens
            venues: Venues in tie-break order
            now: Current time (same clock as the samples)
            min_spread_pct: Emit only spreads strictly above this

        Returns:
            Opportunities sorted by spread (descending), at most max_results
        """
        opportunities = []
        for token in tokens:
            for base_token in base_tokens:
                if token == base_token:
                    continue
                opportunity = self.best_for_pair(prices, token, base_token, venues, now, min_spread_pct)
                if opportunity is not None:
                    opportunities.append(opportunity)

        # sort() is stable, so equal spreads keep pair iteration order
        opportunities.sort(key=lambda o: o.spread_pct, reverse=True)
        if len(opportunities) > self.max_results:
            logger.debug(f"Truncating {len(opportunities)} opportunities to top {self.max_results}")
        return opportunities[:self.max_results]
