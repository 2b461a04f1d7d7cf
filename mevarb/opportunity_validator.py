"""
Re-validation of opportunities right before capital is committed.
"""
import logging
from typing import Collection, Optional

from .price_cache import PriceCache, is_fresh
from .spread_scanner import DEFAULT_FEE_PCT, ArbitrageOpportunity, spread_pct

logger = logging.getLogger(__name__)


class OpportunityValidator:
    """Checks an opportunity against the current cache and a static allow-list."""

    def __init__(self, fee_pct: float = DEFAULT_FEE_PCT, max_age: Optional[float] = None):
        """
        Args:
            fee_pct: Percentage points subtracted from the recomputed spread
            max_age: If set, entries older than this count as decayed
        """
        self.fee_pct = fee_pct
        self.max_age = max_age

    def is_still_profitable(
        self,
        opportunity: ArbitrageOpportunity,
        cache: PriceCache,
        now: float,
        required_profit_pct: float
    ) -> bool:
        """
        Recompute the spread from the *current* cache entries of both venues.

        Returns False if either entry is gone (or stale), or if the net
        spread no longer beats required_profit_pct. Reads only, so repeated
        calls without a cache update give the same answer.
        """
        buy = cache.get(opportunity.token, opportunity.base_token, opportunity.buy_venue)
        sell = cache.get(opportunity.token, opportunity.base_token, opportunity.sell_venue)
        if buy is None or sell is None:
            logger.debug(f"Opportunity decayed (price missing): {opportunity.describe()}")
            return False

        if self.max_age is not None and not (is_fresh(buy, now, self.max_age) and is_fresh(sell, now, self.max_age)):
            logger.debug(f"Opportunity decayed (stale price): {opportunity.describe()}")
            return False

        net_profit = spread_pct(buy.price, sell.price) - self.fee_pct
        if net_profit <= required_profit_pct:
            logger.debug(
                f"Opportunity no longer profitable: net {net_profit:.3f}% <= "
                f"{required_profit_pct:.3f}% ({opportunity.pair})"
            )
            return False
        return True

    def is_eligible(
        self,
        opportunity: ArbitrageOpportunity,
        allowed_venues: Collection[str],
        allowed_tokens: Collection[str]
    ) -> bool:
        """True iff both venues and both tokens are on the allow-lists."""
        return (
            opportunity.buy_venue in allowed_venues
            and opportunity.sell_venue in allowed_venues
            and opportunity.token in allowed_tokens
            and opportunity.base_token in allowed_tokens
        )
