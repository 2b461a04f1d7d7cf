"""
Last-seen price per (token, base token, venue) with staleness rules.
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Set, Tuple

from .utils import get_terminal_colors, is_valid_price, percent_change

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

PriceKey = Tuple[str, str, str]  # (token, base_token, venue)

DEFAULT_MAX_AGE_SECONDS = 10.0
DEFAULT_SIGNIFICANT_CHANGE_PCT = 1.0


@dataclass(frozen=True)
class PriceSample:
    """A single observed price. `previous` holds the sample it replaced (one level deep)."""
    token: str
    base_token: str
    venue: str
    price: float
    observed_at: float
    previous: Optional['PriceSample'] = None

    @property
    def key(self) -> PriceKey:
        return (self.token, self.base_token, self.venue)

    @property
    def change_pct(self) -> float:
        """Percent change against the previous sample, 0.0 if there is none."""
        if self.previous is None:
            return 0.0
        return percent_change(self.previous.price, self.price)


def is_fresh(sample: PriceSample, now: float, max_age: float = DEFAULT_MAX_AGE_SECONDS) -> bool:
    """True iff the sample is strictly younger than max_age seconds."""
    return now - sample.observed_at < max_age


class PriceCache:
    """
    Price table owned by the price-refresh loop.

    Only the refresh loop calls update(). Readers get a snapshot() so a scan
    never observes a half-applied refresh tick. None of the methods await,
    so each call is atomic on the event loop.
    """

    def __init__(self, significant_change_pct: float = DEFAULT_SIGNIFICANT_CHANGE_PCT):
        self.significant_change_pct = significant_change_pct
        self._samples: Dict[PriceKey, PriceSample] = {}

    def update(self, token: str, base_token: str, venue: str, price: float, now: float) -> bool:
        """
        Insert or overwrite the sample for a key, keeping the old one as `previous`.

        Non-positive / non-finite prices and out-of-order timestamps are
        rejected so they can never reach the scanner.

        Returns:
            True if the sample was stored
        """
        if not is_valid_price(price):
            logger.warning(f"Rejected price {price!r} for {token}/{base_token} on {venue}")
            return False

        key = (token, base_token, venue)
        current = self._samples.get(key)
        if current is not None and now < current.observed_at:
            logger.debug(
                f"Rejected out-of-order price for {token}/{base_token} on {venue}: "
                f"{now} < {current.observed_at}"
            )
            return False

        # Drop the chain beyond one level
        previous = None
        if current is not None:
            previous = PriceSample(
                current.token, current.base_token, current.venue,
                current.price, current.observed_at
            )
        sample = PriceSample(token, base_token, venue, float(price), now, previous)
        self._samples[key] = sample

        if previous is not None and abs(sample.change_pct) > self.significant_change_pct:
            logger.info(
                f"Price change: {colors['CYAN']}{token}/{base_token}{colors['RESET']} on "
                f"{colors['CYAN']}{venue}{colors['RESET']}: "
                f"{colors['YELLOW']}{sample.price:.4f}{colors['RESET']} ({sample.change_pct:+.2f}%)"
            )
        return True

    def get(self, token: str, base_token: str, venue: str) -> Optional[PriceSample]:
        """Current sample for the key, or None."""
        return self._samples.get((token, base_token, venue))

    def is_fresh(self, sample: PriceSample, now: float, max_age: float = DEFAULT_MAX_AGE_SECONDS) -> bool:
        return is_fresh(sample, now, max_age)

    def snapshot(self) -> Mapping[PriceKey, PriceSample]:
        """Read-only copy of the table. Samples are immutable, so a shallow copy suffices."""
        return MappingProxyType(dict(self._samples))

    def keys(self):
        return self._samples.keys()

    def monitored(self) -> Dict[str, Set[str]]:
        """Tokens, venues and pairs currently present in the cache."""
        tokens: Set[str] = set()
        venues: Set[str] = set()
        pairs: Set[str] = set()
        for token, base_token, venue in self._samples:
            tokens.update((token, base_token))
            venues.add(venue)
            pairs.add(f"{token}/{base_token}")
        return {'tokens': tokens, 'venues': venues, 'pairs': pairs}

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, key: PriceKey) -> bool:
        return key in self._samples
