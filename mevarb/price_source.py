"""
Price-quoting service used by the price-refresh loop.
"""
import logging
from typing import Dict, Optional

from .config import VENUE_DEX_LABELS, TokenInfo
from .jupiter_client import JupiterClient

logger = logging.getLogger(__name__)


class PriceUnavailableError(Exception):
    """Raised when a venue cannot quote a pair right now."""


class JupiterPriceSource:
    """Per-venue token prices from Jupiter quotes restricted to one DEX."""

    def __init__(
        self,
        jupiter_client: JupiterClient,
        tokens: Dict[str, TokenInfo],
        venue_labels: Optional[Dict[str, Optional[str]]] = None
    ):
        self.jupiter = jupiter_client
        self.tokens = tokens
        self.venue_labels = venue_labels if venue_labels is not None else VENUE_DEX_LABELS

    async def get_price(self, token: str, base_token: str, venue: str) -> float:
        """
        Price of one `token` in `base_token` on `venue`.

        Raises:
            PriceUnavailableError: Unknown token/venue or no route
        """
        if token not in self.tokens or base_token not in self.tokens:
            raise PriceUnavailableError(f"Unknown token pair {token}/{base_token}")
        if venue not in self.venue_labels:
            raise PriceUnavailableError(f"Unknown venue {venue}")

        label = self.venue_labels[venue]
        token_info = self.tokens[token]
        base_info = self.tokens[base_token]
        price = await self.jupiter.get_price(
            token_info.mint,
            base_info.mint,
            token_info.decimals,
            base_info.decimals,
            dexes=[label] if label else None
        )
        if price is None:
            raise PriceUnavailableError(f"No route for {token}/{base_token} on {venue}")
        return price
