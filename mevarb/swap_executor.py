"""
Execution service: one venue-restricted swap per call, never retried.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .config import VENUE_DEX_LABELS, TokenInfo
from .jupiter_client import JupiterClient
from .solana_client import SolanaClient
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


@dataclass
class SwapResult:
    """Outcome of a single swap call."""
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None


class SwapExecutor:
    """
    Executes swaps through Jupiter, restricted to one venue.

    Modes:
        live: sign, send and wait for confirmation
        simulate: sign and simulate only (signature is None on success)
        scan: refuse every swap
    """

    def __init__(
        self,
        jupiter_client: JupiterClient,
        solana_client: SolanaClient,
        tokens: Dict[str, TokenInfo],
        mode: str = 'scan',
        slippage_bps: int = 50,
        priority_fee_lamports: int = 0,
        confirm: bool = True,
        venue_labels: Optional[Dict[str, Optional[str]]] = None
    ):
        self.jupiter = jupiter_client
        self.solana = solana_client
        self.tokens = tokens
        self.mode = mode.lower()
        self.slippage_bps = slippage_bps
        self.priority_fee = priority_fee_lamports
        self.confirm = confirm
        self.venue_labels = venue_labels if venue_labels is not None else VENUE_DEX_LABELS

    def _to_raw_amount(self, token: TokenInfo, amount: float) -> int:
        return int(amount * 10 ** token.decimals)

    async def swap(self, from_token: str, to_token: str, amount: float, venue: str) -> SwapResult:
        """
        Swap `amount` of from_token into to_token on `venue`.

        Args:
            from_token: Input token symbol
            to_token: Output token symbol
            amount: Input amount in token units (not smallest units)
            venue: Venue name (raydium, orca, jupiter)

        Returns:
            SwapResult; failures are reported, not raised
        """
        if self.mode not in ('simulate', 'live'):
            return SwapResult(False, error=f"Swaps disabled in mode '{self.mode}'")
        if from_token not in self.tokens or to_token not in self.tokens:
            return SwapResult(False, error=f"Unknown token in {from_token}->{to_token}")
        if venue not in self.venue_labels:
            return SwapResult(False, error=f"Unknown venue '{venue}'")
        if self.solana.wallet is None:
            return SwapResult(False, error="No wallet loaded")

        from_info = self.tokens[from_token]
        to_info = self.tokens[to_token]
        raw_amount = self._to_raw_amount(from_info, amount)
        if raw_amount <= 0:
            return SwapResult(False, error=f"Amount too small: {amount} {from_token}")

        label = self.venue_labels[venue]
        quote = await self.jupiter.get_quote(
            from_info.mint,
            to_info.mint,
            raw_amount,
            slippage_bps=self.slippage_bps,
            dexes=[label] if label else None
        )
        if quote is None or quote.out_amount <= 0:
            return SwapResult(False, error=f"No route for {from_token}->{to_token} on {venue}")

        user_pubkey = str(self.solana.wallet.pubkey())
        swap_response = await self.jupiter.get_swap_transaction(
            quote,
            user_pubkey,
            priority_fee_lamports=self.priority_fee
        )
        if swap_response is None:
            return SwapResult(False, error="Failed to build swap transaction")

        if self.mode == 'simulate':
            sim_result = await self.solana.simulate_transaction(swap_response.swap_transaction)
            if sim_result is None:
                return SwapResult(False, error="Simulation failed (no result from RPC)")
            if sim_result.get("err"):
                return SwapResult(False, error=f"Simulation error: {sim_result['err']}")
            logger.info(
                f"Simulated swap {colors['GREEN']}{amount}{colors['RESET']} "
                f"{colors['CYAN']}{from_token}->{to_token}{colors['RESET']} on {colors['CYAN']}{venue}{colors['RESET']}"
            )
            return SwapResult(True)

        signature = await self.solana.send_transaction(swap_response.swap_transaction)
        if signature is None:
            return SwapResult(False, error="Transaction send failed")
        if self.confirm and not await self.solana.confirm_transaction(signature):
            return SwapResult(False, signature=signature, error="Transaction not confirmed")

        logger.info(
            f"Swap executed {colors['GREEN']}{amount}{colors['RESET']} "
            f"{colors['CYAN']}{from_token}->{to_token}{colors['RESET']} on {colors['CYAN']}{venue}{colors['RESET']}: {signature}"
        )
        return SwapResult(True, signature=signature)
