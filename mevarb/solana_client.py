"""
Solana RPC client for balance checks, simulation and transaction sending.
"""
import asyncio
import base64
import logging
from typing import Any, Dict, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

logger = logging.getLogger(__name__)


class SolanaClient:
    """Client for Solana RPC operations with failover support."""

    def __init__(self, rpc_url: str, wallet_keypair: Optional[Keypair] = None, fallback_rpc_url: Optional[str] = None):
        self.rpc_url_primary = rpc_url
        self.rpc_url_fallback = fallback_rpc_url
        self._active_rpc_url = rpc_url
        self.client = AsyncClient(rpc_url)
        self.wallet = wallet_keypair

    async def _switch_to_fallback(self, reason: str) -> bool:
        """Switch to the fallback RPC once. Returns False if there is none (or already switched)."""
        if not self.rpc_url_fallback or self._active_rpc_url != self.rpc_url_primary:
            return False
        logger.warning(f"RPC failover: primary -> fallback, reason: {reason}")
        try:
            await self.client.close()
        except Exception as e:
            logger.debug(f"Error closing primary RPC client: {e}")
        self._active_rpc_url = self.rpc_url_fallback
        self.client = AsyncClient(self.rpc_url_fallback)
        return True

    @staticmethod
    def _is_failover_error(error: Exception) -> bool:
        """Rate-limit, timeout and connection errors trigger failover."""
        error_str = str(error).lower()
        if any(marker in error_str for marker in ('429', 'rate limit', 'timeout', 'timed out', 'connection')):
            return True
        return type(error).__name__ in ('ConnectError', 'ConnectTimeout', 'NetworkError', 'TimeoutError')

    async def _with_failover(self, method: str, *args, **kwargs):
        """Call `method` on the active RPC client; on a failover error switch RPC and retry once."""
        try:
            return await getattr(self.client, method)(*args, **kwargs)
        except Exception as e:
            if self._is_failover_error(e) and await self._switch_to_fallback(str(e)):
                return await getattr(self.client, method)(*args, **kwargs)
            raise

    def sign_transaction(self, transaction_base64: str) -> VersionedTransaction:
        """
        Decode a base64 unsigned VersionedTransaction (Jupiter format) and sign it with the wallet.

        Raises:
            ValueError: If no wallet is loaded
        """
        if self.wallet is None:
            raise ValueError("No wallet loaded, cannot sign")
        raw = VersionedTransaction.from_bytes(base64.b64decode(transaction_base64))
        return VersionedTransaction(raw.message, [self.wallet])

    async def get_balance(self, pubkey: Optional[Pubkey] = None) -> int:
        """SOL balance in lamports (0 on error)."""
        if pubkey is None:
            if self.wallet is None:
                raise ValueError("No wallet or pubkey provided")
            pubkey = self.wallet.pubkey()

        try:
            resp = await self._with_failover("get_balance", pubkey, commitment=Confirmed)
            return resp.value
        except Exception as e:
            logger.error(f"Error getting balance: {e}")
            return 0

    async def simulate_transaction(self, transaction_base64: str) -> Optional[Dict[str, Any]]:
        """
        Sign and simulate a transaction.

        Returns:
            Dict with err, logs, units_consumed; None if the RPC call failed
        """
        try:
            tx = self.sign_transaction(transaction_base64)
            result = await self._with_failover("simulate_transaction", tx, commitment=Confirmed)
        except Exception as e:
            logger.error(f"Error simulating transaction: {e}")
            return None

        sim_result = {
            "err": result.value.err,
            "logs": result.value.logs or [],
            "units_consumed": result.value.units_consumed,
        }
        if result.value.err:
            logger.warning(f"Simulation error: {result.value.err}")
        return sim_result

    async def send_transaction(
        self,
        transaction_base64: str,
        skip_preflight: bool = False,
        max_retries: int = 3
    ) -> Optional[str]:
        """
        Sign and send a transaction.

        The same signed bytes are re-sent up to `max_retries` times, 0.5s apart.

        Returns:
            Transaction signature (base58) or None
        """
        try:
            tx = self.sign_transaction(transaction_base64)
        except Exception as e:
            logger.error(f"Error signing transaction: {e}")
            return None

        opts = TxOpts(skip_preflight=skip_preflight, max_retries=0)
        for attempt in range(max_retries):
            try:
                result = await self._with_failover("send_raw_transaction", bytes(tx), opts=opts)
                if result.value:
                    sig = str(result.value)
                    logger.info(f"Transaction sent: {sig}")
                    return sig
                logger.warning(f"Transaction send returned no signature (attempt {attempt + 1})")
            except Exception as e:
                logger.warning(f"Transaction send attempt {attempt + 1} failed: {e}")
            if attempt < max_retries - 1:
                await asyncio.sleep(0.5)
        return None

    async def confirm_transaction(self, signature: str) -> bool:
        """Wait for `confirmed` commitment. Callers bound the wait with their own timeout."""
        try:
            resp = await self.client.confirm_transaction(Signature.from_string(signature), commitment=Confirmed)
        except Exception as e:
            logger.warning(f"Transaction {signature[:16]}... not confirmed: {e}")
            return False
        status = resp.value[0] if resp.value else None
        return status is not None and status.err is None

    async def close(self):
        """Close RPC client."""
        await self.client.close()
