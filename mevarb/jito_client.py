"""
Jito block-engine relay: submits bundles via JSON-RPC sendBundle.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from .bundle_scheduler import Bundle, RelayResult
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class JitoClient:
    """
    Bundle relay client.

    With dry_run set, bundles are validated and logged but never sent; the
    result carries a synthetic relay id.
    """

    def __init__(
        self,
        url: str,
        dry_run: bool = True,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = url
        self.dry_run = dry_run
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def _rpc_call(self, method: str, params: list) -> Dict[str, Any]:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        response = await self.client.post(self.url, json=payload)
        if response.status_code == 429:
            raise httpx.HTTPStatusError("Rate limited by block engine (429)", request=response.request, response=response)
        response.raise_for_status()
        return response.json()

    async def submit(self, bundle: Bundle) -> RelayResult:
        """
        Submit a bundle once.

        Returns:
            RelayResult; relay and transport errors are reported, not raised
        """
        unsigned = [tx.role for tx in bundle.transactions if not tx.signed]

        if self.dry_run:
            logger.info(
                f"{colors['DIM']}[dry-run]{colors['RESET']} {bundle.kind.value} bundle {bundle.bundle_id}: "
                f"{' -> '.join(tx.role for tx in bundle.transactions)}"
            )
            return RelayResult(True, relay_bundle_id=f"dry-run-{bundle.bundle_id}")

        if unsigned:
            return RelayResult(False, error=f"Bundle contains unsigned transactions: {', '.join(unsigned)}")

        encoded = [tx.encoded for tx in bundle.transactions]
        try:
            data = await self._rpc_call("sendBundle", [encoded, {"encoding": "base64"}])
        except httpx.HTTPError as e:
            return RelayResult(False, error=f"Relay request failed: {e}")
        except ValueError as e:
            return RelayResult(False, error=f"Invalid relay response: {e}")

        if data.get("error"):
            return RelayResult(False, error=f"Relay error: {data['error']}")
        relay_id = data.get("result")
        if not relay_id:
            return RelayResult(False, error="Relay returned no bundle id")
        return RelayResult(True, relay_bundle_id=str(relay_id))

    async def close(self):
        await self.client.aclose()
