"""
Real-time transaction feed over Solana WebSocket (transactionSubscribe).

Yields raw transaction notifications for the watched exchange programs.
Delivery is best effort: transactions seen while reconnecting are lost.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Iterable, Optional

import websockets

from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class SubscriptionError(Exception):
    """Raised when the node rejects the subscription request."""


class TransactionStream:
    """
    Async iterator of transaction notifications with auto-reconnect.

    Usage:
        async for record in TransactionStream(url, program_ids):
            ...
    """

    def __init__(
        self,
        url: str,
        program_ids: Iterable[str],
        commitment: str = 'confirmed',
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
        connect=websockets.connect
    ):
        self.url = url
        self.program_ids = sorted(set(program_ids))
        self.commitment = commitment
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._connect = connect
        self._request_id = 0
        self._subscribe_request_id: Optional[int] = None
        self.subscription_id: Optional[int] = None
        self.reconnects = 0
        self.received = 0

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self.records()

    def subscribe_request(self) -> Dict[str, Any]:
        self._request_id += 1
        self._subscribe_request_id = self._request_id
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "transactionSubscribe",
            "params": [
                {"accountInclude": self.program_ids, "failed": False},
                {
                    "commitment": self.commitment,
                    "encoding": "json",
                    "transactionDetails": "full",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        }

    def _extract(self, message) -> Optional[Dict[str, Any]]:
        """Notification payload from a message; None for anything else."""
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, TypeError):
            logger.debug(f"Invalid JSON on transaction stream: {str(message)[:100]}")
            return None
        if not isinstance(data, dict):
            return None

        if data.get("id") is not None and data.get("id") == self._subscribe_request_id:
            if "error" in data:
                raise SubscriptionError(f"transactionSubscribe rejected: {data['error']}")
            self.subscription_id = data.get("result")
            logger.info(
                f"{colors['GREEN']}Subscribed to transactions{colors['RESET']} for "
                f"{len(self.program_ids)} programs (subscription {self.subscription_id})"
            )
            return None

        if data.get("method") != "transactionNotification":
            return None
        params = data.get("params")
        result = params.get("result") if isinstance(params, dict) else None
        if not isinstance(result, dict):
            logger.debug(f"Transaction notification without a result object: {str(message)[:100]}")
            return None
        self.received += 1
        return result

    async def records(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield notifications forever, reconnecting with capped exponential backoff."""
        delay = self.initial_backoff
        while True:
            try:
                async with self._connect(self.url, ping_interval=20, ping_timeout=10) as ws:
                    logger.info(f"Transaction stream connected: {self.url}")
                    await ws.send(json.dumps(self.subscribe_request()))
                    async for message in ws:
                        try:
                            record = self._extract(message)
                        except SubscriptionError:
                            raise
                        except Exception as e:
                            logger.warning(f"Skipping unreadable transaction stream message: {e}")
                            continue
                        if record is None:
                            continue
                        delay = self.initial_backoff
                        yield record
                logger.warning("Transaction stream closed by server")
            except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError, SubscriptionError) as e:
                logger.warning(f"Transaction stream error: {e}")

            self.reconnects += 1
            logger.info(f"Reconnecting transaction stream in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_backoff)
