"""
Fire-and-forget notifications to Telegram and Discord.
"""
import asyncio
import logging
from typing import Optional, Set

import httpx

from .config import NotificationConfig

logger = logging.getLogger(__name__)


class Notifier:
    """
    Best-effort notification sink.

    notify() schedules the sends and returns immediately; a failed send is
    logged and dropped, never raised into the caller.
    """

    TELEGRAM_API = "https://api.telegram.org"

    def __init__(self, config: NotificationConfig, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: Set[asyncio.Task] = set()
        self.sent_count = 0
        self.failed_count = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def notify(self, message: str) -> None:
        """Schedule `message` for delivery on every configured channel."""
        if not self.enabled:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(message))
        except RuntimeError:
            logger.debug(f"No running event loop, notification dropped: {message}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, message: str) -> None:
        if self.config.telegram_bot_token and self.config.telegram_chat_id:
            await self._post(
                f"{self.TELEGRAM_API}/bot{self.config.telegram_bot_token}/sendMessage",
                {"chat_id": self.config.telegram_chat_id, "text": message},
                "telegram"
            )
        if self.config.discord_webhook_url:
            await self._post(self.config.discord_webhook_url, {"content": message}, "discord")

    async def _post(self, url: str, payload: dict, channel: str) -> None:
        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
            self.sent_count += 1
        except Exception as e:
            self.failed_count += 1
            logger.warning(f"Notification via {channel} failed: {e}")

    async def close(self, timeout: float = 5.0) -> None:
        """Give pending sends up to `timeout` seconds, then close the HTTP client."""
        if self._pending:
            _, pending = await asyncio.wait(set(self._pending), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Dropped {len(pending)} notifications still pending at shutdown")
                await asyncio.gather(*pending, return_exceptions=True)
        await self.client.aclose()
