"""
MEV strategy: transaction stream -> detector -> bundle scheduler.
"""
import asyncio
import logging
from typing import Optional

from .bundle_scheduler import BundleScheduler
from .mev_detector import MEVDetector
from .strategy import BaseStrategy
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class MEVStrategy(BaseStrategy):
    """Feeds observed DEX transactions to the detector and sweeps the resulting bundles."""

    def __init__(
        self,
        stream,
        detector: MEVDetector,
        scheduler: BundleScheduler,
        shutdown_grace_seconds: float = 5.0,
        restart_delay_seconds: float = 1.0
    ):
        super().__init__('mev')
        self.stream = stream
        self.detector = detector
        self.scheduler = scheduler
        self.shutdown_grace = shutdown_grace_seconds
        self.restart_delay = restart_delay_seconds
        self.stream_restarts = 0
        self._consume_task: Optional[asyncio.Task] = None

    async def initialize(self) -> None:
        await super().initialize()
        logger.info(
            f"Watching {colors['GREEN']}{len(self.detector.dex_programs)}{colors['RESET']} exchange programs | "
            f"bundle TTL {colors['YELLOW']}{self.scheduler.ttl}s{colors['RESET']}"
        )

    async def start(self) -> None:
        await super().start()
        self.scheduler.start()
        self._consume_task = asyncio.create_task(self._consume(), name='mev-stream')

    async def _consume(self) -> None:
        """Feed stream records to the detector; restart the stream if it fails or ends."""
        while True:
            try:
                async for record in self.stream:
                    try:
                        await self.detector.handle_record(record)
                    except Exception as e:
                        logger.error(f"Error handling transaction in MEV strategy: {e}", exc_info=True)
                logger.warning("Transaction stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Transaction stream failed: {e}", exc_info=True)
            self.stream_restarts += 1
            logger.info(f"Restarting transaction stream in {self.restart_delay:.1f}s")
            await asyncio.sleep(self.restart_delay)

    async def stop(self) -> None:
        task, self._consume_task = self._consume_task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"MEV stream consumer ended with an error: {e}", exc_info=True)
        finally:
            await self.scheduler.stop(self.shutdown_grace)
            await super().stop()

    def get_stats(self) -> dict:
        return {
            'pending_bundles': self.scheduler.pending_count,
            'records': self.detector.stats.records,
            'malformed': self.detector.stats.malformed,
            'stream_restarts': self.stream_restarts,
            **self.scheduler.stats,
        }
