"""
Strategy lifecycle and periodic task scheduling.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class PeriodicTask:
    """
    Runs `tick` every `interval` seconds as its own asyncio task.

    A tick that raises is logged and the loop carries on with the next tick.
    Each task is cancelled independently, so a stuck tick never holds up
    another task.
    """

    def __init__(self, name: str, interval: float, tick: Callable[[], Awaitable[None]]):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.tick = tick
        self.tick_count = 0
        self.error_count = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.debug(f"{colors['DIM']}Periodic task '{self.name}' started (every {self.interval}s){colors['RESET']}")

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_count += 1
                logger.error(f"Error in periodic task '{self.name}': {e}", exc_info=True)
            self.tick_count += 1
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        """Cancel the task and wait for it to unwind."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"{colors['DIM']}Periodic task '{self.name}' stopped{colors['RESET']}")


class BaseStrategy:
    """
    Common lifecycle for strategies: initialize() once, then start()/stop().

    Collaborators are passed to the constructor of each strategy; main()
    selects which strategies run from configuration.
    """

    def __init__(self, name: str):
        self.name = name
        self.is_running = False

    async def initialize(self) -> None:
        logger.info(f"{colors['CYAN']}{self.name}{colors['RESET']} strategy initialized")

    async def start(self) -> None:
        self.is_running = True
        logger.info(f"{colors['CYAN']}{self.name}{colors['RESET']} strategy started")

    async def stop(self) -> None:
        self.is_running = False
        logger.info(f"{colors['CYAN']}{self.name}{colors['RESET']} strategy stopped")
