"""
Bundle lifecycle: pending -> submitted | expired | failed.

Bundles are created by the MEV detector, held in a pending table and swept
periodically. Each sweep expires stale bundles and submits the rest to the
relay exactly once; nothing is retried.
"""
import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from .strategy import PeriodicTask
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class BundleKind(Enum):
    SANDWICH = 'sandwich'
    ARBITRAGE = 'arbitrage'


class BundleStatus(Enum):
    PENDING = 'pending'
    SUBMITTED = 'submitted'
    EXPIRED = 'expired'
    FAILED = 'failed'


@dataclass
class BundleTransaction:
    """
    One transaction slot in a bundle.

    `encoded` holds the base64 signed transaction; None means the slot is an
    unsigned descriptor that a relay must not send.
    """
    role: str  # front-run, observed, back-run, buy, sell
    venue: Optional[str] = None
    encoded: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def signed(self) -> bool:
        return bool(self.encoded)


@dataclass
class Bundle:
    """Ordered group of transactions submitted atomically."""
    bundle_id: str
    kind: BundleKind
    transactions: List[BundleTransaction]
    created_at: float
    status: BundleStatus = BundleStatus.PENDING
    relay_bundle_id: Optional[str] = None
    error: Optional[str] = None
    source_signature: Optional[str] = None

    def __post_init__(self):
        if not self.transactions:
            raise ValueError("Bundle must contain at least one transaction")

    @property
    def is_signed(self) -> bool:
        return all(tx.signed for tx in self.transactions)

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass
class RelayResult:
    """Outcome of one relay submission."""
    success: bool
    relay_bundle_id: Optional[str] = None
    error: Optional[str] = None


def new_bundle_id(kind: BundleKind) -> str:
    """Unique id such as 'sandwich_1700000000000_1a2b3c4d'."""
    return f"{kind.value}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class BundleScheduler:
    """
    Owns pending bundles and drives them to a terminal status.

    The relay is any object with `async submit(bundle) -> RelayResult`.
    Table mutations happen under `_lock` or in code with no await point, so
    the detector can add bundles while a sweep is running.
    """

    def __init__(
        self,
        relay,
        ttl_seconds: float = 30.0,
        sweep_interval_seconds: float = 5.0,
        relay_timeout_seconds: float = 10.0,
        history_size: int = 256,
        clock: Callable[[], float] = time.monotonic
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.relay = relay
        self.ttl = ttl_seconds
        self.relay_timeout = relay_timeout_seconds
        self.clock = clock
        self.history: Deque[Bundle] = deque(maxlen=history_size)
        self.stats: Dict[str, int] = {
            'added': 0,
            'submitted': 0,
            'expired': 0,
            'failed': 0,
        }
        self._pending: Dict[str, Bundle] = {}
        self._in_flight: Set[str] = set()
        self._submissions: Set[asyncio.Task] = set()
        self._submission_by_id: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._sweep_task = PeriodicTask('bundle-sweep', sweep_interval_seconds, self.sweep)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def get(self, bundle_id: str) -> Optional[Bundle]:
        """Pending bundle by id, falling back to recent history."""
        bundle = self._pending.get(bundle_id)
        if bundle is not None:
            return bundle
        for finished in self.history:
            if finished.bundle_id == bundle_id:
                return finished
        return None

    async def add(self, bundle: Bundle) -> None:
        """
        Insert a new pending bundle.

        Raises:
            ValueError: Duplicate bundle id or bundle not pending
        """
        if bundle.status is not BundleStatus.PENDING:
            raise ValueError(f"Bundle {bundle.bundle_id} is {bundle.status.value}, expected pending")
        async with self._lock:
            if bundle.bundle_id in self._pending:
                raise ValueError(f"Duplicate bundle id {bundle.bundle_id}")
            self._pending[bundle.bundle_id] = bundle
            self.stats['added'] += 1
        logger.info(
            f"Created {colors['CYAN']}{bundle.kind.value}{colors['RESET']} bundle "
            f"{bundle.bundle_id} ({len(bundle.transactions)} txs)"
        )

    def _finish(self, bundle: Bundle, status: BundleStatus) -> None:
        bundle.status = status
        self._pending.pop(bundle.bundle_id, None)
        self._in_flight.discard(bundle.bundle_id)
        self.history.append(bundle)
        self.stats[status.value] += 1

    async def sweep(self, now: Optional[float] = None) -> None:
        """
        Expire stale bundles and submit the live ones.

        A bundle is expired when `now - created_at > ttl`, including one whose
        submission from an earlier sweep is still running; that submission is
        cancelled. Live bundles are submitted concurrently, each bounded by the
        relay timeout and by the time left before the bundle expires.
        """
        now = self.clock() if now is None else now
        live: List[Bundle] = []
        async with self._lock:
            for bundle in list(self._pending.values()):
                in_flight = bundle.bundle_id in self._in_flight
                if bundle.age(now) > self.ttl:
                    self._finish(bundle, BundleStatus.EXPIRED)
                    logger.warning(
                        f"{colors['YELLOW']}Bundle {bundle.bundle_id} expired{colors['RESET']} "
                        f"(age {bundle.age(now):.1f}s > {self.ttl}s)"
                    )
                    task = self._submission_by_id.get(bundle.bundle_id)
                    if in_flight and task is not None:
                        task.cancel()
                elif not in_flight:
                    self._in_flight.add(bundle.bundle_id)
                    live.append(bundle)

        if not live:
            return

        tasks = []
        for bundle in live:
            task = asyncio.create_task(self._submit(bundle, now), name=f"submit-{bundle.bundle_id}")
            self._submissions.add(task)
            self._submission_by_id[bundle.bundle_id] = task
            task.add_done_callback(self._submissions.discard)
            task.add_done_callback(lambda _, bundle_id=bundle.bundle_id: self._submission_by_id.pop(bundle_id, None))
            tasks.append(task)
        # asyncio.wait leaves the submissions running if this sweep is cancelled
        await asyncio.wait(tasks)

    async def _submit(self, bundle: Bundle, now: float) -> None:
        logger.info(
            f"Executing {bundle.kind.value} bundle {bundle.bundle_id} "
            f"with {len(bundle.transactions)} transactions"
        )
        remaining = self.ttl - bundle.age(now)
        bounded_by_ttl = 0 < remaining < self.relay_timeout
        timeout = remaining if bounded_by_ttl else self.relay_timeout
        try:
            result = await asyncio.wait_for(self.relay.submit(bundle), timeout=timeout)
        except asyncio.TimeoutError:
            if bounded_by_ttl:
                self._finish(bundle, BundleStatus.EXPIRED)
                logger.warning(
                    f"{colors['YELLOW']}Bundle {bundle.bundle_id} expired{colors['RESET']} "
                    f"while waiting for the relay"
                )
                return
            result = RelayResult(False, error=f"relay timed out after {self.relay_timeout}s")
        except asyncio.CancelledError:
            if bundle.status is BundleStatus.PENDING:
                bundle.error = "cancelled during shutdown"
                self._finish(bundle, BundleStatus.FAILED)
            raise
        except Exception as e:
            result = RelayResult(False, error=str(e))

        if result.success:
            bundle.relay_bundle_id = result.relay_bundle_id
            self._finish(bundle, BundleStatus.SUBMITTED)
            logger.info(
                f"{colors['GREEN']}Bundle {bundle.bundle_id} executed successfully{colors['RESET']}: "
                f"{result.relay_bundle_id}"
            )
        else:
            bundle.error = result.error
            self._finish(bundle, BundleStatus.FAILED)
            logger.error(f"{colors['RED']}Failed to execute bundle {bundle.bundle_id}: {result.error}{colors['RESET']}")

    def start(self) -> None:
        self._sweep_task.start()

    async def stop(self, grace_seconds: float = 5.0) -> None:
        """
        Stop sweeping, then give in-flight submissions up to `grace_seconds`.

        Submissions still running after the grace period are cancelled and
        their bundles marked failed.
        """
        await self._sweep_task.stop()
        if not self._submissions:
            return
        _, still_running = await asyncio.wait(set(self._submissions), timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} bundle submissions at shutdown")
            await asyncio.gather(*still_running, return_exceptions=True)
