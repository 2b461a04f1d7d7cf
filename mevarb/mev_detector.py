"""
MEV signal detection over observed transactions.

Each record from the transaction stream is parsed, its instructions are
matched against known exchange programs, and matching instructions are
checked for two signals: a large trade (sandwich bundle) and a cross-venue
price discrepancy (arbitrage bundle).
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import base58

from .bundle_scheduler import Bundle, BundleKind, BundleScheduler, BundleStatus, BundleTransaction, new_bundle_id
from .config import DEFAULT_DEX_PROGRAMS
from .price_cache import PriceCache
from .spread_scanner import ArbitrageOpportunity, SpreadScanner
from .utils import get_terminal_colors

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


class MalformedRecordError(ValueError):
    """Raised when a stream record cannot be parsed into a transaction."""


@dataclass
class InstructionRecord:
    program_id_index: int
    accounts: List[int]
    data: bytes


@dataclass
class TransactionRecord:
    signature: Optional[str]
    account_keys: List[str]
    instructions: List[InstructionRecord]
    encoded: Optional[str] = None

    def program_id(self, instruction: InstructionRecord) -> str:
        return self.account_keys[instruction.program_id_index]


def _account_key(entry: Any) -> str:
    # jsonParsed encoding returns {"pubkey": ...}, json encoding a plain string
    if isinstance(entry, Mapping):
        return str(entry['pubkey'])
    if isinstance(entry, str):
        return entry
    raise TypeError(f"unexpected account key {entry!r}")


def parse_transaction_record(raw: Any) -> TransactionRecord:
    """
    Parse a transaction notification into a TransactionRecord.

    Accepts the notification result ({"signature", "transaction": {"transaction": {...}}})
    or a bare transaction ({"signatures", "message"}). Instruction data is
    base58, as in Solana's json encoding.

    Raises:
        MalformedRecordError: Missing fields, bad indices or undecodable data
    """
    if not isinstance(raw, Mapping):
        raise MalformedRecordError(f"record is not an object: {type(raw).__name__}")

    try:
        signature = raw.get('signature')
        tx = raw['transaction'] if 'transaction' in raw else raw
        if 'message' not in tx:
            tx = tx['transaction']
        if signature is None:
            signatures = tx.get('signatures') or []
            signature = signatures[0] if signatures else None
        message = tx['message']
        account_keys = [_account_key(key) for key in message['accountKeys']]
        instructions = [
            InstructionRecord(
                program_id_index=int(ix['programIdIndex']),
                accounts=[int(i) for i in ix.get('accounts', [])],
                data=base58.b58decode(ix.get('data', ''))
            )
            for ix in message['instructions']
        ]
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise MalformedRecordError(f"cannot parse transaction record: {e!r}") from e

    for ix in instructions:
        if not 0 <= ix.program_id_index < len(account_keys):
            raise MalformedRecordError(f"program id index {ix.program_id_index} out of range")
        if any(not 0 <= i < len(account_keys) for i in ix.accounts):
            raise MalformedRecordError("instruction account index out of range")

    return TransactionRecord(
        signature=signature,
        account_keys=account_keys,
        instructions=instructions,
        encoded=raw.get('encoded')
    )


class UnsignedTransactionBuilder:
    """
    Produces unsigned transaction descriptors for bundle slots.

    A relay refuses bundles with unsigned slots, so bundles built this way
    only ever go through dry-run submission.
    """

    def front_run(self, record: TransactionRecord, venue: str) -> BundleTransaction:
        logger.debug('Creating front-run transaction')
        return BundleTransaction('front-run', venue, detail={'target': record.signature})

    def back_run(self, record: TransactionRecord, venue: str) -> BundleTransaction:
        logger.debug('Creating back-run transaction')
        return BundleTransaction('back-run', venue, detail={'target': record.signature})

    def arbitrage_leg(self, opportunity: ArbitrageOpportunity, side: str) -> BundleTransaction:
        venue = opportunity.buy_venue if side == 'buy' else opportunity.sell_venue
        logger.debug(f"Creating arbitrage transaction for {venue}")
        return BundleTransaction(side, venue, detail={
            'pair': opportunity.pair,
            'price': opportunity.buy_price if side == 'buy' else opportunity.sell_price,
        })


@dataclass
class DetectorStats:
    records: int = 0
    malformed: int = 0
    dex_instructions: int = 0
    sandwich_bundles: int = 0
    arbitrage_bundles: int = 0
    duplicate_arbitrage: int = 0
    by_venue: Dict[str, int] = field(default_factory=dict)


class MEVDetector:
    """Turns observed DEX transactions into pending bundles."""

    def __init__(
        self,
        bundle_scheduler: BundleScheduler,
        dex_programs: Optional[Mapping[str, str]] = None,
        large_trade_min_bytes: int = 16,
        cache: Optional[PriceCache] = None,
        scanner: Optional[SpreadScanner] = None,
        tokens: Sequence[str] = (),
        base_tokens: Sequence[str] = (),
        venues: Sequence[str] = (),
        min_spread_pct: float = 0.3,
        builder=None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            bundle_scheduler: Receives every bundle created
            dex_programs: Program id -> venue name allow-list
            large_trade_min_bytes: Instruction data longer than this is a large trade
            cache: Price cache for arbitrage detection (None disables it)
            scanner: Spread scanner used against the cache snapshot
            tokens/base_tokens/venues: Universe scanned for arbitrage
            min_spread_pct: Minimum spread for an arbitrage signal
            builder: Transaction builder (UnsignedTransactionBuilder by default)
            clock: Time source shared with the scheduler and the cache
        """
        self.scheduler = bundle_scheduler
        self.dex_programs = dict(dex_programs if dex_programs is not None else DEFAULT_DEX_PROGRAMS)
        self.large_trade_min_bytes = large_trade_min_bytes
        self.cache = cache
        self.scanner = scanner or SpreadScanner()
        self.tokens = list(tokens)
        self.base_tokens = list(base_tokens)
        self.venues = list(venues)
        self.min_spread_pct = min_spread_pct
        self.builder = builder or UnsignedTransactionBuilder()
        self.clock = clock
        self.stats = DetectorStats()
        self._open_arbitrage: Dict[Tuple[str, str, str, str], Bundle] = {}

    def is_dex_program(self, program_id: str) -> bool:
        return program_id in self.dex_programs

    def detect_large_trade(self, instruction: InstructionRecord) -> bool:
        """Heuristic: decoded instruction data longer than the threshold."""
        return len(instruction.data) > self.large_trade_min_bytes

    def detect_arbitrage_opportunity(self, venue: str) -> Optional[ArbitrageOpportunity]:
        """
        Best cached cross-venue spread that involves `venue`, or None.

        Always None when no price cache is wired.
        """
        if self.cache is None or venue not in self.venues:
            return None
        opportunities = self.scanner.scan(
            self.cache.snapshot(),
            self.tokens,
            self.base_tokens,
            self.venues,
            self.clock(),
            self.min_spread_pct
        )
        for opportunity in opportunities:
            if venue in (opportunity.buy_venue, opportunity.sell_venue):
                return opportunity
        return None

    @staticmethod
    def _arbitrage_key(opportunity: ArbitrageOpportunity) -> Tuple[str, str, str, str]:
        return (opportunity.token, opportunity.base_token, opportunity.buy_venue, opportunity.sell_venue)

    def has_open_arbitrage(self, opportunity: ArbitrageOpportunity) -> bool:
        """True while an arbitrage bundle for the same pair and venues is still pending."""
        bundle = self._open_arbitrage.get(self._arbitrage_key(opportunity))
        return bundle is not None and bundle.status is BundleStatus.PENDING

    def _observed(self, record: TransactionRecord, venue: str) -> BundleTransaction:
        return BundleTransaction('observed', venue, encoded=record.encoded, detail={'signature': record.signature})

    def create_sandwich_bundle(self, record: TransactionRecord, venue: str) -> Bundle:
        bundle = Bundle(
            bundle_id=new_bundle_id(BundleKind.SANDWICH),
            kind=BundleKind.SANDWICH,
            transactions=[
                self.builder.front_run(record, venue),
                self._observed(record, venue),
                self.builder.back_run(record, venue),
            ],
            created_at=self.clock(),
            source_signature=record.signature
        )
        self.stats.sandwich_bundles += 1
        return bundle

    def create_arbitrage_bundle(self, record: TransactionRecord, opportunity: ArbitrageOpportunity) -> Bundle:
        bundle = Bundle(
            bundle_id=new_bundle_id(BundleKind.ARBITRAGE),
            kind=BundleKind.ARBITRAGE,
            transactions=[
                self.builder.arbitrage_leg(opportunity, 'buy'),
                self.builder.arbitrage_leg(opportunity, 'sell'),
            ],
            created_at=self.clock(),
            source_signature=record.signature
        )
        self.stats.arbitrage_bundles += 1
        return bundle

    async def handle_record(self, raw: Any) -> List[Bundle]:
        """
        Analyze one stream record and queue the resulting bundles.

        Malformed records are logged and skipped. At most one bundle of each
        kind is created per transaction, and no arbitrage bundle is created
        while one for the same pair and venues is still pending.

        Returns:
            Bundles added to the scheduler
        """
        self.stats.records += 1
        try:
            record = parse_transaction_record(raw)
        except MalformedRecordError as e:
            self.stats.malformed += 1
            logger.warning(f"Skipping malformed transaction record: {e}")
            return []

        bundles: List[Bundle] = []
        sandwich = None
        arbitrage = None
        arbitrage_key = None
        duplicates = set()
        for instruction in record.instructions:
            venue = self.dex_programs.get(record.program_id(instruction))
            if venue is None:
                continue
            self.stats.dex_instructions += 1
            self.stats.by_venue[venue] = self.stats.by_venue.get(venue, 0) + 1

            if sandwich is None and self.detect_large_trade(instruction):
                sandwich = self.create_sandwich_bundle(record, venue)
                bundles.append(sandwich)
            if arbitrage is None:
                opportunity = self.detect_arbitrage_opportunity(venue)
                if opportunity is not None and self.has_open_arbitrage(opportunity):
                    duplicates.add(self._arbitrage_key(opportunity))
                elif opportunity is not None:
                    logger.info(
                        f"{colors['CYAN']}MEV arbitrage signal{colors['RESET']} on {venue}: {opportunity.describe()}"
                    )
                    arbitrage = self.create_arbitrage_bundle(record, opportunity)
                    arbitrage_key = self._arbitrage_key(opportunity)
                    bundles.append(arbitrage)

        if duplicates:
            self.stats.duplicate_arbitrage += len(duplicates)
            logger.debug(f"Arbitrage bundle already pending for {len(duplicates)} signal(s), skipped")

        added = []
        for bundle in bundles:
            try:
                await self.scheduler.add(bundle)
            except ValueError as e:
                logger.error(f"Could not queue bundle: {e}")
                continue
            if bundle is arbitrage:
                self._open_arbitrage[arbitrage_key] = bundle
            added.append(bundle)
        return added
