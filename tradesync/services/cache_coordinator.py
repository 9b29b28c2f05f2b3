"""
Cache coordinator: decides per account between serving the cache, an
incremental update and a full fetch, and serializes every write pipeline
for an account.

State machine (recomputed from the store on every request):

    EMPTY                    -> full fetch -> FRESH
    FRESH (age < freshness)  -> serve cache
    STALE_NEEDS_INCREMENTAL  -> incremental update -> FRESH
    STALE_NEEDS_FULL         -> full fetch -> FRESH

force_refresh always runs a full fetch.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ..config.models import SyncConfig
from ..domain.clock import Clock
from ..domain.exceptions import FetchCancelledError
from ..domain.interfaces.exchange_client import ExchangeAccount
from ..domain.services.position_synthesizer import ClosedPositionSynthesizer
from ..domain.services.record_merger import merge_records
from ..infrastructure.stores.partitioned_store import PartitionedStore
from ..models.cache_state import CacheState, CacheStatus, DataRange, FetchProgress
from ..models.partition import RecordKind
from ..models.records import ClosedPositionRecord, RecordSource, TradeExecution
from ..utils.cancellation import CancellationToken
from ..utils.logging_setup import get_logger
from ..utils.month_keys import MS_PER_DAY, MS_PER_HOUR, month_start_ms
from ..utils.perf_logger import log_full_fetch_timing, log_incremental_timing
from ..utils.trace_context import get_run_id, new_sync_run
from .chunked_history_fetcher import ChunkedHistoryFetcher, HistoryBundle

logger = get_logger(__name__)

ProgressObserver = Callable[[FetchProgress], None]


class SyncMode:
    FULL = "full"
    INCREMENTAL = "incremental"
    CACHED = "cached"


@dataclass
class AccountHistory:
    """What the host renders for an account."""

    account_id: str
    trades: List[TradeExecution]
    closed_positions: List[ClosedPositionRecord]
    state: CacheState


@dataclass
class SyncOutcome:
    """Result of one full fetch or incremental update."""

    account_id: str
    mode: str
    trades_added: int = 0
    closed_positions_added: int = 0
    chunks_succeeded: int = 0
    chunks_failed: int = 0
    complete: bool = False
    closed_position_strategy: Optional[str] = None
    failed_windows: List[tuple] = field(default_factory=list)


class CacheCoordinator:
    """
    Per-account cache state machine over a PartitionedStore.

    All writes for an account run under that account's asyncio.Lock, so one
    coordinator instance is the single writer for its store. Starting a new
    refresh for an account cancels the in-flight one, which stops at its
    next venue call with FetchCancelledError.
    """

    def __init__(
        self,
        store: PartitionedStore,
        fetcher: ChunkedHistoryFetcher,
        clock: Clock,
        config: Optional[SyncConfig] = None,
        synthesizer: Optional[ClosedPositionSynthesizer] = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._clock = clock
        self._config = config or fetcher.config
        self._synthesizer = synthesizer or ClosedPositionSynthesizer()

        self._observers: List[ProgressObserver] = []
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._warm_cache: Dict[str, AccountHistory] = {}
        self._chunks_retrieved: Dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def add_observer(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: ProgressObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, event: FetchProgress) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.warning(f"Progress observer failed: {e}")

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def _begin_refresh(self, account_id: str) -> CancellationToken:
        previous = self._tokens.get(account_id)
        if previous is not None and not previous.cancelled:
            previous.cancel("superseded by a newer refresh")
            logger.info(f"Cancelled in-flight refresh for {account_id}")
        token = CancellationToken(account_id)
        self._tokens[account_id] = token
        return token

    def _end_refresh(self, account_id: str, token: CancellationToken) -> None:
        if self._tokens.get(account_id) is token:
            del self._tokens[account_id]

    async def get_cache_state(self, account_id: str) -> CacheState:
        """Derive the account's cache state from the store."""
        metadata = await self._store.get_metadata(account_id)
        now = self._clock.now_ms()

        if metadata is None or metadata.last_synced is None:
            status = CacheStatus.EMPTY
        elif not metadata.sync_complete:
            status = CacheStatus.STALE_NEEDS_FULL
        elif now - metadata.last_synced < self._config.freshness_hours * MS_PER_HOUR:
            status = CacheStatus.FRESH
        else:
            status = CacheStatus.STALE_NEEDS_INCREMENTAL

        oldest = await self._store.oldest_timestamp(account_id) if metadata else None
        last_synced = metadata.last_synced if metadata else None
        end = last_synced if last_synced is not None else oldest
        if oldest is not None and end is not None and end >= oldest:
            total_days = math.ceil((end - oldest) / MS_PER_DAY)
        else:
            total_days = 0

        return CacheState(
            account_id=account_id,
            status=status,
            last_updated=last_synced,
            is_complete=bool(metadata and metadata.sync_complete),
            data_range=DataRange(start_date=oldest, end_date=end, total_days=total_days),
            chunks_retrieved=self._chunks_retrieved.get(account_id, 0),
        )

    def get_cached(self, account_id: str) -> Optional[AccountHistory]:
        """Warm in-memory copy, if any."""
        return self._warm_cache.get(account_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_history(self, account: ExchangeAccount, force_refresh: bool = False) -> AccountHistory:
        """
        Serve an account's history, refreshing it first when the state
        machine says so.

        Fetch failures never raise here: the last-known-good data is
        returned and the state shows the staleness.
        """
        account_id = account.account_id
        with new_sync_run():
            state = await self.get_cache_state(account_id)
            logger.info(f"[{get_run_id()}] {account_id}: state={state.status.value} force={force_refresh}")

            try:
                if force_refresh or state.status in (CacheStatus.EMPTY, CacheStatus.STALE_NEEDS_FULL):
                    await self.full_fetch(account)
                elif state.status == CacheStatus.STALE_NEEDS_INCREMENTAL:
                    await self.incremental_update(account)
                else:
                    cached = self._warm_cache.get(account_id)
                    if cached is not None:
                        return cached
            except FetchCancelledError as e:
                logger.info(f"[{get_run_id()}] {account_id}: {e}")
            except Exception as e:
                logger.error(f"[{get_run_id()}] Refresh of {account_id} failed, serving cached data: {e}")

            return await self._load_history(account_id)

    async def _load_history(self, account_id: str) -> AccountHistory:
        """Read-through: load from the store and replace the warm cache."""
        metadata = await self._store.get_metadata(account_id)
        now = self._clock.now_ms()
        trades: List[TradeExecution] = []
        closed: List[ClosedPositionRecord] = []

        if metadata is not None and metadata.data_range is not None:
            start = month_start_ms(metadata.data_range.start_month)
            # Records may carry timestamps slightly ahead of the local clock
            end = now + MS_PER_DAY
            trades = await self._store.get_trades_in_range(account_id, start, end)
            closed = await self._store.get_closed_positions_in_range(account_id, start, end)

        history = AccountHistory(
            account_id=account_id,
            trades=trades,
            closed_positions=closed,
            state=await self.get_cache_state(account_id),
        )
        self._warm_cache[account_id] = history
        return history

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def full_fetch(self, account: ExchangeAccount) -> SyncOutcome:
        """
        Fetch the full lookback and write it through the store.

        The sync is marked complete when at least one chunk of the target
        window succeeded. If the pipeline raises, whatever was written stays
        and the account is marked incomplete.

        Raises:
            FetchCancelledError: If a newer refresh superseded this one.
        """
        account_id = account.account_id
        token = self._begin_refresh(account_id)
        try:
            async with self._lock_for(account_id):
                async with log_full_fetch_timing(account_id) as timing:
                    outcome = await self._full_fetch_locked(account, token)
                    timing["trades_added"] = outcome.trades_added
                    timing["chunks_failed"] = outcome.chunks_failed
                await self._load_history(account_id)
                return outcome
        finally:
            self._end_refresh(account_id, token)

    async def _full_fetch_locked(self, account: ExchangeAccount, token: CancellationToken) -> SyncOutcome:
        account_id = account.account_id
        now = self._clock.now_ms()
        start = now - self._config.lookback_days * MS_PER_DAY

        try:
            bundle = await self._fetcher.fetch_history(account, start, now, progress=self._notify, token=token)
            outcome = await self._write_bundle(account_id, bundle, SyncMode.FULL)
        except FetchCancelledError:
            raise
        except Exception:
            logger.exception(f"[{get_run_id()}] Full fetch failed for {account_id}")
            await self._store.record_sync(account_id, now, complete=False)
            raise

        outcome.complete = bundle.any_chunk_succeeded
        await self._store.record_sync(account_id, now, complete=outcome.complete)
        self._chunks_retrieved[account_id] = outcome.chunks_succeeded

        logger.info(
            f"[{get_run_id()}] Full fetch for {account_id}: +{outcome.trades_added} trades, "
            f"+{outcome.closed_positions_added} closed positions, "
            f"{outcome.chunks_failed} failed chunks, complete={outcome.complete}"
        )
        return outcome

    async def incremental_update(self, account: ExchangeAccount) -> SyncOutcome:
        """
        Fetch [last_synced - overlap, now] and merge it into the store.

        last_synced advances to now whenever the window was reachable, even
        with zero new records. If every chunk failed the cache is left
        untouched and the account stays stale.

        Raises:
            FetchCancelledError: If a newer refresh superseded this one.
        """
        account_id = account.account_id
        token = self._begin_refresh(account_id)
        try:
            async with self._lock_for(account_id):
                metadata = await self._store.get_metadata(account_id)
                if metadata is None or metadata.last_synced is None:
                    logger.info(f"[{get_run_id()}] {account_id} has never synced, running full fetch")
                    outcome = await self._full_fetch_locked(account, token)
                else:
                    async with log_incremental_timing(account_id) as timing:
                        outcome = await self._incremental_locked(account, metadata.last_synced, token)
                        timing["trades_added"] = outcome.trades_added
                await self._load_history(account_id)
                return outcome
        finally:
            self._end_refresh(account_id, token)

    async def _incremental_locked(
        self,
        account: ExchangeAccount,
        last_synced: int,
        token: CancellationToken,
    ) -> SyncOutcome:
        account_id = account.account_id
        now = self._clock.now_ms()
        start = min(last_synced - self._config.overlap_days * MS_PER_DAY, now)

        bundle = await self._fetcher.fetch_history(
            account, start, now, progress=self._notify, token=token, use_fallback=False
        )

        if not bundle.any_chunk_succeeded:
            logger.warning(
                f"[{get_run_id()}] Incremental update for {account_id} failed for every chunk; "
                f"keeping cached data"
            )
            return SyncOutcome(
                account_id=account_id,
                mode=SyncMode.INCREMENTAL,
                chunks_failed=len(bundle.failed_windows),
                failed_windows=[(c.start_ms, c.end_ms) for c in bundle.failed_windows],
            )

        if await self._needs_resynthesis(account_id, bundle):
            bundle.closed_positions.records = await self._resynthesize(account_id, bundle.executions.records, now)
            bundle.closed_positions.strategy = "synthesized"

        outcome = await self._write_bundle(account_id, bundle, SyncMode.INCREMENTAL)
        outcome.complete = True
        await self._store.record_sync(account_id, now, complete=True)
        self._chunks_retrieved[account_id] = (
            self._chunks_retrieved.get(account_id, 0) + outcome.chunks_succeeded
        )

        logger.info(
            f"[{get_run_id()}] Incremental update for {account_id}: "
            f"+{outcome.trades_added} trades, +{outcome.closed_positions_added} closed positions"
        )
        return outcome

    async def _needs_resynthesis(self, account_id: str, bundle: HistoryBundle) -> bool:
        """Closed positions for this account come from synthesis, not the venue."""
        if bundle.closed_positions.records:
            return False
        if bundle.closed_positions.account_unsupported:
            return True
        if not bundle.executions.records:
            return False
        # Newest month holding closed positions, not the newest month overall
        months = await self._store.available_months(account_id, RecordKind.CLOSED_POSITIONS)
        if not months:
            return False
        stored = await self._store.get_closed_positions_in_range(
            account_id, month_start_ms(months[-1]), self._clock.now_ms() + MS_PER_DAY
        )
        return bool(stored) and stored[0].source == RecordSource.SYNTHESIZED

    async def _resynthesize(
        self,
        account_id: str,
        new_executions: Sequence[TradeExecution],
        now: int,
    ) -> List[ClosedPositionRecord]:
        """Synthesize from stored executions over the lookback plus the new ones."""
        start = now - self._config.lookback_days * MS_PER_DAY
        stored = await self._store.get_trades_in_range(account_id, start, now + MS_PER_DAY)
        return self._synthesizer.synthesize(merge_records(stored, new_executions))

    async def _write_bundle(self, account_id: str, bundle: HistoryBundle, mode: str) -> SyncOutcome:
        trades_added = await self._store.add_trades(account_id, bundle.executions.records)
        closed_added = await self._store.add_closed_positions(account_id, bundle.closed_positions.records)
        return SyncOutcome(
            account_id=account_id,
            mode=mode,
            trades_added=trades_added,
            closed_positions_added=closed_added,
            chunks_succeeded=bundle.executions.chunks_succeeded + bundle.closed_positions.chunks_succeeded,
            chunks_failed=len(bundle.failed_windows),
            closed_position_strategy=bundle.closed_positions.strategy,
            failed_windows=[(c.start_ms, c.end_ms) for c in bundle.failed_windows],
        )

    async def refresh_accounts(
        self,
        accounts: Sequence[ExchangeAccount],
        force_refresh: bool = False,
    ) -> Dict[str, AccountHistory]:
        """
        Refresh accounts one after another with a fixed delay in between.

        An account that fails is logged and left out of the result.
        """
        results: Dict[str, AccountHistory] = {}
        delay = self._config.inter_account_delay_ms / 1000

        for index, account in enumerate(accounts):
            if index > 0 and delay > 0:
                await self._clock.sleep(delay)
            try:
                results[account.account_id] = await self.get_history(account, force_refresh=force_refresh)
            except Exception as e:
                logger.error(f"Refresh failed for {account.account_id}: {e}")

        return results

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def archive(self, account_id: str, months_to_keep: int = 24) -> List[str]:
        async with self._lock_for(account_id):
            archived = await self._store.archive(account_id, months_to_keep)
            if archived:
                await self._load_history(account_id)
            return archived

    async def optimize_storage(self, account_id: str) -> List[str]:
        async with self._lock_for(account_id):
            return await self._store.optimize_storage(account_id)

    async def remove_account(self, account_id: str) -> None:
        """Cancel any refresh, then delete all stored data for the account."""
        token = self._tokens.get(account_id)
        if token is not None:
            token.cancel("account removed")
        async with self._lock_for(account_id):
            await self._store.clear_account(account_id)
            self._warm_cache.pop(account_id, None)
            self._chunks_retrieved.pop(account_id, None)
