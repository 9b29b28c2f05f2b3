"""
Chunked, paginated history downloads.

Splits a target window into fixed-width date chunks (newest-first, the
oldest clipped at the lookback boundary), pages through each chunk with the
venue cursor, and degrades to partial results when chunks fail.

Pagination per chunk:
- continue while the venue returns a non-empty cursor AND the page was full
- at most max_pages_per_chunk calls per chunk
- a fixed delay (request_delay_ms) between consecutive venue calls

Closed positions additionally go through ordered fallback strategies
(unscoped default query, then widening explicit windows) and, when every
strategy comes back empty, are synthesized from raw executions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

from ..config.models import SyncConfig
from ..domain.clock import Clock
from ..domain.exceptions import (
    AccountUnsupportedError,
    FetchCancelledError,
    RecoverableError,
    error_for_page,
)
from ..domain.interfaces.exchange_client import ExchangeAccount, ExchangeClient, FetchPage, FetchWindow
from ..domain.services.position_synthesizer import ClosedPositionSynthesizer
from ..domain.services.record_merger import merge_records
from ..models.cache_state import FetchChunk, FetchProgress, HistoryFetchResult
from ..models.records import ClosedPositionRecord, TradeExecution
from ..utils.cancellation import CancellationToken
from ..utils.logging_setup import get_logger
from ..utils.month_keys import MS_PER_DAY
from ..utils.trace_context import get_run_id

logger = get_logger(__name__)

ProgressCallback = Callable[[FetchProgress], None]
PageCall = Callable[[ExchangeAccount, FetchWindow], Awaitable[FetchPage]]

STRATEGY_SYNTHESIZED = "synthesized"


def generate_chunks(now_ms: int, lookback_days: int = 180, chunk_days: int = 7) -> List[FetchChunk]:
    """
    Fixed-width windows covering [now - lookback, now], newest-first.

    The oldest chunk is clipped at now - lookback.
    """
    return generate_window_chunks(now_ms - lookback_days * MS_PER_DAY, now_ms, chunk_days)


def generate_window_chunks(start_ms: int, end_ms: int, chunk_days: int = 7) -> List[FetchChunk]:
    """Fixed-width windows covering [start_ms, end_ms], newest-first."""
    if chunk_days <= 0:
        raise ValueError("chunk_days must be positive")
    if start_ms >= end_ms:
        return []

    chunk_ms = chunk_days * MS_PER_DAY
    chunks: List[FetchChunk] = []
    chunk_end = end_ms
    while chunk_end > start_ms:
        chunk_start = max(chunk_end - chunk_ms, start_ms)
        chunks.append(FetchChunk(start_ms=chunk_start, end_ms=chunk_end))
        chunk_end = chunk_start
    return chunks


@dataclass
class HistoryBundle:
    """Executions and closed positions fetched for one window."""

    executions: HistoryFetchResult[TradeExecution]
    closed_positions: HistoryFetchResult[ClosedPositionRecord]
    progress_events: int = 0

    @property
    def any_chunk_succeeded(self) -> bool:
        return self.executions.any_succeeded or self.closed_positions.any_succeeded

    @property
    def failed_windows(self) -> List[FetchChunk]:
        return self.executions.failed_chunks + self.closed_positions.failed_chunks


@dataclass
class _ProgressTracker:
    """Global chunk counter across the phases of one fetch."""

    account_id: str
    callback: Optional[ProgressCallback]
    total_chunks: int
    current_chunk: int = 0
    records_retrieved: int = 0
    events: int = field(default=0)

    def advance(self, chunk: FetchChunk, records: int) -> None:
        self.current_chunk += 1
        self.records_retrieved += records
        self.emit(FetchProgress(
            account_id=self.account_id,
            current_chunk=self.current_chunk,
            total_chunks=self.total_chunks,
            records_retrieved=self.records_retrieved,
            current_date_range=(chunk.start_ms, chunk.end_ms),
            is_complete=False,
        ))

    def finish(self, window: FetchChunk) -> None:
        self.emit(FetchProgress(
            account_id=self.account_id,
            current_chunk=self.total_chunks,
            total_chunks=self.total_chunks,
            records_retrieved=self.records_retrieved,
            current_date_range=(window.start_ms, window.end_ms),
            is_complete=True,
        ))

    def emit(self, event: FetchProgress) -> None:
        self.events += 1
        if self.callback is None:
            return
        try:
            self.callback(event)
        except Exception as e:
            logger.warning(f"Progress callback failed for {self.account_id}: {e}")


class ChunkedHistoryFetcher:
    """
    Downloads execution and closed-position history for one account.

    All venue access goes through the injected ExchangeClient; all delays go
    through the injected Clock.
    """

    def __init__(
        self,
        client: ExchangeClient,
        clock: Clock,
        config: Optional[SyncConfig] = None,
        synthesizer: Optional[ClosedPositionSynthesizer] = None,
    ) -> None:
        self._client = client
        self._clock = clock
        self._config = config or SyncConfig()
        self._synthesizer = synthesizer or ClosedPositionSynthesizer()
        self._calls_made = 0

    @property
    def config(self) -> SyncConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def generate_chunks(self, now_ms: Optional[int] = None) -> List[FetchChunk]:
        """Chunks for the configured lookback, newest-first."""
        now = self._clock.now_ms() if now_ms is None else now_ms
        return generate_chunks(now, self._config.lookback_days, self._config.chunk_days)

    async def fetch_executions(
        self,
        account: ExchangeAccount,
        start_ms: int,
        end_ms: int,
        progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> HistoryFetchResult[TradeExecution]:
        """
        Fetch executions in [start_ms, end_ms].

        Returns:
            Newest-first executions plus coverage metadata. Failed chunks are
            listed in the result, never raised.

        Raises:
            FetchCancelledError: If the token was cancelled.
        """
        chunks = generate_window_chunks(start_ms, end_ms, self._config.chunk_days)
        tracker = _ProgressTracker(account.account_id, progress, len(chunks))
        return await self._fetch_chunked(
            "executions", self._client.fetch_executions, account, chunks, tracker, token
        )

    async def fetch_closed_positions(
        self,
        account: ExchangeAccount,
        start_ms: int,
        end_ms: int,
        progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> HistoryFetchResult[ClosedPositionRecord]:
        """Fetch venue-reported closed positions in [start_ms, end_ms]."""
        chunks = generate_window_chunks(start_ms, end_ms, self._config.chunk_days)
        tracker = _ProgressTracker(account.account_id, progress, len(chunks))
        return await self._fetch_chunked(
            "closed_positions", self._client.fetch_closed_positions, account, chunks, tracker, token
        )

    async def fetch_history(
        self,
        account: ExchangeAccount,
        start_ms: int,
        end_ms: int,
        progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
        use_fallback: bool = True,
    ) -> HistoryBundle:
        """
        Fetch executions, then closed positions, over one window.

        Progress is reported over both phases (2 x chunks). When the
        chunked closed-position fetch yields nothing and use_fallback is
        set, the fallback strategies and synthesis run.
        """
        chunks = generate_window_chunks(start_ms, end_ms, self._config.chunk_days)
        tracker = _ProgressTracker(account.account_id, progress, len(chunks) * 2)

        executions = await self._fetch_chunked(
            "executions", self._client.fetch_executions, account, chunks, tracker, token
        )
        closed = await self._fetch_chunked(
            "closed_positions", self._client.fetch_closed_positions, account, chunks, tracker, token
        )

        if not closed.records and use_fallback:
            fallback = await self.fetch_closed_positions_with_fallback(
                account,
                executions.records,
                token=token,
                skip_strategies=closed.account_unsupported,
            )
            closed.records = fallback.records
            closed.strategy = fallback.strategy
            closed.account_unsupported = closed.account_unsupported or fallback.account_unsupported
        elif closed.records:
            closed.strategy = "chunked"

        tracker.finish(FetchChunk(start_ms=start_ms, end_ms=end_ms))
        return HistoryBundle(executions=executions, closed_positions=closed, progress_events=tracker.events)

    async def fetch_closed_positions_with_fallback(
        self,
        account: ExchangeAccount,
        executions: Sequence[TradeExecution],
        token: Optional[CancellationToken] = None,
        skip_strategies: bool = False,
    ) -> HistoryFetchResult[ClosedPositionRecord]:
        """
        Try the configured strategies in order; synthesize when all are empty.

        Each strategy is one window (None = venue default, else the last N
        days) paged up to fallback_max_pages. The first strategy that yields
        at least one record wins. ACCOUNT_UNSUPPORTED skips the remaining
        strategies.
        """
        result: HistoryFetchResult[ClosedPositionRecord] = HistoryFetchResult()
        run_id = get_run_id()

        if not skip_strategies:
            now = self._clock.now_ms()
            for days in self._config.fallback_windows_days:
                label = "default" if days is None else f"{days}d"
                start = None if days is None else now - int(days) * MS_PER_DAY
                end = None if days is None else now
                result.chunks_total += 1
                try:
                    records = await self._fetch_pages(
                        self._client.fetch_closed_positions,
                        account,
                        start,
                        end,
                        self._config.fallback_max_pages,
                        token,
                    )
                except FetchCancelledError:
                    raise
                except AccountUnsupportedError as e:
                    logger.warning(
                        f"[{run_id}] Closed positions unsupported for {account.account_id} "
                        f"(strategy {label}): {e}"
                    )
                    result.account_unsupported = True
                    break
                except Exception as e:
                    logger.warning(
                        f"[{run_id}] Closed-position strategy {label} failed for {account.account_id}: {e}"
                    )
                    continue

                result.chunks_succeeded += 1
                if records:
                    logger.info(
                        f"[{run_id}] Strategy {label} returned {len(records)} closed positions "
                        f"for {account.account_id}"
                    )
                    result.records = merge_records([], records)
                    result.strategy = label
                    return result

        synthesized = self._synthesizer.synthesize(executions)
        logger.info(
            f"[{run_id}] Synthesized {len(synthesized)} closed positions from "
            f"{len(executions)} executions for {account.account_id}"
        )
        result.records = synthesized
        result.strategy = STRATEGY_SYNTHESIZED
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _fetch_chunked(
        self,
        label: str,
        call: PageCall,
        account: ExchangeAccount,
        chunks: List[FetchChunk],
        tracker: _ProgressTracker,
        token: Optional[CancellationToken],
    ) -> HistoryFetchResult:
        result: HistoryFetchResult = HistoryFetchResult(chunks_total=len(chunks))
        collected: List = []
        run_id = get_run_id()

        for index, chunk in enumerate(chunks):
            try:
                records = await self._fetch_pages(
                    call,
                    account,
                    chunk.start_ms,
                    chunk.end_ms,
                    self._config.max_pages_per_chunk,
                    token,
                )
            except FetchCancelledError:
                raise
            except AccountUnsupportedError as e:
                logger.warning(f"[{run_id}] {label} unsupported for {account.account_id}: {e}")
                result.account_unsupported = True
                # Not retriable for this account: the remaining chunks fail the same way
                result.failed_chunks.extend(chunks[index:])
                for skipped in chunks[index:]:
                    tracker.advance(skipped, 0)
                break
            except RecoverableError as e:
                logger.warning(
                    f"[{run_id}] {label} chunk {index + 1}/{len(chunks)} failed for "
                    f"{account.account_id}: {type(e).__name__}: {e}"
                )
                result.failed_chunks.append(chunk)
                tracker.advance(chunk, 0)
                continue
            except Exception as e:
                logger.error(
                    f"[{run_id}] {label} chunk {index + 1}/{len(chunks)} raised for "
                    f"{account.account_id}: {e}"
                )
                result.failed_chunks.append(chunk)
                tracker.advance(chunk, 0)
                continue

            collected.extend(records)
            result.chunks_succeeded += 1
            result.covered_start_ms = (
                chunk.start_ms if result.covered_start_ms is None else min(result.covered_start_ms, chunk.start_ms)
            )
            result.covered_end_ms = (
                chunk.end_ms if result.covered_end_ms is None else max(result.covered_end_ms, chunk.end_ms)
            )
            tracker.advance(chunk, len(records))

        # Adjacent chunks share a boundary millisecond
        result.records = merge_records([], collected)
        logger.info(
            f"[{run_id}] Fetched {len(result.records)} {label} for {account.account_id}: "
            f"{result.chunks_succeeded}/{result.chunks_total} chunks ok"
        )
        return result

    async def _fetch_pages(
        self,
        call: PageCall,
        account: ExchangeAccount,
        start_ms: Optional[int],
        end_ms: Optional[int],
        max_pages: int,
        token: Optional[CancellationToken],
    ) -> List:
        """
        Page through one window.

        Raises:
            RecoverableError subclasses for non-OK provider codes.
            FetchCancelledError if the token is cancelled before a call.
        """
        limit = self._config.page_limit
        records: List = []
        cursor: Optional[str] = None

        for _ in range(max_pages):
            await self._pace()
            if token is not None:
                token.raise_if_cancelled()

            page = await call(account, FetchWindow(start_ms=start_ms, end_ms=end_ms, cursor=cursor, limit=limit))
            self._calls_made += 1

            error = error_for_page(page)
            if error is not None:
                raise error

            records.extend(page.records)
            cursor = page.next_cursor or None
            if not cursor or page.row_count < limit:
                break

        return records

    async def _pace(self) -> None:
        """Fixed delay between consecutive venue calls."""
        if self._calls_made > 0 and self._config.request_delay_ms > 0:
            await self._clock.sleep(self._config.request_delay_ms / 1000)
