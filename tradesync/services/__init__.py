"""Application services: fetching, cache coordination, migration, summaries."""

from .chunked_history_fetcher import ChunkedHistoryFetcher, HistoryBundle, generate_chunks
from .cache_coordinator import AccountHistory, CacheCoordinator, SyncOutcome
from .migration_engine import MigrationEngine, MigrationResult, MigrationStatus
from .summary_service import MonthlySummaryService, compute_metrics

__all__ = [
    "ChunkedHistoryFetcher",
    "HistoryBundle",
    "generate_chunks",
    "AccountHistory",
    "CacheCoordinator",
    "SyncOutcome",
    "MigrationEngine",
    "MigrationResult",
    "MigrationStatus",
    "MonthlySummaryService",
    "compute_metrics",
]
