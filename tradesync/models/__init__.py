"""Data models for trade history and cache state."""

from .records import (
    ClosedPositionRecord,
    EquitySnapshot,
    RecordSource,
    TradeExecution,
    TradeSide,
)
from .partition import AccountMetadata, MonthlyStats, MonthPartition, MonthRange, RecordKind
from .cache_state import (
    CacheState,
    CacheStatus,
    DataRange,
    FetchChunk,
    FetchProgress,
    HistoryFetchResult,
)

__all__ = [
    "TradeExecution",
    "ClosedPositionRecord",
    "EquitySnapshot",
    "TradeSide",
    "RecordSource",
    "AccountMetadata",
    "MonthlyStats",
    "MonthPartition",
    "MonthRange",
    "RecordKind",
    "CacheState",
    "CacheStatus",
    "DataRange",
    "FetchChunk",
    "FetchProgress",
    "HistoryFetchResult",
]
