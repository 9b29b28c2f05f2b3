"""Cache state and fetch progress models (derived, never persisted as such)."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class CacheStatus(Enum):
    """Per-account cache state."""
    EMPTY = "EMPTY"                                      # Never synced
    FRESH = "FRESH"                                      # Complete and younger than freshness window
    STALE_NEEDS_INCREMENTAL = "STALE_NEEDS_INCREMENTAL"  # Complete but aged out
    STALE_NEEDS_FULL = "STALE_NEEDS_FULL"                # Last full fetch did not complete


@dataclass(frozen=True)
class DataRange:
    """Covered date range of the cached records."""

    start_date: Optional[int]  # Epoch ms of oldest record
    end_date: Optional[int]    # Epoch ms of the last sync
    total_days: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"start_date": self.start_date, "end_date": self.end_date, "total_days": self.total_days}


@dataclass(frozen=True)
class CacheState:
    """Snapshot of an account's cache, recomputed from the store."""

    account_id: str
    status: CacheStatus
    last_updated: Optional[int]  # Epoch ms of last sync
    is_complete: bool
    data_range: DataRange
    chunks_retrieved: int = 0

    @property
    def is_stale(self) -> bool:
        return self.status in (CacheStatus.STALE_NEEDS_FULL, CacheStatus.STALE_NEEDS_INCREMENTAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "status": self.status.value,
            "last_updated": self.last_updated,
            "is_complete": self.is_complete,
            "data_range": self.data_range.to_dict(),
            "chunks_retrieved": self.chunks_retrieved,
        }


@dataclass(frozen=True)
class FetchProgress:
    """Advisory progress event emitted after each chunk."""

    account_id: str
    current_chunk: int
    total_chunks: int
    records_retrieved: int
    current_date_range: Tuple[int, int]  # (start_ms, end_ms)
    is_complete: bool = False

    @property
    def percent(self) -> float:
        if self.total_chunks <= 0:
            return 100.0
        return round(100.0 * self.current_chunk / self.total_chunks, 1)


@dataclass(frozen=True, slots=True)
class FetchChunk:
    """One fixed-width date window of a chunked fetch."""

    start_ms: int
    end_ms: int


@dataclass
class HistoryFetchResult(Generic[T]):
    """
    Newest-first records plus coverage metadata.

    A fetch with failed chunks is still a result: callers inspect
    failed_chunks / is_complete rather than catching an error.
    """

    records: List[T] = field(default_factory=list)
    chunks_total: int = 0
    chunks_succeeded: int = 0
    failed_chunks: List[FetchChunk] = field(default_factory=list)
    covered_start_ms: Optional[int] = None
    covered_end_ms: Optional[int] = None
    account_unsupported: bool = False
    strategy: Optional[str] = None  # Which fallback strategy produced the records

    @property
    def chunks_failed(self) -> int:
        return len(self.failed_chunks)

    @property
    def has_gaps(self) -> bool:
        return bool(self.failed_chunks)

    @property
    def any_succeeded(self) -> bool:
        return self.chunks_succeeded > 0
