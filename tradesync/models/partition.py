"""
Partition and per-account metadata models.

A partition holds one month of one record kind for one account. Its checksum
is an MD5 over the canonical JSON of its records (sorted keys, compact
separators), recomputed on every write and verified on every load.
"""

from __future__ import annotations
import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class RecordKind(str, Enum):
    """Record kinds and their on-disk directory names."""
    TRADES = "trades"
    CLOSED_POSITIONS = "pnl"
    EQUITY = "equity"


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_checksum(record_dicts: List[Dict[str, Any]]) -> str:
    """MD5 hex digest of the canonical JSON of serialized records."""
    return hashlib.md5(canonical_json(record_dicts).encode("utf-8")).hexdigest()


@dataclass
class MonthPartition(Generic[T]):
    """One month of records, newest-first."""

    month: str  # "YYYY-MM"
    records: List[T] = field(default_factory=list)
    checksum: str = ""
    created_at: int = 0  # Epoch ms
    last_updated: int = 0  # Epoch ms

    @property
    def is_empty(self) -> bool:
        return not self.records

    def record_dicts(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.records]  # type: ignore[attr-defined]

    def refresh_checksum(self) -> str:
        self.checksum = compute_checksum(self.record_dicts())
        return self.checksum

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "records": self.record_dicts(),
            "checksum": self.checksum,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
        }


@dataclass
class MonthlyStats:
    """Per-month record counts and serialized sizes (bytes)."""

    trades_count: int = 0
    closed_positions_count: int = 0
    equity_count: int = 0
    trades_size: int = 0
    closed_positions_size: int = 0
    equity_size: int = 0

    @property
    def approx_size_bytes(self) -> int:
        return self.trades_size + self.closed_positions_size + self.equity_size

    @property
    def is_empty(self) -> bool:
        return (self.trades_count + self.closed_positions_count + self.equity_count) == 0

    def update(self, kind: RecordKind, count: int, size: int) -> None:
        if kind == RecordKind.TRADES:
            self.trades_count, self.trades_size = count, size
        elif kind == RecordKind.CLOSED_POSITIONS:
            self.closed_positions_count, self.closed_positions_size = count, size
        else:
            self.equity_count, self.equity_size = count, size

    def count_for(self, kind: RecordKind) -> int:
        if kind == RecordKind.TRADES:
            return self.trades_count
        if kind == RecordKind.CLOSED_POSITIONS:
            return self.closed_positions_count
        return self.equity_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trades_count": self.trades_count,
            "closed_positions_count": self.closed_positions_count,
            "equity_count": self.equity_count,
            "trades_size": self.trades_size,
            "closed_positions_size": self.closed_positions_size,
            "equity_size": self.equity_size,
            "approx_size_bytes": self.approx_size_bytes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MonthlyStats:
        return cls(
            trades_count=int(data.get("trades_count", 0)),
            closed_positions_count=int(data.get("closed_positions_count", 0)),
            equity_count=int(data.get("equity_count", 0)),
            trades_size=int(data.get("trades_size", 0)),
            closed_positions_size=int(data.get("closed_positions_size", 0)),
            equity_size=int(data.get("equity_size", 0)),
        )


@dataclass
class MonthRange:
    """Oldest and newest month holding data."""

    start_month: str
    end_month: str

    def to_dict(self) -> Dict[str, str]:
        return {"start_month": self.start_month, "end_month": self.end_month}


@dataclass
class AccountMetadata:
    """
    Per-account index of partitions.

    One per account; updated on every partition write; deleted only on
    explicit account removal.
    """

    account_id: str
    created_at: int  # Epoch ms
    last_updated: int  # Epoch ms
    data_version: str = "1.0.0"
    data_range: Optional[MonthRange] = None
    monthly_stats: Dict[str, MonthlyStats] = field(default_factory=dict)
    last_synced: Optional[int] = None  # Epoch ms of last successful sync
    sync_complete: bool = False

    def recompute_data_range(self) -> None:
        """Derive data_range from the months that still hold records."""
        months = sorted(m for m, stats in self.monthly_stats.items() if not stats.is_empty)
        self.data_range = MonthRange(months[0], months[-1]) if months else None

    @property
    def total_size_bytes(self) -> int:
        return sum(s.approx_size_bytes for s in self.monthly_stats.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
            "data_version": self.data_version,
            "data_range": self.data_range.to_dict() if self.data_range else None,
            "monthly_stats": {m: s.to_dict() for m, s in sorted(self.monthly_stats.items())},
            "last_synced": self.last_synced,
            "sync_complete": self.sync_complete,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AccountMetadata:
        range_raw = data.get("data_range")
        return cls(
            account_id=data["account_id"],
            created_at=int(data.get("created_at", 0)),
            last_updated=int(data.get("last_updated", 0)),
            data_version=data.get("data_version", "1.0.0"),
            data_range=MonthRange(range_raw["start_month"], range_raw["end_month"]) if range_raw else None,
            monthly_stats={
                m: MonthlyStats.from_dict(s) for m, s in (data.get("monthly_stats") or {}).items()
            },
            last_synced=data.get("last_synced"),
            sync_complete=bool(data.get("sync_complete", False)),
        )
