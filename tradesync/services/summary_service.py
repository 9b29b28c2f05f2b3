"""
Monthly performance summaries computed from stored partitions.

Summaries are derived data: cached as JSON under trading-data/cache/ and
regenerated once older than the configured expiry (default 6 hours) or on
demand.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from ..config.models import SummaryConfig
from ..domain.clock import Clock
from ..domain.interfaces.file_system import FileSystem
from ..infrastructure.stores.partitioned_store import PartitionedStore
from ..models.records import ClosedPositionRecord, TradeExecution
from ..utils.logging_setup import get_logger
from ..utils.month_keys import MS_PER_HOUR, is_month_key, month_end_ms, month_key, month_start_ms

logger = get_logger(__name__)


@dataclass
class PerformanceMetrics:
    total_trades: int = 0  # Closed positions
    winning_trades: int = 0
    losing_trades: int = 0
    total_pnl: float = 0.0
    total_volume: float = 0.0  # Sum of execution notionals
    win_rate: float = 0.0  # Percent
    avg_win: float = 0.0
    avg_loss: float = 0.0  # Positive number
    max_win: float = 0.0
    max_loss: float = 0.0  # Positive number
    max_drawdown: float = 0.0  # On cumulative realized P&L
    profit_factor: float = 0.0  # inf when there are wins and no losses
    sharpe_ratio: float = 0.0  # Mean / std of daily realized P&L


@dataclass
class MonthlySummary:
    account_id: str
    month: str
    metrics: PerformanceMetrics
    generated_at: int  # Epoch ms
    version: str = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "month": self.month,
            "metrics": asdict(self.metrics),
            "generated_at": self.generated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MonthlySummary:
        return cls(
            account_id=data["account_id"],
            month=data["month"],
            metrics=PerformanceMetrics(**data["metrics"]),
            generated_at=int(data["generated_at"]),
            version=data.get("version", "1.0.0"),
        )


@dataclass
class AccountSummary:
    account_id: str
    months: List[str]
    overall: PerformanceMetrics
    monthly: List[MonthlySummary] = field(default_factory=list)

    @property
    def pnl_trend(self) -> List[float]:
        return [m.metrics.total_pnl for m in self.monthly]

    @property
    def win_rate_trend(self) -> List[float]:
        return [m.metrics.win_rate for m in self.monthly]

    @property
    def volume_trend(self) -> List[float]:
        return [m.metrics.total_volume for m in self.monthly]


def compute_metrics(
    trades: Sequence[TradeExecution],
    closed_positions: Sequence[ClosedPositionRecord],
) -> PerformanceMetrics:
    """Performance metrics over a set of executions and closed positions."""
    if not trades and not closed_positions:
        return PerformanceMetrics()

    total_volume = float(sum(t.notional for t in trades))

    if not closed_positions:
        return PerformanceMetrics(total_volume=total_volume)

    df = pd.DataFrame(
        {
            "ts": [p.timestamp_ms for p in closed_positions],
            "pnl": [p.closed_pnl for p in closed_positions],
        }
    ).sort_values("ts", kind="mergesort")

    pnl = df["pnl"]
    wins = pnl[pnl > 0]
    losses = pnl[pnl < 0]

    cumulative = pnl.cumsum()
    # Peak starts at zero (flat before the first close)
    peak = cumulative.cummax().clip(lower=0.0)
    max_drawdown = float((peak - cumulative).max())

    gross_profit = float(wins.sum())
    gross_loss = float(-losses.sum())
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = math.inf if gross_profit > 0 else 0.0

    daily = df.assign(day=pd.to_datetime(df["ts"], unit="ms", utc=True).dt.floor("D")).groupby("day")["pnl"].sum()
    daily_std = float(daily.std(ddof=0)) if len(daily) > 1 else 0.0
    sharpe = float(daily.mean()) / daily_std if daily_std > 0 else 0.0

    total = len(pnl)
    return PerformanceMetrics(
        total_trades=total,
        winning_trades=int(len(wins)),
        losing_trades=int(len(losses)),
        total_pnl=float(pnl.sum()),
        total_volume=total_volume,
        win_rate=100.0 * len(wins) / total if total else 0.0,
        avg_win=float(wins.mean()) if len(wins) else 0.0,
        avg_loss=float(-losses.mean()) if len(losses) else 0.0,
        max_win=float(wins.max()) if len(wins) else 0.0,
        max_loss=float(-losses.min()) if len(losses) else 0.0,
        max_drawdown=max_drawdown,
        profit_factor=profit_factor,
        sharpe_ratio=sharpe,
    )


class MonthlySummaryService:
    """
    Cached per-month performance summaries.

    Cache file: trading-data/cache/{account}-{YYYY-MM}-summary.json
    """

    CACHE_DIR = f"{PartitionedStore.DATA_DIR}/cache"

    def __init__(
        self,
        store: PartitionedStore,
        file_system: FileSystem,
        clock: Clock,
        config: Optional[SummaryConfig] = None,
    ) -> None:
        self._store = store
        self._fs = file_system
        self._clock = clock
        self._config = config or SummaryConfig()

    def cache_path(self, account_id: str, month: str) -> str:
        return f"{self.CACHE_DIR}/{account_id}-{month}-summary.json"

    async def get_monthly_summary(self, account_id: str, month: str, force: bool = False) -> MonthlySummary:
        """Cached summary, regenerated when expired, unreadable or forced."""
        if not force:
            cached = await self._load_cached(account_id, month)
            if cached is not None:
                return cached

        summary = await self.generate_monthly_summary(account_id, month)
        await self._fs.write_file(self.cache_path(account_id, month), json.dumps(summary.to_dict(), indent=2))
        return summary

    async def generate_monthly_summary(self, account_id: str, month: str) -> MonthlySummary:
        start, end = month_start_ms(month), month_end_ms(month)
        trades = await self._store.get_trades_in_range(account_id, start, end)
        positions = await self._store.get_closed_positions_in_range(account_id, start, end)
        logger.debug(f"Generating summary for {account_id} {month}: {len(trades)} trades, {len(positions)} closes")
        return MonthlySummary(
            account_id=account_id,
            month=month,
            metrics=compute_metrics(trades, positions),
            generated_at=self._clock.now_ms(),
            version=self._config.cache_version,
        )

    async def account_summary(self, account_id: str, months: Optional[Sequence[str]] = None) -> AccountSummary:
        """
        Monthly breakdown plus overall metrics for the given months
        (default: every month with data).

        Overall metrics are computed from the underlying records of all
        months together, not by averaging monthly figures.
        """
        selected = sorted(months) if months is not None else await self._store.available_months(account_id)
        monthly = [await self.get_monthly_summary(account_id, m) for m in selected]

        trades: List[TradeExecution] = []
        positions: List[ClosedPositionRecord] = []
        if selected:
            start, end = month_start_ms(selected[0]), month_end_ms(selected[-1])
            wanted = set(selected)
            trades = [
                t for t in await self._store.get_trades_in_range(account_id, start, end)
                if month_key(t.timestamp_ms) in wanted
            ]
            positions = [
                p for p in await self._store.get_closed_positions_in_range(account_id, start, end)
                if month_key(p.timestamp_ms) in wanted
            ]

        return AccountSummary(
            account_id=account_id,
            months=list(selected),
            overall=compute_metrics(trades, positions),
            monthly=monthly,
        )

    async def clear_cache(self, account_id: str, month: Optional[str] = None) -> int:
        """Delete cached summaries for an account (or one month). Returns files removed."""
        prefix, suffix = f"{account_id}-", "-summary.json"
        removed = 0
        for name in await self._fs.list_directory(self.CACHE_DIR):
            if not name.startswith(prefix) or not name.endswith(suffix):
                continue
            file_month = name[len(prefix):-len(suffix)]
            if not is_month_key(file_month) or (month is not None and file_month != month):
                continue
            await self._fs.delete_file(f"{self.CACHE_DIR}/{name}")
            removed += 1
        return removed

    async def _load_cached(self, account_id: str, month: str) -> Optional[MonthlySummary]:
        content = await self._fs.read_file(self.cache_path(account_id, month))
        if content is None:
            return None
        try:
            summary = MonthlySummary.from_dict(json.loads(content))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to read summary cache for {account_id} {month}: {e}")
            return None

        age_ms = self._clock.now_ms() - summary.generated_at
        if age_ms >= self._config.expiry_hours * MS_PER_HOUR:
            return None
        if summary.version != self._config.cache_version:
            return None
        return summary
