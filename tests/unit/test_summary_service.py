"""
Unit tests for monthly performance summaries.

Verifies:
- Metric calculations (win rate, drawdown, profit factor, Sharpe)
- Summary cache hit, expiry, version mismatch and forced regeneration
- Account summaries aggregate records, not monthly figures
"""

import json
import math
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_closed, make_trade

from tradesync.services.summary_service import MonthlySummaryService, compute_metrics

ACCOUNT = "acct-1"


def ts(month, day, hour=12):
    return int(datetime(2024, month, day, hour, tzinfo=timezone.utc).timestamp() * 1000)


@pytest.fixture
def service(store, file_system, clock, summary_config):
    return MonthlySummaryService(store, file_system, clock, summary_config)


class TestComputeMetrics:
    """Tests for compute_metrics()."""

    def test_empty(self):
        metrics = compute_metrics([], [])
        assert metrics.total_trades == 0
        assert metrics.total_pnl == 0.0

    def test_mixed_results(self):
        trades = [make_trade("e1", ts(6, 1), qty=2, price=100), make_trade("e2", ts(6, 2), qty=1, price=50)]
        closed = [
            make_closed("o1", ts(6, 1, 10), pnl=10.0),
            make_closed("o2", ts(6, 1, 11), pnl=-5.0),
            make_closed("o3", ts(6, 2), pnl=20.0),
        ]

        m = compute_metrics(trades, closed)

        assert m.total_trades == 3
        assert (m.winning_trades, m.losing_trades) == (2, 1)
        assert m.total_pnl == pytest.approx(25.0)
        assert m.total_volume == pytest.approx(250.0)
        assert m.win_rate == pytest.approx(200 / 3)
        assert m.avg_win == pytest.approx(15.0)
        assert m.avg_loss == pytest.approx(5.0)
        assert m.max_win == pytest.approx(20.0)
        assert m.max_loss == pytest.approx(5.0)
        assert m.max_drawdown == pytest.approx(5.0)
        assert m.profit_factor == pytest.approx(6.0)
        # Daily P&L 5 and 20: mean 12.5, population std 7.5
        assert m.sharpe_ratio == pytest.approx(12.5 / 7.5)

    def test_no_losses(self):
        m = compute_metrics([], [make_closed("o1", ts(6, 1), pnl=3.0)])
        assert math.isinf(m.profit_factor)
        assert m.sharpe_ratio == 0.0

    def test_drawdown_from_flat(self):
        closed = [make_closed("o1", ts(6, 1), pnl=-3.0), make_closed("o2", ts(6, 2), pnl=1.0)]
        assert compute_metrics([], closed).max_drawdown == pytest.approx(3.0)

    def test_volume_only(self):
        m = compute_metrics([make_trade("e1", ts(6, 1), qty=1, price=10)], [])
        assert m.total_volume == 10.0
        assert m.total_trades == 0


class TestMonthlySummaryService:
    """Tests for cached monthly summaries."""

    @pytest.mark.asyncio
    async def test_generates_and_caches(self, service, store, file_system):
        await store.add_closed_positions(ACCOUNT, [make_closed("o1", ts(6, 1), pnl=4.0)])

        summary = await service.get_monthly_summary(ACCOUNT, "2024-06")

        assert summary.metrics.total_pnl == 4.0
        cached = json.loads(file_system.files[service.cache_path(ACCOUNT, "2024-06")])
        assert cached["metrics"]["total_pnl"] == 4.0

    @pytest.mark.asyncio
    async def test_cache_hit_then_expiry(self, service, store, clock):
        await store.add_closed_positions(ACCOUNT, [make_closed("o1", ts(6, 1), pnl=4.0)])
        await service.get_monthly_summary(ACCOUNT, "2024-06")
        await store.add_closed_positions(ACCOUNT, [make_closed("o2", ts(6, 2), pnl=1.0)])

        cached = await service.get_monthly_summary(ACCOUNT, "2024-06")
        assert cached.metrics.total_pnl == 4.0

        clock.advance_by(timedelta(hours=6))
        refreshed = await service.get_monthly_summary(ACCOUNT, "2024-06")
        assert refreshed.metrics.total_pnl == 5.0

    @pytest.mark.asyncio
    async def test_force_and_version_mismatch(self, service, store, file_system):
        await store.add_closed_positions(ACCOUNT, [make_closed("o1", ts(6, 1), pnl=4.0)])
        await service.get_monthly_summary(ACCOUNT, "2024-06")
        await store.add_closed_positions(ACCOUNT, [make_closed("o2", ts(6, 2), pnl=1.0)])

        forced = await service.get_monthly_summary(ACCOUNT, "2024-06", force=True)
        assert forced.metrics.total_pnl == 5.0

        path = service.cache_path(ACCOUNT, "2024-06")
        stale = json.loads(file_system.files[path])
        stale["version"] = "0.9.0"
        stale["metrics"]["total_pnl"] = -1.0
        file_system.files[path] = json.dumps(stale)
        assert (await service.get_monthly_summary(ACCOUNT, "2024-06")).metrics.total_pnl == 5.0

    @pytest.mark.asyncio
    async def test_unreadable_cache_regenerated(self, service, store, file_system):
        await store.add_closed_positions(ACCOUNT, [make_closed("o1", ts(6, 1), pnl=4.0)])
        file_system.files[service.cache_path(ACCOUNT, "2024-06")] = "{"

        summary = await service.get_monthly_summary(ACCOUNT, "2024-06")

        assert summary.metrics.total_pnl == 4.0

    @pytest.mark.asyncio
    async def test_account_summary(self, service, store):
        await store.add_closed_positions(ACCOUNT, [
            make_closed("o1", ts(4, 10), pnl=10.0),
            make_closed("o2", ts(5, 10), pnl=-4.0),
            make_closed("o3", ts(6, 10), pnl=6.0),
        ])
        await store.add_trades(ACCOUNT, [make_trade("e1", ts(6, 9), qty=1, price=100)])

        report = await service.account_summary(ACCOUNT)

        assert report.months == ["2024-04", "2024-05", "2024-06"]
        assert report.pnl_trend == [10.0, -4.0, 6.0]
        assert report.volume_trend == [0.0, 0.0, 100.0]
        assert report.overall.total_trades == 3
        assert report.overall.total_pnl == pytest.approx(12.0)
        assert report.overall.win_rate == pytest.approx(200 / 3)
        assert report.overall.max_drawdown == pytest.approx(4.0)

        subset = await service.account_summary(ACCOUNT, months=["2024-06", "2024-04"])
        assert subset.months == ["2024-04", "2024-06"]
        assert subset.overall.total_pnl == pytest.approx(16.0)

    @pytest.mark.asyncio
    async def test_clear_cache(self, service, store):
        await store.add_closed_positions(ACCOUNT, [
            make_closed("o1", ts(5, 10)),
            make_closed("o2", ts(6, 10)),
        ])
        await service.account_summary(ACCOUNT)
        await service.get_monthly_summary("other", "2024-06")

        assert await service.clear_cache(ACCOUNT, "2024-05") == 1
        assert await service.clear_cache(ACCOUNT) == 1
        assert await service.clear_cache("other") == 1
