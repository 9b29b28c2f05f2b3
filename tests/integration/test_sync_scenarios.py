"""
End-to-end sync scenarios on a real on-disk store.

Wires LocalFileSystem + PartitionedStore + BybitExchangeClient (over a fake
signed transport) + ChunkedHistoryFetcher + CacheCoordinator + MigrationEngine
with a simulated clock.

Scenarios:
- A: first sync of an empty account with a 14-day lookback
- B: incremental update with nothing new still advances last_synced
- C: legacy migration of two accounts with 50 trades each
"""

import json
from datetime import timedelta

import pytest

from conftest import (
    START_MS,
    Base64Cipher,
    InMemoryKeyValueStore,
    bybit_closed_pnl_row,
    bybit_execution_row,
    make_closed,
    make_trade,
)

from tradesync.domain.interfaces.exchange_client import ExchangeAccount
from tradesync.infrastructure.adapters.bybit import BybitExchangeClient
from tradesync.infrastructure.adapters.bybit.adapter import CLOSED_PNL_PATH, EXECUTION_PATH
from tradesync.infrastructure.stores import LocalFileSystem, PartitionedStore
from tradesync.models.cache_state import CacheStatus
from tradesync.models.records import TradeSide
from tradesync.services import CacheCoordinator, ChunkedHistoryFetcher, MigrationEngine
from tradesync.utils.month_keys import MS_PER_DAY, MS_PER_HOUR, month_end_ms, month_start_ms

NOW = START_MS


class FakeBybitTransport:
    """Serves Bybit v5 responses from in-memory rows, paging by offset cursor."""

    DEFAULT_WINDOW_MS = 7 * MS_PER_DAY

    def __init__(self, clock):
        self.clock = clock
        self.rows = {EXECUTION_PATH: [], CLOSED_PNL_PATH: []}
        self.requests = []

    def add_execution(self, trade):
        self.rows[EXECUTION_PATH].append(bybit_execution_row(trade))

    def add_closed(self, position):
        self.rows[CLOSED_PNL_PATH].append(bybit_closed_pnl_row(position))

    async def get(self, account, path, params):
        self.requests.append((account.account_id, path, dict(params)))
        end = params.get("endTime", self.clock.now_ms())
        start = params.get("startTime", end - self.DEFAULT_WINDOW_MS)
        time_field = "execTime" if path == EXECUTION_PATH else "updatedTime"
        matching = sorted(
            (r for r in self.rows[path] if start <= int(r[time_field]) <= end),
            key=lambda r: int(r[time_field]),
            reverse=True,
        )
        offset = int(params.get("cursor") or 0)
        limit = params["limit"]
        page = matching[offset:offset + limit]
        more = offset + limit < len(matching)
        return {
            "retCode": 0,
            "retMsg": "OK",
            "result": {"list": page, "nextPageCursor": str(offset + limit) if more else ""},
        }

    def windows(self, path):
        return [(p.get("startTime"), p.get("endTime")) for _, called, p in self.requests if called == path]


@pytest.fixture
def disk_store(tmp_path, clock):
    fs = LocalFileSystem(tmp_path)
    return fs, PartitionedStore(fs, clock)


@pytest.fixture
def transport(clock):
    return FakeBybitTransport(clock)


@pytest.fixture
def coordinator(disk_store, transport, clock, sync_config):
    _, store = disk_store
    fetcher = ChunkedHistoryFetcher(BybitExchangeClient(transport), clock, sync_config)
    return CacheCoordinator(store, fetcher, clock, sync_config)


class TestScenarioFirstSync:
    """Scenario A: empty cache, 14-day lookback in two 7-day chunks."""

    @pytest.mark.asyncio
    async def test_empty_to_fresh(self, coordinator, disk_store, transport, tmp_path):
        _, store = disk_store
        account = ExchangeAccount("acct-a")
        transport.add_execution(make_trade("e1", NOW - 2 * MS_PER_DAY, TradeSide.BUY, qty=1, price=100))
        transport.add_execution(make_trade("e2", NOW - 9 * MS_PER_DAY, TradeSide.SELL, qty=1, price=105))
        transport.add_closed(make_closed("o1", NOW - 2 * MS_PER_DAY, pnl=12.5))
        events = []
        coordinator.add_observer(events.append)

        assert (await coordinator.get_cache_state("acct-a")).status == CacheStatus.EMPTY
        history = await coordinator.get_history(account)

        assert transport.windows(EXECUTION_PATH) == [
            (NOW - 7 * MS_PER_DAY, NOW),
            (NOW - 14 * MS_PER_DAY, NOW - 7 * MS_PER_DAY),
        ]
        assert [t.exec_id for t in history.trades] == ["e1", "e2"]
        assert [p.closed_pnl for p in history.closed_positions] == [12.5]
        assert history.state.status == CacheStatus.FRESH
        assert history.state.is_complete
        assert events[-1].is_complete
        assert events[-1].total_chunks == 4

        # Partitions on disk carry verifiable checksums
        partition = json.loads((tmp_path / "trading-data" / "acct-a" / "trades" / "2024-06.json").read_text())
        assert len(partition["records"]) == 2
        assert await store.verify_account("acct-a") == []

        # Every stored record falls inside the metadata range
        metadata = await store.get_metadata("acct-a")
        low = month_start_ms(metadata.data_range.start_month)
        high = month_end_ms(metadata.data_range.end_month)
        assert all(low <= t.exec_timestamp <= high for t in history.trades)


class TestScenarioIncremental:
    """Scenario B: incremental update one hour after the last sync."""

    @pytest.mark.asyncio
    async def test_zero_records_still_advances_last_synced(self, coordinator, disk_store, transport):
        _, store = disk_store
        account = ExchangeAccount("acct-b")
        await store.record_sync("acct-b", NOW - MS_PER_HOUR, complete=True)

        outcome = await coordinator.incremental_update(account)

        window = (NOW - 2 * MS_PER_DAY - MS_PER_HOUR, NOW)
        assert transport.windows(EXECUTION_PATH) == [window]
        assert transport.windows(CLOSED_PNL_PATH) == [window]
        assert outcome.trades_added == 0
        assert outcome.complete
        metadata = await store.get_metadata("acct-b")
        assert metadata.last_synced == NOW
        assert (await coordinator.get_cache_state("acct-b")).status == CacheStatus.FRESH

    @pytest.mark.asyncio
    async def test_stale_cache_runs_incremental(self, coordinator, disk_store, transport, clock):
        _, store = disk_store
        account = ExchangeAccount("acct-b")
        transport.add_execution(make_trade("e1", NOW - MS_PER_DAY))
        transport.add_closed(make_closed("o1", NOW - MS_PER_DAY))
        await coordinator.get_history(account)

        clock.advance_by(timedelta(hours=25))
        transport.requests.clear()

        history = await coordinator.get_history(account)

        assert transport.windows(EXECUTION_PATH) == [(NOW - 2 * MS_PER_DAY, clock.now_ms())]
        assert [t.exec_id for t in history.trades] == ["e1"]
        assert (await store.get_metadata("acct-b")).last_synced == clock.now_ms()
        assert history.state.status == CacheStatus.FRESH


class TestScenarioMigration:
    """Scenario C: two legacy accounts with 50 trades each."""

    @pytest.mark.asyncio
    async def test_migrates_two_accounts(self, disk_store, clock, migration_config, tmp_path):
        fs, store = disk_store
        legacy = {}
        for account_id in ("legacy-1", "legacy-2"):
            trades = [
                make_trade(f"{account_id}-e{i}", NOW - i * 2 * MS_PER_DAY - 1_000)
                for i in range(50)
            ]
            legacy[account_id] = {
                "accountId": account_id,
                "trades": [bybit_execution_row(t) for t in trades],
                "closedPnL": [],
                "lastUpdated": NOW - MS_PER_HOUR,
                "dataRange": None,
                "isComplete": True,
            }
        kv_original = Base64Cipher.encrypt(json.dumps(legacy))
        kv_store = InMemoryKeyValueStore({
            migration_config.legacy_historical_key: kv_original,
        })
        engine = MigrationEngine(kv_store, Base64Cipher(), store, fs, clock, migration_config)

        result = await engine.migrate()

        assert result.trades == 100
        backup = json.loads((tmp_path / result.backup_path).read_text())
        assert backup["historical_data"] == kv_original
        assert sorted(await store.list_accounts()) == ["legacy-1", "legacy-2"]
        for account_id in ("legacy-1", "legacy-2"):
            metadata = await store.get_metadata(account_id)
            trades = await store.get_trades_in_range(account_id, 0, NOW)
            assert len(trades) == 50
            low = month_start_ms(metadata.data_range.start_month)
            high = month_end_ms(metadata.data_range.end_month)
            assert all(low <= t.exec_timestamp <= high for t in trades)
            assert sum(s.trades_count for s in metadata.monthly_stats.values()) == 50
            assert metadata.last_synced == NOW - MS_PER_HOUR

        assert migration_config.legacy_historical_key not in kv_store.data
        assert kv_store.data[migration_config.flag_key]["completed"] is True
        assert not await engine.needs_migration()
