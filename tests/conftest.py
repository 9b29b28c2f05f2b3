"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from tradesync.config.models import MigrationConfig, SummaryConfig, SyncConfig
from tradesync.domain.clock import SimulatedClock
from tradesync.domain.interfaces.exchange_client import (
    ExchangeAccount,
    FetchPage,
    FetchWindow,
    ProviderCode,
)
from tradesync.infrastructure.stores.partitioned_store import PartitionedStore
from tradesync.models.records import (
    ClosedPositionRecord,
    RecordSource,
    TradeExecution,
    TradeSide,
)

# 2024-06-15 12:00:00 UTC
START_TIME = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
START_MS = int(START_TIME.timestamp() * 1000)


# =============================================================================
# Fakes
# =============================================================================

class InMemoryFileSystem:
    """FileSystem backed by a dict of path -> content."""

    def __init__(self) -> None:
        self.files: Dict[str, str] = {}
        self.directories: set = set()

    async def read_file(self, path: str) -> Optional[str]:
        return self.files.get(path)

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    async def create_directory(self, path: str) -> None:
        self.directories.add(path.rstrip("/"))

    async def delete_file(self, path: str) -> None:
        self.files.pop(path, None)

    async def move_file(self, source: str, destination: str) -> None:
        if source not in self.files:
            raise FileNotFoundError(source)
        self.files[destination] = self.files.pop(source)

    async def delete_directory(self, path: str) -> None:
        prefix = path.rstrip("/") + "/"
        for name in [p for p in self.files if p.startswith(prefix)]:
            del self.files[name]
        self.directories = {d for d in self.directories if d != path and not d.startswith(prefix)}

    async def exists(self, path: str) -> bool:
        if path in self.files or path in self.directories:
            return True
        prefix = path.rstrip("/") + "/"
        return any(p.startswith(prefix) for p in self.files)

    async def list_directory(self, path: str) -> List[str]:
        prefix = path.rstrip("/") + "/"
        names = set()
        for name in list(self.files) + list(self.directories):
            if name.startswith(prefix):
                names.add(name[len(prefix):].split("/")[0])
        return sorted(names)


class InMemoryKeyValueStore:
    """KeyValueStore backed by a dict."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = dict(data or {})

    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class Base64Cipher:
    """Stand-in for the host's secret layer: base64 'encryption'."""

    @staticmethod
    def encrypt(plaintext: str) -> str:
        return "enc:" + base64.b64encode(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext.startswith("enc:"):
            raise ValueError("not encrypted")
        return base64.b64decode(ciphertext[4:]).decode("utf-8")


Responder = Callable[[str, ExchangeAccount, FetchWindow], Optional[FetchPage]]


class ScriptedExchangeClient:
    """
    ExchangeClient serving in-memory history.

    Records are filtered by the requested window (an unscoped window covers
    the last 7 days, like the venue default) and paged by an integer offset
    cursor. A responder hook can override any call with a canned page.
    """

    DEFAULT_WINDOW_MS = 7 * 86_400_000

    def __init__(
        self,
        clock: SimulatedClock,
        executions: Optional[List[TradeExecution]] = None,
        closed_positions: Optional[List[ClosedPositionRecord]] = None,
    ) -> None:
        self.clock = clock
        self.executions: List[TradeExecution] = list(executions or [])
        self.closed_positions: List[ClosedPositionRecord] = list(closed_positions or [])
        self.calls: List[Tuple[str, str, FetchWindow]] = []
        self.responder: Optional[Responder] = None
        self.gate: Optional[asyncio.Event] = None

    async def fetch_executions(self, account: ExchangeAccount, window: FetchWindow) -> FetchPage:
        return await self._serve("executions", account, window, self.executions)

    async def fetch_closed_positions(self, account: ExchangeAccount, window: FetchWindow) -> FetchPage:
        return await self._serve("closed_positions", account, window, self.closed_positions)

    def calls_for(self, endpoint: str) -> List[FetchWindow]:
        return [w for e, _, w in self.calls if e == endpoint]

    async def _serve(
        self,
        endpoint: str,
        account: ExchangeAccount,
        window: FetchWindow,
        source: List[Any],
    ) -> FetchPage:
        self.calls.append((endpoint, account.account_id, window))
        if self.gate is not None:
            await self.gate.wait()

        if self.responder is not None:
            page = self.responder(endpoint, account, window)
            if page is not None:
                return page

        if window.start_ms is None:
            end = self.clock.now_ms()
            start = end - self.DEFAULT_WINDOW_MS
        else:
            start, end = window.start_ms, window.end_ms
        matching = sorted(
            (r for r in source if start <= r.timestamp_ms <= end),
            key=lambda r: r.timestamp_ms,
            reverse=True,
        )

        offset = int(window.cursor) if window.cursor else 0
        page_records = matching[offset:offset + window.limit]
        next_offset = offset + window.limit
        next_cursor = str(next_offset) if next_offset < len(matching) else None
        return FetchPage(
            records=page_records,
            next_cursor=next_cursor,
            provider_code=ProviderCode.OK if page_records else ProviderCode.NO_DATA,
        )


# =============================================================================
# Record factories
# =============================================================================

def make_trade(
    exec_id: str,
    timestamp_ms: int,
    side: TradeSide = TradeSide.BUY,
    qty: float = 1.0,
    price: float = 100.0,
    fee: float = 0.0,
    symbol: str = "BTCUSDT",
    order_id: Optional[str] = None,
) -> TradeExecution:
    return TradeExecution(
        symbol=symbol,
        order_id=order_id or f"ord-{exec_id}",
        exec_id=exec_id,
        side=side,
        qty=qty,
        price=price,
        fee=fee,
        exec_timestamp=timestamp_ms,
    )


def make_closed(
    order_id: str,
    timestamp_ms: int,
    pnl: float = 10.0,
    symbol: str = "BTCUSDT",
    source: RecordSource = RecordSource.PROVIDER,
) -> ClosedPositionRecord:
    return ClosedPositionRecord(
        symbol=symbol,
        order_id=order_id,
        side=TradeSide.SELL,
        closed_qty=1.0,
        avg_entry_price=100.0,
        avg_exit_price=100.0 + pnl,
        closed_pnl=pnl,
        created_timestamp=timestamp_ms,
        updated_timestamp=timestamp_ms,
        source=source,
    )


def bybit_execution_row(trade: TradeExecution) -> Dict[str, Any]:
    """Bybit v5 /execution/list row for a trade."""
    return {
        "symbol": trade.symbol,
        "orderId": trade.order_id,
        "execId": trade.exec_id,
        "side": trade.side.value,
        "execQty": str(trade.qty),
        "execPrice": str(trade.price),
        "execFee": str(trade.fee),
        "execTime": str(trade.exec_timestamp),
        "isMaker": trade.is_maker,
    }


def bybit_closed_pnl_row(position: ClosedPositionRecord) -> Dict[str, Any]:
    """Bybit v5 /position/closed-pnl row for a closed position."""
    return {
        "symbol": position.symbol,
        "orderId": position.order_id,
        "side": position.side.value,
        "qty": str(position.closed_qty),
        "closedSize": str(position.closed_qty),
        "avgEntryPrice": str(position.avg_entry_price),
        "avgExitPrice": str(position.avg_exit_price),
        "closedPnl": str(position.closed_pnl),
        "createdTime": str(position.created_timestamp),
        "updatedTime": str(position.updated_timestamp),
    }


def encrypted_json(payload: Any) -> str:
    return Base64Cipher.encrypt(json.dumps(payload))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """Simulated clock starting at 2024-06-15 12:00 UTC."""
    return SimulatedClock(start_time=START_TIME)


@pytest.fixture
def file_system():
    """Empty in-memory file system."""
    return InMemoryFileSystem()


@pytest.fixture
def store(file_system, clock):
    """Partitioned store over the in-memory file system."""
    return PartitionedStore(file_system, clock)


@pytest.fixture
def sync_config():
    """Sync configuration without request pacing."""
    return SyncConfig(
        lookback_days=14,
        chunk_days=7,
        page_limit=100,
        max_pages_per_chunk=5,
        request_delay_ms=0,
        inter_account_delay_ms=0,
        freshness_hours=24,
        overlap_days=2,
        fallback_windows_days=[None, 30, 90, 730],
        fallback_max_pages=2,
    )


@pytest.fixture
def summary_config():
    return SummaryConfig(expiry_hours=6, cache_version="1.0.0")


@pytest.fixture
def migration_config():
    return MigrationConfig()


@pytest.fixture
def exchange_client(clock):
    """Scripted venue client with no history."""
    return ScriptedExchangeClient(clock)


@pytest.fixture
def account():
    return ExchangeAccount(account_id="acct-1", name="Main")


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def cipher():
    return Base64Cipher()
