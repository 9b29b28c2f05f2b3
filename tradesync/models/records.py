"""Trade history records persisted in monthly partitions.

Terminology:
- Execution (Trade/Fill): one fill on the venue. Immutable, identified by exec_id.
- Closed position: realized P&L for a (partially) closed position, either
  reported by the venue or synthesized locally from executions.
- Equity snapshot: account equity at one point in time.

Every record exposes `identity_key` (dedup key) and `timestamp_ms`
(partition and sort key), and round-trips through to_dict()/from_dict().
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Protocol, Tuple, Union


class TradeSide(str, Enum):
    """Execution side, using the venue's spelling."""
    BUY = "Buy"
    SELL = "Sell"

    @classmethod
    def parse(cls, value: str) -> TradeSide:
        normalized = str(value).strip().lower()
        if normalized == "buy":
            return cls.BUY
        if normalized == "sell":
            return cls.SELL
        raise ValueError(f"Unknown trade side: {value!r}")


class RecordSource(str, Enum):
    """Where a closed-position record came from."""
    PROVIDER = "provider"
    SYNTHESIZED = "synthesized"


IdentityKey = Union[str, int, Tuple[str, str, int]]


class HistoryRecord(Protocol):
    """Anything the merger and the partitioned store can handle."""

    @property
    def identity_key(self) -> Any:
        ...

    @property
    def timestamp_ms(self) -> int:
        ...

    def to_dict(self) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class TradeExecution:
    """A single fill. Immutable once recorded."""

    symbol: str
    order_id: str
    exec_id: str  # Unique per account + venue
    side: TradeSide
    qty: float
    price: float
    fee: float
    exec_timestamp: int  # Epoch ms
    is_maker: bool = False

    @property
    def identity_key(self) -> str:
        return self.exec_id

    @property
    def timestamp_ms(self) -> int:
        return self.exec_timestamp

    @property
    def notional(self) -> float:
        return self.qty * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "order_id": self.order_id,
            "exec_id": self.exec_id,
            "side": self.side.value,
            "qty": self.qty,
            "price": self.price,
            "fee": self.fee,
            "exec_timestamp": self.exec_timestamp,
            "is_maker": self.is_maker,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TradeExecution:
        return cls(
            symbol=data["symbol"],
            order_id=str(data.get("order_id", "")),
            exec_id=str(data["exec_id"]),
            side=TradeSide.parse(data["side"]),
            qty=float(data["qty"]),
            price=float(data["price"]),
            fee=float(data.get("fee", 0.0)),
            exec_timestamp=int(data["exec_timestamp"]),
            is_maker=bool(data.get("is_maker", False)),
        )


@dataclass(frozen=True)
class ClosedPositionRecord:
    """
    Realized P&L for a closed (or partially closed) position.

    `side` follows the venue convention: the side of the closing order
    (a long is closed by a Sell).
    """

    symbol: str
    order_id: str
    side: TradeSide
    closed_qty: float
    avg_entry_price: float
    avg_exit_price: float
    closed_pnl: float
    created_timestamp: int  # Epoch ms
    updated_timestamp: int  # Epoch ms, 0 when the venue omits it
    source: RecordSource = RecordSource.PROVIDER

    @property
    def identity_key(self) -> Tuple[str, str, int]:
        return (self.order_id, self.symbol, self.timestamp_ms)

    @property
    def timestamp_ms(self) -> int:
        return self.updated_timestamp or self.created_timestamp

    @property
    def is_win(self) -> bool:
        return self.closed_pnl > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "order_id": self.order_id,
            "side": self.side.value,
            "closed_qty": self.closed_qty,
            "avg_entry_price": self.avg_entry_price,
            "avg_exit_price": self.avg_exit_price,
            "closed_pnl": self.closed_pnl,
            "created_timestamp": self.created_timestamp,
            "updated_timestamp": self.updated_timestamp,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ClosedPositionRecord:
        return cls(
            symbol=data["symbol"],
            order_id=str(data.get("order_id", "")),
            side=TradeSide.parse(data["side"]),
            closed_qty=float(data["closed_qty"]),
            avg_entry_price=float(data.get("avg_entry_price", 0.0)),
            avg_exit_price=float(data.get("avg_exit_price", 0.0)),
            closed_pnl=float(data["closed_pnl"]),
            created_timestamp=int(data["created_timestamp"]),
            updated_timestamp=int(data.get("updated_timestamp") or 0),
            source=RecordSource(data.get("source", RecordSource.PROVIDER.value)),
        )


@dataclass(frozen=True)
class EquitySnapshot:
    """Total and per-sub-account equity at one instant."""

    timestamp: int  # Epoch ms
    total_equity: float
    account_equities: Dict[str, float] = field(default_factory=dict)

    def __hash__(self) -> int:
        return hash((self.timestamp, self.total_equity))

    @property
    def identity_key(self) -> int:
        return self.timestamp

    @property
    def timestamp_ms(self) -> int:
        return self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "total_equity": self.total_equity,
            "account_equities": dict(self.account_equities),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EquitySnapshot:
        # Legacy equity history uses camelCase keys
        total = data.get("total_equity", data.get("totalEquity", 0.0))
        accounts = data.get("account_equities", data.get("accounts", {})) or {}
        return cls(
            timestamp=int(data["timestamp"]),
            total_equity=float(total),
            account_equities={str(k): float(v) for k, v in accounts.items()},
        )
