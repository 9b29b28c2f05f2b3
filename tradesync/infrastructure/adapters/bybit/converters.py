"""
Bybit data converters.

Converts Bybit v5 payloads (and the legacy cache, which stored the same
payloads verbatim) to internal history records. Bybit sends numbers as
strings and timestamps as epoch-millisecond strings.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
from ....utils.logging_setup import get_logger

from ....models.records import ClosedPositionRecord, RecordSource, TradeExecution, TradeSide


logger = get_logger(__name__)


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(float(value))


def _timestamp_ms(value: Any) -> int:
    """Epoch-ms field that must be present and positive."""
    ts = _to_int(value)
    if ts <= 0:
        raise ValueError(f"missing or invalid timestamp {value!r}")
    return ts


def convert_execution(row: Dict[str, Any]) -> Optional[TradeExecution]:
    """
    Convert a /v5/execution/list row to TradeExecution.

    Args:
        row: Execution row (execId, execPrice, execQty, execTime, ...).

    Returns:
        TradeExecution or None if the row is malformed.
    """
    try:
        return TradeExecution(
            symbol=row["symbol"],
            order_id=str(row.get("orderId", "")),
            exec_id=str(row["execId"]),
            side=TradeSide.parse(row["side"]),
            qty=_to_float(row.get("execQty")),
            price=_to_float(row.get("execPrice")),
            fee=_to_float(row.get("execFee")),
            exec_timestamp=_timestamp_ms(row.get("execTime")),
            is_maker=bool(row.get("isMaker", False)),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Failed to convert Bybit execution: {e}, row={row}")
        return None


def convert_closed_pnl(row: Dict[str, Any]) -> Optional[ClosedPositionRecord]:
    """
    Convert a /v5/position/closed-pnl row to ClosedPositionRecord.

    closedSize is the closed quantity; qty is the closing order size and is
    only used when closedSize is missing.
    """
    try:
        closed_qty = row.get("closedSize")
        if closed_qty in (None, ""):
            closed_qty = row.get("qty")
        created = _to_int(row.get("createdTime"))
        updated = _to_int(row.get("updatedTime"), default=created)
        if created <= 0 and updated <= 0:
            raise ValueError("row has neither createdTime nor updatedTime")
        return ClosedPositionRecord(
            symbol=row["symbol"],
            order_id=str(row.get("orderId", "")),
            side=TradeSide.parse(row["side"]),
            closed_qty=_to_float(closed_qty),
            avg_entry_price=_to_float(row.get("avgEntryPrice")),
            avg_exit_price=_to_float(row.get("avgExitPrice")),
            closed_pnl=_to_float(row.get("closedPnl")),
            created_timestamp=created,
            updated_timestamp=updated,
            source=RecordSource.PROVIDER,
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Failed to convert Bybit closed P&L: {e}, row={row}")
        return None


def convert_executions(rows: List[Dict[str, Any]]) -> List[TradeExecution]:
    return [t for t in (convert_execution(r) for r in rows or []) if t is not None]


def convert_closed_pnls(rows: List[Dict[str, Any]]) -> List[ClosedPositionRecord]:
    return [p for p in (convert_closed_pnl(r) for r in rows or []) if p is not None]
