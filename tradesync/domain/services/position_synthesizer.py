"""
Closed-position synthesis from raw executions.

Used when the venue's closed-P&L endpoint is missing or returns nothing for
an account tier. Positions are tracked per symbol as a running signed size
with a single-lot average cost basis:

- A fill in the direction of the open position (or from flat) adds to it.
  Long basis accumulates qty * price + fee; short basis accumulates the net
  proceeds qty * price - fee.
- A fill against the open position closes min(fill, open) and emits one
  ClosedPositionRecord:
    long closed by Sell:  pnl = (price - avg_cost) * closed_qty - fee
    short closed by Buy:  pnl = (avg_cost - price) * closed_qty - fee
  The whole fill fee is charged to the closing record. Fills of one order
  at the same millisecond (one taker order matched against several makers)
  fold into a single record, since that pair is the record identity.
- If the fill exceeds the open size, the residual opens a position on the
  other side with basis residual * price.

Pure and deterministic; output newest-first.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from itertools import groupby
from typing import Dict, Iterable, List, Tuple

from ...models.records import ClosedPositionRecord, RecordSource, TradeExecution, TradeSide
from ...utils.logging_setup import get_logger
from .record_merger import sort_newest_first

logger = get_logger(__name__)

# Quantities below this are treated as flat
QTY_EPSILON = 1e-12


@dataclass
class _OpenPosition:
    size: float = 0.0  # Signed: > 0 long, < 0 short
    basis: float = 0.0  # Total cost (long) or net proceeds (short), always >= 0

    @property
    def avg_price(self) -> float:
        return self.basis / abs(self.size) if abs(self.size) > QTY_EPSILON else 0.0

    def reset(self) -> None:
        self.size = 0.0
        self.basis = 0.0


class ClosedPositionSynthesizer:
    """Builds closed-position records from a chronological execution stream."""

    def synthesize(self, executions: Iterable[TradeExecution]) -> List[ClosedPositionRecord]:
        """
        Args:
            executions: Executions of any symbols, in any order.

        Returns:
            Synthesized closed positions, newest-first.
        """
        ordered = sorted(executions, key=lambda e: (e.symbol, e.exec_timestamp, e.exec_id))
        results: List[ClosedPositionRecord] = []

        for symbol, fills in groupby(ordered, key=lambda e: e.symbol):
            results.extend(self._synthesize_symbol(symbol, list(fills)))

        logger.debug(
            f"Synthesized {len(results)} closed positions from {len(ordered)} executions"
        )
        return sort_newest_first(results)

    def _synthesize_symbol(self, symbol: str, fills: List[TradeExecution]) -> List[ClosedPositionRecord]:
        position = _OpenPosition()
        closed: List[ClosedPositionRecord] = []
        by_identity: Dict[Tuple[str, int], int] = {}

        for fill in fills:
            if fill.qty <= QTY_EPSILON:
                continue
            direction = 1.0 if fill.side == TradeSide.BUY else -1.0

            if position.size * direction >= 0 or abs(position.size) <= QTY_EPSILON:
                self._add(position, fill, direction)
                continue

            open_qty = abs(position.size)
            close_qty = min(fill.qty, open_qty)
            avg = position.avg_price
            was_long = position.size > 0

            if was_long:
                pnl = (fill.price - avg) * close_qty - fill.fee
            else:
                pnl = (avg - fill.price) * close_qty - fill.fee

            record = ClosedPositionRecord(
                symbol=symbol,
                order_id=fill.order_id,
                side=fill.side,
                closed_qty=close_qty,
                avg_entry_price=avg,
                avg_exit_price=fill.price,
                closed_pnl=pnl,
                created_timestamp=fill.exec_timestamp,
                updated_timestamp=fill.exec_timestamp,
                source=RecordSource.SYNTHESIZED,
            )
            key = (fill.order_id, fill.exec_timestamp)
            if key in by_identity:
                index = by_identity[key]
                closed[index] = _combine(closed[index], record)
            else:
                by_identity[key] = len(closed)
                closed.append(record)

            residual = fill.qty - close_qty
            if residual > QTY_EPSILON:
                # Sign flip: basis rebuilt from the excess only
                position.size = direction * residual
                position.basis = residual * fill.price
            elif close_qty >= open_qty - QTY_EPSILON:
                position.reset()
            else:
                # Partial close keeps the average cost of the remainder
                position.size += direction * close_qty
                position.basis = avg * abs(position.size)

        return closed

    @staticmethod
    def _add(position: _OpenPosition, fill: TradeExecution, direction: float) -> None:
        if direction > 0:
            position.basis += fill.qty * fill.price + fill.fee
        else:
            position.basis += fill.qty * fill.price - fill.fee
        position.size += direction * fill.qty


def _combine(first: ClosedPositionRecord, second: ClosedPositionRecord) -> ClosedPositionRecord:
    """Fold two closes of the same order into one, quantity-weighting the prices."""
    qty = first.closed_qty + second.closed_qty
    return replace(
        first,
        closed_qty=qty,
        avg_entry_price=(first.avg_entry_price * first.closed_qty + second.avg_entry_price * second.closed_qty) / qty,
        avg_exit_price=(first.avg_exit_price * first.closed_qty + second.avg_exit_price * second.closed_qty) / qty,
        closed_pnl=first.closed_pnl + second.closed_pnl,
    )


def synthesize_closed_positions(executions: Iterable[TradeExecution]) -> List[ClosedPositionRecord]:
    """Module-level convenience wrapper around ClosedPositionSynthesizer."""
    return ClosedPositionSynthesizer().synthesize(executions)
