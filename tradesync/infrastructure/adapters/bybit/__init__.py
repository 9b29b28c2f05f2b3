"""Bybit v5 adapter."""

from .adapter import BybitExchangeClient, BybitTransport, classify_ret_code
from .converters import convert_closed_pnl, convert_execution

__all__ = [
    "BybitExchangeClient",
    "BybitTransport",
    "classify_ret_code",
    "convert_closed_pnl",
    "convert_execution",
]
