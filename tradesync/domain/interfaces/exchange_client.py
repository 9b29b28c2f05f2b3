"""Exchange client protocol for paginated history downloads from a trading venue."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Protocol, runtime_checkable


class ProviderCode(str, Enum):
    """Normalized result code of a single venue call."""

    OK = "OK"
    NO_DATA = "NO_DATA"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    ACCOUNT_UNSUPPORTED = "ACCOUNT_UNSUPPORTED"
    RATE_LIMITED = "RATE_LIMITED"


@dataclass(frozen=True, slots=True)
class ExchangeAccount:
    """An account on a venue, as handed over by the host application."""

    account_id: str
    exchange: str = "bybit"
    name: str = ""


@dataclass(frozen=True, slots=True)
class FetchWindow:
    """
    One page request.

    start_ms/end_ms of None asks the venue for its default window
    (an unscoped query).
    """

    start_ms: Optional[int]
    end_ms: Optional[int]
    cursor: Optional[str] = None
    limit: int = 100

    def __post_init__(self) -> None:
        if self.start_ms is not None and self.end_ms is not None and self.start_ms > self.end_ms:
            raise ValueError(f"start_ms ({self.start_ms}) must be <= end_ms ({self.end_ms})")


@dataclass
class FetchPage:
    """Result of one venue call."""

    records: List[Any] = field(default_factory=list)
    next_cursor: Optional[str] = None
    provider_code: ProviderCode = ProviderCode.OK
    message: str = ""
    # Rows the venue returned before conversion; None means len(records)
    raw_count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.provider_code in (ProviderCode.OK, ProviderCode.NO_DATA)

    @property
    def row_count(self) -> int:
        return len(self.records) if self.raw_count is None else self.raw_count


@runtime_checkable
class ExchangeClient(Protocol):
    """
    Protocol for venue history endpoints.

    Implementations map one call onto the venue's endpoint and never raise
    for venue-side failures: transport failures, empty results, unsupported
    account tiers and rate limits are all reported via FetchPage.provider_code.

    Implementations:
    - BybitExchangeClient
    """

    async def fetch_executions(self, account: ExchangeAccount, window: FetchWindow) -> FetchPage:
        """
        Fetch one page of raw executions (TradeExecution records).

        Args:
            account: Account to query.
            window: Time window, cursor and page size.

        Returns:
            FetchPage; records newest-first as the venue returns them.
        """
        ...

    async def fetch_closed_positions(self, account: ExchangeAccount, window: FetchWindow) -> FetchPage:
        """Fetch one page of closed positions (ClosedPositionRecord records)."""
        ...
