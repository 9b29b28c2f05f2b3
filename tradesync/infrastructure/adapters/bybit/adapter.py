"""
Bybit v5 ExchangeClient adapter.

Thin endpoint mapping over an injected signing transport: builds query
parameters, converts payloads and classifies retCode into ProviderCode.
Chunking, pagination limits, pacing and fallback live in
ChunkedHistoryFetcher, not here.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from ....domain.interfaces.exchange_client import ExchangeAccount, FetchPage, FetchWindow, ProviderCode
from ....utils.logging_setup import get_logger
from .converters import convert_closed_pnls, convert_executions

logger = get_logger(__name__)


EXECUTION_PATH = "/v5/execution/list"
CLOSED_PNL_PATH = "/v5/position/closed-pnl"
DEFAULT_CATEGORY = "linear"

# retCodes meaning the endpoint is not available for this account type/tier
ACCOUNT_UNSUPPORTED_CODES = frozenset({10028, 182200, 110067})
RATE_LIMITED_CODES = frozenset({10006, 10018})


@runtime_checkable
class BybitTransport(Protocol):
    """Signed HTTP GET against the Bybit REST API (host-provided)."""

    async def get(self, account: ExchangeAccount, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Returns:
            Decoded JSON response body ({retCode, retMsg, result, ...}).

        Raises:
            Any exception on network / HTTP failure.
        """
        ...


def classify_ret_code(ret_code: int) -> ProviderCode:
    """Map a Bybit retCode to a ProviderCode (0 is OK)."""
    if ret_code == 0:
        return ProviderCode.OK
    if ret_code in ACCOUNT_UNSUPPORTED_CODES:
        return ProviderCode.ACCOUNT_UNSUPPORTED
    if ret_code in RATE_LIMITED_CODES:
        return ProviderCode.RATE_LIMITED
    return ProviderCode.PROVIDER_ERROR


class BybitExchangeClient:
    """
    ExchangeClient for Bybit unified/contract accounts.

    Usage:
        client = BybitExchangeClient(transport)
        page = await client.fetch_executions(account, FetchWindow(start_ms, end_ms))
    """

    def __init__(self, transport: BybitTransport, category: str = DEFAULT_CATEGORY):
        self._transport = transport
        self._category = category

    async def fetch_executions(self, account: ExchangeAccount, window: FetchWindow) -> FetchPage:
        return await self._fetch(account, EXECUTION_PATH, window, convert_executions)

    async def fetch_closed_positions(self, account: ExchangeAccount, window: FetchWindow) -> FetchPage:
        return await self._fetch(account, CLOSED_PNL_PATH, window, convert_closed_pnls)

    def build_params(self, window: FetchWindow) -> Dict[str, Any]:
        params: Dict[str, Any] = {"category": self._category, "limit": window.limit}
        if window.start_ms is not None:
            params["startTime"] = window.start_ms
        if window.end_ms is not None:
            params["endTime"] = window.end_ms
        if window.cursor:
            params["cursor"] = window.cursor
        return params

    async def _fetch(
        self,
        account: ExchangeAccount,
        path: str,
        window: FetchWindow,
        convert: Callable[[List[Dict[str, Any]]], List[Any]],
    ) -> FetchPage:
        params = self.build_params(window)
        try:
            response = await self._transport.get(account, path, params)
        except Exception as e:
            logger.warning(f"Bybit {path} transport failure for {account.account_id}: {e}")
            return FetchPage(provider_code=ProviderCode.TRANSPORT_ERROR, message=str(e))

        try:
            ret_code = int(response.get("retCode", -1))
        except (TypeError, ValueError):
            ret_code = -1
        message = str(response.get("retMsg", ""))
        code = classify_ret_code(ret_code)

        if code != ProviderCode.OK:
            logger.warning(
                f"Bybit {path} for {account.account_id} returned retCode={ret_code} ({code.value}): {message}"
            )
            return FetchPage(provider_code=code, message=f"{ret_code}: {message}")

        result = response.get("result") or {}
        rows = result.get("list") or []
        records = convert(rows)
        next_cursor: Optional[str] = result.get("nextPageCursor") or None
        dropped = len(rows) - len(records)
        if dropped:
            logger.warning(f"Bybit {path} for {account.account_id}: dropped {dropped} malformed of {len(rows)} rows")

        logger.debug(f"Bybit {path} for {account.account_id}: {len(records)} rows, cursor={next_cursor!r}")
        return FetchPage(
            records=records,
            next_cursor=next_cursor,
            provider_code=ProviderCode.OK if rows else ProviderCode.NO_DATA,
            message=message,
            raw_count=len(rows),
        )
