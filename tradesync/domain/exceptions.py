"""
Domain exceptions for tradesync.

Implements a hierarchy distinguishing between recoverable runtime errors
(a chunk that failed to download, a rate-limited page, a superseded refresh)
and fatal errors (configuration issues) that require operator intervention.

Chunk-level errors are raised by the fetcher's page loop and caught one level
up, so a sync always completes with gaps rather than failing as a whole.
"""

from __future__ import annotations

from typing import Optional

from .interfaces.exchange_client import FetchPage, ProviderCode


class TradeSyncError(Exception):
    """Base class for all tradesync domain exceptions."""
    pass


class RecoverableError(TradeSyncError):
    """
    Errors the sync pipeline can recover from without restarting.

    Examples:
    - Temporary network disconnection
    - Venue rate limit on one page
    - Closed-position endpoint unsupported for an account tier
    """
    pass


class FatalError(TradeSyncError):
    """
    Critical errors requiring operator intervention.

    Examples:
    - Invalid configuration
    - Missing required components
    """
    pass


class TransportError(RecoverableError):
    """Network-level failure talking to the venue."""
    pass


class ProviderError(RecoverableError):
    """The venue answered with a non-OK result code."""

    def __init__(self, message: str, code: Optional[ProviderCode] = None):
        super().__init__(message)
        self.code = code


class RetriableProviderError(ProviderError):
    """Generic venue-side failure; the same window may succeed later."""
    pass


class AccountUnsupportedError(ProviderError):
    """The endpoint is not available for this account (tier / unified account)."""
    pass


class RateLimitedError(ProviderError):
    """The venue rejected the call because of request rate."""
    pass


class FetchCancelledError(RecoverableError):
    """A newer refresh for the same account superseded this one."""
    pass


class ConfigurationError(FatalError):
    """Invalid system configuration."""
    pass


class MigrationFailure(TradeSyncError):
    """
    Legacy data migration failed before the legacy keys were removed.

    The legacy blobs are left untouched; migration may be re-invoked.
    """
    pass


class IntegrityWarning(UserWarning):
    """A partition's stored checksum does not match its content."""
    pass


def error_for_page(page: FetchPage) -> Optional[TradeSyncError]:
    """
    Classify a non-OK page into the error taxonomy.

    Returns None for OK and NO_DATA pages.
    """
    code = page.provider_code
    message = page.message or code.value

    if code in (ProviderCode.OK, ProviderCode.NO_DATA):
        return None
    if code == ProviderCode.TRANSPORT_ERROR:
        return TransportError(message)
    if code == ProviderCode.ACCOUNT_UNSUPPORTED:
        return AccountUnsupportedError(message, code)
    if code == ProviderCode.RATE_LIMITED:
        return RateLimitedError(message, code)
    return RetriableProviderError(message, code)
