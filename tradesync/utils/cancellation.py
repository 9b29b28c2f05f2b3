"""Cooperative cancellation for in-flight history fetches."""

from __future__ import annotations

from typing import Optional

from ..domain.exceptions import FetchCancelledError


class CancellationToken:
    """
    Flag checked by the fetcher before every venue call.

    The coordinator cancels an account's token when a newer refresh for the
    same account starts; the superseded fetch stops at its next suspension
    point with FetchCancelledError.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self._cancelled = False
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "superseded") -> None:
        self._cancelled = True
        self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            target = f"fetch {self.label}" if self.label else "fetch"
            raise FetchCancelledError(f"{target} cancelled: {self._reason}")
