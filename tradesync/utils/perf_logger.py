"""
Operation timing for the perf log category.

    async with log_timing_async("full_fetch", extra={"account": account_id}) as ctx:
        result = await fetcher.fetch_history(...)
        ctx["records"] = len(result.executions.records)

The level escalates with duration: DEBUG under the warn threshold, WARNING
up to the error threshold, ERROR beyond it.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from .logging_setup import LOGGER_ROOT
from .trace_context import get_run_id

perf_logger = logging.getLogger(f"{LOGGER_ROOT}.perf")


@dataclass(frozen=True)
class TimingThresholds:
    warn_ms: float
    error_ms: float


PARTITION_IO = TimingThresholds(warn_ms=500, error_ms=2_000)
# Full fetches are dominated by the fixed request delays between pages
FULL_FETCH = TimingThresholds(warn_ms=30_000, error_ms=120_000)
INCREMENTAL = TimingThresholds(warn_ms=5_000, error_ms=30_000)


@asynccontextmanager
async def log_timing_async(
    operation: str,
    thresholds: TimingThresholds = PARTITION_IO,
    extra: Optional[Dict[str, Any]] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Time the enclosed block and log it, also when it raises.

    Yields a dict the block can add fields to; they are logged under
    ``data`` together with the operation name, duration and run ID.
    """
    context: Dict[str, Any] = dict(extra or {})
    started = time.perf_counter()
    try:
        yield context
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        data = {"run": get_run_id(), "operation": operation, "duration_ms": round(elapsed_ms, 2), **context}

        if elapsed_ms >= thresholds.error_ms:
            level, note = logging.ERROR, " SLOW"
        elif elapsed_ms >= thresholds.warn_ms:
            level, note = logging.WARNING, " slow"
        else:
            level, note = logging.DEBUG, ""
        perf_logger.log(level, f"{operation} took {elapsed_ms:.1f}ms{note}", extra={"data": data})


def log_full_fetch_timing(account_id: str):
    return log_timing_async("full_fetch", FULL_FETCH, extra={"account": account_id})


def log_incremental_timing(account_id: str):
    return log_timing_async("incremental_update", INCREMENTAL, extra={"account": account_id})
