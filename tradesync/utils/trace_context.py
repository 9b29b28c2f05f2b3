"""
Trace context for correlating logs across a single sync run.

Provides:
- Unique run IDs (6-char hex) for each account sync
- Context propagation via contextvars (async-safe)
- Easy access to current run ID from any module

Usage:
    # In the coordinator (start of an account sync)
    with new_sync_run():
        await fetch_history()
        await write_partitions()

    # In any module
    from tradesync.utils.trace_context import get_run_id
    logger.info(f"[{get_run_id()}] Processing...")
"""

from __future__ import annotations

import secrets
from contextvars import ContextVar
from contextlib import contextmanager
from typing import Generator, Optional

_run_id: ContextVar[Optional[str]] = ContextVar("sync_run_id", default=None)

# Runs started in this session (for debugging)
_run_counter: int = 0


def generate_run_id() -> str:
    """Generate a new 6-character hex run ID."""
    return secrets.token_hex(3)


def get_run_id() -> str:
    """
    Get the current run ID.

    Returns:
        Current run ID, or "------" if no run is active.
    """
    run_id = _run_id.get()
    return run_id if run_id else "------"


@contextmanager
def new_sync_run() -> Generator[str, None, None]:
    """
    Context manager that scopes a new sync run ID.

    Yields:
        The new run ID.
    """
    global _run_counter
    _run_counter += 1

    run_id = generate_run_id()
    token = _run_id.set(run_id)

    try:
        yield run_id
    finally:
        _run_id.reset(token)


def get_run_counter() -> int:
    """Total number of sync runs created in this session."""
    return _run_counter


def reset_run_counter() -> None:
    """Reset the run counter (for testing)."""
    global _run_counter
    _run_counter = 0
