"""
Identity-keyed record merge.

Existing records seed a map keyed by identity; incoming records overwrite
entries with the same key (newer data wins). The result is sorted
newest-first, ties broken by identity key so the output is deterministic.

merge_records(merge_records(P, B), B) == merge_records(P, B).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, TypeVar

from ...models.records import HistoryRecord

R = TypeVar("R", bound=HistoryRecord)


def _sort_key(record: HistoryRecord) -> tuple:
    key = record.identity_key
    # Identity keys of one record kind share a type; normalize to a comparable tuple
    return (record.timestamp_ms, key if isinstance(key, tuple) else (key,))


def merge_records(existing: Iterable[R], new: Iterable[R]) -> List[R]:
    """
    Upsert `new` into `existing`, keep last.

    Args:
        existing: Records already stored (any order).
        new: Incoming records (any order, may contain duplicates).

    Returns:
        Deduplicated records, newest-first.
    """
    by_key: Dict[Any, R] = {}
    for record in existing:
        by_key[record.identity_key] = record
    for record in new:
        by_key[record.identity_key] = record
    return sorted(by_key.values(), key=_sort_key, reverse=True)


def sort_newest_first(records: Iterable[R]) -> List[R]:
    return sorted(records, key=_sort_key, reverse=True)


def count_new(existing: Iterable[R], new: Iterable[R]) -> int:
    """Number of identity keys in `new` not present in `existing`."""
    known = {r.identity_key for r in existing}
    return len({r.identity_key for r in new} - known)
