"""Calendar-month helpers for partition keys ("YYYY-MM", always UTC)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Tuple

MS_PER_DAY = 86_400_000
MS_PER_HOUR = 3_600_000


def month_key(timestamp_ms: int) -> str:
    """Partition key for an epoch-ms timestamp."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return f"{dt.year:04d}-{dt.month:02d}"


def parse_month_key(key: str) -> Tuple[int, int]:
    """
    Raises:
        ValueError: If key is not "YYYY-MM".
    """
    try:
        year_s, month_s = key.split("-")
        year, month = int(year_s), int(month_s)
    except ValueError as e:
        raise ValueError(f"Invalid month key: {key!r}") from e
    if not 1 <= month <= 12 or len(year_s) != 4:
        raise ValueError(f"Invalid month key: {key!r}")
    return year, month


def shift_month(key: str, months: int) -> str:
    """Month key `months` months after (negative: before) `key`."""
    year, month = parse_month_key(key)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def month_start_ms(key: str) -> int:
    year, month = parse_month_key(key)
    return int(datetime(year, month, 1, tzinfo=timezone.utc).timestamp() * 1000)


def month_end_ms(key: str) -> int:
    """Last millisecond of the month."""
    return month_start_ms(shift_month(key, 1)) - 1


def months_between(start_ms: int, end_ms: int) -> List[str]:
    """All month keys touched by [start_ms, end_ms], oldest first."""
    if start_ms > end_ms:
        return []
    keys = []
    current = month_key(start_ms)
    last = month_key(end_ms)
    while current <= last:
        keys.append(current)
        current = shift_month(current, 1)
    return keys


def is_month_key(name: str) -> bool:
    try:
        parse_month_key(name)
    except ValueError:
        return False
    return True
