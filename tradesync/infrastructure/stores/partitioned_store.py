"""
Month-partitioned JSON store for trade history.

Stores trades, closed positions and equity snapshots per account, one JSON
file per calendar month (UTC) and record kind, plus a metadata index per
account.

Directory structure (relative to the FileSystem root):
    trading-data/{account}/metadata.json
    trading-data/{account}/trades/{YYYY-MM}.json
    trading-data/{account}/pnl/{YYYY-MM}.json
    trading-data/{account}/equity/{YYYY-MM}.json
    archives/{YYYY}/{account}-{trades|pnl|equity}-{YYYY-MM}.json

Features:
- Upsert mode (merge by identity key, incoming wins)
- MD5 checksum per partition, verified on every load
- Exact range filtering on read
- Account-scoped archiving and empty-month cleanup

The store holds no locks. Writers for one account must be serialized by
the caller (CacheCoordinator does this per account).
"""

from __future__ import annotations

import json
import warnings
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Type

from ...domain.clock import Clock
from ...domain.exceptions import IntegrityWarning
from ...domain.interfaces.file_system import FileSystem
from ...domain.services.record_merger import merge_records, sort_newest_first
from ...models.partition import (
    AccountMetadata,
    MonthlyStats,
    MonthPartition,
    RecordKind,
    compute_checksum,
)
from ...models.records import ClosedPositionRecord, EquitySnapshot, TradeExecution
from ...utils.logging_setup import get_logger
from ...utils.month_keys import is_month_key, month_key, months_between, shift_month

logger = get_logger(__name__)


RECORD_TYPES: Dict[RecordKind, Type[Any]] = {
    RecordKind.TRADES: TradeExecution,
    RecordKind.CLOSED_POSITIONS: ClosedPositionRecord,
    RecordKind.EQUITY: EquitySnapshot,
}


class PartitionedStore:
    """
    Stores and retrieves account history in monthly partitions.

    Usage:
        store = PartitionedStore(LocalFileSystem("./data"), SystemClock())
        await store.add_trades("acct-1", trades)
        recent = await store.get_trades_in_range("acct-1", start_ms, end_ms)
    """

    DATA_DIR = "trading-data"
    ARCHIVE_DIR = "archives"
    RESERVED_DIRS = frozenset({"cache"})
    # Oldest entries are dropped beyond this
    MAX_INTEGRITY_ISSUES = 500

    def __init__(
        self,
        file_system: FileSystem,
        clock: Clock,
        data_version: str = "1.0.0",
    ) -> None:
        """
        Initialize partitioned store.

        Args:
            file_system: Raw file I/O.
            clock: Source of created_at / last_updated timestamps.
            data_version: Version stamped into new account metadata.
        """
        self._fs = file_system
        self._clock = clock
        self._data_version = data_version
        self.integrity_issues: List[str] = []
        self._issues_reported = 0

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def account_dir(self, account_id: str) -> str:
        if not account_id or "/" in account_id or account_id in (".", "..") or account_id in self.RESERVED_DIRS:
            raise ValueError(f"Invalid account id: {account_id!r}")
        return f"{self.DATA_DIR}/{account_id}"

    def metadata_path(self, account_id: str) -> str:
        return f"{self.account_dir(account_id)}/metadata.json"

    def partition_path(self, account_id: str, kind: RecordKind, month: str) -> str:
        return f"{self.account_dir(account_id)}/{kind.value}/{month}.json"

    def archive_path(self, account_id: str, kind: RecordKind, month: str) -> str:
        year = month.split("-")[0]
        return f"{self.ARCHIVE_DIR}/{year}/{account_id}-{kind.value}-{month}.json"

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    async def get_metadata(self, account_id: str) -> Optional[AccountMetadata]:
        """Load account metadata, or None if the account has never been written."""
        content = await self._fs.read_file(self.metadata_path(account_id))
        if content is None:
            return None
        return AccountMetadata.from_dict(json.loads(content))

    async def _load_or_create_metadata(self, account_id: str) -> AccountMetadata:
        metadata = await self.get_metadata(account_id)
        if metadata is None:
            now = self._clock.now_ms()
            metadata = AccountMetadata(
                account_id=account_id,
                created_at=now,
                last_updated=now,
                data_version=self._data_version,
            )
            logger.info(f"Created metadata for account {account_id}")
        return metadata

    async def _save_metadata(self, metadata: AccountMetadata) -> None:
        await self._fs.write_file(
            self.metadata_path(metadata.account_id),
            json.dumps(metadata.to_dict(), indent=2),
        )

    async def record_sync(self, account_id: str, synced_at_ms: int, complete: bool) -> AccountMetadata:
        """
        Persist the freshness timestamp of a sync.

        Creates the metadata if the account has no data yet, so an account
        with zero history still counts as synced.
        """
        metadata = await self._load_or_create_metadata(account_id)
        metadata.last_synced = synced_at_ms
        metadata.sync_complete = complete
        metadata.last_updated = self._clock.now_ms()
        await self._save_metadata(metadata)
        logger.debug(f"Recorded sync for {account_id}: at={synced_at_ms} complete={complete}")
        return metadata

    # -------------------------------------------------------------------------
    # Partitions
    # -------------------------------------------------------------------------

    async def _load_partition(
        self,
        account_id: str,
        kind: RecordKind,
        month: str,
        quarantine_corrupt: bool = False,
    ) -> Optional[MonthPartition]:
        """
        Load one partition and verify its checksum.

        A checksum mismatch is reported as an IntegrityWarning and the data
        is still returned. An unreadable file is reported and treated as
        absent; with quarantine_corrupt it is first moved aside so a
        following write cannot destroy it.
        """
        path = self.partition_path(account_id, kind, month)
        content = await self._fs.read_file(path)
        if content is None:
            return None

        try:
            raw = json.loads(content)
            raw_records = raw.get("records", [])
            record_type = RECORD_TYPES[kind]
            records = [record_type.from_dict(r) for r in raw_records]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self._report_integrity_issue(f"Unreadable partition {path}: {e}")
            if quarantine_corrupt:
                corrupt_path = f"{path}.corrupt-{self._clock.now_ms()}"
                await self._fs.move_file(path, corrupt_path)
                logger.error(f"Moved unreadable partition {path} to {corrupt_path}")
            return None

        stored_checksum = raw.get("checksum", "")
        actual_checksum = compute_checksum(raw_records)
        if stored_checksum != actual_checksum:
            self._report_integrity_issue(
                f"Checksum mismatch in {path}: stored={stored_checksum} actual={actual_checksum}"
            )

        return MonthPartition(
            month=raw.get("month", month),
            records=records,
            checksum=stored_checksum,
            created_at=int(raw.get("created_at", 0)),
            last_updated=int(raw.get("last_updated", 0)),
        )

    def _report_integrity_issue(self, message: str) -> None:
        self._issues_reported += 1
        self.integrity_issues.append(message)
        if len(self.integrity_issues) > self.MAX_INTEGRITY_ISSUES:
            del self.integrity_issues[0]
        logger.warning(message)
        warnings.warn(message, IntegrityWarning, stacklevel=3)

    async def _write_partition(self, account_id: str, kind: RecordKind, partition: MonthPartition) -> int:
        """Persist a partition; returns its serialized size in bytes."""
        partition.refresh_checksum()
        content = json.dumps(partition.to_dict(), separators=(",", ":"))
        await self._fs.write_file(self.partition_path(account_id, kind, partition.month), content)
        return len(content.encode("utf-8"))

    async def _add_records(self, account_id: str, kind: RecordKind, records: Sequence[Any]) -> int:
        """
        Merge records into their monthly partitions.

        Returns:
            Number of records whose identity key was not stored before.
        """
        if not records:
            return 0

        by_month: Dict[str, List[Any]] = defaultdict(list)
        for record in records:
            by_month[month_key(record.timestamp_ms)].append(record)

        metadata = await self._load_or_create_metadata(account_id)
        now = self._clock.now_ms()
        added = 0

        for month in sorted(by_month):
            batch = by_month[month]
            partition = await self._load_partition(account_id, kind, month, quarantine_corrupt=True)
            if partition is None:
                partition = MonthPartition(month=month, created_at=now)

            before = len(partition.records)
            partition.records = merge_records(partition.records, batch)
            partition.last_updated = now
            added += len(partition.records) - before

            size = await self._write_partition(account_id, kind, partition)
            stats = metadata.monthly_stats.setdefault(month, MonthlyStats())
            stats.update(kind, len(partition.records), size)

        metadata.last_updated = now
        metadata.recompute_data_range()
        await self._save_metadata(metadata)

        logger.debug(
            f"Stored {len(records)} {kind.value} records for {account_id} "
            f"across {len(by_month)} months ({added} new)"
        )
        return added

    async def add_trades(self, account_id: str, trades: Sequence[TradeExecution]) -> int:
        return await self._add_records(account_id, RecordKind.TRADES, trades)

    async def add_closed_positions(self, account_id: str, positions: Sequence[ClosedPositionRecord]) -> int:
        return await self._add_records(account_id, RecordKind.CLOSED_POSITIONS, positions)

    async def add_equity_snapshots(self, account_id: str, snapshots: Sequence[EquitySnapshot]) -> int:
        return await self._add_records(account_id, RecordKind.EQUITY, snapshots)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _get_in_range(
        self,
        account_id: str,
        kind: RecordKind,
        start_ms: int,
        end_ms: int,
    ) -> List[Any]:
        metadata = await self.get_metadata(account_id)
        if metadata is None:
            return []

        results: List[Any] = []
        for month in months_between(start_ms, end_ms):
            stats = metadata.monthly_stats.get(month)
            if stats is None or stats.count_for(kind) == 0:
                continue
            partition = await self._load_partition(account_id, kind, month)
            if partition is None:
                continue
            results.extend(r for r in partition.records if start_ms <= r.timestamp_ms <= end_ms)

        return sort_newest_first(results)

    async def get_trades_in_range(self, account_id: str, start_ms: int, end_ms: int) -> List[TradeExecution]:
        """
        Read trades with start_ms <= exec_timestamp <= end_ms.

        Returns:
            Trades newest-first.
        """
        return await self._get_in_range(account_id, RecordKind.TRADES, start_ms, end_ms)

    async def get_closed_positions_in_range(
        self, account_id: str, start_ms: int, end_ms: int
    ) -> List[ClosedPositionRecord]:
        return await self._get_in_range(account_id, RecordKind.CLOSED_POSITIONS, start_ms, end_ms)

    async def get_equity_in_range(self, account_id: str, start_ms: int, end_ms: int) -> List[EquitySnapshot]:
        return await self._get_in_range(account_id, RecordKind.EQUITY, start_ms, end_ms)

    async def available_months(self, account_id: str, kind: Optional[RecordKind] = None) -> List[str]:
        """Months with data, oldest first (optionally for one record kind)."""
        metadata = await self.get_metadata(account_id)
        if metadata is None:
            return []
        months = [
            m for m, stats in metadata.monthly_stats.items()
            if (stats.count_for(kind) > 0 if kind else not stats.is_empty)
        ]
        return sorted(months)

    async def oldest_timestamp(self, account_id: str) -> Optional[int]:
        """Epoch ms of the oldest stored trade or closed position."""
        oldest: Optional[int] = None
        for kind in (RecordKind.TRADES, RecordKind.CLOSED_POSITIONS):
            months = await self.available_months(account_id, kind)
            if not months:
                continue
            partition = await self._load_partition(account_id, kind, months[0])
            if partition is None or partition.is_empty:
                continue
            # Records are newest-first
            candidate = partition.records[-1].timestamp_ms
            oldest = candidate if oldest is None else min(oldest, candidate)
        return oldest

    async def get_account_stats(self, account_id: str) -> Dict[str, Any]:
        """Aggregate counts and sizes from the metadata index."""
        metadata = await self.get_metadata(account_id)
        if metadata is None:
            return {
                "account_id": account_id,
                "total_trades": 0,
                "total_closed_positions": 0,
                "total_equity_snapshots": 0,
                "total_size_bytes": 0,
                "months": 0,
                "data_range": None,
                "last_synced": None,
            }
        stats = metadata.monthly_stats.values()
        return {
            "account_id": account_id,
            "total_trades": sum(s.trades_count for s in stats),
            "total_closed_positions": sum(s.closed_positions_count for s in stats),
            "total_equity_snapshots": sum(s.equity_count for s in stats),
            "total_size_bytes": metadata.total_size_bytes,
            "months": len(metadata.monthly_stats),
            "data_range": metadata.data_range.to_dict() if metadata.data_range else None,
            "last_synced": metadata.last_synced,
        }

    async def list_accounts(self) -> List[str]:
        """Accounts that have a metadata file."""
        accounts = []
        for name in await self._fs.list_directory(self.DATA_DIR):
            if name in self.RESERVED_DIRS:
                continue
            if await self._fs.exists(f"{self.DATA_DIR}/{name}/metadata.json"):
                accounts.append(name)
        return sorted(accounts)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def archive(self, account_id: str, months_to_keep: int = 24) -> List[str]:
        """
        Move partitions older than the cutoff to the archive location.

        The cutoff is the first day of the month `months_to_keep` months
        before the current month; months strictly before it are archived and
        dropped from the metadata index.

        Returns:
            Archived month keys.
        """
        metadata = await self.get_metadata(account_id)
        if metadata is None:
            return []

        cutoff = shift_month(month_key(self._clock.now_ms()), -months_to_keep)
        to_archive = sorted(m for m in metadata.monthly_stats if m < cutoff)
        if not to_archive:
            logger.info(f"No data to archive for account {account_id}")
            return []

        logger.info(f"Archiving {len(to_archive)} months for account {account_id} (cutoff {cutoff})")
        for month in to_archive:
            for kind in RecordKind:
                source = self.partition_path(account_id, kind, month)
                if await self._fs.exists(source):
                    await self._fs.move_file(source, self.archive_path(account_id, kind, month))
            del metadata.monthly_stats[month]

        metadata.last_updated = self._clock.now_ms()
        metadata.recompute_data_range()
        await self._save_metadata(metadata)
        return to_archive

    async def optimize_storage(self, account_id: str) -> List[str]:
        """
        Remove partitions that hold no records.

        Empty months are found both in the metadata index and by scanning
        each record-kind directory for partition files with an empty
        ``records`` list. Unreadable files are left for verify_account.

        Returns:
            Month keys that had at least one partition or index entry removed.
        """
        metadata = await self.get_metadata(account_id)
        if metadata is None:
            return []

        removed = set()
        for month, stats in list(metadata.monthly_stats.items()):
            if stats.is_empty:
                for kind in RecordKind:
                    await self._fs.delete_file(self.partition_path(account_id, kind, month))
                del metadata.monthly_stats[month]
                removed.add(month)

        for kind in RecordKind:
            for name in await self._fs.list_directory(f"{self.account_dir(account_id)}/{kind.value}"):
                month = name[:-len(".json")] if name.endswith(".json") else ""
                if not is_month_key(month):
                    continue
                partition = await self._load_partition(account_id, kind, month)
                if partition is None or not partition.is_empty:
                    continue
                await self._fs.delete_file(self.partition_path(account_id, kind, month))
                stats = metadata.monthly_stats.get(month)
                if stats is not None:
                    stats.update(kind, 0, 0)
                    if stats.is_empty:
                        del metadata.monthly_stats[month]
                removed.add(month)

        if not removed:
            return []

        logger.info(f"Removed empty partitions in {len(removed)} months for account {account_id}")
        metadata.last_updated = self._clock.now_ms()
        metadata.recompute_data_range()
        await self._save_metadata(metadata)
        return sorted(removed)

    async def clear_account(self, account_id: str) -> None:
        """Delete all partitions and the metadata of an account."""
        await self._fs.delete_directory(self.account_dir(account_id))
        logger.info(f"Cleared all data for account {account_id}")

    async def verify_account(self, account_id: str) -> List[str]:
        """
        Load every partition of an account and collect integrity issues.

        Returns:
            Issues found during this verification.
        """
        before = self._issues_reported
        for kind in RecordKind:
            for month in await self.available_months(account_id, kind):
                await self._load_partition(account_id, kind, month)
        found = self._issues_reported - before
        return self.integrity_issues[-found:] if found else []

