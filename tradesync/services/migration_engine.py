"""
One-time migration of the legacy single-blob cache into the partitioned store.

Legacy layout in the host key-value store:
- bybit_historical_cache: encrypted JSON map
    accountId -> {accountId, trades, closedPnL, lastUpdated, dataRange, isComplete}
  where trades / closedPnL are Bybit v5 payload rows.
- equityHistory: map accountId -> [{timestamp, totalEquity, accounts}],
  stored either as plain JSON or as an encrypted string.

Procedure (any failure before step 5 leaves the legacy keys in place):
1. Back up the raw legacy values verbatim to legacy-data-backup-<ts>.json
2. Decrypt and write each account's trades / closed positions
3. Decrypt and write equity history
4. Persist the completion flag {completed, timestamp, version}
5. Delete the legacy keys
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config.models import MigrationConfig
from ..domain.clock import Clock
from ..domain.exceptions import MigrationFailure
from ..domain.interfaces.file_system import FileSystem
from ..domain.interfaces.legacy_store import KeyValueStore, SecretCipher
from ..infrastructure.adapters.bybit.converters import convert_closed_pnls, convert_executions
from ..infrastructure.stores.partitioned_store import PartitionedStore
from ..models.records import EquitySnapshot
from ..utils.logging_setup import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationResult:
    """Counts of what a migration wrote."""

    migrated: bool
    backup_path: Optional[str] = None
    accounts: List[str] = field(default_factory=list)
    trades: int = 0
    closed_positions: int = 0
    equity_snapshots: int = 0
    skipped_rows: int = 0

    @property
    def total_records(self) -> int:
        return self.trades + self.closed_positions + self.equity_snapshots


@dataclass
class MigrationStatus:
    needs_migration: bool
    is_complete: bool
    legacy_data_exists: bool
    estimated_records: int


class MigrationEngine:
    """
    Idempotent legacy-to-partitioned migration.

    Safe to re-invoke: once the completion flag exists needs_migration() is
    False, and a failed run leaves legacy data untouched so it can be
    retried (the store merges by identity key, so re-writing is harmless).
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        cipher: SecretCipher,
        store: PartitionedStore,
        file_system: FileSystem,
        clock: Clock,
        config: Optional[MigrationConfig] = None,
    ) -> None:
        self._kv = kv_store
        self._cipher = cipher
        self._store = store
        self._fs = file_system
        self._clock = clock
        self._config = config or MigrationConfig()

    async def needs_migration(self) -> bool:
        """No completion flag and at least one legacy key present."""
        if await self._kv.get(self._config.flag_key):
            return False
        historical = await self._kv.get(self._config.legacy_historical_key)
        equity = await self._kv.get(self._config.legacy_equity_key)
        return bool(historical or equity)

    async def migrate(self) -> MigrationResult:
        """
        Run the migration if needed.

        Raises:
            MigrationFailure: If any step before the legacy delete fails.
                Legacy keys are untouched in that case.
        """
        if not await self.needs_migration():
            logger.info("Migration not needed or already completed")
            return MigrationResult(migrated=False)

        logger.info("Starting legacy data migration")
        result = MigrationResult(migrated=True)

        try:
            raw_historical = await self._kv.get(self._config.legacy_historical_key)
            raw_equity = await self._kv.get(self._config.legacy_equity_key)

            result.backup_path = await self._write_backup(raw_historical, raw_equity)

            if raw_historical:
                await self._migrate_historical(self._decode(raw_historical, "historical cache"), result)
            if raw_equity:
                await self._migrate_equity(self._decode(raw_equity, "equity history"), result)

            await self._kv.set(self._config.flag_key, {
                "completed": True,
                "timestamp": self._clock.now_ms(),
                "version": self._config.version,
            })
        except MigrationFailure:
            raise
        except Exception as e:
            logger.error(f"Migration failed, legacy data left intact: {e}")
            raise MigrationFailure(f"Legacy data migration failed: {e}") from e

        await self._kv.delete(self._config.legacy_historical_key)
        await self._kv.delete(self._config.legacy_equity_key)

        logger.info(
            f"Migration complete: {len(result.accounts)} accounts, {result.total_records} records, "
            f"backup at {result.backup_path}"
        )
        return result

    async def status(self) -> MigrationStatus:
        """Migration state for display; never raises on undecodable blobs."""
        flag = await self._kv.get(self._config.flag_key)
        raw_historical = await self._kv.get(self._config.legacy_historical_key)
        raw_equity = await self._kv.get(self._config.legacy_equity_key)

        estimated = 0
        if raw_historical:
            try:
                for account_data in self._decode(raw_historical, "historical cache").values():
                    estimated += len(account_data.get("trades") or [])
                    estimated += len(account_data.get("closedPnL") or [])
            except MigrationFailure as e:
                logger.warning(f"Cannot estimate legacy records: {e}")
        if raw_equity:
            try:
                for snapshots in self._decode(raw_equity, "equity history").values():
                    estimated += len(snapshots or [])
            except MigrationFailure as e:
                logger.warning(f"Cannot estimate legacy equity snapshots: {e}")

        return MigrationStatus(
            needs_migration=not flag and bool(raw_historical or raw_equity),
            is_complete=bool(flag),
            legacy_data_exists=bool(raw_historical or raw_equity),
            estimated_records=estimated,
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def _write_backup(self, raw_historical: Any, raw_equity: Any) -> str:
        now = self._clock.now_ms()
        backup = {
            "timestamp": now,
            "version": self._config.version,
            "historical_data": raw_historical,
            "equity_data": raw_equity,
        }
        path = f"legacy-data-backup-{now}.json"
        await self._fs.write_file(path, json.dumps(backup, indent=2))
        logger.info(f"Legacy data backup created: {path}")
        return path

    def _decode(self, raw: Any, label: str) -> Dict[str, Any]:
        """Decrypt (when a string) and parse a legacy blob into a dict."""
        if isinstance(raw, dict):
            return raw
        if not isinstance(raw, str):
            raise MigrationFailure(f"Unexpected legacy {label} type: {type(raw).__name__}")
        try:
            plaintext = self._cipher.decrypt(raw)
            decoded = json.loads(plaintext)
        except Exception as e:
            # Equity history may have been stored as plain JSON text
            try:
                decoded = json.loads(raw)
            except ValueError:
                raise MigrationFailure(f"Cannot decrypt legacy {label}: {e}") from e
        if not isinstance(decoded, dict):
            raise MigrationFailure(f"Legacy {label} is not a JSON object")
        return decoded

    async def _migrate_historical(self, cache: Dict[str, Any], result: MigrationResult) -> None:
        logger.info(f"Found legacy data for {len(cache)} accounts")
        for account_id, account_data in cache.items():
            trade_rows = account_data.get("trades") or []
            pnl_rows = account_data.get("closedPnL") or []

            trades = convert_executions(trade_rows)
            positions = convert_closed_pnls(pnl_rows)
            result.skipped_rows += (len(trade_rows) - len(trades)) + (len(pnl_rows) - len(positions))

            if trades:
                await self._store.add_trades(account_id, trades)
            if positions:
                await self._store.add_closed_positions(account_id, positions)

            last_updated = account_data.get("lastUpdated")
            if last_updated:
                await self._store.record_sync(
                    account_id, int(last_updated), complete=bool(account_data.get("isComplete", False))
                )

            result.trades += len(trades)
            result.closed_positions += len(positions)
            if account_id not in result.accounts:
                result.accounts.append(account_id)
            logger.info(f"Migrated account {account_id}: {len(trades)} trades, {len(positions)} closed positions")

    async def _migrate_equity(self, history: Dict[str, Any], result: MigrationResult) -> None:
        for account_id, rows in history.items():
            if not rows:
                continue
            snapshots = [EquitySnapshot.from_dict(row) for row in rows]
            await self._store.add_equity_snapshots(account_id, snapshots)
            result.equity_snapshots += len(snapshots)
            if account_id not in result.accounts:
                result.accounts.append(account_id)
            logger.info(f"Migrated {len(snapshots)} equity snapshots for account {account_id}")
