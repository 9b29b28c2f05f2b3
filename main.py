"""
tradesync - Main Entry Point

Runs the legacy migration, storage maintenance and (when a venue transport
is supplied) a history sync for the configured accounts.

Usage:
    python main.py --env dev                          # Migrate + report cache state
    python main.py --migrate-only                     # Only run the legacy migration
    python main.py --archive-months 24 --optimize     # Maintenance for all accounts
    python main.py --transport host.bybit:make_transport --account acct-1 --force
"""

from __future__ import annotations
import argparse
import asyncio
import importlib
import sys
from typing import Any, Callable, List, Optional

from tradesync.config import AppConfig, ConfigManager
from tradesync.domain.clock import SystemClock
from tradesync.domain.exceptions import ConfigurationError, MigrationFailure
from tradesync.domain.interfaces.exchange_client import ExchangeAccount
from tradesync.infrastructure.adapters.bybit import BybitExchangeClient
from tradesync.infrastructure.stores import (
    JsonKeyValueStore,
    LocalFileSystem,
    PartitionedStore,
    PlaintextCipher,
)
from tradesync.models.cache_state import FetchProgress
from tradesync.services import (
    CacheCoordinator,
    ChunkedHistoryFetcher,
    MigrationEngine,
    MonthlySummaryService,
)
from tradesync.utils.logging_setup import (
    flush_all_loggers,
    get_logger,
    set_log_timezone,
    setup_category_logging,
    shutdown_logging,
)

logger = get_logger("tradesync.main")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Trade history sync and partitioned cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --env dev                       # Migrate legacy data, show cache state
  python main.py --archive-months 24             # Archive partitions older than 24 months
  python main.py --transport pkg.mod:factory -a acct-1 --force
        """
    )

    parser.add_argument(
        "--env",
        type=str,
        default="dev",
        choices=["dev", "prod"],
        help="Environment to run in (default: dev)"
    )

    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory holding base.yaml / <env>.yaml (default: config)"
    )

    parser.add_argument(
        "--root",
        type=str,
        help="Storage root directory (overrides storage.root_dir)"
    )

    parser.add_argument(
        "--account", "-a",
        action="append",
        default=[],
        help="Account id to process (repeatable, default: all stored accounts)"
    )

    parser.add_argument(
        "--transport",
        type=str,
        help="Venue transport factory as 'module:callable' (enables sync)"
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Force a full fetch instead of following the cache state"
    )

    parser.add_argument(
        "--migrate-only",
        action="store_true",
        help="Run the legacy migration and exit"
    )

    parser.add_argument(
        "--archive-months",
        type=int,
        help="Archive partitions older than this many months"
    )

    parser.add_argument(
        "--optimize",
        action="store_true",
        help="Remove empty-month partitions"
    )

    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print per-month performance summaries"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level for all categories)"
    )

    parser.add_argument(
        "--console",
        action="store_true",
        help="Also log to the console"
    )

    return parser.parse_args(argv)


def load_transport_factory(target: str) -> Callable[[AppConfig], Any]:
    """Resolve 'module:callable'."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Transport must be given as 'module:callable', got {target!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"{target} is not callable")
    return factory


def print_progress(event: FetchProgress) -> None:
    state = "done" if event.is_complete else f"{event.percent:5.1f}%"
    print(f"  [{event.account_id}] chunk {event.current_chunk}/{event.total_chunks} "
          f"{state} records={event.records_retrieved}")


async def main_async(args: argparse.Namespace) -> int:
    """Main async entry point."""
    config = ConfigManager(config_dir=args.config_dir, env=args.env).load()
    if args.root:
        config.storage.root_dir = args.root

    log_tz = config.logging.timezone
    set_log_timezone(log_tz if log_tz and log_tz.lower() != "local" else None)
    setup_category_logging(
        env=args.env,
        log_dir=config.logging.log_dir,
        level=config.logging.level,
        console=args.console or config.logging.console,
        verbose=args.verbose,
    )
    logger.info(f"Starting tradesync (env={args.env}, root={config.storage.root_dir})")

    clock = SystemClock()
    fs = LocalFileSystem(config.storage.root_dir)
    store = PartitionedStore(fs, clock, data_version=config.storage.data_version)

    migration = MigrationEngine(
        kv_store=JsonKeyValueStore(fs, config.migration.legacy_store_file),
        cipher=PlaintextCipher(),
        store=store,
        file_system=fs,
        clock=clock,
        config=config.migration,
    )
    if await migration.needs_migration():
        try:
            result = await migration.migrate()
        except MigrationFailure as e:
            print(f"Migration failed (legacy data kept): {e}")
            return 1
        print(f"Migrated {len(result.accounts)} accounts, {result.total_records} records "
              f"(backup: {result.backup_path})")
    if args.migrate_only:
        return 0

    account_ids = args.account or await store.list_accounts()

    coordinator: Optional[CacheCoordinator] = None
    if args.transport:
        transport = load_transport_factory(args.transport)(config)
        fetcher = ChunkedHistoryFetcher(BybitExchangeClient(transport), clock, config.sync)
        coordinator = CacheCoordinator(store, fetcher, clock, config.sync)
        coordinator.add_observer(print_progress)
        accounts = [ExchangeAccount(account_id=a) for a in account_ids]
        histories = await coordinator.refresh_accounts(accounts, force_refresh=args.force)
        for account_id, history in histories.items():
            print(f"{account_id}: {len(history.trades)} trades, "
                  f"{len(history.closed_positions)} closed positions ({history.state.status.value})")

    for account_id in account_ids:
        if args.archive_months is not None:
            archived = (
                await coordinator.archive(account_id, args.archive_months)
                if coordinator else await store.archive(account_id, args.archive_months)
            )
            print(f"{account_id}: archived {len(archived)} months")
        if args.optimize:
            removed = (
                await coordinator.optimize_storage(account_id)
                if coordinator else await store.optimize_storage(account_id)
            )
            print(f"{account_id}: removed {len(removed)} empty months")

        stats = await store.get_account_stats(account_id)
        print(f"{account_id}: {stats['total_trades']} trades, {stats['total_closed_positions']} closed, "
              f"{stats['total_equity_snapshots']} equity, {stats['months']} months, "
              f"{stats['total_size_bytes']} bytes")

        if args.summary:
            summaries = MonthlySummaryService(store, fs, clock, config.summary)
            report = await summaries.account_summary(account_id)
            for monthly in report.monthly:
                m = monthly.metrics
                print(f"  {monthly.month}: pnl={m.total_pnl:.2f} trades={m.total_trades} "
                      f"win_rate={m.win_rate:.1f}% max_dd={m.max_drawdown:.2f}")

    if store.integrity_issues:
        print(f"{len(store.integrity_issues)} integrity issues, see data logs")
    return 0


def main() -> None:
    """Main entry point."""
    args = parse_args()

    try:
        exit_code = asyncio.run(main_async(args))
    except KeyboardInterrupt:
        print("Shutdown requested")
        exit_code = 0
    except Exception as e:
        print(f"Fatal error: {e}")
        exit_code = 1
    finally:
        flush_all_loggers()
        shutdown_logging()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
