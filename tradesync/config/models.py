"""Configuration data models."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class StorageConfig:
    """Local storage configuration."""
    root_dir: str
    data_version: str = "1.0.0"
    archive_after_months: int = 24


@dataclass
class SyncConfig:
    """History synchronization configuration."""
    lookback_days: int = 180
    chunk_days: int = 7
    page_limit: int = 100
    max_pages_per_chunk: int = 5
    request_delay_ms: int = 200
    inter_account_delay_ms: int = 500
    freshness_hours: int = 24
    overlap_days: int = 2
    # None means "provider default" (no explicit window)
    fallback_windows_days: List[Optional[int]] = field(
        default_factory=lambda: [None, 30, 90, 730]
    )
    fallback_max_pages: int = 2


@dataclass
class SummaryConfig:
    """Monthly summary cache configuration."""
    expiry_hours: int = 6
    cache_version: str = "1.0.0"


@dataclass
class MigrationConfig:
    """Legacy store migration configuration."""
    legacy_historical_key: str = "bybit_historical_cache"
    legacy_equity_key: str = "equityHistory"
    flag_key: str = "data_migration_v1_complete"
    version: str = "2.0.0"
    legacy_store_file: str = "config.json"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = "./logs"
    console: bool = False
    timezone: str = "local"  # Timezone for log timestamps (e.g., "UTC", or "local")


@dataclass
class AppConfig:
    """Complete application configuration."""
    storage: StorageConfig
    sync: SyncConfig
    summary: SummaryConfig
    migration: MigrationConfig
    logging: LoggingConfig
    raw: Dict[str, Any]  # Raw config dict for host-specific settings
