"""
YAML configuration loading.

Layers, later ones winning key by key (nested mappings are merged):
    config/base.yaml       required defaults
    config/{env}.yaml      dev / prod overrides
    config/secrets.yaml    optional, never committed
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..domain.exceptions import ConfigurationError
from ..utils.logging_setup import get_logger
from .models import (
    AppConfig,
    LoggingConfig,
    MigrationConfig,
    StorageConfig,
    SummaryConfig,
    SyncConfig,
)


logger = get_logger(__name__)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return base updated with override; nested dicts merge instead of replacing."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Loads the layered YAML files for one environment into an AppConfig."""

    def __init__(self, config_dir: str | Path = "config", env: str = "dev"):
        self.config_dir = Path(config_dir)
        self.env = env
        self.config: Dict[str, Any] = {}

    def load(self) -> AppConfig:
        """
        Raises:
            FileNotFoundError: base.yaml is missing.
            ConfigurationError: A value has the wrong type or is out of range.
        """
        base_path = self.config_dir / "base.yaml"
        if not base_path.exists():
            raise FileNotFoundError(f"Base config not found: {base_path}")

        merged: Dict[str, Any] = {}
        for path in (base_path, self.config_dir / f"{self.env}.yaml", self.config_dir / "secrets.yaml"):
            layer = self._read_layer(path)
            if layer is None:
                continue
            merged = deep_merge(merged, layer)
            logger.info(f"Loaded config layer {path.name}")

        self.config = merged
        return self.parse(merged)

    @staticmethod
    def _read_layer(path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path.name} must contain a mapping at the top level")
        return data

    @staticmethod
    def parse(raw: Dict[str, Any]) -> AppConfig:
        """Parse raw dict into AppConfig."""
        try:
            storage_raw = raw.get("storage", {})
            storage = StorageConfig(
                root_dir=storage_raw.get("root_dir", "./data"),
                data_version=storage_raw.get("data_version", "1.0.0"),
                archive_after_months=int(storage_raw.get("archive_after_months", 24)),
            )

            sync_raw = raw.get("sync", {})
            sync = SyncConfig(
                lookback_days=int(sync_raw.get("lookback_days", 180)),
                chunk_days=int(sync_raw.get("chunk_days", 7)),
                page_limit=int(sync_raw.get("page_limit", 100)),
                max_pages_per_chunk=int(sync_raw.get("max_pages_per_chunk", 5)),
                request_delay_ms=int(sync_raw.get("request_delay_ms", 200)),
                inter_account_delay_ms=int(sync_raw.get("inter_account_delay_ms", 500)),
                freshness_hours=int(sync_raw.get("freshness_hours", 24)),
                overlap_days=int(sync_raw.get("overlap_days", 2)),
                fallback_windows_days=list(
                    sync_raw.get("fallback_windows_days", [None, 30, 90, 730])
                ),
                fallback_max_pages=int(sync_raw.get("fallback_max_pages", 2)),
            )

            summary_raw = raw.get("summary", {})
            summary = SummaryConfig(
                expiry_hours=int(summary_raw.get("expiry_hours", 6)),
                cache_version=summary_raw.get("cache_version", "1.0.0"),
            )

            migration_raw = raw.get("migration", {})
            migration = MigrationConfig(
                legacy_historical_key=migration_raw.get(
                    "legacy_historical_key", "bybit_historical_cache"
                ),
                legacy_equity_key=migration_raw.get("legacy_equity_key", "equityHistory"),
                flag_key=migration_raw.get("flag_key", "data_migration_v1_complete"),
                version=str(migration_raw.get("version", "2.0.0")),
                legacy_store_file=migration_raw.get("legacy_store_file", "config.json"),
            )

            logging_raw = raw.get("logging", {})
            logging_config = LoggingConfig(
                level=logging_raw.get("level", "INFO"),
                log_dir=logging_raw.get("log_dir", "./logs"),
                console=bool(logging_raw.get("console", False)),
                timezone=logging_raw.get("timezone", "local"),
            )

        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Failed to parse config: {e}") from e

        if sync.chunk_days <= 0 or sync.lookback_days <= 0:
            raise ConfigurationError("sync.chunk_days and sync.lookback_days must be positive")
        if sync.max_pages_per_chunk <= 0:
            raise ConfigurationError("sync.max_pages_per_chunk must be positive")

        return AppConfig(
            storage=storage,
            sync=sync,
            summary=summary,
            migration=migration,
            logging=logging_config,
            raw=raw,
        )
