"""Configuration management."""

from .config_manager import ConfigManager
from .models import AppConfig, LoggingConfig, MigrationConfig, StorageConfig, SummaryConfig, SyncConfig

__all__ = [
    "ConfigManager",
    "AppConfig",
    "LoggingConfig",
    "MigrationConfig",
    "StorageConfig",
    "SummaryConfig",
    "SyncConfig",
]
