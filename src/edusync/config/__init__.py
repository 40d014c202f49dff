"""Configuration package for edusync."""

from edusync.config.app_config import (
    AppConfig,
    PayloadConfig,
    StorageConfig,
    SyncSettings,
    clear_config_cache,
    load_app_config,
    write_default_config,
)

__all__ = [
    "AppConfig",
    "PayloadConfig",
    "StorageConfig",
    "SyncSettings",
    "clear_config_cache",
    "load_app_config",
    "write_default_config",
]
