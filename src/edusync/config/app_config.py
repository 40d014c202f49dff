"""Application configuration loader.

Loads device configuration from data/config/edusync_v1.yaml, falling back
to built-in defaults when the file is missing.

Usage:
    from edusync.config.app_config import load_app_config

    config = load_app_config()
    db_path = config.storage.db_path
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/edusync_v1.yaml")

# Environment override for the class server address
REMOTE_URL_ENV = "EDUSYNC_REMOTE_URL"


@dataclass
class StorageConfig:
    """Where the device keeps its documents and side-channel state."""

    db_path: Path = Path("data/db/edusync.db")
    state_dir: Path = Path("data/state")


@dataclass
class SyncSettings:
    """Network replication settings."""

    remote_url: str | None = None
    timeout: float = 15.0
    max_retries: int = 2
    backoff_seconds: float = 0.5
    collections: list[str] = field(
        default_factory=lambda: ["users", "progress", "content", "classes"]
    )


@dataclass
class PayloadConfig:
    """Peer payload settings."""

    soft_limit: int = 2500


@dataclass
class AppConfig:
    """Application-wide configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    payload: PayloadConfig = field(default_factory=PayloadConfig)
    log_level: str = "info"


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "storage": {
            "db_path": "data/db/edusync.db",
            "state_dir": "data/state",
        },
        "sync": {
            "remote_url": None,
            "timeout": 15.0,
            "max_retries": 2,
            "backoff_seconds": 0.5,
            "collections": ["users", "progress", "content", "classes"],
        },
        "payload": {
            "soft_limit": 2500,
        },
        "log_level": "info",
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    storage_data = {**defaults["storage"], **(data.get("storage") or {})}
    storage = StorageConfig(
        db_path=Path(storage_data["db_path"]),
        state_dir=Path(storage_data["state_dir"]),
    )

    sync_data = {**defaults["sync"], **(data.get("sync") or {})}
    sync = SyncSettings(
        remote_url=os.environ.get(REMOTE_URL_ENV) or sync_data.get("remote_url"),
        timeout=float(sync_data["timeout"]),
        max_retries=int(sync_data["max_retries"]),
        backoff_seconds=float(sync_data["backoff_seconds"]),
        collections=list(sync_data["collections"]),
    )

    payload_data = {**defaults["payload"], **(data.get("payload") or {})}
    payload = PayloadConfig(soft_limit=int(payload_data["soft_limit"]))

    return AppConfig(
        storage=storage,
        sync=sync,
        payload=payload,
        log_level=data.get("log_level", defaults["log_level"]),
    )


def load_app_config(
    force_reload: bool = False,
    config_file: Path | None = None,
) -> AppConfig:
    """Load application config, using defaults if the file is missing.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_file: Alternative YAML file (defaults to CONFIG_FILE).

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload and config_file is None:
        return _cached_config

    path = config_file or CONFIG_FILE
    data: dict[str, Any]

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    config = _parse_config(data)
    if config_file is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None


def write_default_config(path: Path | None = None) -> Path:
    """Write the default configuration as YAML if the file doesn't exist.

    Returns:
        Path of the config file
    """
    path = path or CONFIG_FILE
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump(_get_defaults(), sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
        logger.info("app_config_written", path=str(path))
    return path
