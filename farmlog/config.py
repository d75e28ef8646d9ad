"""Configuration loading for farmlog."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class FarmConfig:
    """Connection to the farmOS server."""

    host: str = "http://localhost"
    token: str | None = None  # CSRF token for write requests
    timeout: float = 30.0


@dataclass
class SyncConfig:
    """Configuration for log synchronization."""

    db_path: str = "~/.farmlog/logs.db"
    log_import_filters: dict[str, Any] = field(default_factory=dict)


@dataclass
class Config:
    farm: FarmConfig = field(default_factory=FarmConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with FARMLOG_ prefix."""
    return os.environ.get(f"FARMLOG_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Farm overrides
    if host := _get_env("HOST"):
        config.farm.host = host
    if token := _get_env("TOKEN"):
        config.farm.token = token
    if timeout := _get_env("TIMEOUT"):
        config.farm.timeout = float(timeout)

    # Sync overrides
    if db_path := _get_env("DB_PATH"):
        config.sync.db_path = db_path

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse farm config
            if "farm" in data:
                farm_data = data["farm"]
                config.farm = FarmConfig(
                    host=farm_data.get("host", config.farm.host),
                    token=farm_data.get("token"),
                    timeout=float(farm_data.get("timeout", config.farm.timeout)),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    db_path=sync_data.get("db_path", config.sync.db_path),
                    log_import_filters=sync_data.get("log_import_filters") or {},
                )

    return _apply_env_overrides(config)
