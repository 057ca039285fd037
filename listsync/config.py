"""Configuration loading for listsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .sync.engine import SyncSettings


@dataclass
class ReplicaConfig:
    name: str = "listsync-replica"
    data_path: str = "~/.listsync/replica.db"


@dataclass
class SyncConfig:
    """Configuration for replication with the peer."""

    enabled: bool = True
    peer_url: str = ""  # base URL of the reconciliation peer
    page_size: int = 500
    max_pages: int = 50
    base_retry_seconds: float = 5.0
    max_retry_seconds: float = 60.0
    max_retries: int = 5
    debounce_seconds: float = 2.0
    online_debounce_seconds: float = 1.0
    timeout_seconds: float = 30.0
    compact_after_sync: bool = True

    def settings(self) -> SyncSettings:
        """Engine settings derived from this section."""
        return SyncSettings(
            page_size=self.page_size,
            max_pages=self.max_pages,
            base_retry_seconds=self.base_retry_seconds,
            max_retry_seconds=self.max_retry_seconds,
            max_retries=self.max_retries,
            debounce_seconds=self.debounce_seconds,
            online_debounce_seconds=self.online_debounce_seconds,
            compact_after_sync=self.compact_after_sync,
        )


@dataclass
class ServerConfig:
    """Configuration for the reference peer server."""

    host: str = "0.0.0.0"
    port: int = 8765
    db_path: str = "~/.listsync/peer.db"


@dataclass
class Config:
    replica: ReplicaConfig = field(default_factory=ReplicaConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with LISTSYNC_ prefix."""
    return os.environ.get(f"LISTSYNC_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Replica overrides
    if name := _get_env("REPLICA_NAME"):
        config.replica.name = name
    if data_path := _get_env("DATA_PATH"):
        config.replica.data_path = data_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _parse_bool(sync_enabled)
    if peer_url := _get_env("PEER_URL"):
        config.sync.peer_url = peer_url
    if page_size := _get_env("SYNC_PAGE_SIZE"):
        config.sync.page_size = int(page_size)
    if max_retries := _get_env("SYNC_MAX_RETRIES"):
        config.sync.max_retries = int(max_retries)
    if timeout := _get_env("SYNC_TIMEOUT"):
        config.sync.timeout_seconds = float(timeout)

    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)
    if db_path := _get_env("SERVER_DB_PATH"):
        config.server.db_path = db_path

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

            # Parse replica config
            if "replica" in data:
                replica_data = data["replica"]
                config.replica = ReplicaConfig(
                    name=replica_data.get("name", config.replica.name),
                    data_path=replica_data.get("data_path", config.replica.data_path),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                defaults = config.sync
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", defaults.enabled),
                    peer_url=sync_data.get("peer_url", defaults.peer_url),
                    page_size=sync_data.get("page_size", defaults.page_size),
                    max_pages=sync_data.get("max_pages", defaults.max_pages),
                    base_retry_seconds=sync_data.get(
                        "base_retry_seconds", defaults.base_retry_seconds
                    ),
                    max_retry_seconds=sync_data.get(
                        "max_retry_seconds", defaults.max_retry_seconds
                    ),
                    max_retries=sync_data.get("max_retries", defaults.max_retries),
                    debounce_seconds=sync_data.get(
                        "debounce_seconds", defaults.debounce_seconds
                    ),
                    online_debounce_seconds=sync_data.get(
                        "online_debounce_seconds", defaults.online_debounce_seconds
                    ),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", defaults.timeout_seconds
                    ),
                    compact_after_sync=sync_data.get(
                        "compact_after_sync", defaults.compact_after_sync
                    ),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    db_path=server_data.get("db_path", config.server.db_path),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
