"""Bridge configuration management."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class BridgeConfig:
    """Configuration for a SiaBridge instance.

    All options are fixed once the bridge is constructed.

    Attributes:
        siad_address: Address of the Sia daemon API (e.g. "127.0.0.1:9980")
        cache_dir: Root directory for cached object content
        db_file: Path of the SQLite metadata database
        manager_interval: Seconds between reconciliation/eviction passes
        remote_url: Optional cloudfiles URL (e.g. 'gs://bucket/prefix').
            When set, objects are stored there instead of on the Sia daemon.
        request_timeout: Timeout in seconds for daemon HTTP requests
            (None = wait until the daemon answers)
        lock_timeout: Seconds to wait for a per-object cache lock
    """

    siad_address: str = "127.0.0.1:9980"
    cache_dir: Path = Path(".sia_cache")
    db_file: Path = Path("siabridge.db")
    manager_interval: float = 30
    remote_url: Optional[str] = None
    request_timeout: Optional[float] = None
    lock_timeout: float = 30

    def __post_init__(self):
        """Normalize paths and reject values the bridge cannot run with."""
        self.cache_dir = Path(self.cache_dir).expanduser()
        self.db_file = Path(self.db_file).expanduser()

        if self.manager_interval <= 0:
            raise ValueError(
                f"manager_interval must be positive, got {self.manager_interval}"
            )
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError(
                f"request_timeout must be positive or None, got {self.request_timeout}"
            )
        if self.lock_timeout < 0:
            raise ValueError(f"lock_timeout must be >= 0, got {self.lock_timeout}")

    @classmethod
    def load(cls, config_path: Path) -> "BridgeConfig":
        """Load configuration from a JSON file.

        Args:
            config_path: Path to config file

        Returns:
            BridgeConfig instance (defaults if the file does not exist)
        """
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to a JSON file.

        Args:
            config_path: Path to config file
        """
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "siad_address": self.siad_address,
            "cache_dir": str(self.cache_dir),
            "db_file": str(self.db_file),
            "manager_interval": self.manager_interval,
            "remote_url": self.remote_url,
            "request_timeout": self.request_timeout,
            "lock_timeout": self.lock_timeout,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Create configuration from environment variables.

        Environment variables:
            SIABRIDGE_SIAD_ADDRESS: Sia daemon API address
            SIABRIDGE_CACHE_DIR: Cache directory path
            SIABRIDGE_DB_FILE: Metadata database path
            SIABRIDGE_MANAGER_INTERVAL: Seconds between manager passes
            SIABRIDGE_REMOTE_URL: cloudfiles URL to use instead of the daemon
            SIABRIDGE_REQUEST_TIMEOUT: Daemon request timeout in seconds

        Returns:
            BridgeConfig instance
        """
        kwargs = {}

        if os.getenv("SIABRIDGE_SIAD_ADDRESS"):
            kwargs["siad_address"] = os.getenv("SIABRIDGE_SIAD_ADDRESS")

        if os.getenv("SIABRIDGE_CACHE_DIR"):
            kwargs["cache_dir"] = Path(os.getenv("SIABRIDGE_CACHE_DIR"))

        if os.getenv("SIABRIDGE_DB_FILE"):
            kwargs["db_file"] = Path(os.getenv("SIABRIDGE_DB_FILE"))

        if os.getenv("SIABRIDGE_MANAGER_INTERVAL"):
            kwargs["manager_interval"] = float(os.getenv("SIABRIDGE_MANAGER_INTERVAL"))

        if os.getenv("SIABRIDGE_REMOTE_URL"):
            kwargs["remote_url"] = os.getenv("SIABRIDGE_REMOTE_URL")

        if os.getenv("SIABRIDGE_REQUEST_TIMEOUT"):
            kwargs["request_timeout"] = float(os.getenv("SIABRIDGE_REQUEST_TIMEOUT"))

        return cls(**kwargs)
