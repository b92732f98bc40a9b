#!/usr/bin/env python3
"""Configuration for odsync.

Config File Structure
=====================

config.json contains:

{
  "sync_directory": "/home/user/OneDrive",   // Local mirror root
  "database_path": "/home/user/.config/odsync/sync_state.db",
  "log_level": "INFO",
  "max_parallel_transfers": 8,               // Simultaneous transfers
  "download_batch_size": 100,                // Rows fetched per pending-download page
  "upload_batch_size": 100,                  // Rows fetched per pending-upload page
  "queue_capacity": 32,                      // Items waiting for a transfer worker
  "max_retries": 3,                          // Retries after the first attempt
  "retry_base_delay_ms": 500,                // Backoff: base * 2^attempt
  "upload_chunk_size": 327680,               // 320 KiB
  "compute_hashes": false,                   // Hash local files while scanning
  "use_trash": true,                         // Local deletes go to the recycle bin
  "graph_api_base": "https://graph.microsoft.com/v1.0"
}

Services never read Config directly; they receive the immutable
SyncSettings built by Config.sync_settings().
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any

from .validators import validate_config_value, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncSettings:
    """Tuning knobs for the sync core."""

    max_parallel_transfers: int = 8
    download_batch_size: int = 100
    upload_batch_size: int = 100
    queue_capacity: int = 32
    max_retries: int = 3
    retry_base_delay_ms: int = 500
    upload_chunk_size: int = 320 * 1024


class Config:
    """Manages odsync configuration."""

    DEFAULT_CONFIG_DIR = Path.home() / ".config" / "odsync"
    DEFAULT_SYNC_DIR = Path.home() / "OneDrive"
    DEFAULT_GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
    CONFIG_FILE = "config.json"
    DATABASE_FILE = "sync_state.db"
    LOG_FILE = "odsync.log"

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Custom configuration directory path
        """
        self.config_dir = config_dir or self.DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.config_path = self.config_dir / self.CONFIG_FILE
        self.log_path = self.config_dir / self.LOG_FILE

        self._config: Dict[str, Any] = {}
        self.load()

    def _defaults(self) -> Dict[str, Any]:
        settings = SyncSettings()
        return {
            'sync_directory': str(self.DEFAULT_SYNC_DIR),
            'database_path': str(self.config_dir / self.DATABASE_FILE),
            'log_level': 'INFO',
            'max_parallel_transfers': settings.max_parallel_transfers,
            'download_batch_size': settings.download_batch_size,
            'upload_batch_size': settings.upload_batch_size,
            'queue_capacity': settings.queue_capacity,
            'max_retries': settings.max_retries,
            'retry_base_delay_ms': settings.retry_base_delay_ms,
            'upload_chunk_size': settings.upload_chunk_size,
            'compute_hashes': False,
            'use_trash': True,
            'graph_api_base': self.DEFAULT_GRAPH_API_BASE,
        }

    def load(self) -> None:
        """Load configuration from file."""
        if self.config_path.exists():
            with open(self.config_path, 'r') as f:
                stored = json.load(f)
            # Keys added in newer versions fall back to defaults
            self._config = {**self._defaults(), **stored}
            logger.debug(f"Loaded config from {self.config_path}")
        else:
            self._config = self._defaults()
            self.save()
            logger.debug(f"Created default config at {self.config_path}")

    def save(self) -> None:
        """Save configuration to file."""
        with open(self.config_path, 'w') as f:
            json.dump(self._config, f, indent=2)
        # Secure file permissions (owner read/write only)
        self.config_path.chmod(0o600)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value with validation.

        Args:
            key: Configuration key
            value: Configuration value

        Raises:
            ValueError: If value is invalid for the given key
        """
        try:
            validated_value = validate_config_value(key, value)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        self._config[key] = validated_value
        self.save()

    @property
    def sync_directory(self) -> Path:
        return Path(self._config['sync_directory'])

    @property
    def database_path(self) -> Path:
        return Path(self._config['database_path'])

    @property
    def log_level(self) -> str:
        return self._config.get('log_level', 'INFO').upper()

    @property
    def compute_hashes(self) -> bool:
        return bool(self._config.get('compute_hashes', False))

    @property
    def use_trash(self) -> bool:
        return bool(self._config.get('use_trash', True))

    @property
    def graph_api_base(self) -> str:
        return self._config.get('graph_api_base', self.DEFAULT_GRAPH_API_BASE)

    def sync_settings(self) -> SyncSettings:
        """Build the settings consumed by the sync services."""
        return SyncSettings(
            max_parallel_transfers=int(self._config['max_parallel_transfers']),
            download_batch_size=int(self._config['download_batch_size']),
            upload_batch_size=int(self._config['upload_batch_size']),
            queue_capacity=int(self._config['queue_capacity']),
            max_retries=int(self._config['max_retries']),
            retry_base_delay_ms=int(self._config['retry_base_delay_ms']),
            upload_chunk_size=int(self._config['upload_chunk_size']),
        )
