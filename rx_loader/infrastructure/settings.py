"""Application Settings.

Combines the database configuration from the configuration manager with the
pipeline tunables read from ``RXL_*`` environment variables.
"""

import os
from typing import Optional

from rx_loader.infrastructure.config_manager import DatabaseConfig, get_database_config

# Application metadata
APP_NAME = "rx-loader"
APP_VERSION = "1.0.0"

# Fact rows per bulk upsert
DEFAULT_LOAD_CHUNK_SIZE = 500

# Reference rows per bulk insert
DEFAULT_INSERT_CHUNK_SIZE = 1000

# Rows between parser progress callbacks (clamped to 100..500)
DEFAULT_PROGRESS_INTERVAL = 250

# Errors kept on a summary; the rest are only counted
DEFAULT_MAX_ROW_ERRORS = 1000


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


class Settings:
    """Application settings loaded from the environment.

    Attributes:
        load_chunk_size: RXL_LOAD_CHUNK_SIZE (default 500)
        insert_chunk_size: RXL_INSERT_CHUNK_SIZE (default 1000)
        progress_interval: RXL_PROGRESS_INTERVAL (default 250, clamped to 100..500)
        max_row_errors: RXL_MAX_ROW_ERRORS (default 1000)
        record_import_logs: RXL_RECORD_IMPORT_LOGS (default true)
        log_level: RXL_LOG_LEVEL (default INFO)
        log_json: RXL_LOG_JSON (default false)
    """

    def __init__(self):
        self._db_config: Optional[DatabaseConfig] = None

        self.app_name = os.getenv("RXL_APP_NAME", APP_NAME)
        self.load_chunk_size = max(1, _env_int("RXL_LOAD_CHUNK_SIZE", DEFAULT_LOAD_CHUNK_SIZE))
        self.insert_chunk_size = max(1, _env_int("RXL_INSERT_CHUNK_SIZE", DEFAULT_INSERT_CHUNK_SIZE))
        self.progress_interval = min(500, max(100, _env_int("RXL_PROGRESS_INTERVAL", DEFAULT_PROGRESS_INTERVAL)))
        self.max_row_errors = max(0, _env_int("RXL_MAX_ROW_ERRORS", DEFAULT_MAX_ROW_ERRORS))
        self.record_import_logs = _env_bool("RXL_RECORD_IMPORT_LOGS", True)

        self.log_level = os.getenv("RXL_LOG_LEVEL", "INFO")
        self.log_json = _env_bool("RXL_LOG_JSON", False)

    @property
    def db_config(self) -> DatabaseConfig:
        """Database configuration, loaded lazily on first access."""
        if self._db_config is None:
            self._db_config = get_database_config()
        return self._db_config

    def get_db_path(self) -> str:
        """Database path for DuckDB.

        Raises:
            ValueError: If the configured database is not DuckDB
        """
        if self.db_config.db_type == "duckdb":
            return self.db_config.db_path or ":memory:"
        raise ValueError(f"Database type '{self.db_config.db_type}' does not use db_path")


# Global settings instance
settings = Settings()
