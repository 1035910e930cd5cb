"""Application Settings.

This module provides application-wide settings that combine configuration
from the configuration manager with application-specific defaults.
"""

import os
from typing import Optional

from visitfacts.infrastructure.config_manager import ConfigManager, DatabaseConfig

# Application metadata
APP_NAME = "Visit-Facts"
APP_VERSION = "1.0.0"

# Source system stamped on facts written by the visit editor
DEFAULT_SOURCE_SYSTEM = "VISIT_EDITOR"


class Settings:
    """Application settings loaded from configuration manager and environment.

    Settings are read when the instance is created; build a new instance to
    pick up environment changes.
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self._config_manager = config_manager
        self._db_config: Optional[DatabaseConfig] = None

        self.app_name = os.getenv("VF_APP_NAME", APP_NAME)
        self.source_system = self.config_manager.get("source_system", DEFAULT_SOURCE_SYSTEM)
        self.catalog_csv_path = self.config_manager.get("catalog.csv_path")

        # Logging
        self.log_level = os.getenv("VF_LOG_LEVEL", "INFO")
        self.log_json = os.getenv("VF_LOG_JSON", "false").lower() == "true"

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def db_config(self) -> DatabaseConfig:
        """Database configuration, loaded lazily on first access."""
        if self._db_config is None:
            self._db_config = self.config_manager.get_database_config()
        return self._db_config

    def get_db_path(self) -> str:
        """Get database path for DuckDB.

        Returns:
            Database path or ':memory:' for in-memory database
        """
        if self.db_config.db_type == "duckdb":
            return self.db_config.db_path or ":memory:"
        raise ValueError(f"Database type '{self.db_config.db_type}' does not use db_path")
