"""Configuration Manager.

This module loads the fact store's database configuration from environment
variables or a JSON file and validates it before any adapter is built.

Security Impact:
    - Configuration values are never logged, only their sources
    - Configuration is validated before use (fail-fast)

Architecture:
    - Follows Hexagonal Architecture: Infrastructure layer isolated from domain
    - Type-safe configuration using Pydantic models
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

SUPPORTED_DB_TYPES = ["memory", "duckdb"]


class DatabaseConfig(BaseModel):
    """Database configuration model.

    Parameters:
        db_type: Repository backend ('memory' or 'duckdb')
        db_path: Path to the DuckDB database file, ':memory:' when omitted
    """

    db_type: str = Field(default="memory", description="Repository backend (memory, duckdb)")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        """Validate database type."""
        if v.lower() not in SUPPORTED_DB_TYPES:
            raise ValueError(f"Unsupported database type: {v}. Supported: {SUPPORTED_DB_TYPES}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database directory exists (the file may not exist yet)."""
        if v is None or v == ":memory:":
            return v

        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    @model_validator(mode="after")
    def check_path_matches_type(self) -> 'DatabaseConfig':
        if self.db_type == "memory" and self.db_path not in (None, ":memory:"):
            raise ValueError("db_path is only supported for the duckdb database type")
        return self

    @property
    def is_persistent(self) -> bool:
        return self.db_type == "duckdb" and self.db_path not in (None, ":memory:")


class ConfigManager:
    """Configuration manager for the fact store.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()

        # Load from file
        config = ConfigManager.from_file("config.json")
        db_config = config.get_database_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        """Initialize configuration manager.

        Parameters:
            config_data: Configuration dictionary
        """
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - VF_DB_TYPE: Repository backend (memory, duckdb)
            - VF_DB_PATH: Path to database file (for DuckDB)
            - VF_CATALOG_CSV: Concept catalog seed CSV
            - VF_SOURCE_SYSTEM: Source system stamped on written facts

        Parameters:
            env_file: Optional .env file; defaults to the project root .env

        Returns:
            ConfigManager instance
        """
        env_path = Path(env_file) if env_file else Path(__file__).parent.parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "database": {
                "db_type": os.getenv("VF_DB_TYPE", "memory"),
                "db_path": os.getenv("VF_DB_PATH"),
            },
            "catalog": {
                "csv_path": os.getenv("VF_CATALOG_CSV"),
            },
            "source_system": os.getenv("VF_SOURCE_SYSTEM"),
        }

        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a JSON object")

        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        """Get the validated database configuration."""
        if self._database_config is None:
            db_config_data = {
                key: value
                for key, value in self._config_data.get("database", {}).items()
                if value is not None
            }
            self._database_config = DatabaseConfig(**db_config_data)

        return self._database_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Parameters:
            key: Configuration key (supports dot notation, e.g., "database.db_path")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config_data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


def get_database_config() -> DatabaseConfig:
    """Load database configuration from the environment.

    Defaults to the in-memory repository if nothing is configured.
    """
    config_manager = ConfigManager.from_environment()
    return config_manager.get_database_config()
