# === MODULE PURPOSE ===
# Configuration management for the TradePulse backend.
# Loads YAML configuration files and provides typed access to settings.

# === KEY CONCEPTS ===
# - YAML-based: Human-readable configuration format
# - Environment overrides: Deployment values (hosts, ports, secrets) come from env
# - Type-safe: Provides typed accessors for settings

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "server-config.yaml"


class Config:
    """
    Configuration loader and accessor.

    Loads configuration from YAML files and provides typed access
    to configuration values.

    Usage:
        config = Config.load("config/server-config.yaml")

        # Access nested values
        host = config.get("push.host", default="0.0.0.0")

        # Access with type checking
        capacity = config.get_int("notifications.mailbox_capacity", default=256)
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data

    @classmethod
    def load(cls, config_path: str | Path) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Config instance with loaded data

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded configuration from {path}")
        return cls(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from a dictionary."""
        return cls(data)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by dot-separated key.

        Args:
            key: Dot-separated path (e.g., "notifications.pong_timeout")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value: Any = self._data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def get_str(self, key: str, default: str = "") -> str:
        """Get a string configuration value."""
        value = self.get(key, default)
        return str(value) if value is not None else default

    def get_int(self, key: str, default: int = 0) -> int:
        """Get an integer configuration value."""
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get a float configuration value."""
        value = self.get(key, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get a boolean configuration value."""
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on")
        return bool(value) if value is not None else default

    def get_dict(self, key: str, default: dict | None = None) -> dict:
        """Get a dictionary configuration value."""
        value = self.get(key, default)
        if isinstance(value, dict):
            return value
        return default if default is not None else {}


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration from a YAML file.

    This is a convenience function that wraps Config.load().

    Args:
        config_path: Path to the YAML configuration file.
            Defaults to config/server-config.yaml in the project root.

    Returns:
        Config instance
    """
    return Config.load(config_path or DEFAULT_CONFIG_PATH)


def get_server_config(config: Config | None = None) -> dict[str, Any]:
    """
    Get HTTP and push server bind settings.

    Environment variables take priority over the YAML values:
        WEB_HOST: Host for the REST API (default: 0.0.0.0)
        WEB_PORT: Port for the REST API (default: 9000)
        PUSH_HOST: Host for the WebSocket push server (default: 0.0.0.0)
        PUSH_PORT: Port for the WebSocket push server (default: 9001)

    Returns:
        Dictionary with web_host, web_port, push_host, push_port.
    """
    config = config or Config.from_dict({})

    return {
        "web_host": os.getenv("WEB_HOST", config.get_str("web.host", "0.0.0.0")),
        "web_port": int(os.getenv("WEB_PORT", config.get_int("web.port", 9000))),
        "push_host": os.getenv("PUSH_HOST", config.get_str("push.host", "0.0.0.0")),
        "push_port": int(os.getenv("PUSH_PORT", config.get_int("push.port", 9001))),
    }


def get_database_config(config: Config | None = None) -> dict[str, Any]:
    """
    Get PostgreSQL connection settings.

    Environment variables:
        DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD

    Returns:
        Dictionary matching the TradeRepositoryConfig fields plus "enabled".
    """
    config = config or Config.from_dict({})

    return {
        "enabled": config.get_bool("database.enabled", False),
        "host": os.getenv("DB_HOST", config.get_str("database.host", "localhost")),
        "port": int(os.getenv("DB_PORT", config.get_int("database.port", 5432))),
        "database": os.getenv("DB_NAME", config.get_str("database.database", "tradepulse")),
        "user": os.getenv("DB_USER", config.get_str("database.user", "tradepulse")),
        "password": os.getenv("DB_PASSWORD", config.get_str("database.password", "")),
        "pool_min_size": config.get_int("database.pool_min_size", 2),
        "pool_max_size": config.get_int("database.pool_max_size", 10),
    }


def get_jwt_secret() -> str:
    """
    Get the JWT signing secret.

    Raises:
        ValueError: If JWT_SECRET is not set.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise ValueError(
            "JWT_SECRET environment variable is required to start the server"
        )
    return secret
