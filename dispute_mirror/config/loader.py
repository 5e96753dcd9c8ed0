"""
Configuration loader for the Dispute Mirror sync service.

Loads configuration from a YAML file and environment variables with
nested key access.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/app.yaml"

# Global configuration cache
_config_cache: dict[str, Any] | None = None


def load_config(config_path: str | None = None) -> dict[str, Any]:
    """Load configuration from YAML file with environment variable support."""
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    # Load environment variables
    load_dotenv()

    config_path = config_path or os.getenv("DISPUTE_MIRROR_CONFIG", DEFAULT_CONFIG_PATH)
    config_file = Path(config_path)
    if not config_file.exists():
        logger.warning(f"Config file not found: {config_path}. Using defaults.")
        config: dict[str, Any] = {}
    else:
        with open(config_file) as f:
            config = yaml.safe_load(f) or {}

    _config_cache = config
    return config


def cfg(key: str, default: Any = None) -> Any:
    """
    Get configuration value using dot notation.

    Args:
        key: Dot-separated key path (e.g., "sync.page_size")
        default: Default value if key is not found

    Returns:
        Configuration value or default

    Examples:
        cfg("global.timezone", "UTC")
        cfg("paypal.max_retries", 3)
    """
    config = load_config()

    # Handle simple key
    if "." not in key:
        return config.get(key, default)

    keys = key.split(".")
    value = config

    try:
        for k in keys:
            value = value[k]
        return value
    except (KeyError, TypeError):
        return default


def env(key: str, default: str | None = None) -> str | None:
    """
    Get environment variable with optional default.

    Args:
        key: Environment variable name
        default: Default value if not found

    Returns:
        Environment variable value or default
    """
    return os.getenv(key, default)


def get_database_url() -> str:
    """Get database URL from environment."""
    db_url = env("DATABASE_URL")
    if not db_url:
        raise ValueError("DATABASE_URL environment variable is required")
    return db_url


def get_required_env(key: str) -> str:
    """
    Get required environment variable or raise error.

    Raises:
        ValueError: If environment variable is not set
    """
    value = env(key)
    if not value:
        raise ValueError(f"{key} environment variable is required")
    return value


def validate_config() -> None:
    """Validate configuration and required environment variables."""
    # Imported here to avoid a cycle: the vault reads env() from this module
    from ..utils.crypto import ConfigurationError, CredentialVault

    load_config()
    errors = []

    try:
        get_database_url()
    except ValueError as e:
        errors.append(str(e))

    try:
        CredentialVault(env("ENCRYPTION_KEY"))
    except ConfigurationError as e:
        errors.append(str(e))

    page_size = cfg("paypal.page_size", 20)
    if not isinstance(page_size, int) or page_size < 1:
        errors.append(f"paypal.page_size must be a positive integer, got {page_size!r}")

    if errors:
        raise ValueError(
            "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
        )


def reload_config() -> None:
    """Force reload of configuration cache."""
    global _config_cache
    _config_cache = None
