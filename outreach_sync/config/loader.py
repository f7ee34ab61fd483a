"""
Configuration loader module for outreach synchronization.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Validation of key types, ranges and the sync policy sections
- Resolving API keys from the environment
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from outreach_sync.config.sync_policy import SyncConfigError, SyncPolicy
from outreach_sync.utils.paths import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


# Valid configuration keys and their expected types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # Store
    "database_path": str,
    # Primary source
    "primary_api_url": str,
    "primary_api_key": str,
    "primary_api_key_env": str,
    # Secondary source
    "secondary_api_url": str,
    "secondary_api_key": str,
    "secondary_api_key_env": str,
    # HTTP behaviour
    "request_timeout": (int, float),
    "api_max_retries": int,
    "api_initial_retry_delay": (int, float),
    "api_max_retry_delay": (int, float),
    # Scheduler
    "max_concurrent_syncs": int,
    "reconcile_every_ticks": int,
    # Policy sections
    "sync_policy": dict,
    "workspaces": dict,
    # Logging
    "verbose": bool,
    "log_dir": str,
    "log_retention_count": int,
    # Daemon
    "daemon_pid_file": str,
}

POSITIVE_INT_KEYS = (
    "api_max_retries",
    "max_concurrent_syncs",
    "reconcile_every_ticks",
)

POSITIVE_FLOAT_KEYS = (
    "request_timeout",
    "api_initial_retry_delay",
    "api_max_retry_delay",
)


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load()

        # With custom path
        loader = ConfigLoader(config_dir=Path("/custom/path"))
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.outreach-sync/ or $OUTREACH_SYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        """Full path to the configuration file."""
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Configuration dictionary, or empty dict if the file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns an empty dict if the file doesn't exist, allowing
        graceful operation with CLI defaults.

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}

        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored (with a debug log) so newer config files
        keep working with older releases.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            expected_type = VALID_KEYS.get(key)
            if expected_type is None:
                logger.debug(f"Ignoring unknown configuration key: {key}")
                continue
            # bool is an int subclass; only accept it where bool is expected
            is_bool_mismatch = isinstance(value, bool) and expected_type is not bool
            if is_bool_mismatch or not isinstance(value, expected_type):
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        for key in POSITIVE_INT_KEYS:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        for key in POSITIVE_FLOAT_KEYS:
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        if config.get("log_retention_count", 0) < 0:
            raise ConfigError(
                f"log_retention_count must be >= 0, "
                f"got {config['log_retention_count']}"
            )

        # Policy sections are validated by constructing them
        try:
            base = SyncPolicy.from_dict(config.get("sync_policy"))
            for section in (config.get("workspaces") or {}).values():
                SyncPolicy.from_dict(section, base=base)
        except SyncConfigError as e:
            raise ConfigError(f"Invalid sync policy: {e}") from e

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config


def resolve_api_key(config: dict[str, Any], prefix: str) -> str | None:
    """
    Resolve an API key from the config or the environment.

    ``<prefix>_api_key`` wins; otherwise the environment variable named by
    ``<prefix>_api_key_env`` (default ``OUTREACH_SYNC_<PREFIX>_API_KEY``).

    Args:
        config: Loaded configuration dictionary
        prefix: "primary" or "secondary"

    Returns:
        The API key, or None if not configured
    """
    key = config.get(f"{prefix}_api_key")
    if key:
        return str(key)

    env_var = config.get(
        f"{prefix}_api_key_env", f"OUTREACH_SYNC_{prefix.upper()}_API_KEY"
    )
    return os.environ.get(env_var) or None
