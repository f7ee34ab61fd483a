"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the outreach-sync configuration
directory (config file, SQLite store, PID file) across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".outreach-sync"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "OUTREACH_SYNC_CONFIG_DIR"

# Default SQLite store file name, relative to the config directory
DEFAULT_DATABASE_FILE = "outreach_sync.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. OUTREACH_SYNC_CONFIG_DIR environment variable
        3. Default directory (~/.outreach-sync)

    Args:
        config_dir: Optional explicit configuration directory path.

    Returns:
        Resolved Path to the configuration directory
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_database_path(config_dir: Path, configured: str | None = None) -> str:
    """
    Resolve the SQLite store location.

    ``:memory:`` is passed through untouched; relative paths are taken
    relative to the configuration directory.
    """
    if configured == ":memory:":
        return configured
    if configured:
        path = Path(configured).expanduser()
        if not path.is_absolute():
            path = config_dir / path
        return str(path)
    return str(config_dir / DEFAULT_DATABASE_FILE)
