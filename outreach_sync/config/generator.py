"""
Configuration file generator for outreach synchronization.

Generates a commented default config.yaml documenting every option the
loader accepts.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Every option is commented out, so the generated file loads as an empty
    configuration and the built-in defaults apply until edited.

    Returns:
        String containing YAML configuration with comments
    """
    return """# Outreach Sync Configuration
# ===========================
#
# CLI arguments always override these values.
# Save as ~/.outreach-sync/config.yaml (or pass --config-file).

# Store
# -----

# SQLite store location. Relative paths are resolved against the
# configuration directory.
# Default: outreach_sync.db
# database_path: outreach_sync.db


# Upstream Sources
# ----------------

# Primary platform API (conversations, messages, connections)
# primary_api_url: https://api.example-primary.com/api/v1
# primary_api_key_env: OUTREACH_SYNC_PRIMARY_API_KEY

# Secondary platform API (profile data, fallback for contacts)
# secondary_api_url: https://api.example-secondary.com/v2
# secondary_api_key_env: OUTREACH_SYNC_SECONDARY_API_KEY

# Timeout for each page fetch, in seconds. A timeout is treated like an
# unavailable source: the page or conversation is skipped and recorded.
# Default: 30
# request_timeout: 30

# Retry behaviour for rate limits and server errors
# api_max_retries: 5
# api_initial_retry_delay: 1.0
# api_max_retry_delay: 60.0


# Sync Policy
# -----------

# Presets: minimal, standard, comprehensive. Fields listed below the preset
# override it. Values above the platform ceilings are rejected:
#   max_conversations <= 2000, max_messages_per_conversation <= 100,
#   conversations_per_page <= 100, sync_days_back <= 365, max_pages <= 50,
#   15 <= auto_sync_interval_minutes <= 1440
# sync_policy:
#   preset: standard
#   skip_unchanged: true
#   max_pages: 20

# Per-workspace overrides, applied on top of sync_policy
# workspaces:
#   ws_acme:
#     preset: minimal
#     sync_days_back: 14


# Background Scheduler
# --------------------

# Maximum sync passes running at once across all accounts
# Default: 3
# max_concurrent_syncs: 3

# Reconcile contacts on every Nth tick (messages sync on every tick)
# Default: 1
# reconcile_every_ticks: 1

# PID file for `outreach-sync daemon start`
# daemon_pid_file: ~/.outreach-sync/daemon.pid


# Logging
# -------

# verbose: false
# log_dir: ~/.outreach-sync/logs
# log_retention_count: 10
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save the default configuration file to the given path.

    Creates parent directories if needed and writes the file with
    owner-only permissions, since it may later hold API keys.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite an existing file

    Returns:
        Tuple of (success, error_message); error_message is None on success
    """
    config_path = config_path.expanduser().resolve()

    if config_path.exists() and not overwrite:
        return (
            False,
            f"Configuration file already exists: {config_path}\n"
            "Use --force to overwrite.",
        )

    try:
        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)
    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)

    logger.info(f"Created configuration file: {config_path}")
    return (True, None)
