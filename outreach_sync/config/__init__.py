"""
outreach_sync.config - Configuration management module

Contains YAML configuration loading, validation and the sync policy.
"""

from outreach_sync.config.loader import ConfigError, ConfigLoader, resolve_api_key
from outreach_sync.config.sync_policy import (
    ABSOLUTE_CEILINGS,
    SYNC_PRESETS,
    PolicyViolation,
    SyncConfigError,
    SyncPolicy,
    policy_for_workspace,
)

__all__ = [
    "ConfigLoader",
    "ConfigError",
    "resolve_api_key",
    "SyncPolicy",
    "SyncConfigError",
    "PolicyViolation",
    "SYNC_PRESETS",
    "ABSOLUTE_CEILINGS",
    "policy_for_workspace",
]
