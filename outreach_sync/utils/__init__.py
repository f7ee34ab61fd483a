"""
outreach_sync.utils - Utility module

String normalization, configuration paths and logging configuration.
"""

from outreach_sync.utils.normalization import (
    collapse_whitespace,
    normalize_string,
    strip_accents,
)
from outreach_sync.utils.paths import (
    DEFAULT_CONFIG_DIR,
    resolve_config_dir,
    resolve_database_path,
)

__all__ = [
    "normalize_string",
    "collapse_whitespace",
    "strip_accents",
    "resolve_config_dir",
    "resolve_database_path",
    "DEFAULT_CONFIG_DIR",
]
