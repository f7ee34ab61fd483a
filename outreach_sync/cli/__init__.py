"""CLI package for outreach_sync."""

from outreach_sync.cli.formatters import (
    echo_status_event,
    show_contact,
    show_contacts_table,
    show_reconcile_result,
    show_sync_result,
)
from outreach_sync.cli.main import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_WORKSPACE,
    build_source,
    cli,
    get_config_dir,
)
from outreach_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_WORKSPACE",
    "build_source",
    "cli",
    "echo_status_event",
    "get_config_dir",
    "show_contact",
    "show_contacts_table",
    "show_reconcile_result",
    "show_sync_result",
]
