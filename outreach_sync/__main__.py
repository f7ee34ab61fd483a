"""
Entry point for running outreach_sync as a module.

Usage:
    python -m outreach_sync --help
    python -m outreach_sync sync --workspace ws1 --account acc1
    python -m outreach_sync schedule status --workspace ws1
"""

from outreach_sync.cli import cli

if __name__ == "__main__":
    cli()
