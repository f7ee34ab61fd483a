"""
outreach_sync.daemon - Background sync scheduling

Per-account sync timers, a bounded worker pool and the foreground daemon
process with PID file and signal handling.
"""

import re

from outreach_sync.config.sync_policy import (
    ABSOLUTE_CEILINGS,
    MIN_AUTO_SYNC_INTERVAL_MINUTES,
)


def parse_interval(interval: str | int) -> int:
    """Parse an interval string into seconds.

    Accepts interval strings with units (s, m, h, d) or plain integers.

    Args:
        interval: Interval specification. Examples:
            - "30s" -> 30 seconds
            - "15m" -> 15 minutes (900 seconds)
            - "1h" -> 1 hour (3600 seconds)
            - "1d" -> 1 day (86400 seconds)
            - 3600 -> 3600 seconds (pass-through)
            - "3600" -> 3600 seconds (numeric string)

    Returns:
        Interval in seconds as an integer.

    Raises:
        ValueError: If the interval format is invalid or uses an unknown unit.
    """
    if isinstance(interval, bool):
        raise ValueError("Invalid interval type: bool. Expected str or int.")

    if isinstance(interval, int):
        return interval

    if isinstance(interval, str):
        try:
            return int(interval)
        except ValueError:
            pass

        match = re.match(r"^(\d+)\s*([smhd])$", interval.lower().strip())
        if not match:
            raise ValueError(
                f"Invalid interval format: '{interval}'. "
                "Use format like '30m', '2h', or '1d'."
            )

        value = int(match.group(1))
        unit = match.group(2)

        multipliers = {
            "s": 1,
            "m": 60,
            "h": 3600,
            "d": 86400,
        }

        return value * multipliers[unit]

    raise ValueError(
        f"Invalid interval type: {type(interval).__name__}. Expected str or int."
    )


def parse_interval_minutes(interval: str | int) -> int:
    """Parse an interval into whole minutes within the allowed sync range.

    Plain integers are minutes here ("30" -> 30); suffixed values use
    parse_interval ("2h" -> 120).

    Raises:
        ValueError: If the interval is not whole minutes or is outside
            the allowed range.
    """
    if isinstance(interval, int) and not isinstance(interval, bool):
        minutes = interval
    elif isinstance(interval, str) and interval.strip().isdigit():
        minutes = int(interval.strip())
    else:
        seconds = parse_interval(interval)
        if seconds % 60:
            raise ValueError(f"Interval must be whole minutes, got {seconds}s")
        minutes = seconds // 60

    ceiling = ABSOLUTE_CEILINGS["auto_sync_interval_minutes"]
    if not MIN_AUTO_SYNC_INTERVAL_MINUTES <= minutes <= ceiling:
        raise ValueError(
            f"Interval must be between {MIN_AUTO_SYNC_INTERVAL_MINUTES} minutes "
            f"and {ceiling // 60} hours, got {minutes} minutes"
        )
    return minutes


# Imports after parse_interval to avoid circular dependencies
from outreach_sync.daemon.runner import (  # noqa: E402
    DEFAULT_PID_FILE,
    DEFAULT_REFRESH_SECONDS,
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonRunner,
    DaemonStats,
    PIDFileError,
    PIDFileManager,
)
from outreach_sync.daemon.scheduler import (  # noqa: E402
    BackgroundSyncScheduler,
    SchedulerError,
    StatusEvent,
)

__all__ = [
    "BackgroundSyncScheduler",
    "DEFAULT_PID_FILE",
    "DaemonAlreadyRunningError",
    "DaemonError",
    "DaemonRunner",
    "DaemonStats",
    "DEFAULT_REFRESH_SECONDS",
    "PIDFileError",
    "PIDFileManager",
    "SchedulerError",
    "StatusEvent",
    "parse_interval",
    "parse_interval_minutes",
]
