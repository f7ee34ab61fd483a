"""
Foreground daemon process for background sync.

Provides a DaemonRunner that manages:
- PID file creation and cleanup for daemon control
- Signal handling for graceful shutdown (SIGTERM/SIGINT)
- Restoring enabled schedules and running the BackgroundSyncScheduler
  until shutdown
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from outreach_sync.daemon.scheduler import BackgroundSyncScheduler, StatusEvent
from outreach_sync.sync.models import RunStatus
from outreach_sync.utils.paths import DEFAULT_CONFIG_DIR
from outreach_sync.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


# Default PID file location
DEFAULT_PID_DIR = DEFAULT_CONFIG_DIR
DEFAULT_PID_FILE = DEFAULT_PID_DIR / "daemon.pid"

# How often the daemon picks up schedules changed by other processes
DEFAULT_REFRESH_SECONDS = 60.0


class DaemonError(Exception):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when PID file operations fail."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when attempting to start a daemon that is already running."""

    pass


@dataclass
class DaemonStats:
    """Counters kept while the daemon runs, fed by scheduler status events."""

    started_at: datetime = field(default_factory=utc_now)
    runs: int = 0
    failed_runs: int = 0
    contacts_synced: int = 0
    messages_synced: int = 0
    last_error: str | None = None
    _seen: set[tuple[str, str, datetime]] = field(default_factory=set, repr=False)

    def observe(self, event: StatusEvent) -> None:
        # Enable/disable events carry the latest run too; count each run once
        if not event.recent_runs:
            return
        latest = event.recent_runs[0]
        marker = (event.workspace_id, event.account_id, latest.at)
        if latest.at < self.started_at or marker in self._seen:
            return
        self._seen.add(marker)
        self.runs += 1
        self.contacts_synced += latest.contacts_synced
        self.messages_synced += latest.messages_synced
        if latest.status != RunStatus.SUCCESS:
            self.failed_runs += 1
            if latest.errors:
                self.last_error = latest.errors[-1]


class PIDFileManager:
    """
    Manages PID file for daemon process.

    Provides methods to create, read, and remove PID files for
    daemon process management and duplicate prevention.
    """

    def __init__(self, pid_file: Path | None = None):
        """
        Initialize the PID file manager.

        Args:
            pid_file: Path to the PID file. Defaults to ~/.outreach-sync/daemon.pid
        """
        self.pid_file = pid_file or DEFAULT_PID_FILE

    def create(self) -> None:
        """
        Create the PID file with the current process ID.

        A PID file left by a process that is no longer running is replaced.

        Raises:
            PIDFileError: If the PID file cannot be created.
            DaemonAlreadyRunningError: If a daemon is already running.
        """
        existing_pid = self.read()
        if existing_pid is not None:
            if self.is_process_running(existing_pid):
                raise DaemonAlreadyRunningError(
                    f"Daemon already running with PID {existing_pid}"
                )
            logger.warning(
                f"Removing stale PID file (process {existing_pid} not running)"
            )
            self.remove()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            pid = os.getpid()
            self.pid_file.write_text(str(pid))
            logger.debug(f"Created PID file: {self.pid_file} (PID: {pid})")
        except OSError as e:
            raise PIDFileError(f"Failed to create PID file {self.pid_file}: {e}") from e

    def read(self) -> int | None:
        """
        Read the PID from the PID file.

        Returns:
            The PID stored in the file, or None if the file doesn't exist.

        Raises:
            PIDFileError: If the PID file exists but cannot be read or parsed.
        """
        if not self.pid_file.exists():
            return None

        try:
            content = self.pid_file.read_text().strip()
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e
        try:
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content}") from e

    def remove(self) -> None:
        """
        Remove the PID file. Does nothing if the file doesn't exist.

        Raises:
            PIDFileError: If the PID file exists but cannot be removed.
        """
        if not self.pid_file.exists():
            return

        try:
            self.pid_file.unlink()
            logger.debug(f"Removed PID file: {self.pid_file}")
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e

    @staticmethod
    def is_process_running(pid: int) -> bool:
        """Check if a process with the given PID is running."""
        try:
            # Signal 0 only checks that the process exists
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else
            return True


class DaemonRunner:
    """
    Runs a BackgroundSyncScheduler in the foreground until signalled.

    Usage:
        runner = DaemonRunner(scheduler, pid_file=Path("~/.outreach-sync/daemon.pid"))
        runner.run()  # blocks until SIGTERM/SIGINT

    Attributes:
        scheduler: The scheduler whose timers do the work
        pid_file: Path to PID file
        stats: Counters for this daemon session
    """

    def __init__(
        self,
        scheduler: BackgroundSyncScheduler,
        pid_file: Path | None = None,
        refresh_seconds: float = DEFAULT_REFRESH_SECONDS,
    ):
        self.scheduler = scheduler
        self.refresh_seconds = refresh_seconds
        self._pid_manager = PIDFileManager(pid_file)
        self._shutdown = threading.Event()
        self._running = False
        self._original_handlers: dict[int, object] = {}
        self.stats = DaemonStats()

    @property
    def pid_file(self) -> Path:
        """Get the PID file path."""
        return self._pid_manager.pid_file

    def _setup_signal_handlers(self) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[signum] = signal.signal(
                signum, self._signal_handler
            )
        logger.debug("Signal handlers installed for SIGTERM and SIGINT")

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]
        self._original_handlers.clear()
        logger.debug("Signal handlers restored")

    def _signal_handler(self, signum: int, frame: object) -> None:
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self._shutdown.set()

    def run(self) -> None:
        """
        Run the daemon.

        Blocks until a shutdown signal is received or stop() is called.
        Restores every enabled schedule from the store on start and
        re-reads the schedules every refresh_seconds. In-flight runs finish
        before the scheduler's pool is released.

        Raises:
            DaemonAlreadyRunningError: If another daemon is already running.
            PIDFileError: If the PID file cannot be written.
        """
        self._pid_manager.create()
        logger.info(f"Daemon started (PID: {os.getpid()}, PID file: {self.pid_file})")

        self._setup_signal_handlers()
        self._running = True
        self._shutdown.clear()
        self.stats = DaemonStats()
        unsubscribe = self.scheduler.subscribe(self.stats.observe)

        try:
            restored = self.scheduler.restore()
            if restored == 0:
                logger.warning(
                    "No enabled schedules; use `outreach-sync schedule enable` "
                    "to add one"
                )
            while not self._shutdown.wait(self.refresh_seconds):
                self.scheduler.reload()
        finally:
            unsubscribe()
            self._running = False
            self.scheduler.shutdown(wait=True)
            self._restore_signal_handlers()
            self._pid_manager.remove()
            logger.info(
                f"Daemon stopped after {self.stats.runs} runs "
                f"({self.stats.failed_runs} with errors)"
            )

    def stop(self) -> None:
        """Request daemon shutdown. Safe to call from any thread."""
        logger.info("Stop requested")
        self._shutdown.set()

    def is_running(self) -> bool:
        return self._running

    @classmethod
    def get_running_pid(cls, pid_file: Path | None = None) -> int | None:
        """
        Get the PID of the currently running daemon.

        Returns:
            PID if a daemon is running, None otherwise.
        """
        manager = PIDFileManager(pid_file)
        pid = manager.read()
        if pid is not None and manager.is_process_running(pid):
            return pid
        return None

    @classmethod
    def stop_running_daemon(cls, pid_file: Path | None = None) -> bool:
        """
        Send SIGTERM to the running daemon.

        Returns:
            True if the signal was sent, False if no daemon is running.
        """
        pid = cls.get_running_pid(pid_file)
        if pid is None:
            logger.info("No running daemon found")
            return False

        try:
            os.kill(pid, signal.SIGTERM)
            logger.info(f"Sent SIGTERM to daemon (PID: {pid})")
            return True
        except ProcessLookupError:
            logger.warning(f"Daemon process {pid} not found")
            return False
        except PermissionError:
            logger.error(f"Permission denied sending signal to PID {pid}")
            return False
