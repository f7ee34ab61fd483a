"""
Background sync scheduler.

Provides a BackgroundSyncScheduler that manages:
- One timer thread per enabled (workspace_id, account_id) schedule key
- A shared worker pool bounded by max_concurrent_syncs, so upstream rate
  limits are respected across all accounts together
- No overlapping runs per key: a tick that fires while the key's previous
  run is in flight is skipped, and one SkippedTick is recorded per run
- Persisted schedules, last results and run history
- Status events for subscribers
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from outreach_sync.api.errors import Unauthorized
from outreach_sync.config.sync_policy import (
    ABSOLUTE_CEILINGS,
    MIN_AUTO_SYNC_INTERVAL_MINUTES,
    SyncPolicy,
)
from outreach_sync.storage.db import SyncDatabase
from outreach_sync.sync.engine import ConversationSyncEngine
from outreach_sync.sync.fallback import ProfileCollector
from outreach_sync.sync.models import RunRecord, RunStatus, SyncSchedule, SyncScope
from outreach_sync.sync.reconciler import ContactReconciler
from outreach_sync.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_SYNCS = 3

# Runs carried on each status event
RECENT_RUNS_IN_EVENTS = 5

UNAUTHORIZED_REASON = "unauthorized: reconnect the account"

ScheduleKey = tuple[str, str]


class SchedulerError(Exception):
    """Raised for invalid scheduler requests."""

    pass


@dataclass
class StatusEvent:
    """
    Status pushed to subscribers after every state change or run.

    contacts_synced and messages_synced are the deltas of the run that
    produced the event (0 for enable/disable events).
    """

    workspace_id: str
    account_id: str
    is_enabled: bool
    contacts_synced: int = 0
    messages_synced: int = 0
    errors: list[str] = field(default_factory=list)
    recent_runs: list[RunRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspace_id": self.workspace_id,
            "account_id": self.account_id,
            "is_enabled": self.is_enabled,
            "contacts_synced": self.contacts_synced,
            "messages_synced": self.messages_synced,
            "errors": list(self.errors),
            "recent_runs": [r.to_dict() for r in self.recent_runs],
        }


@dataclass
class _InFlight:
    skip_recorded: bool = False


class _KeyTimer(threading.Thread):
    """
    Fires a callback every interval until cancelled.

    The wait is an Event wait, so cancel() takes effect immediately.
    """

    def __init__(
        self,
        key: ScheduleKey,
        interval_seconds: float,
        fire: Callable[[], Any],
        run_immediately: bool = False,
    ):
        super().__init__(name=f"sync-timer-{key[0]}-{key[1]}", daemon=True)
        self.key = key
        self.interval_seconds = interval_seconds
        self._fire = fire
        self._run_immediately = run_immediately
        self._cancelled = threading.Event()

    def run(self) -> None:
        if self._run_immediately and not self._cancelled.is_set():
            self._fire()
        while not self._cancelled.wait(self.interval_seconds):
            self._fire()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class BackgroundSyncScheduler:
    """
    Process-wide scheduler for background conversation and contact syncs.

    Usage:
        scheduler = BackgroundSyncScheduler(
            database=db,
            engine=ConversationSyncEngine(primary, db),
            reconciler=ContactReconciler(db),
            profile_collector=ProfileCollector(primary, secondary),
            policy_for=lambda ws: policy_for_workspace(config, ws),
        )
        scheduler.enable("ws_1", "acc_1", interval_minutes=30)
        unsubscribe = scheduler.subscribe(print)
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        database: SyncDatabase,
        engine: ConversationSyncEngine,
        reconciler: ContactReconciler,
        profile_collector: Optional[ProfileCollector] = None,
        policy_for: Optional[Callable[[str], SyncPolicy]] = None,
        max_concurrent_syncs: int = DEFAULT_MAX_CONCURRENT_SYNCS,
        reconcile_every_ticks: int = 1,
        run_immediately: bool = False,
        seconds_per_minute: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the scheduler.

        Args:
            database: Store for schedules and run history
            engine: Conversation sync engine run on ticks whose scope
                   includes messages
            reconciler: Contact reconciler run on ticks whose scope
                       includes contacts
            profile_collector: Source of contact candidates; without it
                              contact ticks are no-ops
            policy_for: Resolves the SyncPolicy for a workspace
            max_concurrent_syncs: Worker pool size shared by all keys
            reconcile_every_ticks: Reconcile contacts on every Nth tick of a key
            run_immediately: Run a tick as soon as a key's timer starts
            seconds_per_minute: Length of an interval minute (tests shorten it)
            clock: Time source for run records
        """
        if max_concurrent_syncs < 1:
            raise SchedulerError("max_concurrent_syncs must be >= 1")
        if reconcile_every_ticks < 1:
            raise SchedulerError("reconcile_every_ticks must be >= 1")

        self.database = database
        self.engine = engine
        self.reconciler = reconciler
        self.profile_collector = profile_collector
        self.policy_for = policy_for or (lambda workspace_id: SyncPolicy())
        self.max_concurrent_syncs = max_concurrent_syncs
        self.reconcile_every_ticks = reconcile_every_ticks
        self.run_immediately = run_immediately
        self.seconds_per_minute = seconds_per_minute
        self._clock = clock

        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_syncs, thread_name_prefix="sync-worker"
        )
        self._lock = threading.RLock()
        self._timers: dict[ScheduleKey, _KeyTimer] = {}
        self._in_flight: dict[ScheduleKey, _InFlight] = {}
        self._tick_counts: dict[ScheduleKey, int] = {}
        self._subscribers: list[Callable[[StatusEvent], None]] = []
        self._shut_down = False

    # =========================================================================
    # Schedule control
    # =========================================================================

    def enable(
        self,
        workspace_id: str,
        account_id: str,
        interval_minutes: int,
        scope: SyncScope = SyncScope.BOTH,
    ) -> SyncSchedule:
        """
        Enable background sync for a key.

        Idempotent: enabling an enabled key with the same interval keeps its
        timer; a different interval replaces the timer. Never stacks timers.

        Raises:
            SchedulerError: If the interval is outside the allowed range or
                           the scheduler is shut down
        """
        _check_interval(interval_minutes)
        key = (workspace_id, account_id)

        with self._lock:
            if self._shut_down:
                raise SchedulerError("Scheduler is shut down")

            existing = self.database.get_sync_schedule(workspace_id, account_id)
            if existing is None:
                schedule = SyncSchedule(
                    workspace_id=workspace_id,
                    account_id=account_id,
                    interval_minutes=interval_minutes,
                    scope=SyncScope(scope),
                )
            else:
                schedule = replace(
                    existing,
                    enabled=True,
                    interval_minutes=interval_minutes,
                    scope=SyncScope(scope),
                    disabled_reason=None,
                )
            self.database.put_sync_schedule(schedule)
            self._start_timer(key, interval_minutes)

        logger.info(
            f"Enabled background sync for {workspace_id}/{account_id} "
            f"every {interval_minutes} minutes ({schedule.scope.value})"
        )
        self._emit(StatusEvent(workspace_id, account_id, is_enabled=True))
        return schedule

    def disable(
        self, workspace_id: str, account_id: str, reason: Optional[str] = None
    ) -> Optional[SyncSchedule]:
        """
        Disable background sync for a key.

        Stops the timer and keeps the schedule row and its last result. An
        in-flight run is not aborted.

        Returns:
            The updated schedule, or None if the key was never enabled
        """
        key = (workspace_id, account_id)
        with self._lock:
            self._stop_timer(key)
            existing = self.database.get_sync_schedule(workspace_id, account_id)
            if existing is None:
                return None
            schedule = replace(existing, enabled=False, disabled_reason=reason)
            self.database.put_sync_schedule(schedule)

        logger.info(
            f"Disabled background sync for {workspace_id}/{account_id}"
            f"{f' ({reason})' if reason else ''}"
        )
        self._emit(StatusEvent(workspace_id, account_id, is_enabled=False))
        return schedule

    def update_settings(
        self,
        workspace_id: str,
        account_id: str,
        interval_minutes: Optional[int] = None,
        scope: Optional[SyncScope] = None,
    ) -> SyncSchedule:
        """
        Change interval and/or scope of an existing schedule.

        Raises:
            SchedulerError: If the key has no schedule or the interval is invalid
        """
        if interval_minutes is not None:
            _check_interval(interval_minutes)
        key = (workspace_id, account_id)

        with self._lock:
            existing = self.database.get_sync_schedule(workspace_id, account_id)
            if existing is None:
                raise SchedulerError(
                    f"No schedule for {workspace_id}/{account_id}; enable it first"
                )
            schedule = replace(
                existing,
                interval_minutes=interval_minutes or existing.interval_minutes,
                scope=SyncScope(scope) if scope is not None else existing.scope,
            )
            self.database.put_sync_schedule(schedule)
            if schedule.enabled and not self._shut_down:
                self._start_timer(key, schedule.interval_minutes)
        return schedule

    def get_status(self, workspace_id: str) -> list[SyncSchedule]:
        """Read-only projection of a workspace's schedules."""
        return self.database.list_sync_schedules(workspace_id)

    def restore(self) -> int:
        """
        Start timers for every enabled schedule in the store.

        Returns:
            Number of timers started
        """
        schedules = self.database.list_sync_schedules(enabled_only=True)
        with self._lock:
            if self._shut_down:
                raise SchedulerError("Scheduler is shut down")
            for schedule in schedules:
                self._start_timer(schedule.key, schedule.interval_minutes)
        logger.info(f"Restored {len(schedules)} background sync schedule(s)")
        return len(schedules)

    def reload(self) -> None:
        """
        Bring timers in line with the store.

        Starts or resizes timers for enabled schedules and stops timers whose
        schedule was disabled or removed by another process.
        """
        schedules = {
            s.key: s for s in self.database.list_sync_schedules(enabled_only=True)
        }
        with self._lock:
            if self._shut_down:
                return
            for key in list(self._timers):
                if key not in schedules:
                    logger.info(f"Schedule {key[0]}/{key[1]} disabled elsewhere")
                    self._stop_timer(key)
            for key, schedule in schedules.items():
                self._start_timer(key, schedule.interval_minutes)

    def trigger_now(
        self, workspace_id: str, account_id: str
    ) -> Optional[Future[Optional[RunRecord]]]:
        """
        Queue an out-of-schedule run through the same no-overlap gate.

        Returns:
            Future of the run, or None if the key's previous run is in flight

        Raises:
            SchedulerError: If the key has no schedule
        """
        if self.database.get_sync_schedule(workspace_id, account_id) is None:
            raise SchedulerError(
                f"No schedule for {workspace_id}/{account_id}; enable it first"
            )
        return self._dispatch((workspace_id, account_id))

    def subscribe(
        self, callback: Callable[[StatusEvent], None]
    ) -> Callable[[], None]:
        """
        Register a status event callback.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def shutdown(self, wait: bool = True) -> None:
        """Stop all timers and the worker pool."""
        with self._lock:
            self._shut_down = True
            timers = list(self._timers.values())
            self._timers.clear()
            for timer in timers:
                timer.cancel()

        if wait:
            for timer in timers:
                if timer is not threading.current_thread():
                    timer.join()
        self._executor.shutdown(wait=wait)
        logger.info("Background sync scheduler stopped")

    # =========================================================================
    # Introspection
    # =========================================================================

    def active_timers(self) -> dict[ScheduleKey, float]:
        """Live timers and their interval in seconds."""
        with self._lock:
            return {
                key: timer.interval_seconds
                for key, timer in self._timers.items()
                if not timer.cancelled
            }

    def is_running(self, workspace_id: str, account_id: str) -> bool:
        """True while a run for the key is in flight."""
        with self._lock:
            return (workspace_id, account_id) in self._in_flight

    # =========================================================================
    # Ticks
    # =========================================================================

    def tick(self, workspace_id: str, account_id: str) -> Optional[RunRecord]:
        """
        Run one tick for a key in the calling thread.

        Returns:
            The run record, or None if the tick was skipped because the key's
            previous run is still in flight
        """
        key = (workspace_id, account_id)
        if not self._begin(key):
            return None
        try:
            return self._run(key)
        finally:
            self._end(key)

    def _dispatch(
        self, key: ScheduleKey, scheduled: bool = False
    ) -> Optional[Future[Optional[RunRecord]]]:
        """
        Submit a tick to the worker pool, unless one is in flight.

        scheduled marks a timer tick, which is dropped once the stored
        schedule is disabled.
        """
        if not self._begin(key):
            return None
        try:
            return self._executor.submit(self._run_and_end, key, scheduled)
        except RuntimeError:
            # Pool already shut down
            self._end(key)
            return None

    def _run_and_end(
        self, key: ScheduleKey, scheduled: bool = False
    ) -> Optional[RunRecord]:
        try:
            return self._run(key, scheduled)
        finally:
            self._end(key)

    def _begin(self, key: ScheduleKey) -> bool:
        with self._lock:
            state = self._in_flight.get(key)
            if state is None:
                self._in_flight[key] = _InFlight()
                return True
            first_skip = not state.skip_recorded
            state.skip_recorded = True

        if first_skip:
            logger.warning(
                f"SkippedTick: previous run for {key[0]}/{key[1]} still in flight"
            )
            with self._lock:
                schedule = self.database.get_sync_schedule(*key)
                if schedule is not None:
                    schedule.skipped_ticks += 1
                    self.database.put_sync_schedule(schedule)
        else:
            logger.debug(f"Tick for {key[0]}/{key[1]} skipped again")
        return False

    def _end(self, key: ScheduleKey) -> None:
        with self._lock:
            self._in_flight.pop(key, None)

    def _run(self, key: ScheduleKey, scheduled: bool = False) -> Optional[RunRecord]:
        """Run the engine and/or reconciler for a key and record the outcome."""
        workspace_id, account_id = key
        schedule = self.database.get_sync_schedule(workspace_id, account_id)
        if schedule is None:
            logger.warning(f"Tick for unknown schedule {workspace_id}/{account_id}")
            return None
        if scheduled and not schedule.enabled:
            logger.debug(f"Dropped timer tick for disabled {workspace_id}/{account_id}")
            return None

        with self._lock:
            tick_number = self._tick_counts.get(key, 0) + 1
            self._tick_counts[key] = tick_number

        started_at = self._clock()
        started = time.monotonic()
        errors: list[str] = []
        last_result: dict[str, Any] = {}
        progressed = False
        unauthorized = False
        messages_synced = 0
        contacts_synced = 0

        logger.info(f"Tick #{tick_number} for {workspace_id}/{account_id}")
        try:
            policy = self.policy_for(workspace_id)

            if schedule.scope.includes_messages:
                sync_result = self.engine.run_sync(workspace_id, account_id, policy)
                last_result["messages"] = sync_result.to_dict()
                messages_synced = sync_result.messages_written
                errors.extend(str(e) for e in sync_result.errors)
                progressed = progressed or sync_result.status != RunStatus.FAILED
                unauthorized = sync_result.aborted

            reconcile_due = (tick_number - 1) % self.reconcile_every_ticks == 0
            if (
                schedule.scope.includes_contacts
                and reconcile_due
                and not unauthorized
                and self.profile_collector is not None
            ):
                collected = self.profile_collector.collect(
                    account_id, max_pages=policy.max_pages
                )
                reconciled = self.reconciler.reconcile(
                    workspace_id, collected.candidates
                )
                contacts_synced = reconciled.synced
                errors.extend(collected.errors)
                errors.extend(reconciled.errors)
                progressed = True
                last_result["contacts"] = {
                    "created": reconciled.created,
                    "updated": reconciled.updated,
                    "merged": reconciled.merged,
                    "unchanged": reconciled.unchanged,
                    "dropped": reconciled.dropped,
                    "possible_duplicates": len(reconciled.possible_duplicates),
                    "sources": collected.sources_used,
                }
        except Unauthorized as e:
            unauthorized = True
            errors.append(f"unauthorized: {e}")
        except Exception as e:
            errors.append(f"{type(e).__name__}: {e}")
            logger.error(f"Tick for {workspace_id}/{account_id} failed: {e}")

        if not errors:
            status = RunStatus.SUCCESS
        elif progressed and not unauthorized:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.FAILED

        record = RunRecord(
            at=started_at,
            contacts_synced=contacts_synced,
            messages_synced=messages_synced,
            errors=errors,
            status=status,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        last_result.update(
            {
                "status": status.value,
                "contacts_synced": contacts_synced,
                "messages_synced": messages_synced,
                "errors": errors,
            }
        )

        with self._lock:
            current = self.database.get_sync_schedule(workspace_id, account_id)
            if current is not None:
                current.last_run_at = started_at
                current.last_result = last_result
                self.database.put_sync_schedule(current)
            self.database.record_sync_run(workspace_id, account_id, record)

        logger.info(
            f"Tick for {workspace_id}/{account_id} finished: {status.value}, "
            f"{contacts_synced} contacts, {messages_synced} messages, "
            f"{len(errors)} errors"
        )

        self._emit(
            StatusEvent(
                workspace_id,
                account_id,
                is_enabled=current is not None and current.enabled,
                contacts_synced=contacts_synced,
                messages_synced=messages_synced,
                errors=list(errors),
            )
        )
        if unauthorized:
            logger.error(
                f"Account {account_id} rejected credentials; disabling its schedule"
            )
            self.disable(workspace_id, account_id, reason=UNAUTHORIZED_REASON)
        return record

    # =========================================================================
    # Internals
    # =========================================================================

    def _start_timer(self, key: ScheduleKey, interval_minutes: int) -> None:
        """Start a timer for key, replacing one with a different interval."""
        interval_seconds = interval_minutes * self.seconds_per_minute
        with self._lock:
            current = self._timers.get(key)
            if (
                current is not None
                and not current.cancelled
                and current.is_alive()
                and current.interval_seconds == interval_seconds
            ):
                return
            if current is not None:
                current.cancel()
            timer = _KeyTimer(
                key,
                interval_seconds,
                lambda: self._dispatch(key, scheduled=True),
                run_immediately=self.run_immediately,
            )
            self._timers[key] = timer
            timer.start()
        logger.debug(f"Timer for {key[0]}/{key[1]} fires every {interval_seconds}s")

    def _stop_timer(self, key: ScheduleKey) -> None:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _emit(self, event: StatusEvent) -> None:
        if not event.recent_runs:
            event.recent_runs = self.database.get_recent_runs(
                event.workspace_id, event.account_id, RECENT_RUNS_IN_EVENTS
            )
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Status subscriber failed: {e}")


def _check_interval(interval_minutes: int) -> None:
    ceiling = ABSOLUTE_CEILINGS["auto_sync_interval_minutes"]
    if isinstance(interval_minutes, bool) or not isinstance(interval_minutes, int):
        raise SchedulerError(
            f"interval_minutes must be an integer, got {type(interval_minutes).__name__}"
        )
    if not MIN_AUTO_SYNC_INTERVAL_MINUTES <= interval_minutes <= ceiling:
        raise SchedulerError(
            f"interval_minutes must be between {MIN_AUTO_SYNC_INTERVAL_MINUTES} "
            f"and {ceiling}, got {interval_minutes}"
        )
