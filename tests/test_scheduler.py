"""
Unit tests for the background sync scheduler.

The engine and profile collector are mocks; schedules and run history go
to the in-memory store.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from outreach_sync.api.errors import Unauthorized
from outreach_sync.daemon.scheduler import (
    UNAUTHORIZED_REASON,
    BackgroundSyncScheduler,
    SchedulerError,
)
from outreach_sync.sync.engine import SyncError, SyncResult
from outreach_sync.sync.fallback import CollectedProfiles
from outreach_sync.sync.models import (
    ContactCandidate,
    RunStatus,
    SourceTag,
    SyncSchedule,
    SyncScope,
)
from outreach_sync.sync.reconciler import ContactReconciler

WAIT = 5.0


@pytest.fixture
def engine():
    mock_engine = MagicMock()
    mock_engine.run_sync.return_value = SyncResult(
        conversations_seen=2, conversations_updated=2, messages_written=7
    )
    return mock_engine


@pytest.fixture
def collector():
    mock_collector = MagicMock()
    mock_collector.collect.return_value = CollectedProfiles(
        candidates=[
            ContactCandidate(source=SourceTag.PRIMARY_API, email="a@x.com"),
            ContactCandidate(source=SourceTag.PRIMARY_API, email="b@x.com"),
        ],
        sources_used=["primary"],
    )
    return mock_collector


@pytest.fixture
def make_scheduler(database, engine):
    created = []

    def factory(**kwargs):
        kwargs.setdefault("reconciler", ContactReconciler(database))
        scheduler = BackgroundSyncScheduler(database, engine, **kwargs)
        created.append(scheduler)
        return scheduler

    yield factory
    for scheduler in created:
        scheduler.shutdown(wait=True)


@pytest.fixture
def scheduler(make_scheduler):
    return make_scheduler()


class TestEnableDisable:
    """Tests for schedule control."""

    def test_double_enable_keeps_one_timer(self, scheduler):
        """Test re-enabling with a new interval replaces the timer."""
        scheduler.enable("ws", "acc", interval_minutes=30)
        scheduler.enable("ws", "acc", interval_minutes=60)

        assert scheduler.active_timers() == {("ws", "acc"): 3600.0}
        (schedule,) = scheduler.get_status("ws")
        assert schedule.interval_minutes == 60
        assert schedule.enabled is True

    def test_same_interval_keeps_timer(self, scheduler):
        scheduler.enable("ws", "acc", interval_minutes=30)
        first = scheduler._timers[("ws", "acc")]

        scheduler.enable("ws", "acc", interval_minutes=30)

        assert scheduler._timers[("ws", "acc")] is first

    @pytest.mark.parametrize("interval", [5, 14, 1441, "30", True])
    def test_invalid_interval(self, scheduler, interval):
        with pytest.raises(SchedulerError):
            scheduler.enable("ws", "acc", interval_minutes=interval)
        assert scheduler.get_status("ws") == []

    def test_disable_keeps_row(self, scheduler, database):
        scheduler.enable("ws", "acc", interval_minutes=30)

        schedule = scheduler.disable("ws", "acc", reason="paused")

        assert schedule.enabled is False
        assert scheduler.active_timers() == {}
        stored = database.get_sync_schedule("ws", "acc")
        assert stored.disabled_reason == "paused"
        assert stored.interval_minutes == 30

    def test_disable_unknown_key(self, scheduler):
        assert scheduler.disable("ws", "nobody") is None

    def test_reenable_clears_reason(self, scheduler, database):
        scheduler.enable("ws", "acc", interval_minutes=30)
        scheduler.disable("ws", "acc", reason="paused")

        scheduler.enable("ws", "acc", interval_minutes=45, scope=SyncScope.CONTACTS)

        stored = database.get_sync_schedule("ws", "acc")
        assert stored.disabled_reason is None
        assert stored.scope == SyncScope.CONTACTS

    def test_update_settings(self, scheduler):
        scheduler.enable("ws", "acc", interval_minutes=30)

        schedule = scheduler.update_settings("ws", "acc", interval_minutes=90)

        assert schedule.interval_minutes == 90
        assert scheduler.active_timers() == {("ws", "acc"): 5400.0}

    def test_update_settings_requires_schedule(self, scheduler):
        with pytest.raises(SchedulerError):
            scheduler.update_settings("ws", "acc", interval_minutes=30)

    def test_enable_after_shutdown(self, scheduler):
        scheduler.shutdown()
        with pytest.raises(SchedulerError):
            scheduler.enable("ws", "acc", interval_minutes=30)


class TestRestoreAndReload:
    """Tests for starting timers from the store."""

    def test_restore(self, scheduler, database):
        database.put_sync_schedule(SyncSchedule(workspace_id="ws", account_id="a1"))
        database.put_sync_schedule(
            SyncSchedule(workspace_id="ws", account_id="a2", enabled=False)
        )

        assert scheduler.restore() == 1
        assert list(scheduler.active_timers()) == [("ws", "a1")]

    def test_reload_follows_store(self, scheduler, database):
        """Test changes made by another process reach the running timers."""
        scheduler.enable("ws", "a1", interval_minutes=30)
        database.put_sync_schedule(
            SyncSchedule(workspace_id="ws", account_id="a1", enabled=False)
        )
        database.put_sync_schedule(
            SyncSchedule(workspace_id="ws", account_id="a2", interval_minutes=20)
        )

        scheduler.reload()

        assert scheduler.active_timers() == {("ws", "a2"): 1200.0}


class TestTicks:
    """Tests for running ticks."""

    def test_messages_tick(self, scheduler, engine, database):
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)

        record = scheduler.tick("ws", "acc")

        assert record.status == RunStatus.SUCCESS
        assert record.messages_synced == 7
        engine.run_sync.assert_called_once()
        stored = database.get_sync_schedule("ws", "acc")
        assert stored.last_run_at == record.at
        assert stored.last_result["messages_synced"] == 7
        assert len(database.get_recent_runs("ws", "acc")) == 1

    def test_contacts_tick(self, make_scheduler, engine, collector, database):
        scheduler = make_scheduler(profile_collector=collector)
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.CONTACTS)

        record = scheduler.tick("ws", "acc")

        assert record.contacts_synced == 2
        engine.run_sync.assert_not_called()
        assert len(database.list_contacts("ws")) == 2
        assert database.get_sync_schedule("ws", "acc").last_result["contacts"][
            "created"
        ] == 2

    def test_reconcile_every_n_ticks(self, make_scheduler, collector):
        scheduler = make_scheduler(profile_collector=collector, reconcile_every_ticks=2)
        scheduler.enable("ws", "acc", interval_minutes=30)

        for _ in range(3):
            scheduler.tick("ws", "acc")

        assert collector.collect.call_count == 2

    def test_partial_run(self, scheduler, engine):
        engine.run_sync.return_value = SyncResult(
            conversations_updated=1,
            errors=[SyncError("unavailable", "down", conversation_id="c1")],
        )
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)

        record = scheduler.tick("ws", "acc")

        assert record.status == RunStatus.PARTIAL
        assert record.errors == ["unavailable [conversation c1]: down"]

    def test_engine_crash_recorded(self, scheduler, engine):
        engine.run_sync.side_effect = RuntimeError("boom")
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)

        record = scheduler.tick("ws", "acc")

        assert record.status == RunStatus.FAILED
        assert record.errors == ["RuntimeError: boom"]

    def test_unauthorized_disables_schedule(self, scheduler, engine, database):
        """Test rejected credentials disable the key with a reason."""
        engine.run_sync.return_value = SyncResult(
            aborted=True, errors=[SyncError("unauthorized", "expired")]
        )
        scheduler.enable("ws", "acc", interval_minutes=30)

        record = scheduler.tick("ws", "acc")

        assert record.status == RunStatus.FAILED
        stored = database.get_sync_schedule("ws", "acc")
        assert stored.enabled is False
        assert stored.disabled_reason == UNAUTHORIZED_REASON
        assert scheduler.active_timers() == {}

    def test_unauthorized_collector(self, make_scheduler, collector, database):
        collector.collect.side_effect = Unauthorized("expired")
        scheduler = make_scheduler(profile_collector=collector)
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.CONTACTS)

        scheduler.tick("ws", "acc")

        assert database.get_sync_schedule("ws", "acc").disabled_reason == (
            UNAUTHORIZED_REASON
        )

    def test_tick_unknown_key(self, scheduler):
        assert scheduler.tick("ws", "nobody") is None

    def test_trigger_now_requires_schedule(self, scheduler):
        with pytest.raises(SchedulerError):
            scheduler.trigger_now("ws", "nobody")


class TestNoOverlap:
    """Tests for the per-key in-flight gate."""

    def test_overlapping_ticks_record_one_skip(self, scheduler, engine, database):
        """Test ticks during a long run are skipped and counted once."""
        started = threading.Event()
        release = threading.Event()

        def slow_sync(*args):
            started.set()
            release.wait(WAIT)
            return SyncResult(conversations_updated=1)

        engine.run_sync.side_effect = slow_sync
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)

        with patch("outreach_sync.daemon.scheduler.logger") as mock_logger:
            future = scheduler.trigger_now("ws", "acc")
            assert started.wait(WAIT)

            assert scheduler.is_running("ws", "acc")
            assert scheduler.trigger_now("ws", "acc") is None
            assert scheduler.tick("ws", "acc") is None
            assert scheduler.trigger_now("ws", "acc") is None

            release.set()
            future.result(timeout=WAIT)

        skipped = [
            c for c in mock_logger.warning.call_args_list if "SkippedTick" in c[0][0]
        ]
        assert len(skipped) == 1
        assert engine.run_sync.call_count == 1
        assert database.get_sync_schedule("ws", "acc").skipped_ticks == 1
        assert not scheduler.is_running("ws", "acc")

    def test_gate_reopens_after_run(self, scheduler, engine):
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)

        scheduler.tick("ws", "acc")
        scheduler.tick("ws", "acc")

        assert engine.run_sync.call_count == 2

    def test_timer_fires(self, make_scheduler, engine):
        """Test an enabled key's timer dispatches runs on its own."""
        fired = threading.Event()
        engine.run_sync.side_effect = lambda *args: fired.set() or SyncResult()
        scheduler = make_scheduler(seconds_per_minute=0.002)

        scheduler.enable("ws", "acc", interval_minutes=15, scope=SyncScope.MESSAGES)

        assert fired.wait(WAIT)

    def test_timer_tick_after_disable_dropped(self, scheduler, engine):
        """Test a timer whose wait already ended does not run a disabled key."""
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)
        timer = scheduler._timers[("ws", "acc")]
        scheduler.disable("ws", "acc")

        future = timer._fire()

        assert future.result(WAIT) is None
        engine.run_sync.assert_not_called()

        manual = scheduler.trigger_now("ws", "acc")

        assert manual.result(WAIT) is not None
        engine.run_sync.assert_called_once()


class TestStatusEvents:
    """Tests for subscriber notifications."""

    def test_events_carry_recent_runs(self, scheduler):
        events = []
        scheduler.subscribe(events.append)

        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)
        scheduler.tick("ws", "acc")

        enabled, ran = events
        assert enabled.is_enabled is True
        assert enabled.recent_runs == []
        assert ran.messages_synced == 7
        assert len(ran.recent_runs) == 1
        assert ran.to_dict()["recent_runs"][0]["status"] == "success"

    def test_unsubscribe(self, scheduler):
        events = []
        unsubscribe = scheduler.subscribe(events.append)
        unsubscribe()

        scheduler.enable("ws", "acc", interval_minutes=30)

        assert events == []

    def test_failing_subscriber_does_not_break_run(self, scheduler):
        scheduler.subscribe(MagicMock(side_effect=ValueError("bad callback")))
        scheduler.enable("ws", "acc", interval_minutes=30, scope=SyncScope.MESSAGES)

        assert scheduler.tick("ws", "acc").status == RunStatus.SUCCESS
