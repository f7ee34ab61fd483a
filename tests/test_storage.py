"""
Unit tests for the storage module.

Tests the SyncDatabase class for conversation, message, contact and
schedule persistence.
"""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from outreach_sync.storage.db import (
    RUN_HISTORY_LIMIT,
    StoreError,
    SyncDatabase,
    VersionConflict,
)
from outreach_sync.sync.models import (
    Contact,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
    RunRecord,
    RunStatus,
    SourceTag,
    SyncSchedule,
    SyncScope,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_conversation(pcid="c1", at=T0, **kwargs):
    return Conversation(
        workspace_id="ws",
        account_id="acc",
        platform_conversation_id=pcid,
        last_message_at=at,
        **kwargs,
    )


def make_messages(ordinals):
    return [
        Message(
            ordinal=n,
            role=MessageRole.INBOUND,
            content=f"message {n}",
            sent_at=T0 + timedelta(minutes=n),
            platform_message_id=f"m{n}",
        )
        for n in ordinals
    ]


class TestDatabaseInitialization:
    """Tests for database setup."""

    def test_initialize_is_idempotent(self, database):
        database.initialize()
        database.initialize()
        assert database.list_conversations("ws") == []

    def test_file_database(self, tmp_path):
        """Test data persists across instances of a file database."""
        db_path = tmp_path / "store.db"
        first = SyncDatabase(str(db_path))
        first.initialize()
        first.upsert_conversation(make_conversation())

        second = SyncDatabase(str(db_path))
        second.initialize()

        assert second.get_conversation("ws", "c1") is not None
        assert not second.is_memory

    def test_vacuum_keeps_data(self, database, tmp_path):
        database.upsert_conversation(make_conversation())
        database.vacuum()
        assert database.get_conversation("ws", "c1") is not None

        file_db = SyncDatabase(str(tmp_path / "store.db"))
        file_db.initialize()
        file_db.upsert_conversation(make_conversation())
        file_db.vacuum()
        assert file_db.get_conversation("ws", "c1") is not None

    def test_sqlite_errors_raised_as_store_error(self, database):
        """Test driver errors surface as StoreError and roll back."""
        with pytest.raises(StoreError) as exc_info:
            with database.transaction() as conn:
                conn.execute(
                    "INSERT INTO sync_runs (workspace_id, account_id, run_at, status) "
                    "VALUES (?, ?, ?, ?)",
                    ("ws", "acc", "2026-03-01T12:00:00+00:00", "success"),
                )
                conn.execute("SELECT * FROM missing_table")

        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)
        assert database.get_recent_runs("ws", "acc") == []
        assert database.upsert_conversation(make_conversation()) is not None

    def test_unopenable_file_raises_store_error(self, tmp_path):
        db = SyncDatabase(str(tmp_path / "missing" / "store.db"))
        with pytest.raises(StoreError, match="Cannot open"):
            db.initialize()


class TestConversationUpsert:
    """Tests for compare-and-set conversation writes."""

    def test_insert_and_get(self, database):
        row_id = database.upsert_conversation(
            make_conversation(participant_name="Jane", metadata={"preview": "hi"})
        )

        stored = database.get_conversation("ws", "c1")
        assert stored.id == row_id
        assert stored.participant_name == "Jane"
        assert stored.last_message_at == T0
        assert stored.metadata == {"preview": "hi"}
        assert stored.status == ConversationStatus.ACTIVE

    def test_replay_is_accepted(self, database):
        """Test replaying the same write keeps the same row."""
        first = database.upsert_conversation(make_conversation())
        second = database.upsert_conversation(make_conversation())
        assert first == second
        assert len(database.list_conversations("ws")) == 1

    def test_stale_write_rejected(self, database):
        """Test an older snapshot never replaces a newer one."""
        database.upsert_conversation(
            make_conversation(at=T0 + timedelta(hours=1), participant_name="New")
        )

        result = database.upsert_conversation(
            make_conversation(at=T0, participant_name="Old")
        )

        assert result is None
        stored = database.get_conversation("ws", "c1")
        assert stored.participant_name == "New"
        assert stored.last_message_at == T0 + timedelta(hours=1)

    def test_metadata_merged(self, database):
        database.upsert_conversation(make_conversation(metadata={"a": 1, "b": 2}))
        database.upsert_conversation(make_conversation(metadata={"b": 3}))

        assert database.get_conversation("ws", "c1").metadata == {"a": 1, "b": 3}

    def test_archive_keeps_status_on_update(self, database):
        database.upsert_conversation(make_conversation())
        assert database.archive_conversation("ws", "c1") is True
        database.upsert_conversation(make_conversation(at=T0 + timedelta(minutes=5)))

        assert database.get_conversation("ws", "c1").status == (
            ConversationStatus.ARCHIVED
        )
        assert database.archive_conversation("ws", "missing") is False

    def test_list_newest_first_with_filters(self, database):
        database.upsert_conversation(make_conversation("old", at=T0))
        database.upsert_conversation(
            make_conversation("new", at=T0 + timedelta(days=1), preview_only=True)
        )

        all_ids = [c.platform_conversation_id for c in database.list_conversations("ws")]
        previews = database.list_conversations("ws", preview_only=True)

        assert all_ids == ["new", "old"]
        assert [c.platform_conversation_id for c in previews] == ["new"]
        assert database.list_conversations("other") == []
        assert len(database.list_conversations("ws", limit=1)) == 1


class TestMessageRange:
    """Tests for upsert_message_range."""

    @pytest.fixture
    def conversation_id(self, database):
        return database.upsert_conversation(make_conversation())

    def test_write_and_read_sorted(self, database, conversation_id):
        held = database.upsert_message_range(
            conversation_id, list(reversed(make_messages(range(3)))),
            total_message_count=3,
        )

        messages = database.get_messages(conversation_id)
        assert held == 3
        assert [m.ordinal for m in messages] == [0, 1, 2]
        assert messages[0].content == "message 0"
        assert messages[0].conversation_id == conversation_id
        assert database.get_conversation("ws", "c1").preview_only is False

    def test_partial_window_is_preview(self, database, conversation_id):
        """Test holding fewer messages than the total marks the preview flag."""
        database.upsert_message_range(
            conversation_id, make_messages(range(30, 40)), total_message_count=40
        )

        stored = database.get_conversation("ws", "c1")
        assert stored.preview_only is True
        assert stored.total_message_count == 40

    def test_more_available_without_total(self, database, conversation_id):
        database.upsert_message_range(
            conversation_id, make_messages(range(5)), more_available=True
        )
        assert database.get_conversation("ws", "c1").preview_only is True

    def test_rewrite_is_idempotent(self, database, conversation_id):
        database.upsert_message_range(conversation_id, make_messages(range(5)))
        held = database.upsert_message_range(conversation_id, make_messages(range(5)))

        assert held == 5
        assert len(database.get_messages(conversation_id)) == 5

    def test_adjacent_block_extends(self, database, conversation_id):
        """Test a block touching the held range is merged with it."""
        database.upsert_message_range(conversation_id, make_messages(range(10, 20)))
        held = database.upsert_message_range(conversation_id, make_messages(range(0, 10)))

        ordinals = [m.ordinal for m in database.get_messages(conversation_id)]
        assert held == 20
        assert ordinals == list(range(20))

    def test_disjoint_block_prunes_stale(self, database, conversation_id):
        """Test a gap between held and incoming drops the held block."""
        database.upsert_message_range(conversation_id, make_messages(range(0, 5)))
        held = database.upsert_message_range(conversation_id, make_messages(range(8, 10)))

        ordinals = [m.ordinal for m in database.get_messages(conversation_id)]
        assert held == 2
        assert ordinals == [8, 9]

    def test_replace(self, database, conversation_id):
        database.upsert_message_range(conversation_id, make_messages(range(0, 5)))
        held = database.upsert_message_range(
            conversation_id, make_messages(range(0, 2)), replace=True
        )

        assert held == 2
        assert [m.ordinal for m in database.get_messages(conversation_id)] == [0, 1]

    def test_duplicate_ordinals_rejected(self, database, conversation_id):
        messages = make_messages([1, 1])
        with pytest.raises(StoreError):
            database.upsert_message_range(conversation_id, messages)
        assert database.get_messages(conversation_id) == []

    def test_expanded_clears_preview(self, database, conversation_id):
        database.upsert_message_range(
            conversation_id, make_messages(range(3)), total_message_count=10
        )
        held = database.upsert_message_range(
            conversation_id, make_messages(range(8)), expanded=True
        )

        stored = database.get_conversation("ws", "c1")
        assert held == 8
        assert stored.preview_only is False
        assert stored.total_message_count == 8

    def test_mark_expanded_unknown_conversation(self, database):
        with pytest.raises(StoreError):
            database.mark_conversation_expanded(9999)


class TestConversationWithMessages:
    """Tests for writing a conversation and its messages together."""

    def test_written_together(self, database):
        held = database.upsert_conversation_with_messages(
            make_conversation(), make_messages(range(3)), total_message_count=5
        )

        stored = database.get_conversation("ws", "c1")
        assert held == 3
        assert stored.preview_only is True
        assert stored.total_message_count == 5
        assert len(database.get_messages(stored.id)) == 3

    def test_stale_conversation_writes_nothing(self, database):
        database.upsert_conversation(make_conversation(at=T0 + timedelta(hours=1)))

        held = database.upsert_conversation_with_messages(
            make_conversation(at=T0), make_messages(range(3))
        )

        stored = database.get_conversation("ws", "c1")
        assert held is None
        assert database.get_messages(stored.id) == []

    def test_failed_message_write_rolls_back_conversation(self, database):
        """Test the conversation keeps its old state when the messages fail."""
        database.upsert_conversation(make_conversation(participant_name="Old"))

        with patch(
            "outreach_sync.storage.db._count_messages",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            with pytest.raises(StoreError, match="disk I/O error"):
                database.upsert_conversation_with_messages(
                    make_conversation(
                        at=T0 + timedelta(minutes=5), participant_name="New"
                    ),
                    make_messages(range(3)),
                    total_message_count=3,
                )

        stored = database.get_conversation("ws", "c1")
        assert stored.participant_name == "Old"
        assert stored.last_message_at == T0
        assert database.get_messages(stored.id) == []


class TestContactUpsert:
    """Tests for compare-and-set contact writes."""

    def make_contact(self, **kwargs):
        defaults = dict(
            workspace_id="ws",
            identity_key="email:jane@example.com",
            name="Jane Doe",
            email="jane@example.com",
            sources={SourceTag.CSV},
            field_sources={"name": SourceTag.CSV, "email": SourceTag.CSV},
        )
        defaults.update(kwargs)
        return Contact(**defaults)

    def test_insert_sets_version(self, database):
        stored = database.upsert_contact(self.make_contact())

        assert stored.version == 1
        assert stored.id is not None
        assert stored.sources == {SourceTag.CSV}
        assert stored.field_sources["name"] == SourceTag.CSV

    def test_update_increments_version(self, database):
        stored = database.upsert_contact(self.make_contact())
        stored.title = "CTO"

        updated = database.upsert_contact(stored)

        assert updated.version == 2
        assert database.get_contact("ws", stored.identity_key).title == "CTO"

    def test_stale_version_conflicts(self, database):
        """Test a write based on an old read raises VersionConflict."""
        stored = database.upsert_contact(self.make_contact())
        database.upsert_contact(stored)

        with pytest.raises(VersionConflict):
            database.upsert_contact(stored)

    def test_concurrent_create_conflicts(self, database):
        database.upsert_contact(self.make_contact())
        with pytest.raises(VersionConflict):
            database.upsert_contact(self.make_contact())

    def test_list_by_quality(self, database):
        database.upsert_contact(self.make_contact(quality_score=10))
        database.upsert_contact(
            self.make_contact(
                identity_key="email:ann@example.com",
                email="ann@example.com",
                name="Ann Lee",
                company="Acme",
                quality_score=80,
            )
        )

        names = [c.name for c in database.list_contacts("ws")]
        acme = database.list_contacts("ws", company="Acme")

        assert names == ["Ann Lee", "Jane Doe"]
        assert [c.name for c in acme] == ["Ann Lee"]


class TestSchedules:
    """Tests for schedule persistence and run history."""

    def test_put_and_get(self, database):
        database.put_sync_schedule(
            SyncSchedule(
                workspace_id="ws",
                account_id="acc",
                interval_minutes=60,
                scope=SyncScope.MESSAGES,
                last_result={"status": "success"},
            )
        )

        schedule = database.get_sync_schedule("ws", "acc")
        assert schedule.enabled is True
        assert schedule.interval_minutes == 60
        assert schedule.scope == SyncScope.MESSAGES
        assert schedule.last_result == {"status": "success"}
        assert database.get_sync_schedule("ws", "other") is None

    def test_put_replaces_single_row(self, database):
        database.put_sync_schedule(SyncSchedule(workspace_id="ws", account_id="acc"))
        database.put_sync_schedule(
            SyncSchedule(
                workspace_id="ws",
                account_id="acc",
                enabled=False,
                disabled_reason="manual",
            )
        )

        schedules = database.list_sync_schedules()
        assert len(schedules) == 1
        assert schedules[0].enabled is False
        assert schedules[0].disabled_reason == "manual"
        assert database.list_sync_schedules(enabled_only=True) == []

    def test_run_history_pruned(self, database):
        """Test only the newest runs are kept per key."""
        for i in range(RUN_HISTORY_LIMIT + 5):
            database.record_sync_run(
                "ws",
                "acc",
                RunRecord(at=T0 + timedelta(minutes=i), messages_synced=i),
            )

        newest = database.get_recent_runs("ws", "acc", limit=3)
        everything = database.get_recent_runs("ws", "acc", limit=1000)

        assert [r.messages_synced for r in newest] == [54, 53, 52]
        assert len(everything) == RUN_HISTORY_LIMIT

    def test_run_record_roundtrip(self, database):
        database.record_sync_run(
            "ws",
            "acc",
            RunRecord(at=T0, status=RunStatus.PARTIAL, errors=["c1: boom"]),
        )

        (run,) = database.get_recent_runs("ws", "acc")
        assert run.at == T0
        assert run.status == RunStatus.PARTIAL
        assert run.errors == ["c1: boom"]
