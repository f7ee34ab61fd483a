"""
SQLite database module for synced conversations, contacts and schedules.

Provides persistent storage for conversations and their message ranges,
canonical contacts, background sync schedules and run history. Every write
is an idempotent upsert; conversation and contact writes are
compare-and-set so a stale writer never clobbers newer data.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import Any, Optional

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
from outreach_sync.utils.timestamps import from_db, to_db, utc_now

logger = logging.getLogger(__name__)

# Run history rows kept per schedule key
RUN_HISTORY_LIMIT = 50

# Seconds a file connection waits on a locked database
BUSY_TIMEOUT = 30.0

# SQL Schema for conversations, messages, contacts and scheduling tables
SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    account_id TEXT NOT NULL,
    platform_conversation_id TEXT NOT NULL,
    participant_name TEXT NOT NULL DEFAULT '',
    participant_id TEXT,
    participant_profile_url TEXT,
    last_message_at TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    preview_only INTEGER NOT NULL DEFAULT 0,
    total_message_count INTEGER,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(workspace_id, platform_conversation_id)
);

CREATE INDEX IF NOT EXISTS idx_conversations_account
    ON conversations(workspace_id, account_id, last_message_at);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    ordinal INTEGER NOT NULL,
    platform_message_id TEXT,
    role TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    sent_at TEXT,
    attachment_count INTEGER NOT NULL DEFAULT 0,
    UNIQUE(conversation_id, ordinal)
);

CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    identity_key TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    email TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT '',
    company TEXT NOT NULL DEFAULT '',
    profile_url TEXT NOT NULL DEFAULT '',
    phone TEXT NOT NULL DEFAULT '',
    connection_degree INTEGER,
    sources TEXT NOT NULL DEFAULT '[]',
    field_sources TEXT NOT NULL DEFAULT '{}',
    quality_score INTEGER NOT NULL DEFAULT 0,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(workspace_id, identity_key)
);

CREATE INDEX IF NOT EXISTS idx_contacts_company ON contacts(workspace_id, company);

CREATE TABLE IF NOT EXISTS sync_schedules (
    workspace_id TEXT NOT NULL,
    account_id TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    interval_minutes INTEGER NOT NULL,
    scope TEXT NOT NULL DEFAULT 'both',
    last_run_at TEXT,
    last_result TEXT,
    disabled_reason TEXT,
    skipped_ticks INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY(workspace_id, account_id)
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    account_id TEXT NOT NULL,
    run_at TEXT NOT NULL,
    status TEXT NOT NULL,
    contacts_synced INTEGER NOT NULL DEFAULT 0,
    messages_synced INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]',
    duration_ms INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_key
    ON sync_runs(workspace_id, account_id, run_at);
"""


class StoreError(Exception):
    """Raised when a store operation cannot be completed."""

    pass


class VersionConflict(StoreError):
    """Raised when a contact was changed by another writer since it was read."""

    pass


class SyncDatabase:
    """
    SQLite database manager for synced conversations and contacts.

    Provides methods for:
    - Compare-and-set upserts of conversations and contacts
    - Transactional message range writes (merge, prune or replace)
    - Sync schedule persistence and run history

    Thread safety: file databases use one connection per operation; the
    in-memory database shares one connection guarded by a lock.

    Usage:
        db = SyncDatabase('/path/to/outreach_sync.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = str(db_path)
        self._shared_connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.
        """
        if self.is_memory:
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:", check_same_thread=False
                )
                self._shared_connection.row_factory = sqlite3.Row
                self._shared_connection.execute("PRAGMA foreign_keys = ON")
            return self._shared_connection

        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on any exception.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM contacts")
        """
        with self._lock if self.is_memory else _no_lock():
            try:
                conn = self._get_connection()
            except sqlite3.Error as e:
                raise StoreError(f"Cannot open {self.db_path}: {e}") from e
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(str(e)) from e
            except Exception:
                conn.rollback()
                raise
            finally:
                if not self.is_memory:
                    conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Connection with the write lock taken up front.

        Reads inside the block see a state no other writer can change
        before commit.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    def initialize(self) -> None:
        """Create all tables and indexes if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"Initialized store at {self.db_path}")

    def close(self) -> None:
        """Close the shared in-memory connection, if any."""
        with self._lock:
            if self._shared_connection is not None:
                self._shared_connection.close()
                self._shared_connection = None

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    def upsert_conversation(self, conversation: Conversation) -> Optional[int]:
        """
        Insert or update a conversation, compare-and-set on last_message_at.

        The write is applied only when the stored last_message_at is absent
        or not newer than the incoming one, so replaying the same write is a
        no-op change and an older snapshot never replaces a newer one.
        Stored metadata keys not present in the incoming metadata are kept;
        the stored status is kept on update.

        Args:
            conversation: Conversation to write

        Returns:
            The conversation row id, or None if the write was rejected as stale
        """
        with self.transaction() as conn:
            return _write_conversation(conn, conversation)

    def get_conversation(
        self, workspace_id: str, platform_conversation_id: str
    ) -> Optional[Conversation]:
        """Get a conversation by its platform id, or None if not found."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM conversations "
                "WHERE workspace_id = ? AND platform_conversation_id = ?",
                (workspace_id, platform_conversation_id),
            ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_conversations(
        self,
        workspace_id: str,
        account_id: Optional[str] = None,
        status: Optional[ConversationStatus] = None,
        preview_only: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> list[Conversation]:
        """List conversations newest first, optionally filtered."""
        query = "SELECT * FROM conversations WHERE workspace_id = ?"
        params: list[Any] = [workspace_id]
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if preview_only is not None:
            query += " AND preview_only = ?"
            params.append(int(preview_only))
        query += " ORDER BY last_message_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_conversation(row) for row in rows]

    def mark_conversation_expanded(self, conversation_id: int) -> None:
        """
        Mark a conversation as fully held locally.

        Sets preview_only to False and total_message_count to the number of
        stored messages.
        """
        with self.transaction() as conn:
            _mark_expanded(conn, conversation_id)

    def archive_conversation(
        self, workspace_id: str, platform_conversation_id: str
    ) -> bool:
        """
        Archive a conversation. Conversations are never deleted.

        Returns:
            True if the conversation exists
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE conversations SET status = ?, updated_at = ? "
                "WHERE workspace_id = ? AND platform_conversation_id = ?",
                (
                    ConversationStatus.ARCHIVED.value,
                    to_db(utc_now()),
                    workspace_id,
                    platform_conversation_id,
                ),
            )
            return cursor.rowcount > 0

    # =========================================================================
    # Message Operations
    # =========================================================================

    def upsert_message_range(
        self,
        conversation_id: int,
        messages: Iterable[Message],
        total_message_count: Optional[int] = None,
        more_available: bool = False,
        replace: bool = False,
        expanded: bool = False,
    ) -> int:
        """
        Write a range of messages for one conversation in a single transaction.

        Messages are upserted on (conversation_id, ordinal). The locally
        held ordinals stay gapless: with replace=True everything held is
        dropped first; otherwise a held block that does not touch or overlap
        the incoming block is dropped as stale. The conversation's
        preview_only flag is updated in the same transaction.

        Args:
            conversation_id: Row id of the owning conversation
            messages: Messages to write
            total_message_count: Upstream total, when known
            more_available: Upstream has more messages than were fetched and
                           reported no total
            replace: Drop all held messages before writing
            expanded: The range is the full thread; clears preview_only

        Returns:
            Number of messages held for the conversation after the write
        """
        batch = _sorted_range(messages, f"conversation {conversation_id}")
        with self.transaction() as conn:
            return _write_message_range(
                conn,
                conversation_id,
                batch,
                total_message_count,
                more_available,
                replace,
                expanded,
            )

    def upsert_conversation_with_messages(
        self,
        conversation: Conversation,
        messages: Iterable[Message],
        total_message_count: Optional[int] = None,
        more_available: bool = False,
        replace: bool = False,
        expanded: bool = False,
    ) -> Optional[int]:
        """
        Write a conversation and a range of its messages in one transaction.

        Combines upsert_conversation and upsert_message_range so a failed
        message write also rolls back the conversation's last_message_at,
        leaving the conversation to be refetched by the next run.

        Returns:
            Number of messages held after the write, or None if the
            conversation write was rejected as stale (nothing is written)
        """
        batch = _sorted_range(
            messages, f"conversation {conversation.platform_conversation_id}"
        )
        with self.transaction() as conn:
            conversation_id = _write_conversation(conn, conversation)
            if conversation_id is None:
                return None
            conversation.id = conversation_id
            return _write_message_range(
                conn,
                conversation_id,
                batch,
                total_message_count,
                more_available,
                replace,
                expanded,
            )

    def get_messages(self, conversation_id: int) -> list[Message]:
        """Get all held messages of a conversation, ordinal-sorted."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY ordinal",
                (conversation_id,),
            ).fetchall()
        return [
            Message(
                ordinal=row["ordinal"],
                role=MessageRole(row["role"]),
                content=row["content"],
                sent_at=from_db(row["sent_at"]),
                attachment_count=row["attachment_count"],
                platform_message_id=row["platform_message_id"],
                conversation_id=row["conversation_id"],
            )
            for row in rows
        ]

    # =========================================================================
    # Contact Operations
    # =========================================================================

    def get_contact(self, workspace_id: str, identity_key: str) -> Optional[Contact]:
        """Get a canonical contact by identity key, or None if not found."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM contacts WHERE workspace_id = ? AND identity_key = ?",
                (workspace_id, identity_key),
            ).fetchone()
        return _row_to_contact(row) if row else None

    def list_contacts(
        self,
        workspace_id: str,
        company: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Contact]:
        """List contacts, best quality first."""
        query = "SELECT * FROM contacts WHERE workspace_id = ?"
        params: list[Any] = [workspace_id]
        if company is not None:
            query += " AND company = ?"
            params.append(company)
        query += " ORDER BY quality_score DESC, name, id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_contact(row) for row in rows]

    def upsert_contact(self, contact: Contact) -> Contact:
        """
        Write a contact, compare-and-set on version.

        contact.version is the version the caller read (0 for a contact that
        did not exist). On success the returned copy carries the new version
        and row id.

        Raises:
            VersionConflict: If the stored version differs from contact.version
        """
        now = to_db(utc_now())
        values = (
            contact.name,
            contact.email,
            contact.title,
            contact.company,
            contact.profile_url,
            contact.phone,
            contact.connection_degree,
            json.dumps(sorted(s.value for s in contact.sources)),
            json.dumps(
                {k: v.value for k, v in contact.field_sources.items()}, sort_keys=True
            ),
            contact.quality_score,
        )

        with self.connection() as conn:
            if contact.version == 0:
                try:
                    conn.execute(
                        """
                        INSERT INTO contacts (
                            name, email, title, company, profile_url, phone,
                            connection_degree, sources, field_sources, quality_score,
                            workspace_id, identity_key, version, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                        """,
                        (*values, contact.workspace_id, contact.identity_key, now, now),
                    )
                except sqlite3.IntegrityError as e:
                    raise VersionConflict(
                        f"Contact {contact.identity_key} was created concurrently"
                    ) from e
            else:
                cursor = conn.execute(
                    """
                    UPDATE contacts SET
                        name = ?, email = ?, title = ?, company = ?,
                        profile_url = ?, phone = ?, connection_degree = ?,
                        sources = ?, field_sources = ?, quality_score = ?,
                        version = version + 1, updated_at = ?
                    WHERE workspace_id = ? AND identity_key = ? AND version = ?
                    """,
                    (
                        *values,
                        now,
                        contact.workspace_id,
                        contact.identity_key,
                        contact.version,
                    ),
                )
                if cursor.rowcount == 0:
                    raise VersionConflict(
                        f"Contact {contact.identity_key} changed since version "
                        f"{contact.version}"
                    )

            row = conn.execute(
                "SELECT * FROM contacts WHERE workspace_id = ? AND identity_key = ?",
                (contact.workspace_id, contact.identity_key),
            ).fetchone()
        return _row_to_contact(row)

    # =========================================================================
    # Schedule Operations
    # =========================================================================

    def get_sync_schedule(
        self, workspace_id: str, account_id: str
    ) -> Optional[SyncSchedule]:
        """Get the schedule for a key, or None if never enabled."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM sync_schedules WHERE workspace_id = ? AND account_id = ?",
                (workspace_id, account_id),
            ).fetchone()
        return _row_to_schedule(row) if row else None

    def put_sync_schedule(self, schedule: SyncSchedule) -> None:
        """Insert or replace the schedule for its key."""
        now = to_db(utc_now())
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_schedules (
                    workspace_id, account_id, enabled, interval_minutes, scope,
                    last_run_at, last_result, disabled_reason, skipped_ticks,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(workspace_id, account_id) DO UPDATE SET
                    enabled = excluded.enabled,
                    interval_minutes = excluded.interval_minutes,
                    scope = excluded.scope,
                    last_run_at = excluded.last_run_at,
                    last_result = excluded.last_result,
                    disabled_reason = excluded.disabled_reason,
                    skipped_ticks = excluded.skipped_ticks,
                    updated_at = excluded.updated_at
                """,
                (
                    schedule.workspace_id,
                    schedule.account_id,
                    int(schedule.enabled),
                    schedule.interval_minutes,
                    schedule.scope.value,
                    to_db(schedule.last_run_at),
                    json.dumps(schedule.last_result)
                    if schedule.last_result is not None
                    else None,
                    schedule.disabled_reason,
                    schedule.skipped_ticks,
                    now,
                    now,
                ),
            )

    def list_sync_schedules(
        self, workspace_id: Optional[str] = None, enabled_only: bool = False
    ) -> list[SyncSchedule]:
        """List schedules, optionally for one workspace or only enabled ones."""
        query = "SELECT * FROM sync_schedules WHERE 1 = 1"
        params: list[Any] = []
        if workspace_id is not None:
            query += " AND workspace_id = ?"
            params.append(workspace_id)
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY workspace_id, account_id"

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_schedule(row) for row in rows]

    def record_sync_run(
        self, workspace_id: str, account_id: str, record: RunRecord
    ) -> None:
        """Append a run to the key's history, keeping the newest entries."""
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_runs (
                    workspace_id, account_id, run_at, status, contacts_synced,
                    messages_synced, errors, duration_ms
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    workspace_id,
                    account_id,
                    to_db(record.at),
                    record.status.value,
                    record.contacts_synced,
                    record.messages_synced,
                    json.dumps(record.errors),
                    record.duration_ms,
                ),
            )
            conn.execute(
                """
                DELETE FROM sync_runs
                WHERE workspace_id = ? AND account_id = ? AND id NOT IN (
                    SELECT id FROM sync_runs
                    WHERE workspace_id = ? AND account_id = ?
                    ORDER BY run_at DESC, id DESC LIMIT ?
                )
                """,
                (workspace_id, account_id, workspace_id, account_id, RUN_HISTORY_LIMIT),
            )

    def get_recent_runs(
        self, workspace_id: str, account_id: str, limit: int = 5
    ) -> list[RunRecord]:
        """Most recent runs for a key, newest first."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_runs WHERE workspace_id = ? AND account_id = ? "
                "ORDER BY run_at DESC, id DESC LIMIT ?",
                (workspace_id, account_id, limit),
            ).fetchall()
        return [
            RunRecord(
                at=from_db(row["run_at"]),
                contacts_synced=row["contacts_synced"],
                messages_synced=row["messages_synced"],
                errors=json.loads(row["errors"]),
                status=RunStatus(row["status"]),
                duration_ms=row["duration_ms"],
            )
            for row in rows
        ]

    # =========================================================================
    # Maintenance
    # =========================================================================

    def vacuum(self) -> None:
        """Reclaim free pages. Must run outside a transaction."""
        with self._lock if self.is_memory else _no_lock():
            conn = self._get_connection()
            try:
                conn.execute("VACUUM")
            finally:
                if not self.is_memory:
                    conn.close()


@contextmanager
def _no_lock() -> Generator[None, None, None]:
    yield


def _count_messages(conn: sqlite3.Connection, conversation_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id,)
    ).fetchone()
    return int(row[0])


def _mark_expanded(conn: sqlite3.Connection, conversation_id: int) -> int:
    held_count = _count_messages(conn, conversation_id)
    cursor = conn.execute(
        "UPDATE conversations SET preview_only = 0, total_message_count = ?, "
        "updated_at = ? WHERE id = ?",
        (held_count, to_db(utc_now()), conversation_id),
    )
    if cursor.rowcount == 0:
        raise StoreError(f"Conversation {conversation_id} does not exist")
    return held_count


def _sorted_range(messages: Iterable[Message], label: str) -> list[Message]:
    """Ordinal-sort a message range, rejecting duplicate ordinals."""
    batch = sorted(messages, key=lambda m: m.ordinal)
    ordinals = [m.ordinal for m in batch]
    if len(set(ordinals)) != len(ordinals):
        raise StoreError(f"Duplicate ordinals in message range for {label}")
    return batch


def _write_conversation(
    conn: sqlite3.Connection, conversation: Conversation
) -> Optional[int]:
    now = to_db(utc_now())
    incoming_at = to_db(conversation.last_message_at)

    row = conn.execute(
        "SELECT id, last_message_at, metadata FROM conversations "
        "WHERE workspace_id = ? AND platform_conversation_id = ?",
        (conversation.workspace_id, conversation.platform_conversation_id),
    ).fetchone()

    if row is None:
        cursor = conn.execute(
            """
            INSERT INTO conversations (
                workspace_id, account_id, platform_conversation_id,
                participant_name, participant_id, participant_profile_url,
                last_message_at, status, preview_only, total_message_count,
                metadata, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conversation.workspace_id,
                conversation.account_id,
                conversation.platform_conversation_id,
                conversation.participant_name,
                conversation.participant_id,
                conversation.participant_profile_url,
                incoming_at,
                conversation.status.value,
                int(conversation.preview_only),
                conversation.total_message_count,
                json.dumps(conversation.metadata, sort_keys=True),
                now,
                now,
            ),
        )
        return cursor.lastrowid

    stored_at = row["last_message_at"]
    if stored_at is not None and (incoming_at is None or incoming_at < stored_at):
        logger.debug(
            f"Rejected stale write for conversation "
            f"{conversation.platform_conversation_id}: "
            f"{incoming_at} < {stored_at}"
        )
        return None

    metadata = json.loads(row["metadata"] or "{}")
    metadata.update(conversation.metadata)
    conn.execute(
        """
        UPDATE conversations SET
            account_id = ?,
            participant_name = ?,
            participant_id = ?,
            participant_profile_url = ?,
            last_message_at = ?,
            preview_only = ?,
            total_message_count = ?,
            metadata = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            conversation.account_id,
            conversation.participant_name,
            conversation.participant_id,
            conversation.participant_profile_url,
            incoming_at,
            int(conversation.preview_only),
            conversation.total_message_count,
            json.dumps(metadata, sort_keys=True),
            now,
            row["id"],
        ),
    )
    return int(row["id"])


def _write_message_range(
    conn: sqlite3.Connection,
    conversation_id: int,
    batch: list[Message],
    total_message_count: Optional[int],
    more_available: bool,
    replace: bool,
    expanded: bool,
) -> int:
    ordinals = [m.ordinal for m in batch]
    if replace:
        conn.execute(
            "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
        )
    elif batch:
        held = conn.execute(
            "SELECT MIN(ordinal) AS lo, MAX(ordinal) AS hi FROM messages "
            "WHERE conversation_id = ?",
            (conversation_id,),
        ).fetchone()
        if held["lo"] is not None and (
            ordinals[0] > held["hi"] + 1 or ordinals[-1] < held["lo"] - 1
        ):
            logger.debug(
                f"Pruning stale block {held['lo']}..{held['hi']} of "
                f"conversation {conversation_id}"
            )
            conn.execute(
                "DELETE FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            )

    conn.executemany(
        """
        INSERT INTO messages (
            conversation_id, ordinal, platform_message_id, role,
            content, sent_at, attachment_count
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(conversation_id, ordinal) DO UPDATE SET
            platform_message_id = excluded.platform_message_id,
            role = excluded.role,
            content = excluded.content,
            sent_at = excluded.sent_at,
            attachment_count = excluded.attachment_count
        """,
        [
            (
                conversation_id,
                m.ordinal,
                m.platform_message_id,
                m.role.value,
                m.content,
                to_db(m.sent_at),
                m.attachment_count,
            )
            for m in batch
        ],
    )

    if expanded:
        return _mark_expanded(conn, conversation_id)

    held_count = _count_messages(conn, conversation_id)
    if total_message_count is not None:
        conn.execute(
            "UPDATE conversations SET preview_only = ?, "
            "total_message_count = ? WHERE id = ?",
            (
                int(held_count < total_message_count),
                total_message_count,
                conversation_id,
            ),
        )
    else:
        conn.execute(
            "UPDATE conversations SET preview_only = ? WHERE id = ?",
            (int(more_available), conversation_id),
        )
    return held_count


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        workspace_id=row["workspace_id"],
        account_id=row["account_id"],
        platform_conversation_id=row["platform_conversation_id"],
        participant_name=row["participant_name"],
        participant_id=row["participant_id"],
        participant_profile_url=row["participant_profile_url"],
        last_message_at=from_db(row["last_message_at"]),
        status=ConversationStatus(row["status"]),
        preview_only=bool(row["preview_only"]),
        total_message_count=row["total_message_count"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
    )


def _row_to_contact(row: sqlite3.Row) -> Contact:
    return Contact(
        id=row["id"],
        workspace_id=row["workspace_id"],
        identity_key=row["identity_key"],
        name=row["name"],
        email=row["email"],
        title=row["title"],
        company=row["company"],
        profile_url=row["profile_url"],
        phone=row["phone"],
        connection_degree=row["connection_degree"],
        sources={SourceTag(s) for s in json.loads(row["sources"])},
        field_sources={
            k: SourceTag(v) for k, v in json.loads(row["field_sources"]).items()
        },
        quality_score=row["quality_score"],
        version=row["version"],
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
    )


def _row_to_schedule(row: sqlite3.Row) -> SyncSchedule:
    return SyncSchedule(
        workspace_id=row["workspace_id"],
        account_id=row["account_id"],
        enabled=bool(row["enabled"]),
        interval_minutes=row["interval_minutes"],
        scope=SyncScope(row["scope"]),
        last_run_at=from_db(row["last_run_at"]),
        last_result=json.loads(row["last_result"]) if row["last_result"] else None,
        disabled_reason=row["disabled_reason"],
        skipped_ticks=row["skipped_ticks"],
        created_at=from_db(row["created_at"]),
        updated_at=from_db(row["updated_at"]),
    )
