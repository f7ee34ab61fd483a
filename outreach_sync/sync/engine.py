"""
Conversation sync engine.

Runs one bounded, resumable pass over an account's conversations:
pages through the source newest-first under a SyncPolicy, skips
conversations whose last message is unchanged, and writes the most
recent messages of everything else. Threads longer than the per-thread
limit are stored as previews and can be expanded on demand.

Message ordinals:
1. The upstream index, when the source supplies one for every message.
2. Otherwise messages are ordered by (sent_at, upstream arrival order)
   and numbered by absolute position in the thread. A preview of the
   newest n messages of a thread of total t holds ordinals t-n .. t-1.
3. When the source reports no total and more messages remain, the slice
   is numbered 0..n-1 provisionally, replaces anything held before, and
   the conversation is flagged with metadata["ordinals"] = "provisional".
   If the thread was already expanded, the slice is first shifted onto
   the held messages it shares platform message ids with, and only
   replaces them when it shares none.
"""

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from outreach_sync.api.errors import (
    Malformed,
    RateLimited,
    SourceError,
    Unauthorized,
)
from outreach_sync.api.source import SourceClient
from outreach_sync.config.sync_policy import SyncPolicy
from outreach_sync.storage.db import StoreError, SyncDatabase
from outreach_sync.sync.models import (
    Conversation,
    Message,
    RemoteConversation,
    RemoteMessage,
    RunStatus,
)
from outreach_sync.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

# Page size used when expanding a full thread
EXPAND_PAGE_SIZE = 100

# Safety ceiling on message pages fetched by one expand call
MAX_EXPAND_PAGES = 200

ORDINALS_ABSOLUTE = "absolute"
ORDINALS_PROVISIONAL = "provisional"

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


class ConversationNotFound(Exception):
    """Raised when expanding a conversation that was never synced."""

    pass


@dataclass
class SyncError:
    """
    One error recorded during a run.

    Run-level failures are values accumulated on the result, not raised.
    """

    kind: str
    message: str
    conversation_id: Optional[str] = None
    page: Optional[int] = None
    payload_ref: Optional[str] = None

    @classmethod
    def from_exception(
        cls,
        error: Exception,
        conversation_id: Optional[str] = None,
        page: Optional[int] = None,
    ) -> "SyncError":
        return cls(
            kind=getattr(error, "kind", "store_error"),
            message=str(error),
            conversation_id=conversation_id,
            page=page,
            payload_ref=getattr(error, "payload_ref", None),
        )

    def __str__(self) -> str:
        where = ""
        if self.conversation_id:
            where = f" [conversation {self.conversation_id}]"
        elif self.page is not None:
            where = f" [page {self.page}]"
        return f"{self.kind}{where}: {self.message}"


@dataclass
class SyncResult:
    """
    Outcome of one run_sync pass.

    pages_fetched counts conversation-list page requests only;
    message_pages_fetched counts message page requests.
    """

    conversations_seen: int = 0
    conversations_updated: int = 0
    conversations_skipped: int = 0
    messages_written: int = 0
    pages_fetched: int = 0
    message_pages_fetched: int = 0
    truncated: bool = False
    aborted: bool = False
    errors: list[SyncError] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def record(
        self,
        error: Exception,
        conversation_id: Optional[str] = None,
        page: Optional[int] = None,
    ) -> SyncError:
        sync_error = SyncError.from_exception(error, conversation_id, page)
        self.errors.append(sync_error)
        return sync_error

    @property
    def status(self) -> RunStatus:
        """
        success: no errors. failed: aborted, or errors with no progress.
        partial: errors alongside some progress.
        """
        if not self.errors:
            return RunStatus.SUCCESS
        if self.aborted or (
            self.conversations_updated == 0 and self.conversations_skipped == 0
        ):
            return RunStatus.FAILED
        return RunStatus.PARTIAL

    @property
    def duration_ms(self) -> int:
        if self.started_at is None or self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversations_seen": self.conversations_seen,
            "conversations_updated": self.conversations_updated,
            "conversations_skipped": self.conversations_skipped,
            "messages_written": self.messages_written,
            "pages_fetched": self.pages_fetched,
            "message_pages_fetched": self.message_pages_fetched,
            "truncated": self.truncated,
            "aborted": self.aborted,
            "errors": [str(e) for e in self.errors],
        }

    def summary(self) -> str:
        """Generate a human-readable summary of the run."""
        lines = [
            "Sync Summary:",
            f"  Conversations seen: {self.conversations_seen}",
            f"  Updated: {self.conversations_updated}",
            f"  Unchanged (skipped): {self.conversations_skipped}",
            f"  Messages written: {self.messages_written}",
            f"  Pages fetched: {self.pages_fetched} "
            f"(+{self.message_pages_fetched} message pages)",
        ]
        if self.truncated:
            lines.append("  Stopped early: more conversations remain upstream")
        if self.aborted:
            lines.append("  Aborted: the account must be reconnected")
        if self.errors:
            lines.append(f"  Errors: {len(self.errors)}")
            lines.extend(f"    - {e}" for e in self.errors)
        return "\n".join(lines)


class ConversationLocks:
    """
    Per-conversation locks keyed by (workspace_id, platform_conversation_id).

    Shared by scheduled runs and expand calls so message merges for one
    conversation never interleave.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, workspace_id: str, conversation_id: str) -> threading.Lock:
        key = (workspace_id, conversation_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(
        self, workspace_id: str, conversation_id: str
    ) -> Generator[None, None, None]:
        lock = self.get(workspace_id, conversation_id)
        if not lock.acquire(blocking=False):
            logger.debug(f"Waiting for in-flight write to conversation {conversation_id}")
            lock.acquire()
        try:
            yield
        finally:
            lock.release()


def assign_ordinals(
    fetched: list[RemoteMessage],
    total_message_count: Optional[int],
    more_available: bool,
) -> tuple[list[Message], bool]:
    """
    Number fetched messages (listed newest first) with stable ordinals.

    Returns:
        Tuple of (ordinal-sorted messages, provisional)
    """
    if not fetched:
        return [], False

    indexes = [m.index for m in fetched]
    if all(i is not None for i in indexes) and len(set(indexes)) == len(indexes):
        messages = [_to_message(m, m.index) for m in fetched]
        return sorted(messages, key=lambda m: m.ordinal), False

    # Oldest first, then stable sort on sent_at; a missing sent_at keeps its
    # neighbor's position
    chronological = list(reversed(fetched))
    keys = []
    previous = _EARLIEST
    for message in chronological:
        previous = message.sent_at or previous
        keys.append(previous)
    ordered = [
        m for _, _, m in sorted(
            zip(keys, range(len(chronological)), chronological),
            key=lambda item: (item[0], item[1]),
        )
    ]

    count = len(ordered)
    provisional = False
    if total_message_count is not None and total_message_count >= count:
        base = total_message_count - count
    else:
        base = 0
        provisional = total_message_count is None and more_available

    return [_to_message(m, base + i) for i, m in enumerate(ordered)], provisional


def _to_message(remote: RemoteMessage, ordinal: int) -> Message:
    return Message(
        ordinal=ordinal,
        role=remote.role,
        content=remote.content,
        sent_at=remote.sent_at,
        attachment_count=remote.attachment_count,
        platform_message_id=remote.message_id,
    )


class ConversationSyncEngine:
    """
    Bounded conversation sync for one source.

    Usage:
        engine = ConversationSyncEngine(source=PrimaryClient(transport), database=db)
        result = engine.run_sync("ws_1", "acc_1", SyncPolicy.from_preset("minimal"))
        print(result.summary())

        messages = engine.expand_conversation("ws_1", "acc_1", "chat_42")
    """

    def __init__(
        self,
        source: SourceClient,
        database: SyncDatabase,
        locks: Optional[ConversationLocks] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the sync engine.

        Args:
            source: Source client to read conversations and messages from
            database: Store to write to
            locks: Conversation locks shared with other engines on the same store
            clock: Time source for the day window and result timestamps
        """
        self.source = source
        self.database = database
        self.locks = locks or ConversationLocks()
        self._clock = clock

    def run_sync(
        self, workspace_id: str, account_id: str, policy: SyncPolicy
    ) -> SyncResult:
        """
        Run one bounded sync pass.

        Never raises for source failures; they are recorded on the result.

        Args:
            workspace_id: Workspace the conversations belong to
            account_id: Upstream account to read
            policy: Limits for this pass

        Returns:
            SyncResult with counts, flags and errors
        """
        result = SyncResult(started_at=self._clock())
        cutoff = None
        if policy.sync_days_back > 0:
            cutoff = result.started_at - timedelta(days=policy.sync_days_back)

        logger.info(
            f"Starting sync for {workspace_id}/{account_id} "
            f"(max {policy.max_conversations} conversations, "
            f"{policy.max_pages} pages)"
        )

        cursor: Optional[str] = None
        while True:
            if result.conversations_seen >= policy.max_conversations:
                result.truncated = True
                logger.info(f"Reached max_conversations={policy.max_conversations}")
                break
            if result.pages_fetched >= policy.max_pages:
                result.truncated = True
                logger.info(f"Reached max_pages={policy.max_pages}")
                break

            result.pages_fetched += 1
            page_number = result.pages_fetched
            try:
                page = self.source.list_conversations(
                    account_id, cursor=cursor, limit=policy.conversations_per_page
                )
            except Unauthorized as e:
                result.record(e, page=page_number)
                result.aborted = True
                logger.error(f"Sync aborted for {workspace_id}/{account_id}: {e}")
                break
            except SourceError as e:
                result.record(e, page=page_number)
                if page_number > 1:
                    result.truncated = True
                logger.warning(f"Listing page {page_number} failed: {e}")
                break

            for rejected in page.rejected:
                result.record(rejected, page=page_number)
                logger.warning(
                    f"Skipped malformed conversation on page {page_number} "
                    f"(payload {rejected.payload_ref})"
                )

            stop = False
            outside_window = False
            for index, remote in enumerate(page.items):
                if result.conversations_seen >= policy.max_conversations:
                    result.truncated = True
                    stop = True
                    break
                if cutoff is not None and remote.last_message_at < cutoff:
                    outside_window = True
                    continue

                result.conversations_seen += 1
                if not self._sync_one(workspace_id, account_id, remote, policy, result):
                    if not result.aborted:
                        result.truncated = True
                    stop = True
                    break

            if stop:
                break
            if outside_window:
                result.truncated = True
                logger.info(
                    f"Reached the {policy.sync_days_back}-day window on page "
                    f"{page_number}"
                )
                break

            cursor = page.next_cursor
            if not cursor:
                break

        result.finished_at = self._clock()
        logger.info(
            f"Sync finished for {workspace_id}/{account_id}: "
            f"{result.conversations_updated} updated, "
            f"{result.conversations_skipped} unchanged, "
            f"{result.messages_written} messages, {len(result.errors)} errors"
            f"{' (truncated)' if result.truncated else ''}"
        )
        return result

    def _sync_one(
        self,
        workspace_id: str,
        account_id: str,
        remote: RemoteConversation,
        policy: SyncPolicy,
        result: SyncResult,
    ) -> bool:
        """
        Sync a single conversation, recording any failure.

        Returns:
            False if the run must stop (rate limited or unauthorized)
        """
        conversation_id = remote.conversation_id
        try:
            self._sync_conversation(workspace_id, account_id, remote, policy, result)
        except Unauthorized as e:
            result.record(e, conversation_id=conversation_id)
            result.aborted = True
            logger.error(f"Sync aborted for {workspace_id}/{account_id}: {e}")
            return False
        except RateLimited as e:
            result.record(e, conversation_id=conversation_id)
            logger.warning(f"Rate limited at conversation {conversation_id}; stopping run")
            return False
        except SourceError as e:
            error = result.record(e, conversation_id=conversation_id)
            logger.warning(f"Skipped conversation {conversation_id}: {error}")
        except StoreError as e:
            result.record(e, conversation_id=conversation_id)
            logger.error(f"Failed to store conversation {conversation_id}: {e}")
        return True

    def _sync_conversation(
        self,
        workspace_id: str,
        account_id: str,
        remote: RemoteConversation,
        policy: SyncPolicy,
        result: SyncResult,
    ) -> None:
        stored = self.database.get_conversation(workspace_id, remote.conversation_id)
        if (
            policy.skip_unchanged
            and stored is not None
            and stored.last_message_at == remote.last_message_at
        ):
            result.conversations_skipped += 1
            logger.debug(f"Conversation {remote.conversation_id} unchanged")
            return

        with self.locks.hold(workspace_id, remote.conversation_id):
            fetched, more_available = self._fetch_recent_messages(
                account_id,
                remote.conversation_id,
                policy.max_messages_per_conversation,
                result,
            )
            messages, provisional = assign_ordinals(
                fetched, remote.total_message_count, more_available
            )

            total = remote.total_message_count
            if total is not None and total < len(messages):
                total = len(messages)
            if total is None and not more_available:
                total = len(messages)

            if provisional:
                held_total = self._align_to_expanded(
                    workspace_id, remote.conversation_id, messages
                )
                if held_total is not None:
                    provisional = False
                    total = held_total

            metadata = dict(remote.metadata)
            metadata["unread"] = remote.unread
            metadata["ordinals"] = (
                ORDINALS_PROVISIONAL if provisional else ORDINALS_ABSOLUTE
            )

            conversation = Conversation(
                workspace_id=workspace_id,
                account_id=account_id,
                platform_conversation_id=remote.conversation_id,
                last_message_at=remote.last_message_at,
                participant_name=remote.participant_name,
                participant_id=remote.participant_id,
                participant_profile_url=remote.participant_profile_url,
                preview_only=(total is None) or len(messages) < total,
                total_message_count=total,
                metadata=metadata,
            )
            held = self.database.upsert_conversation_with_messages(
                conversation,
                messages,
                total_message_count=total,
                more_available=more_available,
                replace=provisional,
            )
            if held is None:
                # A concurrent writer already stored newer data
                result.conversations_skipped += 1
                return

        result.conversations_updated += 1
        result.messages_written += len(messages)

    def _align_to_expanded(
        self, workspace_id: str, conversation_id: str, messages: list[Message]
    ) -> Optional[int]:
        """
        Renumber a provisional slice onto an already expanded thread.

        The held thread carries absolute ordinals, so the slice is shifted
        to line up with the held messages sharing its platform message ids.
        The slice is left untouched when it shares no message with the held
        thread or the shared messages disagree on the shift.

        Returns:
            The thread total after the shift, or None if nothing was aligned
        """
        stored = self.database.get_conversation(workspace_id, conversation_id)
        if (
            stored is None
            or stored.id is None
            or stored.preview_only
            or stored.metadata.get("ordinals") == ORDINALS_PROVISIONAL
        ):
            return None

        held_messages = self.database.get_messages(stored.id)
        held = {
            m.platform_message_id: m.ordinal
            for m in held_messages
            if m.platform_message_id
        }
        shifts = {
            held[m.platform_message_id] - m.ordinal
            for m in messages
            if m.platform_message_id in held
        }
        if len(shifts) != 1:
            logger.debug(
                f"Cannot line up new messages of {conversation_id} with the "
                f"held thread; replacing it"
            )
            return None

        shift = shifts.pop()
        for message in messages:
            message.ordinal += shift
        return max(len(held_messages), messages[-1].ordinal + 1)

    def _fetch_recent_messages(
        self,
        account_id: str,
        conversation_id: str,
        limit: int,
        result: SyncResult,
    ) -> tuple[list[RemoteMessage], bool]:
        """
        Fetch up to ``limit`` most recent messages.

        Returns:
            Tuple of (messages newest first, more_available)
        """
        collected: list[RemoteMessage] = []
        cursor: Optional[str] = None
        while True:
            page = self.source.list_messages(
                account_id, conversation_id, cursor=cursor, limit=limit - len(collected)
            )
            result.message_pages_fetched += 1
            _reject_partial_thread(page.rejected)
            collected.extend(page.items)
            cursor = page.next_cursor
            if len(collected) >= limit or not cursor:
                break

        more_available = bool(cursor) or len(collected) > limit
        return collected[:limit], more_available

    def expand_conversation(
        self, workspace_id: str, account_id: str, platform_conversation_id: str
    ) -> list[Message]:
        """
        Fetch a conversation's full thread and merge it into the store.

        Waits for any in-flight write to the same conversation. Source
        errors propagate to the caller. A thread longer than the page
        ceiling is merged as far as it was read and stays a preview.

        Returns:
            All held messages, ordinal-sorted

        Raises:
            ConversationNotFound: If the conversation was never synced
            SourceError: If the thread cannot be fetched
        """
        with self.locks.hold(workspace_id, platform_conversation_id):
            stored = self.database.get_conversation(
                workspace_id, platform_conversation_id
            )
            if stored is None or stored.id is None:
                raise ConversationNotFound(
                    f"Conversation {platform_conversation_id} not found in "
                    f"workspace {workspace_id}"
                )
            was_provisional = stored.metadata.get("ordinals") == ORDINALS_PROVISIONAL

            fetched: list[RemoteMessage] = []
            cursor: Optional[str] = None
            for _ in range(MAX_EXPAND_PAGES):
                page = self.source.list_messages(
                    account_id,
                    platform_conversation_id,
                    cursor=cursor,
                    limit=EXPAND_PAGE_SIZE,
                )
                _reject_partial_thread(page.rejected)
                fetched.extend(page.items)
                cursor = page.next_cursor
                if not cursor:
                    break

            complete = not cursor
            if complete:
                messages, provisional = assign_ordinals(fetched, len(fetched), False)
                total = len(messages)
            else:
                logger.warning(
                    f"Stopped expanding {platform_conversation_id} after "
                    f"{MAX_EXPAND_PAGES} pages; it stays a preview"
                )
                total = stored.total_message_count
                if total is not None and total < len(fetched):
                    total = None
                messages, provisional = assign_ordinals(fetched, total, True)

            stored.metadata["ordinals"] = (
                ORDINALS_PROVISIONAL if provisional else ORDINALS_ABSOLUTE
            )
            stored.preview_only = not complete
            stored.total_message_count = total
            held = self.database.upsert_conversation_with_messages(
                stored,
                messages,
                total_message_count=total,
                more_available=not complete,
                replace=was_provisional or provisional,
                expanded=complete,
            )

        logger.info(
            f"Expanded conversation {platform_conversation_id}: {held} messages held"
        )
        return self.database.get_messages(stored.id)


def _reject_partial_thread(rejected: list[Malformed]) -> None:
    # A skipped message would shift every positional ordinal after it
    if rejected:
        raise rejected[0]
