"""Shared fixtures: an in-memory store and a scripted in-memory source."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

import pytest

from outreach_sync.api.source import Page
from outreach_sync.storage.db import SyncDatabase
from outreach_sync.sync.models import (
    ContactCandidate,
    MessageRole,
    RemoteConversation,
    RemoteMessage,
)
from outreach_sync.utils.timestamps import utc_now


class FakeSource:
    """
    In-memory SourceClient.

    Conversations and thread messages are held newest first, like the real
    APIs. Cursors are stringified offsets. Failures are scripted per call:
    conversation_failures by 1-based listing call number, message_failures
    by conversation id, profile_failures by 1-based profile call number.
    """

    def __init__(self, name: str = "fake"):
        self.name = name
        self.conversations: list[RemoteConversation] = []
        self.threads: dict[str, list[RemoteMessage]] = {}
        self.profiles: list[ContactCandidate] = []
        self.conversation_failures: dict[int, Exception] = {}
        self.message_failures: dict[str, Exception] = {}
        self.profile_failures: dict[int, Exception] = {}
        self.conversation_calls: list[Optional[str]] = []
        self.message_calls: list[tuple[str, Optional[str], Optional[int]]] = []
        self.profile_calls: list[Optional[str]] = []

    @staticmethod
    def _page(items: list, cursor: Optional[str], limit: Optional[int]) -> Page:
        offset = int(cursor or 0)
        end = offset + (limit or len(items) or 1)
        next_cursor = str(end) if end < len(items) else None
        return Page(items=list(items[offset:end]), next_cursor=next_cursor)

    def list_conversations(self, account_id, cursor=None, limit=None):
        self.conversation_calls.append(cursor)
        failure = self.conversation_failures.get(len(self.conversation_calls))
        if failure is not None:
            raise failure
        return self._page(self.conversations, cursor, limit)

    def list_messages(self, account_id, conversation_id, cursor=None, limit=None):
        self.message_calls.append((conversation_id, cursor, limit))
        failure = self.message_failures.get(conversation_id)
        if failure is not None:
            raise failure
        return self._page(self.threads.get(conversation_id, []), cursor, limit)

    def list_profiles(self, account_id, cursor=None, limit=None):
        self.profile_calls.append(cursor)
        failure = self.profile_failures.get(len(self.profile_calls))
        if failure is not None:
            raise failure
        return self._page(self.profiles, cursor, limit)

    def add_conversation(
        self,
        conversation_id: str,
        message_count: int,
        last_message_at: Optional[datetime] = None,
        report_total: bool = True,
        with_index: bool = False,
        participant_name: str = "",
    ) -> RemoteConversation:
        """Add a conversation with a generated thread, keeping newest first."""
        last_message_at = last_message_at or utc_now()
        self.threads[conversation_id] = make_thread(
            message_count, last_message_at, with_index=with_index
        )
        remote = RemoteConversation(
            conversation_id=conversation_id,
            last_message_at=last_message_at,
            total_message_count=message_count if report_total else None,
            participant_name=participant_name or f"Person {conversation_id}",
            participant_id=f"p_{conversation_id}",
        )
        self.conversations.append(remote)
        self.conversations.sort(key=lambda c: c.last_message_at, reverse=True)
        return remote

    def touch(self, conversation_id: str, at: datetime, new_messages: int = 1) -> None:
        """Simulate new messages arriving in a conversation."""
        thread = self.threads[conversation_id]
        for _ in range(new_messages):
            n = len(thread)
            thread.insert(
                0,
                RemoteMessage(
                    message_id=f"m{n}",
                    sent_at=at,
                    role=MessageRole.INBOUND,
                    content=f"message {n}",
                ),
            )
        for remote in self.conversations:
            if remote.conversation_id == conversation_id:
                remote.last_message_at = at
                if remote.total_message_count is not None:
                    remote.total_message_count = len(thread)
        self.conversations.sort(key=lambda c: c.last_message_at, reverse=True)


def make_thread(
    count: int, last_message_at: datetime, with_index: bool = False
) -> list[RemoteMessage]:
    """Messages m0 (oldest) .. m{count-1} (newest), returned newest first."""
    messages = []
    for n in range(count):
        messages.append(
            RemoteMessage(
                message_id=f"m{n}",
                sent_at=last_message_at - timedelta(minutes=count - 1 - n),
                role=MessageRole.OUTBOUND if n % 2 else MessageRole.INBOUND,
                content=f"message {n}",
                index=n if with_index else None,
            )
        )
    return list(reversed(messages))


@pytest.fixture
def database():
    """Initialized in-memory store."""
    db = SyncDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo setup_logging() between tests so records reach caplog again."""
    yield
    logger = logging.getLogger("outreach_sync")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.disabled = False
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_source():
    """Factory for additional named FakeSources."""
    return FakeSource
