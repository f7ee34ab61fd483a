"""
Data model for conversation sync and contact reconciliation.

Two families of types live here:
- Remote* records: what a source adapter parsed from one upstream item.
  The engine never sees platform JSON.
- Stored entities (Conversation, Message, Contact, SyncSchedule, RunRecord):
  what the store persists. Every write path is an idempotent upsert.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SourceTag(str, Enum):
    """Where a contact candidate came from."""

    PRIMARY_API = "primary-api"
    SECONDARY_API = "secondary-api"
    MANUAL = "manual"
    EXTRACTION = "extraction"
    CSV = "csv"


# Higher wins when two non-empty values compete for the same field
SOURCE_PRECEDENCE: dict[SourceTag, int] = {
    SourceTag.PRIMARY_API: 5,
    SourceTag.SECONDARY_API: 4,
    SourceTag.MANUAL: 3,
    SourceTag.EXTRACTION: 2,
    SourceTag.CSV: 1,
}

API_SOURCES = frozenset({SourceTag.PRIMARY_API, SourceTag.SECONDARY_API})


class MessageRole(str, Enum):
    """Direction of a message relative to the synced account."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    PLACEHOLDER = "placeholder"  # upstream reported a message with no body


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class SyncScope(str, Enum):
    """What a background sync tick covers."""

    CONTACTS = "contacts"
    MESSAGES = "messages"
    BOTH = "both"

    @property
    def includes_messages(self) -> bool:
        return self in (SyncScope.MESSAGES, SyncScope.BOTH)

    @property
    def includes_contacts(self) -> bool:
        return self in (SyncScope.CONTACTS, SyncScope.BOTH)


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Upstream records
# =============================================================================


@dataclass
class RemoteConversation:
    """One conversation summary as listed by a source."""

    conversation_id: str
    last_message_at: datetime
    total_message_count: Optional[int] = None
    participant_name: str = ""
    participant_id: Optional[str] = None
    participant_profile_url: Optional[str] = None
    unread: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RemoteMessage:
    """One message as listed by a source, newest pages first."""

    message_id: Optional[str]
    sent_at: Optional[datetime]
    role: MessageRole
    content: str = ""
    attachment_count: int = 0
    # Upstream position in the thread, when the source provides one
    index: Optional[int] = None


# =============================================================================
# Stored entities
# =============================================================================


@dataclass
class Conversation:
    """
    A synced conversation.

    Identity is (workspace_id, platform_conversation_id). preview_only is
    True while fewer messages are held locally than total_message_count.
    """

    workspace_id: str
    account_id: str
    platform_conversation_id: str
    last_message_at: Optional[datetime]
    participant_name: str = ""
    participant_id: Optional[str] = None
    participant_profile_url: Optional[str] = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    preview_only: bool = False
    total_message_count: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.workspace_id, self.platform_conversation_id)


@dataclass
class Message:
    """A stored message; identity is (conversation_id, ordinal)."""

    ordinal: int
    role: MessageRole
    content: str
    sent_at: Optional[datetime]
    attachment_count: int = 0
    platform_message_id: Optional[str] = None
    conversation_id: Optional[int] = None


# Contact fields subject to the field-by-field merge
CONTACT_FIELDS = ("name", "email", "title", "company", "profile_url", "phone")


@dataclass
class ContactCandidate:
    """
    An unmerged, source-tagged contact record.

    Produced by every entry point (both APIs, CSV import, manual entry,
    search extraction) and consumed only by the reconciler.
    """

    source: SourceTag
    name: str = ""
    email: str = ""
    title: str = ""
    company: str = ""
    profile_url: str = ""
    phone: str = ""
    connection_degree: Optional[int] = None
    # Row number, upstream id, ... for error messages
    origin: Optional[str] = None

    def value(self, field_name: str) -> str:
        return (getattr(self, field_name) or "").strip()


@dataclass
class Contact:
    """
    A canonical, reconciled contact.

    Identity is the normalized email if present, else the normalized
    profile URL (see outreach_sync.sync.identity.candidate_key).
    field_sources records which source set each field, so manual edits
    can be kept sticky.
    """

    workspace_id: str
    identity_key: str
    name: str = ""
    email: str = ""
    title: str = ""
    company: str = ""
    profile_url: str = ""
    phone: str = ""
    connection_degree: Optional[int] = None
    sources: set[SourceTag] = field(default_factory=set)
    field_sources: dict[str, SourceTag] = field(default_factory=dict)
    quality_score: int = 0
    # Incremented on every write; used for compare-and-set
    version: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def snapshot(self) -> tuple[Any, ...]:
        """Comparable view of the mergeable state, for change detection."""
        return (
            tuple(getattr(self, f) for f in CONTACT_FIELDS),
            self.connection_degree,
            frozenset(self.sources),
            tuple(sorted((k, v.value) for k, v in self.field_sources.items())),
            self.quality_score,
        )


@dataclass
class RunRecord:
    """One entry in a schedule key's run history."""

    at: datetime
    contacts_synced: int = 0
    messages_synced: int = 0
    errors: list[str] = field(default_factory=list)
    status: RunStatus = RunStatus.SUCCESS
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "at": self.at.isoformat(),
            "contacts_synced": self.contacts_synced,
            "messages_synced": self.messages_synced,
            "errors": list(self.errors),
            "status": self.status.value,
            "duration_ms": self.duration_ms,
        }


@dataclass
class SyncSchedule:
    """
    Persisted background sync configuration for one schedule key.

    Disabling keeps the row (and last_result) for diagnostics.
    """

    workspace_id: str
    account_id: str
    enabled: bool = True
    interval_minutes: int = 30
    scope: SyncScope = SyncScope.BOTH
    last_run_at: Optional[datetime] = None
    last_result: Optional[dict[str, Any]] = None
    disabled_reason: Optional[str] = None
    skipped_ticks: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.workspace_id, self.account_id)
