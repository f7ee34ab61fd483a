"""
Adapter for the secondary platform API.

Lower-fidelity mirror of the primary API, used as a fallback source for
profile data and for threads when the primary is unavailable:

    GET /accounts/{account}/threads?page_size=&page_token=
    GET /accounts/{account}/threads/{thread}/messages?page_size=&page_token=
    GET /accounts/{account}/profiles?page_size=&page_token=

Every listing returns {"data": [...], "next_page_token": ...}.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from outreach_sync.api.http import HttpTransport
from outreach_sync.api.source import Page, optional_int, parse_degree, parse_page, text
from outreach_sync.sync.models import (
    ContactCandidate,
    MessageRole,
    RemoteConversation,
    RemoteMessage,
    SourceTag,
)
from outreach_sync.utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

SOURCE_NAME = "secondary"
DEFAULT_PAGE_SIZE = 50


class SecondaryClient:
    """Source client for the secondary platform API."""

    name = SOURCE_NAME
    tag = SourceTag.SECONDARY_API

    def __init__(self, transport: HttpTransport):
        self.transport = transport

    def _list(
        self, path: str, parser: Any, cursor: Optional[str], limit: Optional[int]
    ) -> Page[Any]:
        body = self.transport.get_json(
            path, {"page_size": limit or DEFAULT_PAGE_SIZE, "page_token": cursor}
        )
        return parse_page(
            body.get("data"), parser, body.get("next_page_token"), SOURCE_NAME
        )

    def list_conversations(
        self, account_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[RemoteConversation]:
        return self._list(f"/accounts/{account_id}/threads", parse_thread, cursor, limit)

    def list_messages(
        self,
        account_id: str,
        conversation_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page[RemoteMessage]:
        return self._list(
            f"/accounts/{account_id}/threads/{conversation_id}/messages",
            parse_thread_message,
            cursor,
            limit,
        )

    def list_profiles(
        self, account_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[ContactCandidate]:
        return self._list(f"/accounts/{account_id}/profiles", parse_profile, cursor, limit)


def parse_thread(item: dict[str, Any]) -> RemoteConversation:
    thread_id = text(item["thread_id"])
    if not thread_id:
        raise ValueError("thread_id is empty")
    updated_at = parse_timestamp(item.get("updated_at"))
    if updated_at is None:
        raise ValueError("Thread has no updated_at")

    participant = item.get("participant") or {}
    if not isinstance(participant, dict):
        raise ValueError("participant must be an object")

    return RemoteConversation(
        conversation_id=thread_id,
        last_message_at=updated_at,
        total_message_count=optional_int(item.get("messages_total")),
        participant_name=text(participant.get("full_name")),
        participant_id=text(participant.get("id")) or None,
        participant_profile_url=text(participant.get("profile_url")) or None,
        unread=bool(item.get("unread")),
    )


def parse_thread_message(item: dict[str, Any]) -> RemoteMessage:
    content = text(item.get("body"))
    direction = text(item.get("direction")).lower()
    if not content:
        role = MessageRole.PLACEHOLDER
    elif direction == "out":
        role = MessageRole.OUTBOUND
    elif direction == "in":
        role = MessageRole.INBOUND
    else:
        raise ValueError(f"Unknown message direction {direction!r}")

    return RemoteMessage(
        message_id=text(item.get("message_id")) or None,
        sent_at=parse_timestamp(item.get("created_at")),
        role=role,
        content=content,
        attachment_count=optional_int(item.get("attachments_count")) or 0,
        index=optional_int(item.get("position")),
    )


def parse_profile(item: dict[str, Any]) -> ContactCandidate:
    contact_info = item.get("contact_info") or {}
    if not isinstance(contact_info, dict):
        raise ValueError("contact_info must be an object")

    return ContactCandidate(
        source=SourceTag.SECONDARY_API,
        name=text(item.get("full_name")),
        email=text(contact_info.get("email")),
        title=text(item.get("headline")),
        company=text(item.get("current_company")),
        profile_url=text(item.get("profile_url")),
        phone=text(contact_info.get("phone")),
        connection_degree=parse_degree(item.get("degree")),
        origin=text(item.get("profile_id")) or None,
    )
