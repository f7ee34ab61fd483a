"""
Adapter for the primary platform API.

The primary API serves the account's chats, their messages and the
account's first-degree relations:

    GET /chats?account_id=&limit=&cursor=           -> {"items": [...], "cursor": ...}
    GET /chats/{chat_id}/messages?limit=&cursor=     -> {"items": [...], "cursor": ...}
    GET /users/relations?account_id=&limit=&cursor=  -> {"items": [...], "cursor": ...}

Messages are listed newest first.
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

SOURCE_NAME = "primary"
DEFAULT_PAGE_SIZE = 50


class PrimaryClient:
    """
    Source client for the primary platform API.

    Usage:
        transport = HttpTransport(url, api_key=key, source="primary")
        client = PrimaryClient(transport)
        page = client.list_conversations("acc_1", limit=50)
    """

    name = SOURCE_NAME
    tag = SourceTag.PRIMARY_API

    def __init__(self, transport: HttpTransport):
        self.transport = transport

    def list_conversations(
        self, account_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[RemoteConversation]:
        body = self.transport.get_json(
            "/chats",
            {
                "account_id": account_id,
                "limit": limit or DEFAULT_PAGE_SIZE,
                "cursor": cursor,
            },
        )
        return parse_page(
            body.get("items"), parse_chat, body.get("cursor"), SOURCE_NAME
        )

    def list_messages(
        self,
        account_id: str,
        conversation_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page[RemoteMessage]:
        body = self.transport.get_json(
            f"/chats/{conversation_id}/messages",
            {
                "account_id": account_id,
                "limit": limit or DEFAULT_PAGE_SIZE,
                "cursor": cursor,
            },
        )
        return parse_page(
            body.get("items"), parse_message, body.get("cursor"), SOURCE_NAME
        )

    def list_profiles(
        self, account_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[ContactCandidate]:
        body = self.transport.get_json(
            "/users/relations",
            {
                "account_id": account_id,
                "limit": limit or DEFAULT_PAGE_SIZE,
                "cursor": cursor,
            },
        )
        return parse_page(
            body.get("items"), parse_relation, body.get("cursor"), SOURCE_NAME
        )


def parse_chat(item: dict[str, Any]) -> RemoteConversation:
    """
    Parse one chat item.

    Raises:
        KeyError: If the chat has no id
        ValueError: If the timestamp or counts are unparseable
    """
    chat_id = text(item["id"])
    if not chat_id:
        raise ValueError("Chat id is empty")

    last_message_at = parse_timestamp(item.get("timestamp") or item.get("updated_at"))
    if last_message_at is None:
        raise ValueError("Chat has no timestamp")

    metadata: dict[str, Any] = {}
    last_message = item.get("last_message")
    if isinstance(last_message, dict) and last_message.get("text"):
        metadata["preview"] = text(last_message["text"])
    if item.get("subject"):
        metadata["subject"] = text(item["subject"])

    return RemoteConversation(
        conversation_id=chat_id,
        last_message_at=last_message_at,
        total_message_count=optional_int(item.get("message_count")),
        participant_name=text(item.get("name")),
        participant_id=text(item.get("attendee_provider_id")) or None,
        participant_profile_url=text(item.get("attendee_profile_url")) or None,
        unread=bool(optional_int(item.get("unread_count"))),
        metadata=metadata,
    )


def parse_message(item: dict[str, Any]) -> RemoteMessage:
    """Parse one message item; a message without text is a placeholder."""
    content = text(item.get("text"))
    if item.get("deleted") or item.get("hidden") or not content:
        role = MessageRole.PLACEHOLDER
    elif item.get("is_sender"):
        role = MessageRole.OUTBOUND
    else:
        role = MessageRole.INBOUND

    attachments = item.get("attachments") or []
    if not isinstance(attachments, list):
        raise ValueError("attachments must be a list")

    return RemoteMessage(
        message_id=text(item.get("id")) or None,
        sent_at=parse_timestamp(item.get("timestamp")),
        role=role,
        content=content,
        attachment_count=len(attachments),
        index=optional_int(item.get("index")),
    )


def parse_relation(item: dict[str, Any]) -> ContactCandidate:
    """Parse one relation into a contact candidate."""
    name = text(item.get("name"))
    if not name:
        name = f"{text(item.get('first_name'))} {text(item.get('last_name'))}".strip()

    emails = item.get("emails")
    email = text(item.get("email"))
    if not email and isinstance(emails, list) and emails:
        email = text(emails[0])

    return ContactCandidate(
        source=SourceTag.PRIMARY_API,
        name=name,
        email=email,
        title=text(item.get("headline")),
        company=text(item.get("company")),
        profile_url=text(item.get("public_profile_url") or item.get("profile_url")),
        phone=text(item.get("phone")),
        connection_degree=parse_degree(item.get("network_distance") or 1),
        origin=text(item.get("member_id") or item.get("public_identifier")) or None,
    )
