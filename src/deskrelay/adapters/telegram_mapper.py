"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline. It also
implements the MessageSource port: downloading media and posting replies.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from telethon.tl.custom import Message

from deskrelay.core.models import Attachment, InboundMessage

LOGGER = logging.getLogger(__name__)


def group_key_from_message(message: Message) -> str:
    """Normalize a group key using a single rule enforced across the app."""

    chat = getattr(message, "chat", None)
    username = getattr(chat, "username", None)

    if isinstance(username, str) and username:
        return f"@{username.lower()}"

    # Fallback: always stable and universal
    return f"chat_id:{message.chat_id}"


def entity_from_group_key(group_key: str) -> Any:
    """Return what TelegramClient.send_message accepts for a group key."""

    if group_key.startswith("chat_id:"):
        return int(group_key.split("chat_id:", 1)[1])
    return group_key


def scoped_message_id(group_key: str, message_id: int) -> str:
    # Telegram ids are only unique per chat.
    return f"{group_key}/{message_id}"


def _quoted_message_id(message: Message) -> Optional[int]:
    reply_to = getattr(message, "reply_to", None)
    if not reply_to:
        return None
    # In forum topics reply_to_msg_id points at the topic root unless the
    # message actually quotes another one, in which case reply_to_top_id is set.
    if getattr(reply_to, "forum_topic", False) and not getattr(reply_to, "reply_to_top_id", None):
        return None
    return getattr(reply_to, "reply_to_msg_id", None)


def _display_name(entity: Any) -> Optional[str]:
    if entity is None:
        return None
    title = getattr(entity, "title", None)
    if title:
        return str(title)
    first = getattr(entity, "first_name", None)
    last = getattr(entity, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    username = getattr(entity, "username", None)
    if username:
        return f"@{username}"
    return None


async def build_inbound_message(message: Message) -> InboundMessage:
    """Build a core InboundMessage from a Telethon Message."""

    group_key = group_key_from_message(message)
    try:
        sender_entity = await message.get_sender()
    except Exception:
        LOGGER.warning("Could not fetch sender for message %s in %s", message.id, group_key)
        sender_entity = None
    sender = _display_name(sender_entity) or str(getattr(message, "sender_id", None) or "Unknown")

    quoted = _quoted_message_id(message)
    return InboundMessage(
        message_id=scoped_message_id(group_key, message.id),
        group_id=group_key,
        group_name=_display_name(getattr(message, "chat", None)) or group_key,
        sender=sender,
        body=message.raw_text or "",
        date=message.date,
        has_media=bool(getattr(message, "media", None)),
        quoted_message_id=scoped_message_id(group_key, quoted) if quoted else None,
        raw=message,
    )


class TelegramMessageSource:
    """MessageSource backed by a connected TelegramClient."""

    def __init__(self, client) -> None:
        self._client = client

    async def fetch_attachment(self, message: InboundMessage) -> Optional[Attachment]:
        raw = message.raw
        if raw is None or not getattr(raw, "media", None):
            return None
        content = await raw.download_media(file=bytes)
        if not content:
            return None
        file_info = getattr(raw, "file", None)
        filename = getattr(file_info, "name", None) or f"attachment{getattr(file_info, 'ext', None) or '.dat'}"
        content_type = getattr(file_info, "mime_type", None) or "application/octet-stream"
        return Attachment(filename=filename, content=content, content_type=content_type)

    async def send_reply(self, group_id: str, text: str) -> None:
        sent = await self._client.send_message(entity_from_group_key(group_id), text)
        LOGGER.info("Reply sent to %s: %s", group_id, getattr(sent, "id", None))
