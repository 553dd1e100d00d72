from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from deskrelay.adapters.telegram_mapper import (
    TelegramMessageSource,
    build_inbound_message,
    entity_from_group_key,
)


class DummyChat:
    def __init__(self, username: "str | None" = None, title: "str | None" = None) -> None:
        self.username = username
        self.title = title


class DummySender:
    def __init__(self, first_name: str, last_name: "str | None" = None) -> None:
        self.first_name = first_name
        self.last_name = last_name


class DummyReply:
    def __init__(self, forum_topic: bool, reply_to_top_id: "int | None", reply_to_msg_id: "int | None") -> None:
        self.forum_topic = forum_topic
        self.reply_to_top_id = reply_to_top_id
        self.reply_to_msg_id = reply_to_msg_id


class DummyFile:
    def __init__(self, name: "str | None", mime_type: str, ext: str = ".jpg") -> None:
        self.name = name
        self.mime_type = mime_type
        self.ext = ext


class DummyMessage:
    def __init__(
        self,
        *,
        chat_id: int,
        message_id: int,
        text: str,
        chat: "DummyChat | None" = None,
        reply_to=None,
        sender=None,
        media=None,
        file=None,
    ) -> None:
        self.chat_id = chat_id
        self.id = message_id
        self.raw_text = text
        self.chat = chat
        self.reply_to = reply_to
        self.sender_id = 42
        self.media = media
        self.file = file
        self.date = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._sender = sender

    async def get_sender(self):
        if isinstance(self._sender, Exception):
            raise self._sender
        return self._sender

    async def download_media(self, file=None):
        return b"jpeg-bytes"


class DummyClient:
    def __init__(self) -> None:
        self.sent: list[tuple[object, str]] = []

    async def send_message(self, entity, text):
        self.sent.append((entity, text))


def test_inbound_message_uses_username_and_scoped_ids() -> None:
    message = DummyMessage(
        chat_id=-100123,
        message_id=10,
        text="#helpdesk printer",
        chat=DummyChat(username="GVS_Staff", title="SR - Green Valley School - Staff"),
        reply_to=DummyReply(forum_topic=False, reply_to_top_id=None, reply_to_msg_id=7),
        sender=DummySender("Asha", "Rao"),
    )

    inbound = asyncio.run(build_inbound_message(message))

    assert inbound.group_id == "@gvs_staff"
    assert inbound.group_name == "SR - Green Valley School - Staff"
    assert inbound.message_id == "@gvs_staff/10"
    assert inbound.quoted_message_id == "@gvs_staff/7"
    assert inbound.sender == "Asha Rao"
    assert inbound.has_media is False


def test_forum_topic_root_is_not_a_quote() -> None:
    message = DummyMessage(
        chat_id=-100123,
        message_id=11,
        text="hello",
        chat=DummyChat(),
        reply_to=DummyReply(forum_topic=True, reply_to_top_id=None, reply_to_msg_id=555),
        sender=RuntimeError("sender unavailable"),
    )

    inbound = asyncio.run(build_inbound_message(message))

    assert inbound.group_id == "chat_id:-100123"
    assert inbound.quoted_message_id is None
    assert inbound.sender == "42"


def test_forum_topic_reply_keeps_quoted_message() -> None:
    message = DummyMessage(
        chat_id=-100123,
        message_id=12,
        text="still broken",
        chat=DummyChat(),
        reply_to=DummyReply(forum_topic=True, reply_to_top_id=555, reply_to_msg_id=600),
    )

    inbound = asyncio.run(build_inbound_message(message))

    assert inbound.quoted_message_id == "chat_id:-100123/600"


def test_fetch_attachment_reads_bytes_and_file_info() -> None:
    message = DummyMessage(
        chat_id=1,
        message_id=1,
        text="photo for helpdesk",
        chat=DummyChat(username="gvs"),
        media=object(),
        file=DummyFile(name=None, mime_type="image/jpeg"),
    )
    source = TelegramMessageSource(DummyClient())

    async def scenario():
        inbound = await build_inbound_message(message)
        return await source.fetch_attachment(inbound)

    attachment = asyncio.run(scenario())

    assert attachment.filename == "attachment.jpg"
    assert attachment.content == b"jpeg-bytes"
    assert attachment.content_type == "image/jpeg"


def test_send_reply_resolves_chat_id_keys() -> None:
    client = DummyClient()
    source = TelegramMessageSource(client)

    asyncio.run(source.send_reply("chat_id:-100123", "Ticket raised"))
    asyncio.run(source.send_reply("@gvs", "Ticket raised"))

    assert client.sent == [(-100123, "Ticket raised"), ("@gvs", "Ticket raised")]
    assert entity_from_group_key("@gvs") == "@gvs"
