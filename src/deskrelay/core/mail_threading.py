"""Outbound mail assembly with reply threading.

A message that quotes an earlier, already-emailed message reuses that mail's
subject and points In-Reply-To/References at its Message-ID, so mail clients
group the two. Every other message gets a subject with a unique suffix so
independent notifications never collapse into one thread.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from deskrelay.core.config import MailConfig
from deskrelay.core.mail_formatting import MailContext, format_html, format_text
from deskrelay.core.models import Attachment, Group, MessageRecord
from deskrelay.core.ports import MessageStore
from deskrelay.core.unit_names import extract_unit_name

LOGGER = logging.getLogger(__name__)

EMAIL_MESSAGE_ID_KEY = "emailMessageId"
EMAIL_SUBJECT_KEY = "emailSubject"
QUOTED_MESSAGE_ID_KEY = "quotedMessageId"
QUOTED_CONTENT_KEY = "quotedContent"


@dataclass(frozen=True)
class OutboundMail:
    """A fully assembled mail, ready for any MailTransport."""

    subject: str
    text_body: str
    html_body: str
    message_id: str
    unique_id: str
    to: Optional[str]
    from_name: str
    cc: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    attachments: Tuple[Attachment, ...] = ()

    @property
    def in_reply_to(self) -> Optional[str]:
        return self.headers.get("In-Reply-To")


def generate_unique_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def format_subject(unit_name: str, message_type: str, unique_id: str) -> str:
    return f"{unit_name} - {message_type} #{unique_id}"


def build_message_id(unique_id: str, domain: str) -> str:
    """RFC 5322 Message-ID: <timestamp.sanitizedUniqueSuffix@domain>."""

    sanitized = re.sub(r"[^a-zA-Z0-9]", "", unique_id)
    return f"<{int(time.time() * 1000)}.{sanitized}@{domain}>"


def _bracketed(message_id: str) -> str:
    message_id = message_id.strip()
    if not message_id.startswith("<"):
        message_id = f"<{message_id}"
    if not message_id.endswith(">"):
        message_id = f"{message_id}>"
    return message_id


class MailAssembler:
    """Build subject, bodies and headers for a MessageRecord."""

    def __init__(self, messages: MessageStore, config: MailConfig) -> None:
        self._messages = messages
        self._config = config

    def unit_name(self, group: Group) -> str:
        return extract_unit_name(group.name, self._config.known_units, self._config.unit_prefix)

    def _thread_parent(self, record: MessageRecord) -> Optional[MessageRecord]:
        if not record.quoted_message_id:
            return None
        parent = self._messages.find_message(record.quoted_message_id)
        if parent is None:
            LOGGER.warning("Could not find quoted message %s for threading", record.quoted_message_id)
            return None
        if not parent.metadata.get(EMAIL_MESSAGE_ID_KEY):
            LOGGER.info("Quoted message %s was never emailed, starting a new thread", parent.message_id)
            return None
        return parent

    def build_mail(
        self,
        record: MessageRecord,
        group: Group,
        attachments: Iterable[Attachment] = (),
        to: Optional[str] = None,
        cc: Optional[str] = None,
    ) -> OutboundMail:
        unit = self.unit_name(group)
        unique_id = generate_unique_id()
        headers: Dict[str, str] = {
            "X-Entity-Ref-ID": unique_id,
            "X-Unit-Name": unit,
            "X-Group-ID": group.group_id or "unknown-group",
        }

        parent = self._thread_parent(record)
        if parent is not None:
            original_id = _bracketed(parent.metadata[EMAIL_MESSAGE_ID_KEY])
            # The parent's subject is reused verbatim; some clients thread on subject.
            subject = parent.metadata.get(EMAIL_SUBJECT_KEY) or f"{unit} - Notification"
            headers["In-Reply-To"] = original_id
            headers["References"] = original_id
            LOGGER.info("Threading mail for %s onto %s", record.message_id, original_id)
        else:
            subject = format_subject(unit, record.classification.value, unique_id)

        staged = tuple(attachments)
        names: List[str] = [attachment.filename for attachment in staged]
        context = MailContext(
            unit_name=unit,
            group_name=group.name,
            sender=record.sender,
            content=record.content,
            timestamp=record.created_at or datetime.now(timezone.utc),
            unique_id=unique_id,
            attachments=names,
            quoted_content=record.metadata.get(QUOTED_CONTENT_KEY),
        )

        return OutboundMail(
            subject=subject,
            text_body=format_text(context),
            html_body=format_html(context),
            message_id=build_message_id(unique_id, self._config.sender_domain),
            unique_id=unique_id,
            to=to or self._config.default_recipient,
            cc=cc,
            from_name=f"{unit} Helpdesk",
            headers=headers,
            attachments=staged,
        )
