"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for storage,
the message source and the job queue, enabling other chat transports or
persistence engines without changes here.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from deskrelay.core.dispatcher import ActionDispatcher
from deskrelay.core.mail_threading import QUOTED_CONTENT_KEY, QUOTED_MESSAGE_ID_KEY
from deskrelay.core.models import (
    Attachment,
    Classification,
    InboundMessage,
    MessageRecord,
    MessageStatus,
)
from deskrelay.core.ports import MessageSource, MessageStore, RuleStore
from deskrelay.core.rules_engine import PatternMatcher, is_helpdesk_media
from deskrelay.metrics import MESSAGES_PROCESSED, MESSAGES_RECEIVED, PROCESSING_DURATION

LOGGER = logging.getLogger(__name__)


class MessageProcessor:
    """Orchestrates provisioning, matching, record keeping and dispatch."""

    def __init__(
        self,
        rules: RuleStore,
        messages: MessageStore,
        source: MessageSource,
        dispatcher: ActionDispatcher,
        matcher: Optional[PatternMatcher] = None,
    ) -> None:
        self._rules = rules
        self._messages = messages
        self._source = source
        self._dispatcher = dispatcher
        self._matcher = matcher or PatternMatcher()

    async def _stage_attachments(self, message: InboundMessage) -> List[Attachment]:
        try:
            attachment = await self._source.fetch_attachment(message)
        except Exception:
            LOGGER.exception("Failed to download media for helpdesk message %s", message.message_id)
            return []
        if attachment is None:
            return []
        LOGGER.info("Media downloaded and staged for mail: %s", attachment.filename)
        return [attachment]

    async def handle(self, message: InboundMessage) -> Optional[MessageRecord]:
        """Process one inbound message. Returns the record, or None if nothing matched."""

        MESSAGES_RECEIVED.labels(kind="media" if message.has_media else "text").inc()
        started = time.perf_counter()
        try:
            record = await self._process(message)
        except Exception:
            MESSAGES_PROCESSED.labels(type="NONE", status="error").inc()
            raise
        if record is None:
            MESSAGES_PROCESSED.labels(type="NONE", status="skipped").inc()
            return None
        kind = record.classification.value if record.classification else "NONE"
        MESSAGES_PROCESSED.labels(type=kind, status=record.status.value.lower()).inc()
        PROCESSING_DURATION.labels(type=kind).observe(time.perf_counter() - started)
        return record

    async def _process(self, message: InboundMessage) -> Optional[MessageRecord]:
        parent = None
        if message.quoted_message_id:
            parent = self._messages.find_message(message.quoted_message_id)
            if parent is None:
                LOGGER.warning("Quoted message %s not found in store", message.quoted_message_id)

        group = self._rules.ensure_group(message.group_id, message.group_name or message.group_id)
        if not group.is_active:
            LOGGER.info("Group %s is inactive, ignoring message %s", group.group_id, message.message_id)
            return None

        matched = self._matcher.match(group, message.body)
        classification: Optional[Classification] = None
        if matched:
            classification = matched[0].classification
            LOGGER.info(
                "Matched rule(s) [%s] for group %s on message %s from %s",
                ", ".join(rule.classification.value for rule in matched),
                group.name,
                message.message_id,
                message.sender,
            )

        attachments: List[Attachment] = []
        media_triggered = is_helpdesk_media(message)
        if media_triggered:
            LOGGER.info("Media message with helpdesk caption in group %s from %s", group.name, message.sender)
            classification = Classification.HELPDESK
            attachments = await self._stage_attachments(message)

        if classification is None:
            LOGGER.debug("No rules matched for group %s on message %s", group.name, message.message_id)
            return None

        record = MessageRecord(
            message_id=message.message_id,
            group_id=group.group_id,
            sender=message.sender,
            content=message.body,
            classification=classification,
            quoted_message_id=message.quoted_message_id,
            attachments=[attachment.filename for attachment in attachments],
            created_at=message.date,
        )
        if message.quoted_message_id:
            record.metadata[QUOTED_MESSAGE_ID_KEY] = message.quoted_message_id
        if parent is not None and parent.content:
            record.metadata[QUOTED_CONTENT_KEY] = parent.content

        if not self._messages.create_message(record):
            LOGGER.info("Message %s was already processed, skipping", message.message_id)
            return None

        record.status = MessageStatus.PROCESSING
        self._messages.update_status(record.message_id, record.status)
        try:
            await self._dispatcher.dispatch(matched, record, group, attachments, media_triggered)
        except Exception:
            LOGGER.exception("Dispatch failed for message %s", message.message_id)
            record.status = MessageStatus.FAILED
        else:
            # Action outcomes live on the queue; the record only tracks that all were attempted.
            record.status = MessageStatus.COMPLETED
        record.processed_at = datetime.now(timezone.utc)
        # Status-only update: workers may already have written delivery metadata.
        self._messages.update_status(record.message_id, record.status, record.processed_at)

        self._rules.touch_group(group.group_id)
        return record
