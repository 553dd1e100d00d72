"""Job handlers for each action kind.

Handlers raise on failure so the queue can count the attempt and schedule a
retry; they never swallow errors themselves.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from deskrelay.adapters.webhook_sender import WebhookSender
from deskrelay.core.config import QueueOptions
from deskrelay.core.dispatcher import decode_attachment
from deskrelay.core.errors import JobPayloadError, WebhookDeliveryError
from deskrelay.core.mail_threading import EMAIL_MESSAGE_ID_KEY, EMAIL_SUBJECT_KEY, MailAssembler
from deskrelay.core.models import ActionKind
from deskrelay.core.ports import JobQueue, MailTransport, MessageSource, MessageStore, RuleStore
from deskrelay.jobqueue.jobs import Job

LOGGER = logging.getLogger(__name__)


def _require(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if not value:
        raise JobPayloadError(f"Job payload is missing {key!r}")
    return value


class ActionWorkers:
    """Execute EMAIL, WEBHOOK and REPLY jobs."""

    def __init__(
        self,
        rules: RuleStore,
        messages: MessageStore,
        assembler: MailAssembler,
        mail: MailTransport,
        webhooks: WebhookSender,
        source: MessageSource,
    ) -> None:
        self._rules = rules
        self._messages = messages
        self._assembler = assembler
        self._mail = mail
        self._webhooks = webhooks
        self._source = source

    async def register(self, queue: JobQueue, options: QueueOptions) -> None:
        """Start one worker pool per action kind."""

        handlers = {
            ActionKind.EMAIL: self.handle_email,
            ActionKind.WEBHOOK: self.handle_webhook,
            ActionKind.REPLY: self.handle_reply,
        }
        for kind, handler in handlers.items():
            await queue.start(kind.value, options.concurrency_for(kind.value), handler)

    async def handle_email(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        message_id = _require(payload, "messageId")
        record = self._messages.find_message(message_id)
        if record is None:
            raise JobPayloadError(f"Message {message_id} not found for EMAIL job {job.id}")
        group = self._rules.find_group_by_id(record.group_id)
        if group is None:
            raise JobPayloadError(f"Group {record.group_id} not found for EMAIL job {job.id}")

        attachments = [decode_attachment(raw) for raw in payload.get("attachments") or []]
        mail = self._assembler.build_mail(
            record,
            group,
            attachments,
            to=payload.get("to"),
            cc=payload.get("cc"),
        )
        LOGGER.info("Sending mail for message %s to %s", message_id, mail.to)
        delivered_id = await self._mail.send(mail) or mail.message_id

        # Persist what was sent so a future reply can thread onto this mail.
        self._messages.update_metadata(
            message_id,
            {EMAIL_MESSAGE_ID_KEY: delivered_id, EMAIL_SUBJECT_KEY: mail.subject},
        )
        return {"processed": True, "type": ActionKind.EMAIL.value, "messageId": delivered_id}

    async def handle_webhook(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        url = _require(payload, "url")
        result = await self._webhooks.send(
            url,
            method=payload.get("method") or "POST",
            headers=payload.get("headers") or {},
            payload=payload.get("body"),
        )
        if not result.success:
            raise WebhookDeliveryError(url, result.status_code, result.error)
        return {"processed": True, "type": ActionKind.WEBHOOK.value, "statusCode": result.status_code}

    async def handle_reply(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        group_id = _require(payload, "groupId")
        text = _require(payload, "text")
        await self._source.send_reply(group_id, text)
        return {"processed": True, "type": ActionKind.REPLY.value}
