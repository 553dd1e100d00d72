"""Turn matched rules into queued jobs, one per action.

Each action kind maps to a handler that builds a JSON-safe job payload and
enqueues it. Handler failures are isolated per action so one broken action
never blocks its siblings.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from deskrelay.core.models import (
    Action,
    ActionKind,
    Attachment,
    Classification,
    EmailActionConfig,
    Group,
    MessageRecord,
    MonitoringRule,
)
from deskrelay.core.ports import JobQueue
from deskrelay.jobqueue.jobs import PRIORITY_NORMAL, PRIORITY_URGENT

LOGGER = logging.getLogger(__name__)

# (owning rule or None for synthesized actions, action)
PlannedAction = Tuple[Optional[MonitoringRule], Action]
ActionHandler = Callable[[Action, Optional[MonitoringRule], MessageRecord, Group, Sequence[Attachment]], Awaitable[None]]


def encode_attachment(attachment: Attachment) -> Dict[str, str]:
    return {
        "filename": attachment.filename,
        "contentType": attachment.content_type,
        "content": base64.b64encode(attachment.content).decode("ascii"),
    }


def decode_attachment(raw: Dict[str, str]) -> Attachment:
    return Attachment(
        filename=raw.get("filename") or "attachment.dat",
        content=base64.b64decode(raw["content"]),
        content_type=raw.get("contentType") or "application/octet-stream",
    )


def plan_actions(
    matched_rules: Iterable[MonitoringRule],
    group: Group,
    media_triggered: bool = False,
) -> List[PlannedAction]:
    """Flatten matched rules' actions in order, dropping exact duplicates.

    With no textual match but a helpdesk media caption, fall back to the first
    active HELPDESK rule's actions, or to a single default EMAIL action.
    """

    planned: List[PlannedAction] = []
    seen: set[str] = set()
    matched = list(matched_rules)

    if not matched and media_triggered:
        helpdesk_rule = next(
            (
                rule
                for rule in group.rules
                if rule.is_active and rule.classification is Classification.HELPDESK and rule.actions
            ),
            None,
        )
        if helpdesk_rule is not None:
            LOGGER.info("Using actions from HELPDESK rule %s for media message in %s", helpdesk_rule.label, group.group_id)
            matched = [helpdesk_rule]
        else:
            LOGGER.info("No HELPDESK rule with actions in %s, adding default EMAIL action", group.group_id)
            return [(None, Action(ActionKind.EMAIL, EmailActionConfig()))]

    for rule in matched:
        for action in rule.actions:
            key = action.dedup_key()
            if key in seen:
                continue
            seen.add(key)
            planned.append((rule, action))
    return planned


class ActionDispatcher:
    """Resolve each planned action to its handler and enqueue one job per action."""

    def __init__(self, queue: JobQueue) -> None:
        self._queue = queue
        self._handlers: Dict[ActionKind, ActionHandler] = {
            ActionKind.EMAIL: self._enqueue_email,
            ActionKind.WEBHOOK: self._enqueue_webhook,
            ActionKind.REPLY: self._enqueue_reply,
        }

    async def dispatch(
        self,
        matched_rules: Iterable[MonitoringRule],
        record: MessageRecord,
        group: Group,
        attachments: Sequence[Attachment] = (),
        media_triggered: bool = False,
    ) -> int:
        """Enqueue every action; returns how many were handed to the queue."""

        planned = plan_actions(matched_rules, group, media_triggered)
        if not planned:
            LOGGER.info("No actions to process for %s message in %s", record.classification.value, group.group_id)
            return 0

        dispatched = 0
        for rule, action in planned:
            rule_label = rule.label if rule else "default"
            handler = self._handlers.get(action.kind)
            if handler is None:
                LOGGER.warning("No handler for action type %s on rule %s", action.kind, rule_label)
                continue
            try:
                await handler(action, rule, record, group, attachments)
                dispatched += 1
            except Exception:
                LOGGER.exception(
                    "Error processing action %s for rule %s in group %s",
                    action.kind.value,
                    rule_label,
                    group.group_id,
                )
        return dispatched

    @staticmethod
    def _priority(record: MessageRecord) -> str:
        return PRIORITY_URGENT if record.classification is Classification.URGENT else PRIORITY_NORMAL

    def _base_payload(self, record: MessageRecord, group: Group, rule: Optional[MonitoringRule]) -> Dict[str, Any]:
        return {
            "messageId": record.message_id,
            "groupId": group.group_id,
            "groupName": group.name,
            "sender": record.sender,
            "content": record.content,
            "classification": record.classification.value,
            "rule": rule.label if rule else None,
        }

    async def _enqueue(self, kind: ActionKind, payload: Dict[str, Any], record: MessageRecord) -> None:
        job = await self._queue.enqueue(kind.value, payload, priority=self._priority(record))
        if job is None:
            LOGGER.error("%s job for message %s was not queued", kind.value, record.message_id)
        else:
            LOGGER.info("Queued %s job %s for message %s", kind.value, job.id, record.message_id)

    async def _enqueue_email(self, action, rule, record, group, attachments) -> None:
        payload = self._base_payload(record, group, rule)
        payload.update(action.config.to_dict())
        payload["attachments"] = [encode_attachment(attachment) for attachment in attachments]
        await self._enqueue(ActionKind.EMAIL, payload, record)

    async def _enqueue_webhook(self, action, rule, record, group, attachments) -> None:
        config = action.config
        headers = dict(config.headers)
        if config.api_key:
            headers["X-API-Key"] = config.api_key
        payload = self._base_payload(record, group, rule)
        payload.update(
            {
                "url": config.url,
                "method": config.method,
                "headers": headers,
                "body": {
                    "messageId": record.message_id,
                    "groupId": group.group_id,
                    "groupName": group.name,
                    "sender": record.sender,
                    "content": record.content,
                    "type": record.classification.value,
                    "rule": rule.label if rule else None,
                    "timestamp": (record.created_at or datetime.now(timezone.utc)).isoformat(),
                },
            }
        )
        await self._enqueue(ActionKind.WEBHOOK, payload, record)

    async def _enqueue_reply(self, action, rule, record, group, attachments) -> None:
        payload = self._base_payload(record, group, rule)
        payload["text"] = action.config.message
        await self._enqueue(ActionKind.REPLY, payload, record)
