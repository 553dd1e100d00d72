from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from prometheus_client import REGISTRY

from deskrelay.core.config import QueueOptions
from deskrelay.core.dispatcher import ActionDispatcher
from deskrelay.core.models import Group, InboundMessage, MessageRecord, MessageStatus
from deskrelay.core.processor import MessageProcessor
from deskrelay.core.rules_engine import default_rules
from deskrelay.jobqueue.jobs import Job
from deskrelay.jobqueue.memory import InProcessQueue
from deskrelay.metrics import update_queue_metrics


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class DummyStore:
    def __init__(self) -> None:
        self.groups: dict[str, Group] = {}
        self.messages: dict[str, MessageRecord] = {}

    def ensure_group(self, group_id: str, name: str) -> Group:
        return self.groups.setdefault(group_id, Group(group_id=group_id, name=name, rules=default_rules()))

    def touch_group(self, group_id: str) -> None:
        return None

    def create_message(self, record: MessageRecord) -> bool:
        return self.messages.setdefault(record.message_id, record) is record

    def find_message(self, message_id: str) -> Optional[MessageRecord]:
        return self.messages.get(message_id)

    def update_status(self, message_id: str, status: MessageStatus, processed_at=None) -> None:
        self.messages[message_id].status = status


class DummySource:
    async def fetch_attachment(self, message: InboundMessage) -> None:
        return None

    async def send_reply(self, group_id: str, text: str) -> None:
        return None


def _message(body: str, message_id: str) -> InboundMessage:
    return InboundMessage(
        message_id=message_id,
        group_id="@metrics",
        group_name="Metrics School",
        sender="Asha",
        body=body,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_processor_counts_received_processed_and_duration() -> None:
    store = DummyStore()
    queue = InProcessQueue()

    async def email(job: Job) -> None:
        return None

    processor = MessageProcessor(rules=store, messages=store, source=DummySource(), dispatcher=ActionDispatcher(queue))
    received = _sample("deskrelay_messages_received_total", kind="text")
    completed = _sample("deskrelay_messages_processed_total", type="HELPDESK", status="completed")
    skipped = _sample("deskrelay_messages_processed_total", type="NONE", status="skipped")
    timed = _sample("deskrelay_message_processing_duration_seconds_count", type="HELPDESK")

    async def scenario() -> None:
        await queue.start("EMAIL", 1, email)
        await processor.handle(_message("#helpdesk printer jammed", "@metrics/1"))
        await processor.handle(_message("lunch at noon", "@metrics/2"))

    asyncio.run(scenario())

    assert _sample("deskrelay_messages_received_total", kind="text") == received + 2
    assert _sample("deskrelay_messages_processed_total", type="HELPDESK", status="completed") == completed + 1
    assert _sample("deskrelay_messages_processed_total", type="NONE", status="skipped") == skipped + 1
    assert _sample("deskrelay_message_processing_duration_seconds_count", type="HELPDESK") == timed + 1


def test_queue_records_completed_and_failed_jobs() -> None:
    queue = InProcessQueue()

    async def handler(job: Job) -> None:
        if job.payload["fail"]:
            raise RuntimeError("smtp down")

    completed = _sample("deskrelay_queue_jobs_total", kind="METRICS_EMAIL", status="completed")
    failed = _sample("deskrelay_queue_jobs_total", kind="METRICS_EMAIL", status="failed")

    async def scenario() -> None:
        await queue.start("METRICS_EMAIL", 1, handler)
        await queue.enqueue("METRICS_EMAIL", {"fail": False})
        await queue.enqueue("METRICS_EMAIL", {"fail": True})

    asyncio.run(scenario())

    assert _sample("deskrelay_queue_jobs_total", kind="METRICS_EMAIL", status="completed") == completed + 1
    assert _sample("deskrelay_queue_jobs_total", kind="METRICS_EMAIL", status="failed") == failed + 1


def test_queue_size_gauge_tracks_waiting_and_failed() -> None:
    class StaticQueue:
        async def list_waiting(self, kind: str) -> list:
            return [object()] * 3

        async def list_failed(self, kind: str) -> list:
            return [object()]

    asyncio.run(update_queue_metrics(StaticQueue(), ["METRICS_WEBHOOK"]))

    assert _sample("deskrelay_queue_size", kind="METRICS_WEBHOOK", state="waiting") == 3
    assert _sample("deskrelay_queue_size", kind="METRICS_WEBHOOK", state="failed") == 1
