"""Prometheus metrics for message processing and the job queue.

Metrics live on the default prometheus_client registry; `start_metrics_server`
exposes them over HTTP when enabled in config.json.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from deskrelay.core.ports import JobQueue

LOGGER = logging.getLogger(__name__)

MESSAGES_RECEIVED = Counter(
    "deskrelay_messages_received",
    "Inbound chat messages handed to the processor",
    ["kind"],
)

MESSAGES_PROCESSED = Counter(
    "deskrelay_messages_processed",
    "Inbound chat messages by outcome",
    ["type", "status"],
)

PROCESSING_DURATION = Histogram(
    "deskrelay_message_processing_duration_seconds",
    "Time taken to classify and dispatch a matched message",
    ["type"],
    buckets=(0.1, 0.5, 1, 2, 5, 10),
)

QUEUE_SIZE = Gauge(
    "deskrelay_queue_size",
    "Jobs currently held by the queue",
    ["kind", "state"],
)

QUEUE_JOBS = Counter(
    "deskrelay_queue_jobs",
    "Job attempts by final status",
    ["kind", "status"],
)


def record_job(kind: str, status: str) -> None:
    QUEUE_JOBS.labels(kind=kind, status=status).inc()


async def update_queue_metrics(queue: JobQueue, kinds: Iterable[str]) -> None:
    for kind in kinds:
        QUEUE_SIZE.labels(kind=kind, state="waiting").set(len(await queue.list_waiting(kind)))
        QUEUE_SIZE.labels(kind=kind, state="failed").set(len(await queue.list_failed(kind)))


async def watch_queue(queue: JobQueue, kinds: Iterable[str], interval: float = 10.0) -> None:
    """Refresh the queue gauges until cancelled."""

    kinds = list(kinds)
    while True:
        try:
            await update_queue_metrics(queue, kinds)
        except Exception:
            LOGGER.exception("Error updating queue metrics")
        await asyncio.sleep(interval)


def start_metrics_server(port: int, host: str = "0.0.0.0") -> None:
    start_http_server(port, addr=host)
    LOGGER.info("Metrics endpoint listening on %s:%s", host, port)
