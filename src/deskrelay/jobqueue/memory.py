"""In-process fallback queue used when the Redis broker is unavailable.

Jobs run in FIFO order inside an enqueuing coroutine, using the same
handlers the broker workers would use. There is no parallelism and no retry:
callers wait proportionally to the backlog, which is the only backpressure.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from deskrelay.core.config import QueueOptions
from deskrelay.core.ports import JobHandler
from deskrelay.jobqueue.jobs import PRIORITY_NORMAL, BackoffPolicy, Job
from deskrelay.metrics import record_job

LOGGER = logging.getLogger(__name__)

# The queue whose handler is running in the current task. A job enqueued from
# inside that handler is left for the drain that is already running.
_DRAINING: contextvars.ContextVar[Optional["InProcessQueue"]] = contextvars.ContextVar(
    "deskrelay_draining_queue", default=None
)


class InProcessQueue:
    """Single-threaded FIFO substitute offering the JobQueue contract."""

    def __init__(self, options: Optional[QueueOptions] = None) -> None:
        self._options = options or QueueOptions()
        self._backlog: Deque[Job] = deque()
        self._handlers: Dict[str, JobHandler] = {}
        self._completed: Dict[str, Deque[Job]] = {}
        self._failed: Dict[str, Deque[Job]] = {}
        self._lock = asyncio.Lock()
        LOGGER.warning("Using in-process queue fallback, Redis connection not available")

    async def start(self, kind: str, concurrency: int, handler: JobHandler) -> None:
        # Concurrency is accepted for contract compatibility; jobs always run one at a time.
        self._handlers[kind] = handler
        LOGGER.info("Registered in-process handler for %s jobs", kind)

    async def enqueue(self, kind: str, payload: Dict[str, Any], priority: str = PRIORITY_NORMAL) -> Job:
        """Add a job and return once it has run.

        Overlapping callers wait for the current drain, so every caller sees
        its own job processed on return. Jobs enqueued by a handler run after
        that handler, in FIFO order.
        """

        job = Job(
            kind=kind,
            payload=payload,
            max_attempts=1,
            backoff=BackoffPolicy(delay_ms=self._options.backoff_delay_ms),
            priority=priority,
        )
        self._backlog.append(job)
        LOGGER.info("Added %s job %s to in-process queue", kind, job.id)
        if _DRAINING.get() is self:
            return job
        async with self._lock:
            await self._drain()
        return job

    async def _drain(self) -> None:
        while self._backlog:
            await self._run(self._backlog.popleft())

    async def _run(self, job: Job) -> None:
        handler = self._handlers.get(job.kind)
        if handler is None:
            LOGGER.warning("Unknown job kind %s, dropping job %s", job.kind, job.id)
            return
        job.mark_active()
        LOGGER.info("Processing %s job %s", job.kind, job.id)
        token = _DRAINING.set(self)
        try:
            result = await handler(job)
        except Exception as exc:
            job.record_failure(exc)
            self._remember(self._failed, job, self._options.remove_on_fail)
            record_job(job.kind, "failed")
            LOGGER.exception("%s job %s failed", job.kind, job.id)
            return
        finally:
            _DRAINING.reset(token)
        job.mark_completed(result)
        self._remember(self._completed, job, self._options.remove_on_complete)
        record_job(job.kind, "completed")
        LOGGER.info("%s job %s completed successfully", job.kind, job.id)

    @staticmethod
    def _remember(history: Dict[str, Deque[Job]], job: Job, limit: int) -> None:
        # A limit of 0 keeps no history.
        if limit <= 0:
            return
        bucket = history.setdefault(job.kind, deque(maxlen=limit))
        bucket.appendleft(job)

    async def list_waiting(self, kind: str) -> List[Job]:
        return [job for job in self._backlog if job.kind == kind]

    async def list_completed(self, kind: str) -> List[Job]:
        return list(self._completed.get(kind, ()))

    async def list_failed(self, kind: str) -> List[Job]:
        return list(self._failed.get(kind, ()))

    async def close(self) -> None:
        self._backlog.clear()
