"""Redis-backed durable queue with per-kind worker pools.

Layout per job kind (all keys share the configured prefix):

- ``{kind}:waiting``   list of job JSON; urgent jobs are pushed to the head
- ``{kind}:active``    list of job JSON currently held by a worker
- ``{kind}:delayed``   sorted set of job JSON scored by the ready time (ms)
- ``{kind}:completed`` bounded list of finished jobs, newest first
- ``{kind}:failed``    bounded list of jobs that exhausted their attempts
- ``lock:{job_id}``    per-job lock with a TTL of ``lock_duration_ms``, renewed
                       every half TTL while the handler runs

A worker moves a job from waiting to active, takes the lock and runs the
handler. Any handler exception counts as a failed attempt: the job goes to the
delayed set with exponential backoff, or to the failed list once the attempt
ceiling is reached. A maintenance task per kind promotes due delayed jobs and
requeues active jobs whose lock has been missing for a full sweep.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from deskrelay.core.config import QueueOptions
from deskrelay.core.ports import JobHandler
from deskrelay.jobqueue.jobs import PRIORITY_NORMAL, PRIORITY_URGENT, BackoffPolicy, Job, JobState
from deskrelay.metrics import record_job

LOGGER = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisJobQueue:
    """JobQueue backed by a shared Redis client."""

    def __init__(self, client: redis.Redis, options: Optional[QueueOptions] = None, prefix: str = "deskrelay") -> None:
        self._redis = client
        self._options = options or QueueOptions()
        self._prefix = prefix
        self._token = uuid.uuid4().hex
        self._handlers: Dict[str, JobHandler] = {}
        self._tasks: List[asyncio.Task] = []
        self._stall_candidates: Dict[str, Set[str]] = {}
        self._closing = False

    def _key(self, kind: str, name: str) -> str:
        return f"{self._prefix}:{kind}:{name}"

    def _lock_key(self, job_id: str) -> str:
        return f"{self._prefix}:lock:{job_id}"

    async def _push_waiting(self, job: Job) -> None:
        key = self._key(job.kind, "waiting")
        if job.priority == PRIORITY_URGENT:
            await self._redis.lpush(key, job.to_json())
        else:
            await self._redis.rpush(key, job.to_json())

    async def enqueue(self, kind: str, payload: Dict[str, Any], priority: str = PRIORITY_NORMAL) -> Optional[Job]:
        """Add a job. A broker failure is logged and the job is dropped."""

        job = Job(
            kind=kind,
            payload=payload,
            max_attempts=self._options.max_attempts,
            backoff=BackoffPolicy(delay_ms=self._options.backoff_delay_ms),
            priority=priority,
        )
        try:
            await self._push_waiting(job)
        except RedisError as exc:
            LOGGER.error("Failed to enqueue %s job for message %s: %s", kind, payload.get("messageId"), exc)
            return None
        LOGGER.info("Added %s job %s to queue", kind, job.id)
        return job

    async def start(self, kind: str, concurrency: int, handler: JobHandler) -> None:
        """Register the handler and spawn `concurrency` workers plus one maintenance task."""

        self._handlers[kind] = handler
        for index in range(max(1, concurrency)):
            self._tasks.append(asyncio.create_task(self._worker_loop(kind, index), name=f"{kind}-worker-{index}"))
        self._tasks.append(asyncio.create_task(self._maintenance_loop(kind), name=f"{kind}-maintenance"))
        LOGGER.info("%s worker pool started with concurrency %s", kind, concurrency)

    async def _worker_loop(self, kind: str, index: int) -> None:
        while not self._closing:
            try:
                await self.process_next(kind, timeout=self._options.poll_interval)
            except asyncio.CancelledError:
                raise
            except RedisError as exc:
                LOGGER.error("%s worker %s lost the broker: %s", kind, index, exc)
                await asyncio.sleep(self._options.poll_interval)

    async def _maintenance_loop(self, kind: str) -> None:
        stall_interval = self._options.lock_duration_ms / 1000
        last_stall_check = time.monotonic()
        while not self._closing:
            try:
                await self.promote_delayed(kind)
                if time.monotonic() - last_stall_check >= stall_interval:
                    await self.requeue_stalled(kind)
                    last_stall_check = time.monotonic()
            except asyncio.CancelledError:
                raise
            except RedisError as exc:
                LOGGER.error("%s maintenance failed: %s", kind, exc)
            await asyncio.sleep(self._options.poll_interval)

    async def process_next(self, kind: str, timeout: float = 0) -> bool:
        """Run one waiting job of `kind`. Returns False when none was available."""

        waiting_key = self._key(kind, "waiting")
        active_key = self._key(kind, "active")
        if timeout:
            raw = await self._redis.blmove(waiting_key, active_key, timeout, "LEFT", "RIGHT")
        else:
            raw = await self._redis.lmove(waiting_key, active_key, "LEFT", "RIGHT")
        if raw is None:
            return False

        job = Job.from_json(raw)
        job.mark_active()
        lock_key = self._lock_key(job.id)
        await self._redis.set(lock_key, self._token, px=self._options.lock_duration_ms)

        handler = self._handlers.get(kind)
        heartbeat = asyncio.create_task(self._extend_lock(lock_key), name=f"{kind}-lock-{job.id}")
        try:
            try:
                if handler is None:
                    raise RuntimeError(f"No handler registered for {kind} jobs")
                LOGGER.info("Processing %s job %s (attempt %s/%s)", kind, job.id, job.attempts_made + 1, job.max_attempts)
                result = await handler(job)
            except Exception as exc:
                await self._stop_heartbeat(heartbeat)
                await self._on_failure(raw, job, exc)
            else:
                await self._stop_heartbeat(heartbeat)
                await self._on_success(raw, job, result)
        finally:
            heartbeat.cancel()
        return True

    async def _extend_lock(self, lock_key: str) -> None:
        interval = self._options.lock_duration_ms / 2000
        while True:
            await asyncio.sleep(interval)
            try:
                await self._redis.set(lock_key, self._token, px=self._options.lock_duration_ms)
            except RedisError as exc:
                LOGGER.warning("Could not extend %s: %s", lock_key, exc)

    @staticmethod
    async def _stop_heartbeat(heartbeat: asyncio.Task) -> None:
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)

    async def _release(self, raw: str, job: Job) -> None:
        await self._redis.lrem(self._key(job.kind, "active"), 1, raw)
        await self._redis.delete(self._lock_key(job.id))

    async def _remember(self, key: str, job: Job, limit: int) -> None:
        # A limit of 0 keeps no history.
        if limit <= 0:
            return
        await self._redis.lpush(key, job.to_json())
        await self._redis.ltrim(key, 0, limit - 1)

    async def _on_success(self, raw: str, job: Job, result: Any) -> None:
        job.mark_completed(result)
        await self._remember(self._key(job.kind, "completed"), job, self._options.remove_on_complete)
        await self._release(raw, job)
        record_job(job.kind, "completed")
        LOGGER.info("%s job %s completed successfully", job.kind, job.id)

    async def _on_failure(self, raw: str, job: Job, error: Exception) -> None:
        job.record_failure(error)
        if job.state is JobState.FAILED:
            await self._remember(self._key(job.kind, "failed"), job, self._options.remove_on_fail)
            record_job(job.kind, "failed")
            LOGGER.error(
                "%s job %s failed after %s attempts: %s",
                job.kind,
                job.id,
                job.attempts_made,
                job.failed_reason,
            )
        else:
            delay = job.next_delay_ms()
            await self._redis.zadd(self._key(job.kind, "delayed"), {job.to_json(): _now_ms() + delay})
            record_job(job.kind, "retrying")
            LOGGER.warning(
                "%s job %s attempt %s failed, retrying in %sms: %s",
                job.kind,
                job.id,
                job.attempts_made,
                delay,
                job.failed_reason,
            )
        await self._release(raw, job)

    async def promote_delayed(self, kind: str, now_ms: Optional[int] = None) -> int:
        """Move delayed jobs whose backoff has elapsed back to waiting."""

        delayed_key = self._key(kind, "delayed")
        due = await self._redis.zrangebyscore(delayed_key, "-inf", now_ms if now_ms is not None else _now_ms())
        moved = 0
        for raw in due:
            # Only the process that removes the entry requeues it.
            if await self._redis.zrem(delayed_key, raw):
                await self._push_waiting(Job.from_json(raw))
                moved += 1
        return moved

    async def requeue_stalled(self, kind: str) -> int:
        """Requeue active jobs whose lock was missing on two consecutive sweeps."""

        active_key = self._key(kind, "active")
        previous = self._stall_candidates.get(kind, set())
        current: Set[str] = set()
        requeued = 0
        for raw in await self._redis.lrange(active_key, 0, -1):
            job = Job.from_json(raw)
            if await self._redis.exists(self._lock_key(job.id)):
                continue
            if raw not in previous:
                current.add(raw)
                continue
            if await self._redis.lrem(active_key, 1, raw):
                LOGGER.warning("%s job %s stalled, returning it to the queue", kind, job.id)
                await self._push_waiting(job)
                requeued += 1
        self._stall_candidates[kind] = current
        return requeued

    async def list_waiting(self, kind: str) -> List[Job]:
        waiting = await self._redis.lrange(self._key(kind, "waiting"), 0, -1)
        delayed = await self._redis.zrangebyscore(self._key(kind, "delayed"), "-inf", "+inf")
        return [Job.from_json(raw) for raw in [*waiting, *delayed]]

    async def list_completed(self, kind: str) -> List[Job]:
        return [Job.from_json(raw) for raw in await self._redis.lrange(self._key(kind, "completed"), 0, -1)]

    async def list_failed(self, kind: str) -> List[Job]:
        return [Job.from_json(raw) for raw in await self._redis.lrange(self._key(kind, "failed"), 0, -1)]

    async def close(self) -> None:
        """Stop worker tasks. The shared client is closed by its BrokerRegistry."""

        self._closing = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
