from __future__ import annotations

import asyncio

from deskrelay.core.config import QueueOptions
from deskrelay.jobqueue.jobs import Job, JobState
from deskrelay.jobqueue.memory import InProcessQueue


def test_enqueue_runs_job_before_returning() -> None:
    queue = InProcessQueue()
    seen: list[str] = []

    async def handler(job: Job) -> str:
        seen.append(job.payload["messageId"])
        return "ok"

    async def scenario() -> Job:
        await queue.start("EMAIL", 2, handler)
        job = await queue.enqueue("EMAIL", {"messageId": "m1"})
        assert seen == ["m1"]
        assert await queue.list_waiting("EMAIL") == []
        return job

    job = asyncio.run(scenario())
    assert job.state is JobState.COMPLETED
    assert job.return_value == "ok"


def test_nested_enqueue_keeps_fifo_order() -> None:
    queue = InProcessQueue()
    order: list[str] = []

    async def email(job: Job) -> None:
        order.append(f"email:{job.payload['n']}")
        if job.payload["n"] == 1:
            await queue.enqueue("REPLY", {"n": 1})
            order.append("email:1:after-enqueue")

    async def reply(job: Job) -> None:
        order.append(f"reply:{job.payload['n']}")

    async def scenario() -> None:
        await queue.start("EMAIL", 1, email)
        await queue.start("REPLY", 1, reply)
        await queue.enqueue("EMAIL", {"n": 1})

    asyncio.run(scenario())
    assert order == ["email:1", "email:1:after-enqueue", "reply:1"]


def test_failed_job_is_recorded_once_without_retry() -> None:
    queue = InProcessQueue(QueueOptions(max_attempts=3))
    calls: list[int] = []

    async def handler(job: Job) -> None:
        calls.append(1)
        raise RuntimeError("smtp down")

    async def scenario() -> list[Job]:
        await queue.start("EMAIL", 1, handler)
        await queue.enqueue("EMAIL", {"messageId": "m1"})
        return await queue.list_failed("EMAIL")

    failed = asyncio.run(scenario())
    assert calls == [1]
    assert len(failed) == 1
    assert failed[0].state is JobState.FAILED
    assert "smtp down" in failed[0].failed_reason


def test_history_is_bounded() -> None:
    queue = InProcessQueue(QueueOptions(remove_on_complete=2))

    async def handler(job: Job) -> None:
        return None

    async def scenario() -> list[Job]:
        await queue.start("REPLY", 1, handler)
        for n in range(5):
            await queue.enqueue("REPLY", {"n": n})
        return await queue.list_completed("REPLY")

    completed = asyncio.run(scenario())
    assert [job.payload["n"] for job in completed] == [4, 3]


def test_job_without_handler_is_dropped() -> None:
    queue = InProcessQueue()

    async def scenario() -> None:
        await queue.enqueue("WEBHOOK", {"url": "https://x.example.org"})
        assert await queue.list_waiting("WEBHOOK") == []
        assert await queue.list_failed("WEBHOOK") == []

    asyncio.run(scenario())


def test_overlapping_enqueues_each_return_after_their_job_ran() -> None:
    queue = InProcessQueue()

    async def handler(job: Job) -> str:
        await asyncio.sleep(0.01)
        return job.payload["messageId"]

    async def caller(message_id: str) -> tuple[Job, list[Job]]:
        job = await queue.enqueue("EMAIL", {"messageId": message_id})
        return job, await queue.list_waiting("EMAIL")

    async def scenario() -> list[tuple[Job, list[Job]]]:
        await queue.start("EMAIL", 1, handler)
        return await asyncio.gather(caller("m1"), caller("m2"))

    for job, waiting in asyncio.run(scenario()):
        assert job.state is JobState.COMPLETED
        assert job.return_value == job.payload["messageId"]
        assert waiting == []


def test_enqueue_from_another_queues_handler_still_runs_the_job() -> None:
    first = InProcessQueue()
    second = InProcessQueue()
    seen: list[str] = []

    async def forward(job: Job) -> None:
        inner = await second.enqueue("REPLY", {"n": job.payload["n"]})
        assert inner.state is JobState.COMPLETED

    async def reply(job: Job) -> None:
        seen.append(f"reply:{job.payload['n']}")

    async def scenario() -> None:
        await first.start("EMAIL", 1, forward)
        await second.start("REPLY", 1, reply)
        await first.enqueue("EMAIL", {"n": 1})

    asyncio.run(scenario())
    assert seen == ["reply:1"]


def test_zero_retention_keeps_no_history() -> None:
    queue = InProcessQueue(QueueOptions(remove_on_complete=0, remove_on_fail=0))

    async def handler(job: Job) -> None:
        if job.payload["n"] % 2:
            raise RuntimeError("boom")

    async def scenario() -> tuple[list[Job], list[Job]]:
        await queue.start("WEBHOOK", 1, handler)
        for n in range(4):
            await queue.enqueue("WEBHOOK", {"n": n})
        return await queue.list_completed("WEBHOOK"), await queue.list_failed("WEBHOOK")

    completed, failed = asyncio.run(scenario())
    assert completed == []
    assert failed == []
