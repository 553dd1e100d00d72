"""Backend selection for the durable queue.

The backend is chosen once at startup: a reachable broker gives the Redis
queue, anything else gives the in-process fallback. Callers only see the
JobQueue contract either way.
"""

from __future__ import annotations

import logging
from typing import Optional

from deskrelay.core.config import QueueOptions
from deskrelay.core.ports import JobQueue
from deskrelay.jobqueue.broker import BrokerRegistry
from deskrelay.jobqueue.memory import InProcessQueue
from deskrelay.jobqueue.redis_queue import RedisJobQueue

LOGGER = logging.getLogger(__name__)


async def setup_queue(registry: Optional[BrokerRegistry], options: QueueOptions) -> JobQueue:
    """Return the Redis queue if the broker answers a ping, else the fallback."""

    if registry is not None and await registry.init():
        LOGGER.info("Redis message queue initialized")
        return RedisJobQueue(registry.connection(), options, prefix=registry.config.key_prefix)

    LOGGER.info("Using in-process queue as fallback")
    return InProcessQueue(options)
