"""Shared Redis connection for the durable queue.

A single client is created lazily and reused by every queue handle so that
workers and producers do not exhaust the broker's client-connection budget.
The registry is constructed by the entry point and passed where needed.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from deskrelay.core.config import BrokerConfig

LOGGER = logging.getLogger(__name__)


class BrokerRegistry:
    """Owns the process-wide Redis client with an explicit init/shutdown lifecycle."""

    def __init__(self, config: BrokerConfig, client: Optional[redis.Redis] = None) -> None:
        self._config = config
        self._client = client

    @property
    def config(self) -> BrokerConfig:
        return self._config

    @property
    def configured(self) -> bool:
        return self._client is not None or self._config.configured

    def connection(self) -> redis.Redis:
        """Return the shared client, creating it on first use."""

        if self._client is None:
            if not self._config.configured:
                raise RuntimeError("Redis broker is not configured")
            self._client = redis.Redis(
                host=self._config.host,
                port=self._config.port,
                password=self._config.password,
                db=self._config.db,
                socket_connect_timeout=self._config.connect_timeout,
                decode_responses=True,
            )
            LOGGER.info("Created shared Redis client for %s:%s", self._config.host, self._config.port)
        return self._client

    async def init(self) -> bool:
        """Ping the broker once. Returns False when it is absent or unreachable."""

        if not self.configured:
            LOGGER.warning("Redis not configured, skipping broker initialization")
            return False
        try:
            await self.connection().ping()
        except (RedisError, OSError) as exc:
            LOGGER.error("Redis broker unreachable: %s", exc)
            await self.shutdown()
            return False
        LOGGER.info("Redis connected successfully")
        return True

    async def shutdown(self) -> None:
        if self._client is None:
            return
        LOGGER.info("Closing shared Redis connection")
        try:
            await self._client.aclose()
        finally:
            self._client = None
