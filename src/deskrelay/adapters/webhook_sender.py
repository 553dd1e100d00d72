"""Outbound webhook delivery with its own bounded retry.

This retry is independent of the job queue: one queue attempt may make up to
`max_attempts` HTTP attempts. Exhausting them returns a failure result rather
than raising, and the webhook worker decides whether the queue should retry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from deskrelay.core.config import WebhookConfig

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    success: bool
    status_code: int
    body: Any = None
    error: Optional[str] = None


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class WebhookSender:
    """Send JSON payloads to external endpoints."""

    def __init__(self, config: Optional[WebhookConfig] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self._config = config or WebhookConfig()
        self._client = client

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout))

    async def send(
        self,
        url: str,
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        payload: Any = None,
    ) -> WebhookResult:
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        last_status = 0
        last_error: Optional[str] = None
        last_body: Any = None

        client = self._client or self._create_client()
        try:
            for attempt in range(1, self._config.max_attempts + 1):
                LOGGER.info("Sending webhook to %s (attempt %s)", url, attempt)
                try:
                    response = await client.request(method.upper(), url, headers=request_headers, json=payload)
                except httpx.HTTPError as exc:
                    last_status = 0
                    last_body = None
                    last_error = f"{type(exc).__name__}: {exc}"
                else:
                    if response.is_success:
                        LOGGER.info("Webhook to %s successful with status %s", url, response.status_code)
                        return WebhookResult(True, response.status_code, _decode_body(response))
                    last_status = response.status_code
                    last_body = _decode_body(response)
                    last_error = f"HTTP {response.status_code}"

                LOGGER.warning("Webhook attempt %s to %s failed: %s", attempt, url, last_error)
                if attempt < self._config.max_attempts:
                    await asyncio.sleep(self._config.retry_delay)
        finally:
            if self._client is None:
                await client.aclose()

        LOGGER.error("Webhook to %s failed after %s attempts: %s", url, self._config.max_attempts, last_error)
        return WebhookResult(False, last_status, last_body, last_error)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
