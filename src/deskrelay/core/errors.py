"""Exceptions raised by the core and its adapters."""

from __future__ import annotations


class DeskRelayError(Exception):
    """Base class for deskrelay errors."""


class UnknownActionKindError(DeskRelayError, ValueError):
    """Raised when a rule action declares a kind we cannot handle."""

    def __init__(self, kind: object) -> None:
        super().__init__(f"Unknown action kind: {kind!r}")
        self.kind = kind


class JobPayloadError(DeskRelayError, ValueError):
    """Raised when a queued job carries a payload the worker cannot use."""


class MailDeliveryError(DeskRelayError):
    """Raised when the mail transport refuses or fails to deliver a message."""


class WebhookDeliveryError(DeskRelayError):
    """Raised by the webhook worker so the queue retries a failed delivery."""

    def __init__(self, url: str, status_code: int, error: str | None = None) -> None:
        detail = f": {error}" if error else ""
        super().__init__(f"Webhook to {url} failed with status {status_code}{detail}")
        self.url = url
        self.status_code = status_code
