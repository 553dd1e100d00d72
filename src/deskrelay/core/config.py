"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from deskrelay.core.models import ActionKind

DEFAULT_CONCURRENCY: Dict[str, int] = {
    ActionKind.EMAIL.value: 2,
    ActionKind.WEBHOOK.value: 5,
    ActionKind.REPLY.value: 10,
}


@dataclass(frozen=True)
class BrokerConfig:
    """Redis connection settings. host=None means no broker is configured."""

    host: Optional[str] = None
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    connect_timeout: float = 10.0
    key_prefix: str = "deskrelay"

    @property
    def configured(self) -> bool:
        return bool(self.host)


@dataclass(frozen=True)
class QueueOptions:
    """Retry, retention and worker settings shared by both queue backends."""

    max_attempts: int = 3
    backoff_delay_ms: int = 5000
    remove_on_complete: int = 100
    remove_on_fail: int = 200
    lock_duration_ms: int = 30000
    poll_interval: float = 1.0
    concurrency: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_CONCURRENCY))

    def concurrency_for(self, kind: str) -> int:
        return max(1, int(self.concurrency.get(kind, 1)))


@dataclass(frozen=True)
class UnitEntry:
    """A known organisation name and the aliases it appears under in group names."""

    name: str
    aliases: List[str] = field(default_factory=list)
    city: Optional[str] = None


@dataclass(frozen=True)
class MailConfig:
    """Settings consumed by the mail assembler and SMTP adapter."""

    sender_domain: str = "deskrelay.local"
    default_recipient: Optional[str] = None
    from_address: Optional[str] = None
    unit_prefix: str = "SR"
    known_units: List[UnitEntry] = field(default_factory=list)


@dataclass(frozen=True)
class WebhookConfig:
    """HTTP-level retry for webhook delivery, independent of queue retries."""

    max_attempts: int = 3
    retry_delay: float = 5.0
    timeout: float = 10.0


@dataclass(frozen=True)
class MetricsConfig:
    """Prometheus endpoint settings; the endpoint stays off unless enabled."""

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 9108
    queue_interval: float = 10.0
