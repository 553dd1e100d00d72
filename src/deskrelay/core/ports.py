"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, queue and transport adapters
so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Protocol

from deskrelay.core.models import (
    ActionKind,
    Attachment,
    Group,
    InboundMessage,
    MessageRecord,
    MessageStatus,
)

if TYPE_CHECKING:
    from deskrelay.core.mail_threading import OutboundMail
    from deskrelay.jobqueue.jobs import Job


class RuleStore(Protocol):
    """Group and rule persistence required by the core pipeline."""

    def find_group_by_id(self, group_id: str) -> Optional[Group]:
        ...

    def save_group(self, group: Group) -> None:
        ...

    def ensure_group(self, group_id: str, name: str) -> Group:
        """Create the group with default rules if absent, then return it."""
        ...

    def touch_group(self, group_id: str) -> None:
        ...

    def find_groups_by_rule_action_type(self, kind: ActionKind) -> List[Group]:
        ...


class MessageStore(Protocol):
    """MessageRecord persistence required by the core pipeline."""

    def create_message(self, record: MessageRecord) -> bool:
        """Insert a new record. Returns False if the message id already exists."""
        ...

    def find_message(self, message_id: str) -> Optional[MessageRecord]:
        ...

    def update_status(
        self, message_id: str, status: MessageStatus, processed_at: Optional[datetime] = None
    ) -> None:
        ...

    def update_metadata(self, message_id: str, values: Dict[str, str]) -> None:
        """Merge `values` into the stored metadata without touching other fields."""
        ...


class MessageSource(Protocol):
    """Callbacks into the chat transport that produced the message."""

    async def fetch_attachment(self, message: InboundMessage) -> Optional[Attachment]:
        ...

    async def send_reply(self, group_id: str, text: str) -> None:
        ...


class MailTransport(Protocol):
    """Outbound mail delivery. Returns the delivered Message-ID or raises."""

    async def send(self, mail: "OutboundMail") -> str:
        ...


JobHandler = Callable[["Job"], Awaitable[Any]]


class JobQueue(Protocol):
    """Durable queue contract shared by the broker and in-process backends."""

    async def enqueue(
        self, kind: str, payload: Dict[str, Any], priority: str = "normal"
    ) -> Optional["Job"]:
        ...

    async def start(self, kind: str, concurrency: int, handler: JobHandler) -> None:
        ...

    async def list_waiting(self, kind: str) -> List["Job"]:
        ...

    async def list_completed(self, kind: str) -> List["Job"]:
        ...

    async def list_failed(self, kind: str) -> List["Job"]:
        ...

    async def close(self) -> None:
        ...
