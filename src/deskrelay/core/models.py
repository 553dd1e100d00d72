"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from deskrelay.core.errors import UnknownActionKindError


class Classification(str, Enum):
    """Classification assigned to a message by the first matching rule."""

    HELPDESK = "HELPDESK"
    URGENT = "URGENT"
    NORMAL = "NORMAL"


class ActionKind(str, Enum):
    """Closed set of side effects a rule can trigger."""

    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"
    REPLY = "REPLY"


class MessageStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class EmailActionConfig:
    """Recipient overrides for an EMAIL action."""

    to: Optional[str] = None
    cc: Optional[str] = None
    priority: str = "normal"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"priority": self.priority}
        if self.to:
            data["to"] = self.to
        if self.cc:
            data["cc"] = self.cc
        return data


@dataclass(frozen=True)
class WebhookActionConfig:
    """Target endpoint for a WEBHOOK action."""

    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    api_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"url": self.url, "method": self.method}
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.api_key:
            data["apiKey"] = self.api_key
        return data


@dataclass(frozen=True)
class ReplyActionConfig:
    """Text posted back into the originating group."""

    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


ActionConfig = Union[EmailActionConfig, WebhookActionConfig, ReplyActionConfig]


@dataclass(frozen=True)
class Action:
    """One side effect attached to a rule, tagged by its kind."""

    kind: ActionKind
    config: ActionConfig

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "config": self.config.to_dict()}

    def dedup_key(self) -> str:
        """Stable identity used when flattening actions from several rules."""

        return json.dumps(self.to_dict(), sort_keys=True)


def _parse_headers(raw: Any) -> Dict[str, str]:
    # Stored configs are string-to-string maps, so headers may arrive JSON-encoded.
    if not raw:
        return {}
    if isinstance(raw, str):
        raw = json.loads(raw)
    return {str(key): str(value) for key, value in dict(raw).items()}


def action_from_dict(raw: Dict[str, Any]) -> Action:
    """Build a typed Action from its serialized form.

    Raises UnknownActionKindError for kinds outside ActionKind; matching is
    exact and case-sensitive.
    """

    kind_value = raw.get("type")
    try:
        kind = ActionKind(kind_value)
    except ValueError:
        raise UnknownActionKindError(kind_value) from None

    config = raw.get("config") or {}
    if kind is ActionKind.EMAIL:
        return Action(
            kind,
            EmailActionConfig(
                to=config.get("to") or None,
                cc=config.get("cc") or None,
                priority=config.get("priority") or "normal",
            ),
        )
    if kind is ActionKind.WEBHOOK:
        url = config.get("url")
        if not url:
            raise ValueError("WEBHOOK action requires a url")
        return Action(
            kind,
            WebhookActionConfig(
                url=url,
                method=str(config.get("method") or "POST").upper(),
                headers=_parse_headers(config.get("headers")),
                api_key=config.get("apiKey") or None,
            ),
        )
    message = config.get("message") or config.get("content")
    if not message:
        raise ValueError("REPLY action requires a message")
    return Action(kind, ReplyActionConfig(message=message))


@dataclass
class MonitoringRule:
    """Pattern plus classification and actions, embedded in one Group."""

    pattern: str
    classification: Classification = Classification.NORMAL
    actions: List[Action] = field(default_factory=list)
    is_active: bool = True
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.pattern

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "pattern": self.pattern,
            "type": self.classification.value,
            "actions": [action.to_dict() for action in self.actions],
            "isActive": self.is_active,
        }
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class Group:
    """A chat group and its ordered monitoring rules."""

    group_id: str
    name: str
    is_active: bool = True
    rules: List[MonitoringRule] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MessageRecord:
    """Persisted state for one classified inbound message."""

    message_id: str
    group_id: str
    sender: str
    content: str
    classification: Classification
    status: MessageStatus = MessageStatus.PENDING
    quoted_message_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    attachments: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Attachment:
    """Downloaded media staged for mail delivery. Content is always inline."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class InboundMessage:
    """Minimal message context used by the core processing pipeline."""

    message_id: str
    group_id: str
    group_name: str
    sender: str
    body: str
    date: datetime
    has_media: bool = False
    quoted_message_id: Optional[str] = None
    # Transport-specific handle the message source uses to download media.
    raw: Any = None
