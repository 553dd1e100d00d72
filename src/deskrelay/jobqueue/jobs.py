"""Job records shared by the broker and in-process queue backends."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

PRIORITY_URGENT = "urgent"
PRIORITY_NORMAL = "normal"


class JobState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: delay_ms * 2 ** (attempts_made - 1)."""

    type: str = "exponential"
    delay_ms: int = 5000

    def delay_for(self, attempts_made: int) -> int:
        """Milliseconds to wait before the next try after `attempts_made` failures."""

        if attempts_made <= 0:
            return 0
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * 2 ** (attempts_made - 1)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A queued unit of work: one action invocation."""

    kind: str
    payload: Dict[str, Any]
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    priority: str = PRIORITY_NORMAL
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts_made: int = 0
    state: JobState = JobState.PENDING
    created_at: datetime = field(default_factory=_now)
    processed_on: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failed_reason: Optional[str] = None
    return_value: Any = None

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.max_attempts

    def mark_active(self) -> None:
        self.state = JobState.ACTIVE
        self.processed_on = _now()

    def mark_completed(self, return_value: Any = None) -> None:
        self.state = JobState.COMPLETED
        self.return_value = return_value
        self.finished_at = _now()

    def record_failure(self, error: BaseException) -> None:
        """Count a failed attempt; terminal once the attempt ceiling is reached."""

        self.attempts_made += 1
        self.failed_reason = f"{type(error).__name__}: {error}"
        if self.exhausted:
            self.state = JobState.FAILED
            self.finished_at = _now()
        else:
            self.state = JobState.PENDING

    def next_delay_ms(self) -> int:
        return self.backoff.delay_for(self.attempts_made)

    def to_json(self) -> str:
        data = asdict(self)
        data["state"] = self.state.value
        for key in ("created_at", "processed_on", "finished_at"):
            value = getattr(self, key)
            data[key] = value.isoformat() if value else None
        return json.dumps(data, default=str)

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        data = json.loads(raw)
        data["state"] = JobState(data["state"])
        data["backoff"] = BackoffPolicy(**data.get("backoff") or {})
        for key in ("created_at", "processed_on", "finished_at"):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)
