"""SQLite storage adapter.

Implements the core RuleStore and MessageStore ports using a simple SQLite
database. Rules and metadata are stored as JSON with the same keys the
config file uses.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional

from deskrelay.core.models import (
    ActionKind,
    Classification,
    Group,
    MessageRecord,
    MessageStatus,
)
from deskrelay.core.rules_engine import build_rules, default_rules

LOGGER = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the RuleStore and MessageStore contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - groups: one row per chat group, rules embedded as JSON
        - messages: one row per classified message, never deleted here
        """

        with self._connect() as conn:
            # group_id is the primary key, so concurrent first messages from
            # the same group can insert at most one row.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS groups (
                    group_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    rules TEXT NOT NULL DEFAULT '[]',
                    metadata TEXT NOT NULL DEFAULT '{}',
                    last_message_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    message_id TEXT PRIMARY KEY,
                    group_id TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    content TEXT NOT NULL,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    quoted_message_id TEXT,
                    attachments TEXT NOT NULL DEFAULT '[]',
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at TIMESTAMP NOT NULL,
                    processed_at TIMESTAMP,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_group ON messages (group_id, created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_type_status ON messages (type, status)")

    # Groups

    @staticmethod
    def _group_from_row(row: sqlite3.Row) -> Group:
        return Group(
            group_id=row["group_id"],
            name=row["name"],
            is_active=bool(row["is_active"]),
            rules=build_rules(json.loads(row["rules"])),
            metadata=json.loads(row["metadata"]),
            last_message_at=_from_text(row["last_message_at"]),
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
        )

    def find_group_by_id(self, group_id: str) -> Optional[Group]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM groups WHERE group_id = ?", (group_id,)).fetchone()
        return self._group_from_row(row) if row else None

    def save_group(self, group: Group) -> None:
        """Upsert a group with its rules."""

        now = _now()
        group.created_at = group.created_at or now
        group.updated_at = now
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO groups (group_id, name, is_active, rules, metadata, last_message_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(group_id) DO UPDATE SET
                    name = excluded.name,
                    is_active = excluded.is_active,
                    rules = excluded.rules,
                    metadata = excluded.metadata,
                    last_message_at = excluded.last_message_at,
                    updated_at = excluded.updated_at
                """,
                (
                    group.group_id,
                    group.name,
                    int(group.is_active),
                    json.dumps([rule.to_dict() for rule in group.rules]),
                    json.dumps(group.metadata),
                    _to_text(group.last_message_at),
                    _to_text(group.created_at),
                    _to_text(group.updated_at),
                ),
            )

    def insert_group_if_absent(self, group: Group) -> bool:
        """Insert a group unless one with the same id exists. Returns True if inserted."""

        now = _now()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO groups (group_id, name, is_active, rules, metadata, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    group.group_id,
                    group.name,
                    int(group.is_active),
                    json.dumps([rule.to_dict() for rule in group.rules]),
                    json.dumps(group.metadata),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            return cur.rowcount == 1

    def ensure_group(self, group_id: str, name: str) -> Group:
        """Auto-provision a group with the default HELPDESK rules, idempotently."""

        if self.insert_group_if_absent(Group(group_id=group_id, name=name, rules=default_rules())):
            LOGGER.info("Auto-created group %s for message processing", name)
        group = self.find_group_by_id(group_id)
        if group is None:
            raise RuntimeError(f"Group {group_id} vanished after provisioning")
        return group

    def touch_group(self, group_id: str) -> None:
        now = _now().isoformat()
        with self._connect() as conn:
            conn.execute(
                "UPDATE groups SET last_message_at = ?, updated_at = ? WHERE group_id = ?",
                (now, now, group_id),
            )

    def find_groups_by_rule_action_type(self, kind: ActionKind) -> List[Group]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM groups ORDER BY group_id").fetchall()
        groups = [self._group_from_row(row) for row in rows]
        return [
            group
            for group in groups
            if any(action.kind is kind for rule in group.rules for action in rule.actions)
        ]

    def list_groups(self) -> List[Group]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM groups ORDER BY group_id").fetchall()
        return [self._group_from_row(row) for row in rows]

    # Messages

    @staticmethod
    def _message_from_row(row: sqlite3.Row) -> MessageRecord:
        return MessageRecord(
            message_id=row["message_id"],
            group_id=row["group_id"],
            sender=row["sender"],
            content=row["content"],
            classification=Classification(row["type"]),
            status=MessageStatus(row["status"]),
            quoted_message_id=row["quoted_message_id"],
            attachments=json.loads(row["attachments"]),
            metadata=json.loads(row["metadata"]),
            created_at=_from_text(row["created_at"]),
            processed_at=_from_text(row["processed_at"]),
            updated_at=_from_text(row["updated_at"]),
        )

    def create_message(self, record: MessageRecord) -> bool:
        now = _now()
        record.created_at = record.created_at or now
        record.updated_at = now
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO messages (
                    message_id, group_id, sender, content, type, status,
                    quoted_message_id, attachments, metadata, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.message_id,
                    record.group_id,
                    record.sender,
                    record.content,
                    record.classification.value,
                    record.status.value,
                    record.quoted_message_id,
                    json.dumps(record.attachments),
                    json.dumps(record.metadata),
                    _to_text(record.created_at),
                    _to_text(record.updated_at),
                ),
            )
            return cur.rowcount == 1

    def find_message(self, message_id: str) -> Optional[MessageRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE message_id = ?", (message_id,)).fetchone()
        return self._message_from_row(row) if row else None

    def update_status(
        self, message_id: str, status: MessageStatus, processed_at: Optional[datetime] = None
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE messages
                SET status = ?, processed_at = COALESCE(?, processed_at), updated_at = ?
                WHERE message_id = ?
                """,
                (status.value, _to_text(processed_at), _now().isoformat(), message_id),
            )

    def update_metadata(self, message_id: str, values: Dict[str, str]) -> None:
        # Read-merge-write inside one transaction so concurrent workers do not drop keys.
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT metadata FROM messages WHERE message_id = ?", (message_id,)).fetchone()
            if row is None:
                LOGGER.warning("Cannot update metadata, message %s not found", message_id)
                return
            metadata = json.loads(row["metadata"])
            metadata.update(values)
            conn.execute(
                "UPDATE messages SET metadata = ?, updated_at = ? WHERE message_id = ?",
                (json.dumps(metadata), _now().isoformat(), message_id),
            )
