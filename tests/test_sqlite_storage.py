from __future__ import annotations

from datetime import datetime, timezone

from deskrelay.adapters.sqlite_storage import SQLiteStorage
from deskrelay.core.models import (
    Action,
    ActionKind,
    Classification,
    Group,
    MessageRecord,
    MessageStatus,
    MonitoringRule,
    ReplyActionConfig,
)


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "deskrelay.db"))
    storage.init_db()
    return storage


def _record(message_id: str = "@gvs/1") -> MessageRecord:
    return MessageRecord(
        message_id=message_id,
        group_id="@gvs",
        sender="Asha",
        content="#helpdesk wifi",
        classification=Classification.HELPDESK,
        quoted_message_id=None,
        attachments=["photo.jpg"],
        metadata={"quotedContent": "earlier"},
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_ensure_group_is_idempotent(tmp_path) -> None:
    storage = _storage(tmp_path)

    first = storage.ensure_group("@gvs", "Green Valley School")
    first.rules.append(MonitoringRule(pattern="custom"))
    storage.save_group(first)
    second = storage.ensure_group("@gvs", "Renamed")

    assert len(storage.list_groups()) == 1
    assert second.name == "Green Valley School"
    assert [rule.pattern for rule in second.rules] == [r"\[HELPDESK\]", r"#helpdesk\b", "custom"]


def test_group_rules_round_trip(tmp_path) -> None:
    storage = _storage(tmp_path)
    group = Group(
        group_id="@gvs",
        name="Green Valley School",
        rules=[
            MonitoringRule(
                pattern="urgent",
                classification=Classification.URGENT,
                actions=[Action(ActionKind.REPLY, ReplyActionConfig(message="On it"))],
                name="urgent-reply",
            )
        ],
    )
    storage.save_group(group)

    loaded = storage.find_group_by_id("@gvs")

    assert loaded is not None
    assert loaded.rules == group.rules
    assert loaded.created_at is not None


def test_find_groups_by_rule_action_type(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.ensure_group("@gvs", "Green Valley School")
    storage.save_group(Group(group_id="@quiet", name="Quiet"))

    assert [group.group_id for group in storage.find_groups_by_rule_action_type(ActionKind.EMAIL)] == ["@gvs"]
    assert storage.find_groups_by_rule_action_type(ActionKind.WEBHOOK) == []


def test_touch_group_sets_last_message_at(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.ensure_group("@gvs", "Green Valley School")

    storage.touch_group("@gvs")

    assert storage.find_group_by_id("@gvs").last_message_at is not None


def test_create_message_rejects_duplicates(tmp_path) -> None:
    storage = _storage(tmp_path)

    assert storage.create_message(_record()) is True
    assert storage.create_message(_record()) is False

    loaded = storage.find_message("@gvs/1")
    assert loaded.status is MessageStatus.PENDING
    assert loaded.attachments == ["photo.jpg"]
    assert loaded.metadata == {"quotedContent": "earlier"}


def test_status_and_metadata_updates_do_not_clobber_each_other(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.create_message(_record())
    processed_at = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    storage.update_status("@gvs/1", MessageStatus.PROCESSING)
    storage.update_metadata("@gvs/1", {"emailMessageId": "<1.a@x>", "emailSubject": "S"})
    storage.update_status("@gvs/1", MessageStatus.COMPLETED, processed_at)

    loaded = storage.find_message("@gvs/1")
    assert loaded.status is MessageStatus.COMPLETED
    assert loaded.processed_at == processed_at
    assert loaded.metadata == {"quotedContent": "earlier", "emailMessageId": "<1.a@x>", "emailSubject": "S"}


def test_update_metadata_for_unknown_message_is_ignored(tmp_path) -> None:
    storage = _storage(tmp_path)

    storage.update_metadata("@gvs/404", {"emailMessageId": "<x>"})

    assert storage.find_message("@gvs/404") is None
