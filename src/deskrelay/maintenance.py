"""One-off maintenance operations exposed as CLI subcommands."""

from __future__ import annotations

import dataclasses
import logging
from typing import Dict, Iterable, List

from deskrelay.adapters.sqlite_storage import SQLiteStorage
from deskrelay.core.models import (
    Action,
    ActionKind,
    Classification,
    EmailActionConfig,
    MonitoringRule,
)
from deskrelay.core.ports import JobQueue

LOGGER = logging.getLogger(__name__)

HELPDESK_TAG_PATTERN = r"#helpdesk\b"


def add_helpdesk_rule(storage: SQLiteStorage) -> List[str]:
    """Append the #helpdesk rule to every group that lacks it. Returns the updated group ids."""

    updated: List[str] = []
    for group in storage.list_groups():
        if any(rule.pattern == HELPDESK_TAG_PATTERN for rule in group.rules):
            continue
        group.rules.append(
            MonitoringRule(
                pattern=HELPDESK_TAG_PATTERN,
                classification=Classification.HELPDESK,
                actions=[Action(ActionKind.EMAIL, EmailActionConfig())],
            )
        )
        storage.save_group(group)
        LOGGER.info("Added helpdesk rule to group %s", group.group_id)
        updated.append(group.group_id)
    return updated


def set_helpdesk_recipient(storage: SQLiteStorage, recipient: str) -> List[str]:
    """Point every EMAIL action at one recipient. Returns the updated group ids."""

    if not recipient:
        raise ValueError("A recipient address is required")

    updated: List[str] = []
    for group in storage.find_groups_by_rule_action_type(ActionKind.EMAIL):
        for rule in group.rules:
            rule.actions = [
                Action(action.kind, dataclasses.replace(action.config, to=recipient))
                if action.kind is ActionKind.EMAIL
                else action
                for action in rule.actions
            ]
        storage.save_group(group)
        LOGGER.info("EMAIL actions of group %s now send to %s", group.group_id, recipient)
        updated.append(group.group_id)
    return updated


async def queue_counts(queue: JobQueue, kinds: Iterable[str]) -> Dict[str, Dict[str, int]]:
    """Waiting, completed and failed job counts per action kind."""

    counts: Dict[str, Dict[str, int]] = {}
    for kind in kinds:
        counts[kind] = {
            "waiting": len(await queue.list_waiting(kind)),
            "completed": len(await queue.list_completed(kind)),
            "failed": len(await queue.list_failed(kind)),
        }
    return counts
