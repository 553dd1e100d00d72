"""Rule compilation and matching logic (core domain)."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from deskrelay.core.errors import UnknownActionKindError
from deskrelay.core.models import (
    Action,
    ActionKind,
    Classification,
    EmailActionConfig,
    Group,
    InboundMessage,
    MonitoringRule,
    action_from_dict,
)

LOGGER = logging.getLogger(__name__)

HELPDESK_CAPTION_KEYWORD = "helpdesk"

DEFAULT_RULE_PATTERNS = (r"\[HELPDESK\]", r"#helpdesk\b")


def default_rules() -> List[MonitoringRule]:
    """Rules attached to a group the first time we see it."""

    return [
        MonitoringRule(
            pattern=pattern,
            classification=Classification.HELPDESK,
            actions=[Action(ActionKind.EMAIL, EmailActionConfig())],
        )
        for pattern in DEFAULT_RULE_PATTERNS
    ]


def build_actions(raw_actions: Iterable[Dict[str, Any]], rule_label: str) -> List[Action]:
    """Parse serialized actions, dropping ones we cannot dispatch.

    Unknown kinds are rejected here at load time so dispatch only ever sees
    the closed ActionKind set.
    """

    actions: List[Action] = []
    for raw in raw_actions or []:
        try:
            actions.append(action_from_dict(raw))
        except UnknownActionKindError as exc:
            LOGGER.warning("Dropping action on rule %s: %s", rule_label, exc)
        except ValueError as exc:
            LOGGER.warning("Dropping invalid %s action on rule %s: %s", raw.get("type"), rule_label, exc)
    return actions


def rule_from_dict(raw: Dict[str, Any]) -> MonitoringRule:
    pattern = raw.get("pattern")
    name = raw.get("name") or None
    if not isinstance(pattern, str) or not pattern:
        raise ValueError(f"rule {name or '<unnamed>'} needs a non-empty string pattern, got {pattern!r}")
    try:
        classification = Classification(raw.get("type") or Classification.NORMAL.value)
    except ValueError:
        LOGGER.warning("Rule %s has unknown type %r, using NORMAL", name or pattern, raw.get("type"))
        classification = Classification.NORMAL
    return MonitoringRule(
        pattern=pattern,
        classification=classification,
        actions=build_actions(raw.get("actions", []), name or pattern),
        is_active=bool(raw.get("isActive", raw.get("enabled", True))),
        name=name,
    )


def build_rules(rules_config: Iterable[Dict[str, Any]]) -> List[MonitoringRule]:
    """Normalize rule configs loaded from JSON, keeping declaration order.

    Rules without a usable pattern are logged and dropped.
    """

    rules: List[MonitoringRule] = []
    for raw in rules_config or []:
        try:
            rules.append(rule_from_dict(raw))
        except ValueError as exc:
            LOGGER.warning("Dropping invalid rule: %s", exc)
    return rules


def is_helpdesk_media(message: InboundMessage) -> bool:
    """Media whose caption mentions the helpdesk keyword is an implicit HELPDESK match."""

    return bool(message.has_media and message.body and HELPDESK_CAPTION_KEYWORD in message.body.lower())


class PatternMatcher:
    """Evaluate message text against a group's rules.

    Patterns are compiled once per distinct pattern string. A pattern that
    fails to compile is remembered as invalid so it is logged only once and
    never matches.
    """

    def __init__(self) -> None:
        self._cache: Dict[str, Optional[re.Pattern]] = {}

    def compile(self, pattern: str) -> Optional[re.Pattern]:
        if not isinstance(pattern, str):
            LOGGER.error("Rule pattern must be a string, got %r", pattern)
            return None
        if pattern in self._cache:
            return self._cache[pattern]
        try:
            compiled: Optional[re.Pattern] = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            LOGGER.error("Invalid regex pattern in rule: %s (%s)", pattern, exc)
            compiled = None
        self._cache[pattern] = compiled
        return compiled

    def match(self, group: Group, body: str) -> List[MonitoringRule]:
        """Return the active rules whose pattern matches, in declaration order."""

        text = body or ""
        matches: List[MonitoringRule] = []
        for rule in group.rules:
            if not rule.is_active:
                continue
            compiled = self.compile(rule.pattern)
            if compiled is None:
                continue
            LOGGER.debug("Testing pattern %s on group %s", rule.pattern, group.group_id)
            if compiled.search(text):
                matches.append(rule)
        return matches
