from __future__ import annotations

from datetime import datetime, timezone

from deskrelay.core.models import (
    ActionKind,
    Classification,
    EmailActionConfig,
    Group,
    InboundMessage,
    MonitoringRule,
    WebhookActionConfig,
)
from deskrelay.core.rules_engine import PatternMatcher, build_rules, default_rules, is_helpdesk_media


def _group(rules) -> Group:
    return Group(group_id="@school", name="Green Valley School", rules=rules)


def _message(body: str, has_media: bool = False) -> InboundMessage:
    return InboundMessage(
        message_id="@school/1",
        group_id="@school",
        group_name="Green Valley School",
        sender="Asha",
        body=body,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        has_media=has_media,
    )


def test_match_is_deterministic_and_ordered() -> None:
    rules = [
        MonitoringRule(pattern=r"printer", classification=Classification.NORMAL),
        MonitoringRule(pattern=r"#helpdesk\b", classification=Classification.HELPDESK),
        MonitoringRule(pattern=r"broken", classification=Classification.URGENT),
    ]
    matcher = PatternMatcher()
    group = _group(rules)

    first = matcher.match(group, "#HelpDesk the printer is broken")
    second = matcher.match(group, "#HelpDesk the printer is broken")

    assert [rule.pattern for rule in first] == ["printer", r"#helpdesk\b", "broken"]
    assert first == second


def test_invalid_pattern_is_skipped_and_later_rules_still_match() -> None:
    rules = [
        MonitoringRule(pattern=r"([unclosed", classification=Classification.URGENT),
        MonitoringRule(pattern=r"\[HELPDESK\]", classification=Classification.HELPDESK),
    ]
    matcher = PatternMatcher()

    matches = matcher.match(_group(rules), "[helpdesk] projector")

    assert [rule.classification for rule in matches] == [Classification.HELPDESK]
    assert matcher.compile(r"([unclosed") is None


def test_inactive_rules_do_not_match() -> None:
    rules = [MonitoringRule(pattern="wifi", classification=Classification.HELPDESK, is_active=False)]
    assert PatternMatcher().match(_group(rules), "wifi is down") == []


def test_default_rules_send_one_email_each() -> None:
    rules = default_rules()

    assert [rule.pattern for rule in rules] == [r"\[HELPDESK\]", r"#helpdesk\b"]
    for rule in rules:
        assert rule.classification is Classification.HELPDESK
        assert len(rule.actions) == 1
        assert rule.actions[0].kind is ActionKind.EMAIL
        assert rule.actions[0].config == EmailActionConfig()


def test_default_rules_ignore_plain_text() -> None:
    assert PatternMatcher().match(_group(default_rules()), "hello") == []


def test_build_rules_drops_unknown_action_kinds() -> None:
    rules = build_rules(
        [
            {
                "pattern": "#helpdesk",
                "type": "HELPDESK",
                "actions": [
                    {"type": "SMS", "config": {"to": "123"}},
                    {"type": "email", "config": {}},
                    {"type": "EMAIL", "config": {"to": "desk@example.org"}},
                    {"type": "WEBHOOK", "config": {"url": "https://hooks.example.org/in", "apiKey": "k"}},
                    {"type": "WEBHOOK", "config": {}},
                ],
            }
        ]
    )

    actions = rules[0].actions
    assert [action.kind for action in actions] == [ActionKind.EMAIL, ActionKind.WEBHOOK]
    assert actions[0].config.to == "desk@example.org"
    assert actions[1].config == WebhookActionConfig(url="https://hooks.example.org/in", api_key="k")


def test_build_rules_reads_legacy_reply_content_and_json_headers() -> None:
    rules = build_rules(
        [
            {
                "pattern": "urgent",
                "type": "URGENT",
                "enabled": False,
                "actions": [
                    {"type": "REPLY", "config": {"content": "On it"}},
                    {
                        "type": "WEBHOOK",
                        "config": {"url": "https://x.example.org", "method": "put", "headers": '{"X-Team": "ops"}'},
                    },
                ],
            }
        ]
    )

    rule = rules[0]
    assert rule.is_active is False
    assert rule.actions[0].config.message == "On it"
    assert rule.actions[1].config.method == "PUT"
    assert rule.actions[1].config.headers == {"X-Team": "ops"}


def test_rule_round_trips_through_its_stored_form() -> None:
    rules = build_rules([rule.to_dict() for rule in default_rules()])
    assert [rule.to_dict() for rule in rules] == [rule.to_dict() for rule in default_rules()]


def test_helpdesk_media_caption_is_case_insensitive() -> None:
    assert is_helpdesk_media(_message("Photo for HelpDesk", has_media=True))
    assert not is_helpdesk_media(_message("Photo for HelpDesk", has_media=False))
    assert not is_helpdesk_media(_message("holiday photo", has_media=True))


def test_non_string_pattern_never_matches_and_does_not_raise() -> None:
    rules = [
        MonitoringRule(pattern=123, classification=Classification.URGENT),
        MonitoringRule(pattern=r"#helpdesk\b", classification=Classification.HELPDESK),
    ]
    matched = PatternMatcher().match(_group(rules), "printer down #helpdesk 123")
    assert [rule.classification for rule in matched] == [Classification.HELPDESK]


def test_build_rules_drops_rules_without_a_string_pattern() -> None:
    rules = build_rules(
        [
            {"type": "URGENT", "actions": []},
            {"pattern": 123, "type": "URGENT"},
            {"pattern": "", "type": "URGENT"},
            {"pattern": "printer", "type": "NORMAL"},
        ]
    )
    assert [rule.pattern for rule in rules] == ["printer"]
