"""Mail body formatting helpers.

Keeping formatting here prevents drift between the text and HTML parts and
keeps notifications consistent regardless of which rule produced them.
"""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

DIVIDER = "──────────────"


@dataclass(frozen=True)
class MailContext:
    """Everything the templates need, already resolved to display strings."""

    unit_name: str
    group_name: str
    sender: str
    content: str
    timestamp: datetime
    unique_id: str
    attachments: List[str] = field(default_factory=list)
    quoted_content: Optional[str] = None


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime("%H:%M:%S %d-%m-%Y").strip()


def format_text(context: MailContext) -> str:
    """Create the plain-text alternative part."""

    lines = [
        f"School: {context.unit_name}",
        f"Group:  {context.group_name or 'Unknown'}",
        f"Sender: {context.sender or 'Unknown'}",
        f"Time:   {_format_time(context.timestamp)}",
        DIVIDER,
        "",
        context.content or "",
    ]
    if context.quoted_content:
        lines.extend(["", "In reply to:", *(f"> {line}" for line in context.quoted_content.splitlines())])
    if context.attachments:
        lines.extend(["", "Attachments:", *(f"- {name}" for name in context.attachments)])
    lines.extend(["", DIVIDER, f"ID: {context.unique_id}"])
    return "\n".join(lines)


def _row(label: str, value: str) -> str:
    cell = "padding: 8px; border-bottom: 1px solid #e0e0e0;"
    return (
        f'<tr><td style="{cell} font-weight: bold; width: 100px;">{label}:</td>'
        f'<td style="{cell}">{html.escape(value)}</td></tr>'
    )


def format_html(context: MailContext) -> str:
    """Create the HTML part: header, details table, message, attachments, footer."""

    unit = html.escape(context.unit_name)
    body = html.escape(context.content or "").replace("\n", "<br>")

    parts = [
        "<!DOCTYPE html>",
        '<html><head><meta charset="utf-8">',
        f"<title>{unit} - Notification</title></head>",
        '<body style="font-family: Arial, sans-serif; margin: 0; padding: 0; background-color: #f7f7f7;">',
        '<div style="max-width: 600px; margin: 0 auto; border: 1px solid #e0e0e0; '
        'border-radius: 8px; overflow: hidden; background-color: white;">',
        '<div style="background: linear-gradient(135deg, #6a5acd, #4169e1); color: white; '
        'padding: 20px; text-align: center;">',
        f'<h2 style="margin: 0;">{unit} - Notification</h2>',
        "</div>",
        '<div style="padding: 20px;">',
        '<table style="width: 100%; border-collapse: collapse;"><tbody>',
        _row("School", context.unit_name),
        _row("Group", context.group_name or "Unknown"),
        _row("Sender", context.sender or "Unknown"),
        _row("Time", _format_time(context.timestamp)),
        "</tbody></table>",
    ]

    if context.quoted_content:
        quoted = html.escape(context.quoted_content).replace("\n", "<br>")
        parts.extend(
            [
                '<div style="margin-top: 20px; padding: 10px 15px; border-left: 4px solid #c0c0c0; color: #555;">',
                '<h4 style="margin-top: 0;">In reply to:</h4>',
                f"<div>{quoted}</div>",
                "</div>",
            ]
        )

    parts.extend(
        [
            '<div style="margin-top: 20px; padding: 15px; background-color: #f9f9f9; border-radius: 6px;">',
            '<h3 style="margin-top: 0; color: #4169e1;">Message:</h3>',
            f"<div>{body}</div>",
            "</div>",
        ]
    )

    if context.attachments:
        items = "".join(f"<li>{html.escape(name)}</li>" for name in context.attachments)
        parts.extend(
            [
                '<div style="margin-top: 20px; padding: 15px; background-color: #fff8e1; '
                'border-radius: 6px; border-left: 4px solid #ffc107;">',
                '<h3 style="margin-top: 0; color: #ff9800;">Attachments:</h3>',
                f"<ul>{items}</ul>",
                '<p style="font-size: 12px; color: #666;">The attachments are included with this email.</p>',
                "</div>",
            ]
        )

    parts.extend(
        [
            "</div>",
            '<div style="background-color: #f0f7ff; padding: 15px; text-align: center; font-size: 14px; color: #666;">',
            "<p>This is an automated message from the deskrelay helpdesk bridge.</p>",
            f"<p>ID: {html.escape(context.unique_id)}</p>",
            "</div>",
            "</div></body></html>",
        ]
    )
    return "\n".join(parts)
