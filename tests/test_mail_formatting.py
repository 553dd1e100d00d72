from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from deskrelay.core.mail_formatting import MailContext, format_html, format_text


def _context(
    *,
    content: str = "Projector in room 4 is broken",
    quoted: Optional[str] = None,
    attachments: Optional[list[str]] = None,
) -> MailContext:
    return MailContext(
        unit_name="Green Valley School",
        group_name="SR - Green Valley School - Staff",
        sender="Asha",
        content=content,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        unique_id="1704067200000-abcd1234",
        attachments=attachments or [],
        quoted_content=quoted,
    )


def test_format_text_has_details_and_id() -> None:
    text = format_text(_context())
    assert text.startswith("School: Green Valley School")
    assert "Sender: Asha" in text
    assert "Projector in room 4 is broken" in text
    assert text.endswith("ID: 1704067200000-abcd1234")
    assert "In reply to:" not in text


def test_format_text_quotes_parent_and_lists_attachments() -> None:
    text = format_text(_context(quoted="wifi down\nsince morning", attachments=["photo.jpg"]))
    assert "> wifi down\n> since morning" in text
    assert "- photo.jpg" in text


def test_format_html_escapes_user_content() -> None:
    page = format_html(_context(content="<script>alert(1)</script>\nline two"))
    assert "<script>" not in page
    assert "&lt;script&gt;alert(1)&lt;/script&gt;<br>line two" in page
    assert "Green Valley School - Notification" in page


def test_format_html_includes_quote_and_attachment_blocks() -> None:
    page = format_html(_context(quoted="earlier <b>report</b>", attachments=["scan & copy.pdf"]))
    assert "In reply to:" in page
    assert "earlier &lt;b&gt;report&lt;/b&gt;" in page
    assert "<li>scan &amp; copy.pdf</li>" in page
