"""SMTP mail transport adapter.

Builds a multipart EmailMessage from an OutboundMail and delivers it with
smtplib in a worker thread so the event loop keeps serving other jobs.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate
from typing import Optional

from deskrelay.core.errors import MailDeliveryError
from deskrelay.core.mail_threading import OutboundMail

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int = 465
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = None
    use_ssl: bool = True
    timeout: float = 30.0

    @property
    def sender(self) -> str:
        address = self.from_address or self.username
        if not address:
            raise MailDeliveryError("SMTP_FROM_EMAIL or SMTP_USER must be set")
        return address


def build_email_message(mail: OutboundMail, sender: str) -> EmailMessage:
    """Convert an OutboundMail into a standard library EmailMessage."""

    if not mail.to:
        raise MailDeliveryError(f"No recipient for mail {mail.message_id}")

    message = EmailMessage()
    message["From"] = formataddr((mail.from_name, sender))
    message["To"] = mail.to
    if mail.cc:
        message["Cc"] = mail.cc
    message["Subject"] = mail.subject
    message["Date"] = formatdate(localtime=True)
    message["Message-ID"] = mail.message_id
    for name, value in mail.headers.items():
        message[name] = value

    message.set_content(mail.text_body)
    message.add_alternative(mail.html_body, subtype="html")
    for attachment in mail.attachments:
        maintype, _, subtype = attachment.content_type.partition("/")
        message.add_attachment(
            attachment.content,
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return message


class SmtpMailTransport:
    """MailTransport that talks to an SMTP server."""

    def __init__(self, settings: SmtpSettings) -> None:
        self._settings = settings

    def _deliver(self, message: EmailMessage) -> None:
        settings = self._settings
        if settings.use_ssl:
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                settings.host, settings.port, timeout=settings.timeout, context=ssl.create_default_context()
            )
        else:
            server = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)
        with server:
            if not settings.use_ssl:
                server.starttls(context=ssl.create_default_context())
            if settings.username and settings.password:
                server.login(settings.username, settings.password)
            server.send_message(message)

    async def send(self, mail: OutboundMail) -> str:
        message = build_email_message(mail, self._settings.sender)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"Failed to send mail {mail.message_id}: {exc}") from exc
        LOGGER.info("Mail %s sent to %s", mail.message_id, mail.to)
        return mail.message_id
