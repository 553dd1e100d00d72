"""Application entry point for the deskrelay bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

from deskrelay import settings
from deskrelay.adapters.smtp_mailer import SmtpMailTransport
from deskrelay.adapters.sqlite_storage import SQLiteStorage
from deskrelay.adapters.telegram_mapper import TelegramMessageSource, build_inbound_message
from deskrelay.adapters.webhook_sender import WebhookSender
from deskrelay.client import build_client
from deskrelay.core.dispatcher import ActionDispatcher
from deskrelay.core.mail_threading import MailAssembler
from deskrelay.core.models import ActionKind
from deskrelay.core.processor import MessageProcessor
from deskrelay.jobqueue.broker import BrokerRegistry
from deskrelay.jobqueue.factory import setup_queue
from deskrelay.maintenance import add_helpdesk_rule, queue_counts, set_helpdesk_recipient
from deskrelay.metrics import start_metrics_server, watch_queue
from deskrelay.workers import ActionWorkers

NAME = "DESKRELAY"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/deskrelay.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _seed_groups(storage: SQLiteStorage) -> None:
    logger = logging.getLogger(__name__)
    for group in settings.GROUPS:
        if storage.insert_group_if_absent(group):
            logger.info("Seeded group %s with %s rules", group.group_id, len(group.rules))


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting deskrelay")

    storage = _open_storage()
    _seed_groups(storage)

    client = build_client()
    source = TelegramMessageSource(client)
    registry = BrokerRegistry(settings.BROKER)
    webhooks = WebhookSender(settings.WEBHOOK)

    async def _wire():
        queue = await setup_queue(registry, settings.QUEUE)
        workers = ActionWorkers(
            rules=storage,
            messages=storage,
            assembler=MailAssembler(storage, settings.MAIL),
            mail=SmtpMailTransport(settings.SMTP),
            webhooks=webhooks,
            source=source,
        )
        await workers.register(queue, settings.QUEUE)
        return queue

    async def _watch(queue):
        return asyncio.create_task(
            watch_queue(queue, [kind.value for kind in ActionKind], settings.METRICS.queue_interval),
            name="queue-metrics",
        )

    # Worker tasks must live on the client's loop, so wiring runs there too.
    queue = client.loop.run_until_complete(_wire())
    metrics_task = None
    if settings.METRICS.enabled:
        start_metrics_server(settings.METRICS.port, settings.METRICS.host)
        metrics_task = client.loop.run_until_complete(_watch(queue))
    processor = MessageProcessor(
        rules=storage,
        messages=storage,
        source=source,
        dispatcher=ActionDispatcher(queue),
    )

    # Single handler keeps Telethon integration minimal; all filtering is in the processor.
    @client.on(events.NewMessage(incoming=True))
    async def handler(event) -> None:
        try:
            if event.is_private:
                return
            message = await build_inbound_message(event.message)
            await processor.handle(message)
        except Exception:
            logger.exception("Error while processing message")

    async def _shutdown() -> None:
        if metrics_task is not None:
            metrics_task.cancel()
            await asyncio.gather(metrics_task, return_exceptions=True)
        await queue.close()
        await webhooks.close()
        await registry.shutdown()

    client.start()
    logger.info("Client connected. Listening for incoming messages...")
    try:
        client.run_until_disconnected()
    finally:
        client.loop.run_until_complete(_shutdown())
        logger.info("Deskrelay stopped")


def _queue_status() -> None:
    _configure_logging()

    async def _report() -> None:
        registry = BrokerRegistry(settings.BROKER)
        queue = await setup_queue(registry, settings.QUEUE)
        try:
            counts = await queue_counts(queue, [kind.value for kind in ActionKind])
        finally:
            await queue.close()
            await registry.shutdown()
        for kind, values in counts.items():
            print(f"{kind}: waiting={values['waiting']} completed={values['completed']} failed={values['failed']}")

    asyncio.run(_report())


def _add_helpdesk_rule() -> None:
    _configure_logging()
    updated = add_helpdesk_rule(_open_storage())
    print(f"Helpdesk rule added to {len(updated)} group(s).")


def _set_helpdesk_recipient(recipient: Optional[str]) -> None:
    _configure_logging()
    recipient = recipient or settings.HELPDESK_EMAIL
    if not recipient:
        raise SystemExit("HELPDESK_EMAIL is not set and no --email was given")
    updated = set_helpdesk_recipient(_open_storage(), recipient)
    print(f"EMAIL actions in {len(updated)} group(s) now send to {recipient}.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="deskrelay")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    subparsers.add_parser("queue-status", help="Show waiting/completed/failed jobs per action type")
    subparsers.add_parser("add-helpdesk-rule", help="Add the #helpdesk rule to every stored group")
    recipient_parser = subparsers.add_parser(
        "set-helpdesk-recipient",
        help="Point every EMAIL action at the helpdesk address",
    )
    recipient_parser.add_argument("--email", help="Recipient address (defaults to HELPDESK_EMAIL)")

    args = parser.parse_args(argv)
    if args.command == "queue-status":
        _queue_status()
        return
    if args.command == "add-helpdesk-rule":
        _add_helpdesk_rule()
        return
    if args.command == "set-helpdesk-recipient":
        _set_helpdesk_recipient(args.email)
        return
    _run()


if __name__ == "__main__":
    main()
