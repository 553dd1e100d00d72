"""Static configuration for deskrelay.

User-editable settings (queue tuning, mail, known units, seed groups,
logging) live in a single JSON file. Secrets and connection details come
from the environment (.env is loaded through python-dotenv).
"""

import json
import os

from dotenv import load_dotenv

from deskrelay.adapters.smtp_mailer import SmtpSettings
from deskrelay.core.config import (
    DEFAULT_CONCURRENCY,
    BrokerConfig,
    MailConfig,
    MetricsConfig,
    QueueOptions,
    UnitEntry,
    WebhookConfig,
)
from deskrelay.core.models import Group
from deskrelay.core.rules_engine import build_rules

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

CONFIG_PATH = os.getenv("DESKRELAY_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _parse_units(raw_units: list[dict]) -> list[UnitEntry]:
    units = []
    for entry in raw_units:
        name = entry.get("name")
        if not name:
            continue
        units.append(UnitEntry(name=name, aliases=list(entry.get("aliases", [])), city=entry.get("city")))
    return units


def _parse_groups(raw_groups: list[dict]) -> list[Group]:
    """Seed groups; inserted on startup only when absent so edits made later in the store win."""

    groups = []
    for entry in raw_groups:
        group_id = entry.get("group_id")
        if not group_id:
            continue
        groups.append(
            Group(
                group_id=group_id,
                name=entry.get("name") or group_id,
                is_active=bool(entry.get("isActive", entry.get("enabled", True))),
                rules=build_rules(entry.get("rules", [])),
                metadata=dict(entry.get("metadata", {})),
            )
        )
    return groups


def _broker_config(raw: dict) -> BrokerConfig:
    # REDIS_DISABLED keeps the host unset, which selects the in-process queue.
    host = None if _env_flag("REDIS_DISABLED") else os.getenv("REDIS_HOST") or raw.get("host")
    return BrokerConfig(
        host=host,
        port=int(os.getenv("REDIS_PORT") or raw.get("port", 6379)),
        password=os.getenv("REDIS_PASSWORD") or raw.get("password"),
        db=int(raw.get("db", 0)),
        connect_timeout=float(raw.get("connect_timeout", 10.0)),
        key_prefix=raw.get("key_prefix", "deskrelay"),
    )


def _queue_options(raw: dict) -> QueueOptions:
    concurrency = dict(DEFAULT_CONCURRENCY)
    concurrency.update({str(kind).upper(): int(value) for kind, value in raw.get("concurrency", {}).items()})
    return QueueOptions(
        max_attempts=int(raw.get("attempts", 3)),
        backoff_delay_ms=int(raw.get("backoff_delay_ms", 5000)),
        remove_on_complete=int(raw.get("remove_on_complete", 100)),
        remove_on_fail=int(raw.get("remove_on_fail", 200)),
        lock_duration_ms=int(raw.get("lock_duration_ms", 30000)),
        poll_interval=float(raw.get("poll_interval", 1.0)),
        concurrency=concurrency,
    )


_CONFIG = _load_json_config()

CONFIG = _CONFIG

# SQLite path, relative paths resolve against the project root.
_database = _CONFIG.get("database", {})
DB_PATH = _database.get("path", "deskrelay.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

BROKER = _broker_config(_CONFIG.get("redis", {}))
QUEUE = _queue_options(_CONFIG.get("queue", {}))

# Default recipient for EMAIL actions without an explicit "to".
HELPDESK_EMAIL = os.getenv("HELPDESK_EMAIL")

_mail = _CONFIG.get("mail", {})
MAIL = MailConfig(
    sender_domain=os.getenv("EMAIL_DOMAIN") or _mail.get("sender_domain", "deskrelay.local"),
    default_recipient=HELPDESK_EMAIL or _mail.get("default_recipient"),
    from_address=os.getenv("SMTP_FROM_EMAIL") or _mail.get("from_address"),
    unit_prefix=_mail.get("unit_prefix", "SR"),
    known_units=_parse_units(_CONFIG.get("units", [])),
)

SMTP = SmtpSettings(
    host=os.getenv("SMTP_HOST") or _mail.get("smtp_host", "localhost"),
    port=int(os.getenv("SMTP_PORT") or _mail.get("smtp_port", 465)),
    username=os.getenv("SMTP_USER"),
    password=os.getenv("SMTP_PASS"),
    from_address=MAIL.from_address,
    use_ssl=bool(_mail.get("use_ssl", True)),
    timeout=float(_mail.get("timeout", 30.0)),
)

_webhook = _CONFIG.get("webhook", {})
WEBHOOK = WebhookConfig(
    max_attempts=int(_webhook.get("attempts", 3)),
    retry_delay=float(_webhook.get("retry_delay", 5.0)),
    timeout=float(_webhook.get("timeout", 10.0)),
)

GROUPS = _parse_groups(_CONFIG.get("groups", []))

_metrics = _CONFIG.get("metrics", {})
METRICS = MetricsConfig(
    enabled=bool(_metrics.get("enabled", False)),
    host=_metrics.get("host", "0.0.0.0"),
    port=int(os.getenv("METRICS_PORT") or _metrics.get("port", 9108)),
    queue_interval=float(_metrics.get("queue_interval", 10.0)),
)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
