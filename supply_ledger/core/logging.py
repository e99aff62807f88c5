import json
import logging
from datetime import datetime, timezone
from typing import Optional

from supply_ledger.config import Settings, get_settings

# Ledger context callers attach through ``extra=``; JSON output keeps them as top-level keys.
LEDGER_FIELDS = (
    "correlation_id",
    "account_id",
    "actor_id",
    "movement_id",
    "movement_kind",
    "direction",
    "item_id",
    "location_id",
    "source_location_id",
    "quantity",
    "batch_id",
    "transaction",
    "attempt",
    "error_code",
)


def movement_context(entry, **extra) -> dict:
    """``extra=`` mapping describing one committed movement log entry."""
    context = {
        "account_id": entry.account_id,
        "actor_id": entry.actor_id,
        "movement_id": entry.id,
        "movement_kind": getattr(entry.kind, "value", entry.kind),
        "direction": getattr(entry.direction, "value", entry.direction),
        "item_id": entry.item_id,
        "location_id": entry.location_id,
        "source_location_id": entry.source_location_id,
        "quantity": entry.quantity,
        "batch_id": entry.batch_id,
    }
    context.update(extra)
    return {key: value for key, value in context.items() if value is not None}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": "{}:{}".format(record.module, record.lineno),
        }
        for field in LEDGER_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


class ContextFormatter(logging.Formatter):
    """Plain-text format with any ledger context appended as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs = [
            "{}={}".format(field, getattr(record, field))
            for field in LEDGER_FIELDS
            if getattr(record, field, None) is not None
        ]
        if not pairs:
            return line
        head, sep, tail = line.partition("\n")
        return "{} [{}]{}{}".format(head, " ".join(pairs), sep, tail)


def build_handler(settings: Settings) -> logging.Handler:
    handler = logging.StreamHandler()
    if settings.LOG_JSON:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            ContextFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(build_handler(settings))
