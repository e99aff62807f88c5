"""
Low-stock notifications.

Runs after movements commit (as a FastAPI background task) or from
``scripts/run_alerts.py``. Delivery is best effort: a failed send is recorded
on the ``LowStockAlert`` row and never propagates.
"""

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from supply_ledger.config import Settings
from supply_ledger.core.errors import LedgerError
from supply_ledger.database.store import DurableStore
from supply_ledger.models.alert import LowStockAlert
from supply_ledger.services import notification_service, query_service

logger = logging.getLogger(__name__)


def alert_already_sent(session, alert_date, item_id, location_id, phone) -> bool:
    stmt = (
        select(LowStockAlert.id)
        .where(
            LowStockAlert.alert_date == alert_date,
            LowStockAlert.item_id == item_id,
            LowStockAlert.location_id == location_id,
            LowStockAlert.phone_number == phone,
        )
        .limit(1)
    )
    return session.execute(stmt).first() is not None


def format_message(row: dict, today: date) -> str:
    lines = [
        "⚠ LOW STOCK ALERT ({})".format(today),
        "",
        "Item: {}".format(row["item_name"]),
        "Location: {}".format(row["location_name"]),
        "On hand: {} {}".format(row["quantity"], row["unit"]),
        "Threshold: {}".format(row["low_stock_threshold"]),
    ]
    supplier = row.get("supplier")
    if supplier:
        contact = supplier.get("phone") or supplier.get("email") or "no contact on file"
        lines.append("Supplier: {} ({})".format(supplier["name"], contact))
    return "\n".join(lines)


PENDING_REASON = "pending delivery"


def _reserve_alerts(store, account_id, keys, phones, today, send_notifications, stats):
    """Record one ``LowStockAlert`` per (row, phone) not yet alerted today.

    Returns ``(alert_id, phone, message)`` for every reservation; the unique
    dedup index turns a concurrent duplicate into an ``IntegrityError``.
    """

    def body(session):
        stats.update(candidates=0, alerts=0, skipped=0)
        reserved = []
        rows = query_service.below_threshold(session, account_id, keys=keys)
        stats["candidates"] = len(rows)
        for row in rows:
            message = format_message(row, today)
            for phone in phones:
                if alert_already_sent(session, today, row["item_id"], row["location_id"], phone):
                    stats["skipped"] += 1
                    continue
                alert = LowStockAlert(
                    alert_date=today,
                    account_id=account_id,
                    item_id=row["item_id"],
                    location_id=row["location_id"],
                    quantity=row["quantity"],
                    threshold=row["low_stock_threshold"],
                    phone_number=phone,
                    message=message,
                    delivered=False,
                    failure_reason=PENDING_REASON if send_notifications else None,
                )
                session.add(alert)
                session.flush()
                reserved.append((alert.id, phone, message))
        stats["alerts"] = len(reserved)
        return reserved

    return store.run_in_transaction(body, label="low_stock_alert_reserve")


def _deliver(reserved, settings, account_id) -> dict:
    outcomes = {}
    for alert_id, phone, message in reserved:
        try:
            notification_service.send_whatsapp(message, phone, settings)
        except (RuntimeError, ValueError) as exc:
            outcomes[alert_id] = str(exc)
            logger.warning(
                "Low-stock alert to %s failed: %s",
                phone,
                exc,
                extra={"account_id": account_id},
            )
        else:
            outcomes[alert_id] = None
    return outcomes


def _record_outcomes(store, outcomes) -> None:
    def body(session):
        for alert_id, failure_reason in outcomes.items():
            session.execute(
                update(LowStockAlert)
                .where(LowStockAlert.id == alert_id)
                .values(delivered=failure_reason is None, failure_reason=failure_reason)
            )

    store.run_in_transaction(body, label="low_stock_alert_outcomes")


def notify_low_stock(
    store: DurableStore,
    settings: Settings,
    account_id: int,
    keys: Optional[Iterable[tuple[int, int]]] = None,
    *,
    send_notifications: bool = True,
) -> dict:
    """Alert every configured phone about below-threshold rows.

    Messages go out only after the reservations commit, and no transaction
    is open while they are sent.
    """
    stats = {"candidates": 0, "alerts": 0, "delivered": 0, "skipped": 0}
    phones = settings.alert_phones()
    if not phones:
        return stats
    keys = list(keys) if keys is not None else None
    today = date.today()

    try:
        reserved = _reserve_alerts(store, account_id, keys, phones, today, send_notifications, stats)
    except (LedgerError, SQLAlchemyError):
        logger.exception("Low-stock alert run failed.", extra={"account_id": account_id})
        stats["error"] = True
        return stats
    if not send_notifications or not reserved:
        return stats

    outcomes = _deliver(reserved, settings, account_id)
    stats["delivered"] = sum(1 for reason in outcomes.values() if reason is None)
    try:
        _record_outcomes(store, outcomes)
    except (LedgerError, SQLAlchemyError):
        logger.exception("Recording low-stock alert outcomes failed.", extra={"account_id": account_id})
        stats["error"] = True
    return stats


__all__ = ["alert_already_sent", "format_message", "notify_low_stock"]
