from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from supply_ledger.core.constants import COST_QUANTUM, MAX_LOG_PAGE_SIZE, Direction, MovementKind
from supply_ledger.core.errors import ValidationFailed
from supply_ledger.models.movement_log import MovementLogEntry


def compute_total_cost(quantity: int, unit_cost) -> Decimal:
    unit_cost = Decimal(str(unit_cost if unit_cost is not None else 0))
    return (unit_cost * quantity).quantize(Decimal(COST_QUANTUM), rounding=ROUND_HALF_UP)


def append_entry(
    session: Session,
    *,
    account_id: int,
    actor_id: str,
    kind: MovementKind,
    direction: Direction,
    item_id: int,
    item_name: str,
    location_id: int,
    quantity: int,
    unit_cost,
    source_location_id: Optional[int] = None,
    cause_type: Optional[str] = None,
    cause_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    note: Optional[str] = None,
) -> MovementLogEntry:
    unit_cost = Decimal(str(unit_cost if unit_cost is not None else 0))
    entry = MovementLogEntry(
        account_id=account_id,
        actor_id=actor_id,
        kind=kind,
        direction=direction,
        item_id=item_id,
        item_name=item_name,
        source_location_id=source_location_id,
        location_id=location_id,
        quantity=quantity,
        unit_cost=unit_cost,
        total_cost=compute_total_cost(quantity, unit_cost),
        cause_type=cause_type,
        cause_id=cause_id,
        batch_id=batch_id,
        note=note,
        occurred_at=datetime.now(timezone.utc),
    )
    session.add(entry)
    session.flush()
    return entry


def _range_filters(account_id: int, start: Optional[datetime], end: Optional[datetime]) -> list:
    if start is not None and end is not None and start > end:
        raise ValidationFailed("start must not be after end.")
    filters = [MovementLogEntry.account_id == account_id]
    if start is not None:
        filters.append(MovementLogEntry.occurred_at >= start)
    if end is not None:
        filters.append(MovementLogEntry.occurred_at <= end)
    return filters


def list_entries(
    session: Session,
    account_id: int,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    item_id: Optional[int] = None,
    location_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[MovementLogEntry]:
    if limit <= 0 or limit > MAX_LOG_PAGE_SIZE:
        raise ValidationFailed("limit must be between 1 and {}.".format(MAX_LOG_PAGE_SIZE))
    if offset < 0:
        raise ValidationFailed("offset must be non-negative.")

    filters = _range_filters(account_id, start, end)
    if item_id is not None:
        filters.append(MovementLogEntry.item_id == item_id)
    if location_id is not None:
        filters.append(
            (MovementLogEntry.location_id == location_id)
            | (MovementLogEntry.source_location_id == location_id)
        )
    stmt = (
        select(MovementLogEntry)
        .where(*filters)
        .order_by(MovementLogEntry.occurred_at.desc(), MovementLogEntry.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(session.execute(stmt).scalars())


def aggregate_by_item_and_location(
    session: Session,
    account_id: int,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[dict]:
    """Totals per item, location and direction.

    A transfer or assign is one log row at its destination; its source side
    is counted here as a decrease at ``source_location_id``.
    """
    filters = _range_filters(account_id, start, end)
    totals = (
        func.max(MovementLogEntry.item_name).label("item_name"),
        func.count(MovementLogEntry.id).label("movements"),
        func.sum(MovementLogEntry.quantity).label("quantity"),
        func.sum(MovementLogEntry.total_cost).label("total_cost"),
    )
    at_location = (
        select(
            MovementLogEntry.item_id,
            MovementLogEntry.location_id.label("location_id"),
            MovementLogEntry.direction,
            *totals,
        )
        .where(*filters)
        .group_by(
            MovementLogEntry.item_id,
            MovementLogEntry.location_id,
            MovementLogEntry.direction,
        )
    )
    from_source = (
        select(
            MovementLogEntry.item_id,
            MovementLogEntry.source_location_id.label("location_id"),
            *totals,
        )
        .where(*filters, MovementLogEntry.source_location_id.is_not(None))
        .group_by(MovementLogEntry.item_id, MovementLogEntry.source_location_id)
    )

    merged = {}

    def add(row, direction):
        key = (row.item_id, row.location_id, direction)
        bucket = merged.setdefault(
            key,
            {
                "item_id": row.item_id,
                "item_name": row.item_name,
                "location_id": row.location_id,
                "direction": direction,
                "movements": 0,
                "quantity": 0,
                "total_cost": Decimal("0"),
            },
        )
        bucket["movements"] += int(row.movements)
        bucket["quantity"] += int(row.quantity or 0)
        bucket["total_cost"] += Decimal(str(row.total_cost or 0))

    for row in session.execute(at_location):
        add(row, Direction(row.direction))
    for row in session.execute(from_source):
        add(row, Direction.DECREASE)

    summary = []
    for key in sorted(merged, key=lambda k: (k[0], k[1], k[2].value)):
        bucket = merged[key]
        bucket["total_cost"] = bucket["total_cost"].quantize(Decimal(COST_QUANTUM))
        summary.append(bucket)
    return summary


__all__ = [
    "aggregate_by_item_and_location",
    "append_entry",
    "compute_total_cost",
    "list_entries",
]
