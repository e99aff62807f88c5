"""
Movement engine.

Every public operation runs inside one ``DurableStore.run_in_transaction``
call and follows the same steps: resolve catalog references for the actor's
account, lock the affected stock rows, validate, mutate, append exactly one
log entry, commit. Any failure rolls the whole unit back, so a failed
movement leaves neither a quantity change nor a log row behind.

Rows that reach zero are kept (threshold tracking still needs them); only
``remove_stock_row`` or a catalog deletion removes an empty row.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from supply_ledger.config import Settings, get_settings
from supply_ledger.core.constants import DestinationPolicy, Direction, MovementKind
from supply_ledger.core.errors import (
    CrossAccountReference,
    InsufficientStock,
    LedgerError,
    NotFound,
    ValidationFailed,
)
from supply_ledger.core.logging import movement_context
from supply_ledger.core.security import Actor
from supply_ledger.database.store import DurableStore
from supply_ledger.models.catalog import Item, Location
from supply_ledger.models.movement_log import MovementLogEntry
from supply_ledger.models.stock import StockRow
from supply_ledger.services import audit_service, catalog_service

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class MovementResult:
    entry: Optional[MovementLogEntry]
    item_id: int
    quantities: dict[int, int] = field(default_factory=dict)

    @property
    def keys(self) -> list[tuple[int, int]]:
        return [(self.item_id, location_id) for location_id in self.quantities]


@dataclass
class BatchLine:
    quantity: int
    item_id: Optional[int] = None
    is_new: bool = False
    name: Optional[str] = None
    scan_code: Optional[str] = None
    unit: Optional[str] = None
    cost_per_unit: Optional[object] = None
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None


@dataclass
class BatchResult:
    batch_id: str
    results: list[MovementResult]

    @property
    def keys(self) -> list[tuple[int, int]]:
        keys: list[tuple[int, int]] = []
        for result in self.results:
            for key in result.keys:
                if key not in keys:
                    keys.append(key)
        return keys


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_quantity(value, *, field_name: str = "quantity", allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed("{} must be an integer.".format(field_name), **{field_name: value})
    if value < 0 or (value == 0 and not allow_zero):
        limit = "non-negative" if allow_zero else "greater than zero"
        raise ValidationFailed("{} must be {}.".format(field_name, limit), **{field_name: value})
    return value


def lock_stock_rows(session: Session, item_id: int, location_ids: Iterable[int]) -> dict[int, StockRow]:
    """Lock the existing rows for ``item_id`` at ``location_ids``.

    Rows are locked in ascending (item_id, location_id) order so two movements
    touching the same pair of rows always acquire them in the same order.
    """
    stmt = (
        select(StockRow)
        .where(
            StockRow.item_id == item_id,
            StockRow.location_id.in_(sorted(set(location_ids))),
        )
        .order_by(StockRow.item_id, StockRow.location_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {row.location_id: row for row in session.execute(stmt).scalars()}


def accumulate(session: Session, *, account_id: int, item_id: int, location_id: int, quantity: int) -> int:
    """Insert the row or add ``quantity`` to it in one statement; returns the new quantity."""
    dialect = session.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise RuntimeError("Upsert is not supported for dialect {}".format(dialect))

    now = _utcnow()
    stmt = insert(StockRow).values(
        account_id=account_id,
        item_id=item_id,
        location_id=location_id,
        quantity=quantity,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["item_id", "location_id"],
        set_={
            "quantity": StockRow.quantity + stmt.excluded.quantity,
            "updated_at": now,
        },
    )
    session.execute(stmt)
    return session.execute(
        select(StockRow.quantity).where(
            StockRow.item_id == item_id,
            StockRow.location_id == location_id,
        )
    ).scalar_one()


def _decrement(session: Session, row: StockRow, quantity: int) -> int:
    result = session.execute(
        update(StockRow)
        .where(StockRow.id == row.id, StockRow.quantity >= quantity)
        .values(quantity=StockRow.quantity - quantity, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    session.expire(row, ["quantity", "updated_at"])
    if result.rowcount != 1:
        raise InsufficientStock(
            item_id=row.item_id,
            location_id=row.location_id,
            current=row.quantity,
            requested=quantity,
        )
    return row.quantity


def _check_row_owner(row: StockRow, actor: Actor) -> None:
    if row.account_id != actor.account_id:
        raise CrossAccountReference(
            "Stock row does not belong to this account.",
            item_id=row.item_id,
            location_id=row.location_id,
        )


def _take(session: Session, actor: Actor, item: Item, location: Location, quantity: int) -> int:
    row = lock_stock_rows(session, item.id, [location.id]).get(location.id)
    if row is None:
        raise InsufficientStock(item_id=item.id, location_id=location.id, current=0, requested=quantity)
    _check_row_owner(row, actor)
    if row.quantity < quantity:
        raise InsufficientStock(
            item_id=item.id,
            location_id=location.id,
            current=row.quantity,
            requested=quantity,
        )
    return _decrement(session, row, quantity)


class MovementEngine:
    def __init__(self, store: DurableStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # receive
    # ------------------------------------------------------------------
    def receive(
        self,
        actor: Actor,
        item_id: int,
        location_id: int,
        quantity: int,
        *,
        unit_cost=None,
        cause_type: Optional[str] = None,
        cause_id: Optional[str] = None,
    ) -> MovementResult:
        _require_quantity(quantity)
        result = self.store.run_in_transaction(
            lambda session: self._receive(
                session,
                actor,
                item_id,
                location_id,
                quantity,
                unit_cost=unit_cost,
                cause_type=cause_type,
                cause_id=cause_id,
            ),
            label="receive",
        )
        self._log_committed(actor, result)
        return result

    def _receive(self, session, actor, item_id, location_id, quantity, *, unit_cost=None,
                 cause_type=None, cause_id=None, batch_id=None) -> MovementResult:
        item = catalog_service.resolve_item(session, actor.account_id, item_id)
        location = catalog_service.resolve_location(session, actor.account_id, location_id)
        cost = item.cost_per_unit if unit_cost is None else catalog_service.normalize_cost(unit_cost)

        new_quantity = accumulate(
            session,
            account_id=actor.account_id,
            item_id=item.id,
            location_id=location.id,
            quantity=quantity,
        )
        entry = audit_service.append_entry(
            session,
            account_id=actor.account_id,
            actor_id=actor.identity,
            kind=MovementKind.RECEIVE,
            direction=Direction.INCREASE,
            item_id=item.id,
            item_name=item.name,
            location_id=location.id,
            quantity=quantity,
            unit_cost=cost,
            cause_type=cause_type,
            cause_id=cause_id,
            batch_id=batch_id,
        )
        return MovementResult(entry=entry, item_id=item.id, quantities={location.id: new_quantity})

    # ------------------------------------------------------------------
    # consume
    # ------------------------------------------------------------------
    def consume(
        self,
        actor: Actor,
        item_id: int,
        location_id: int,
        quantity: int,
        *,
        cause_type: Optional[str] = None,
        cause_id: Optional[str] = None,
    ) -> MovementResult:
        _require_quantity(quantity)
        result = self.store.run_in_transaction(
            lambda session: self._consume(
                session,
                actor,
                item_id,
                location_id,
                quantity,
                cause_type=cause_type,
                cause_id=cause_id,
            ),
            label="consume",
        )
        self._log_committed(actor, result)
        return result

    def _consume(self, session, actor, item_id, location_id, quantity, *,
                 cause_type=None, cause_id=None, batch_id=None) -> MovementResult:
        item = catalog_service.resolve_item(session, actor.account_id, item_id)
        location = catalog_service.resolve_location(session, actor.account_id, location_id)

        remaining = _take(session, actor, item, location, quantity)
        entry = audit_service.append_entry(
            session,
            account_id=actor.account_id,
            actor_id=actor.identity,
            kind=MovementKind.CONSUME,
            direction=Direction.DECREASE,
            item_id=item.id,
            item_name=item.name,
            location_id=location.id,
            quantity=quantity,
            unit_cost=item.cost_per_unit,
            cause_type=cause_type,
            cause_id=cause_id,
            batch_id=batch_id,
        )
        return MovementResult(entry=entry, item_id=item.id, quantities={location.id: remaining})

    # ------------------------------------------------------------------
    # transfer / assign
    # ------------------------------------------------------------------
    def transfer(
        self,
        actor: Actor,
        item_id: int,
        source_location_id: int,
        destination_location_id: int,
        quantity: int,
        *,
        cause_type: Optional[str] = None,
        cause_id: Optional[str] = None,
    ) -> MovementResult:
        _require_quantity(quantity)
        if source_location_id == destination_location_id:
            raise ValidationFailed(
                "Source and destination locations must differ.",
                location_id=source_location_id,
            )
        result = self.store.run_in_transaction(
            lambda session: self._transfer(
                session,
                actor,
                item_id,
                source_location_id,
                destination_location_id,
                quantity,
                cause_type=cause_type,
                cause_id=cause_id,
            ),
            label="transfer",
        )
        self._log_committed(actor, result)
        return result

    def assign_to_sub_location(
        self,
        actor: Actor,
        item_id: int,
        sub_location_id: int,
        quantity: int,
        *,
        cause_type: Optional[str] = None,
        cause_id: Optional[str] = None,
    ) -> MovementResult:
        _require_quantity(quantity)
        result = self.store.run_in_transaction(
            lambda session: self._assign(
                session,
                actor,
                item_id,
                sub_location_id,
                quantity,
                cause_type=cause_type,
                cause_id=cause_id,
            ),
            label="assign",
        )
        self._log_committed(actor, result)
        return result

    def _assign(self, session, actor, item_id, sub_location_id, quantity, *,
                cause_type=None, cause_id=None, batch_id=None) -> MovementResult:
        pool = catalog_service.get_default_location(session, actor.account_id)
        if sub_location_id == pool.id:
            raise ValidationFailed(
                "Choose a location other than {} to assign stock to.".format(pool.name),
                location_id=sub_location_id,
            )
        return self._transfer(
            session,
            actor,
            item_id,
            pool.id,
            sub_location_id,
            quantity,
            kind=MovementKind.ASSIGN,
            cause_type=cause_type,
            cause_id=cause_id,
            batch_id=batch_id,
        )

    def _transfer(self, session, actor, item_id, source_location_id, destination_location_id, quantity, *,
                  kind=MovementKind.TRANSFER, cause_type=None, cause_id=None, batch_id=None) -> MovementResult:
        if source_location_id == destination_location_id:
            raise ValidationFailed(
                "Source and destination locations must differ.",
                location_id=source_location_id,
            )
        item = catalog_service.resolve_item(session, actor.account_id, item_id)
        source = catalog_service.resolve_location(session, actor.account_id, source_location_id)
        destination = catalog_service.resolve_location(session, actor.account_id, destination_location_id)

        rows = lock_stock_rows(session, item.id, [source.id, destination.id])
        source_row = rows.get(source.id)
        current = source_row.quantity if source_row is not None else 0
        if source_row is None or current < quantity:
            raise InsufficientStock(
                item_id=item.id,
                location_id=source.id,
                current=current,
                requested=quantity,
            )
        _check_row_owner(source_row, actor)

        source_quantity = _decrement(session, source_row, quantity)
        destination_quantity = accumulate(
            session,
            account_id=actor.account_id,
            item_id=item.id,
            location_id=destination.id,
            quantity=quantity,
        )
        if destination.id in rows:
            session.expire(rows[destination.id], ["quantity", "updated_at"])

        entry = audit_service.append_entry(
            session,
            account_id=actor.account_id,
            actor_id=actor.identity,
            kind=kind,
            direction=Direction.INCREASE,
            item_id=item.id,
            item_name=item.name,
            source_location_id=source.id,
            location_id=destination.id,
            quantity=quantity,
            unit_cost=item.cost_per_unit,
            cause_type=cause_type,
            cause_id=cause_id,
            batch_id=batch_id,
        )
        return MovementResult(
            entry=entry,
            item_id=item.id,
            quantities={source.id: source_quantity, destination.id: destination_quantity},
        )

    # ------------------------------------------------------------------
    # corrections and row maintenance
    # ------------------------------------------------------------------
    def correct(
        self,
        actor: Actor,
        item_id: int,
        location_id: int,
        new_quantity: int,
        *,
        low_stock_threshold: Optional[int] = None,
        note: Optional[str] = None,
    ) -> MovementResult:
        """Set the counted quantity; the difference is logged as a correction."""
        _require_quantity(new_quantity, field_name="new_quantity", allow_zero=True)
        if low_stock_threshold is not None:
            _require_quantity(low_stock_threshold, field_name="low_stock_threshold", allow_zero=True)
        result = self.store.run_in_transaction(
            lambda session: self._correct(
                session,
                actor,
                item_id,
                location_id,
                new_quantity,
                low_stock_threshold=low_stock_threshold,
                note=note,
            ),
            label="correct",
        )
        self._log_committed(actor, result)
        return result

    def _correct(self, session, actor, item_id, location_id, new_quantity, *,
                 low_stock_threshold=None, note=None) -> MovementResult:
        item = catalog_service.resolve_item(session, actor.account_id, item_id)
        location = catalog_service.resolve_location(session, actor.account_id, location_id)

        row = lock_stock_rows(session, item.id, [location.id]).get(location.id)
        if row is None:
            accumulate(
                session,
                account_id=actor.account_id,
                item_id=item.id,
                location_id=location.id,
                quantity=0,
            )
            row = lock_stock_rows(session, item.id, [location.id])[location.id]
        _check_row_owner(row, actor)

        delta = new_quantity - row.quantity
        row.quantity = new_quantity
        if low_stock_threshold is not None:
            row.low_stock_threshold = low_stock_threshold
        session.flush()

        entry = None
        if delta:
            entry = audit_service.append_entry(
                session,
                account_id=actor.account_id,
                actor_id=actor.identity,
                kind=MovementKind.CORRECT,
                direction=Direction.INCREASE if delta > 0 else Direction.DECREASE,
                item_id=item.id,
                item_name=item.name,
                location_id=location.id,
                quantity=abs(delta),
                unit_cost=item.cost_per_unit,
                note=note,
            )
        return MovementResult(entry=entry, item_id=item.id, quantities={location.id: new_quantity})

    def set_threshold(self, actor: Actor, item_id: int, location_id: int, threshold: Optional[int]) -> StockRow:
        if threshold is not None:
            _require_quantity(threshold, field_name="low_stock_threshold", allow_zero=True)

        def body(session):
            item = catalog_service.resolve_item(session, actor.account_id, item_id)
            location = catalog_service.resolve_location(session, actor.account_id, location_id)
            row = lock_stock_rows(session, item.id, [location.id]).get(location.id)
            if row is None:
                raise NotFound(
                    "Location inventory entry not found.",
                    item_id=item.id,
                    location_id=location.id,
                )
            _check_row_owner(row, actor)
            row.low_stock_threshold = threshold
            session.flush()
            return row

        return self.store.run_in_transaction(body, label="set_threshold")

    def remove_stock_row(self, actor: Actor, item_id: int, location_id: int) -> None:
        def body(session):
            item = catalog_service.resolve_item(session, actor.account_id, item_id)
            location = catalog_service.resolve_location(session, actor.account_id, location_id)
            row = lock_stock_rows(session, item.id, [location.id]).get(location.id)
            if row is None:
                raise NotFound(
                    "Inventory item at that location not found.",
                    item_id=item.id,
                    location_id=location.id,
                )
            _check_row_owner(row, actor)
            if row.quantity != 0:
                raise ValidationFailed(
                    "Only empty stock rows can be removed; consume or transfer the remaining stock first.",
                    item_id=item.id,
                    location_id=location.id,
                    current=row.quantity,
                )
            session.delete(row)
            session.flush()

        self.store.run_in_transaction(body, label="remove_stock_row")

    # ------------------------------------------------------------------
    # batch
    # ------------------------------------------------------------------
    def batch_apply(
        self,
        actor: Actor,
        policy: DestinationPolicy,
        lines: Sequence[BatchLine],
        *,
        location_id: Optional[int] = None,
        cause_type: Optional[str] = None,
        cause_id: Optional[str] = None,
    ) -> BatchResult:
        """Apply every line in one transaction; the first failing line aborts the batch."""
        policy = DestinationPolicy(policy)
        if not lines:
            raise ValidationFailed("A batch needs at least one line.")
        if policy != DestinationPolicy.COMMON_AREA and location_id is None:
            raise ValidationFailed("location_id is required for the {} policy.".format(policy.value))
        for index, line in enumerate(lines):
            try:
                _require_quantity(line.quantity)
                if not line.is_new and line.item_id is None:
                    raise ValidationFailed("item_id is required unless the line is new.")
            except LedgerError as exc:
                raise exc.with_context(line=index, item_id=line.item_id, item_name=line.name)

        batch_id = str(uuid.uuid4())

        def body(session):
            target_id = location_id
            if policy == DestinationPolicy.COMMON_AREA:
                target_id = catalog_service.get_default_location(session, actor.account_id).id
            results = []
            for index, line in enumerate(lines):
                try:
                    item_id = self._resolve_line_item(session, actor, line)
                    results.append(
                        self._apply_line(
                            session,
                            actor,
                            policy,
                            item_id,
                            target_id,
                            line.quantity,
                            cause_type=cause_type,
                            cause_id=cause_id,
                            batch_id=batch_id,
                        )
                    )
                except LedgerError as exc:
                    raise exc.with_context(
                        line=index,
                        item_id=line.item_id,
                        item_name=line.name,
                        location_id=target_id,
                    )
            return results

        results = self.store.run_in_transaction(body, label="batch")
        logger.info(
            "Committed batch %s (%s, %d line(s)) for account %s.",
            batch_id,
            policy.value,
            len(results),
            actor.account_id,
            extra={"account_id": actor.account_id, "actor_id": actor.identity, "batch_id": batch_id},
        )
        return BatchResult(batch_id=batch_id, results=results)

    @staticmethod
    def _resolve_line_item(session, actor, line: BatchLine) -> int:
        if not line.is_new:
            return line.item_id
        item = catalog_service.ensure_item(
            session,
            actor.account_id,
            name=line.name,
            scan_code=line.scan_code,
            unit=line.unit,
            cost_per_unit=line.cost_per_unit,
            category_id=line.category_id,
            supplier_id=line.supplier_id,
        )
        return item.id

    def _apply_line(self, session, actor, policy, item_id, target_id, quantity, **kwargs) -> MovementResult:
        if policy in (DestinationPolicy.COMMON_AREA, DestinationPolicy.LOCATION):
            return self._receive(session, actor, item_id, target_id, quantity, **kwargs)
        if policy == DestinationPolicy.TRANSFER:
            return self._assign(session, actor, item_id, target_id, quantity, **kwargs)
        return self._consume(session, actor, item_id, target_id, quantity, **kwargs)

    @staticmethod
    def _log_committed(actor: Actor, result: MovementResult) -> None:
        entry = result.entry
        if entry is None:
            return
        logger.info(
            "Committed %s of item %s (%s%d) for account %s.",
            entry.kind.value,
            entry.item_id,
            "-" if entry.direction == Direction.DECREASE else "+",
            entry.quantity,
            actor.account_id,
            extra=movement_context(entry),
        )


__all__ = [
    "BatchLine",
    "BatchResult",
    "MovementEngine",
    "MovementResult",
    "accumulate",
    "lock_stock_rows",
]
