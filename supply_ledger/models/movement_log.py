from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    event,
)

from supply_ledger.core.constants import Direction, MovementKind
from supply_ledger.database.base import Base


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class MovementLogEntry(Base):
    """Append-only record of one committed movement.

    Item and location ids are soft references: catalog rows may disappear,
    history does not.
    """

    __tablename__ = "movement_log"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    actor_id = Column(String(120), nullable=False)

    kind = Column(
        SAEnum(
            MovementKind,
            name="movement_kind_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    direction = Column(
        SAEnum(
            Direction,
            name="movement_direction_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    item_id = Column(Integer, nullable=False)
    item_name = Column(String(200), nullable=False)
    source_location_id = Column(Integer)
    location_id = Column(Integer, nullable=False)

    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(12, 4), nullable=False)
    total_cost = Column(Numeric(14, 4), nullable=False)

    cause_type = Column(String(40))
    cause_id = Column(String(64))
    batch_id = Column(String(36))
    note = Column(String(500))

    occurred_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movement_log_quantity_positive"),
        Index("idx_movement_log_account_time", "account_id", "occurred_at"),
        Index("idx_movement_log_item_location", "item_id", "location_id"),
        Index("idx_movement_log_batch", "batch_id"),
    )

    @property
    def signed_delta(self) -> int:
        if self.direction == Direction.DECREASE:
            return -self.quantity
        return self.quantity


@event.listens_for(MovementLogEntry, "before_update")
def _reject_update(_mapper, _connection, target):
    raise RuntimeError("movement_log rows are append-only (id={})".format(target.id))


@event.listens_for(MovementLogEntry, "before_delete")
def _reject_delete(_mapper, _connection, target):
    raise RuntimeError("movement_log rows are append-only (id={})".format(target.id))


__all__ = ["MovementLogEntry"]
