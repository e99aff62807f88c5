from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, UniqueConstraint

from supply_ledger.database.base import Base


class StockRow(Base):
    """Current quantity of one item at one location."""

    __tablename__ = "stock_rows"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)

    quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("item_id", "location_id", name="uq_stock_rows_item_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_rows_quantity_non_negative"),
        CheckConstraint(
            "low_stock_threshold IS NULL OR low_stock_threshold >= 0",
            name="ck_stock_rows_threshold_non_negative",
        ),
        Index("idx_stock_rows_account_location", "account_id", "location_id"),
    )

    @property
    def key(self) -> tuple[int, int]:
        return (self.item_id, self.location_id)

    @property
    def is_below_threshold(self) -> bool:
        return self.low_stock_threshold is not None and self.quantity <= self.low_stock_threshold


__all__ = ["StockRow"]
