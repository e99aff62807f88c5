from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String

from supply_ledger.database.base import Base


class LowStockAlert(Base):
    __tablename__ = "low_stock_alerts"

    id = Column(Integer, primary_key=True)
    alert_date = Column(Date, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)

    item_id = Column(Integer, nullable=False)
    location_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    threshold = Column(Integer, nullable=False)

    phone_number = Column(String, nullable=False)
    message = Column(String, nullable=False)
    delivered = Column(Boolean, nullable=False)
    failure_reason = Column(String)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index(
            "idx_low_stock_alert_dedup",
            "alert_date",
            "item_id",
            "location_id",
            "phone_number",
            unique=True,
        ),
    )


__all__ = ["LowStockAlert"]
