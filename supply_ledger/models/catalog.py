from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from supply_ledger.database.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(120), nullable=False)
    is_protected_default = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_locations_account_name"),
        Index("idx_locations_account", "account_id"),
    )


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(120), nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_categories_account_name"),
    )


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(120), nullable=False)
    contact_name = Column(String(120))
    email = Column(String(255))
    phone = Column(String(40))
    website = Column(String(255))


class Item(Base):
    __tablename__ = "items"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(200), nullable=False)
    unit = Column(String(40), nullable=False, default="piece(s)")
    cost_per_unit = Column(Numeric(12, 4), nullable=False, default=0)
    scan_code = Column(String(64))

    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"))
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    category = relationship("Category", lazy="joined")
    supplier = relationship("Supplier", lazy="joined")

    __table_args__ = (
        UniqueConstraint("account_id", "scan_code", name="uq_items_account_scan_code"),
        CheckConstraint("cost_per_unit >= 0", name="ck_items_cost_non_negative"),
        Index("idx_items_account_name", "account_id", "name"),
    )


__all__ = ["Category", "Item", "Location", "Supplier"]
