"""Read-only stock queries; callers pass a session from ``store.read_session()``."""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import func, or_, select, tuple_
from sqlalchemy.orm import Session

from supply_ledger.models.catalog import Category, Item, Location, Supplier
from supply_ledger.models.stock import StockRow
from supply_ledger.services.catalog_service import resolve_item


def _stock_columns():
    return (
        StockRow,
        Item.name.label("item_name"),
        Item.unit.label("unit"),
        Item.scan_code.label("scan_code"),
        Item.cost_per_unit.label("cost_per_unit"),
        Category.name.label("category_name"),
        Location.name.label("location_name"),
        Location.is_protected_default.label("is_default_location"),
    )


def _joined(stmt):
    return (
        stmt.join(Item, Item.id == StockRow.item_id)
        .join(Location, Location.id == StockRow.location_id)
        .outerjoin(Category, Category.id == Item.category_id)
    )


def _stock_row_dict(row) -> dict:
    stock = row.StockRow
    return {
        "item_id": stock.item_id,
        "item_name": row.item_name,
        "unit": row.unit,
        "scan_code": row.scan_code,
        "cost_per_unit": row.cost_per_unit,
        "category_name": row.category_name,
        "location_id": stock.location_id,
        "location_name": row.location_name,
        "is_default_location": bool(row.is_default_location),
        "quantity": stock.quantity,
        "low_stock_threshold": stock.low_stock_threshold,
        "updated_at": stock.updated_at,
    }


def below_threshold(
    session: Session,
    account_id: int,
    location_id: Optional[int] = None,
    keys: Optional[Iterable[tuple[int, int]]] = None,
) -> list[dict]:
    """Rows at or under their threshold, with supplier contact details."""
    stmt = (
        _joined(
            select(
                *_stock_columns(),
                Supplier.name.label("supplier_name"),
                Supplier.contact_name.label("supplier_contact"),
                Supplier.email.label("supplier_email"),
                Supplier.phone.label("supplier_phone"),
                Supplier.website.label("supplier_website"),
            )
        )
        .outerjoin(Supplier, Supplier.id == Item.supplier_id)
        .where(
            StockRow.account_id == account_id,
            StockRow.low_stock_threshold.is_not(None),
            StockRow.quantity <= StockRow.low_stock_threshold,
        )
        .order_by(Location.name, Item.name)
    )
    if location_id is not None:
        stmt = stmt.where(StockRow.location_id == location_id)
    if keys is not None:
        keys = list(keys)
        if not keys:
            return []
        stmt = stmt.where(tuple_(StockRow.item_id, StockRow.location_id).in_(keys))

    rows = []
    for row in session.execute(stmt):
        entry = _stock_row_dict(row)
        entry["supplier"] = {
            "name": row.supplier_name,
            "contact_name": row.supplier_contact,
            "email": row.supplier_email,
            "phone": row.supplier_phone,
            "website": row.supplier_website,
        } if row.supplier_name else None
        rows.append(entry)
    return rows


def item_total(session: Session, account_id: int, item_id: int) -> dict:
    item = resolve_item(session, account_id, item_id)
    stmt = (
        select(StockRow.location_id, Location.name, StockRow.quantity)
        .join(Location, Location.id == StockRow.location_id)
        .where(StockRow.item_id == item.id)
        .order_by(StockRow.location_id)
    )
    locations = [
        {"location_id": row.location_id, "location_name": row.name, "quantity": row.quantity}
        for row in session.execute(stmt)
    ]
    return {
        "item_id": item.id,
        "item_name": item.name,
        "total": sum(entry["quantity"] for entry in locations),
        "locations": locations,
    }


def list_stock(
    session: Session,
    account_id: int,
    search: Optional[str] = None,
    category: Optional[str] = None,
    locations: Optional[Iterable[str]] = None,
) -> list[dict]:
    stmt = _joined(select(*_stock_columns())).where(StockRow.account_id == account_id)

    if search and search.strip():
        pattern = "%{}%".format(search.strip().lower())
        stmt = stmt.where(
            or_(
                func.lower(Item.name).like(pattern),
                func.lower(func.coalesce(Item.scan_code, "")).like(pattern),
            )
        )
    if category and category.strip():
        stmt = stmt.where(func.lower(Category.name) == category.strip().lower())
    if locations:
        names = [name.strip() for name in locations if name and name.strip()]
        if names:
            stmt = stmt.where(Location.name.in_(names))

    stmt = stmt.order_by(Item.name, Location.name)
    return [_stock_row_dict(row) for row in session.execute(stmt)]


def list_thresholds(session: Session, account_id: int) -> list[dict]:
    stmt = (
        _joined(select(*_stock_columns()))
        .where(StockRow.account_id == account_id)
        .order_by(Location.name, Item.name)
    )
    return [_stock_row_dict(row) for row in session.execute(stmt)]


__all__ = ["below_threshold", "item_total", "list_stock", "list_thresholds"]
