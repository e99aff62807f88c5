"""Catalog lookups and the minimal catalog writes the ledger depends on."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supply_ledger.core.errors import CrossAccountReference, DuplicateIdentifier, NotFound, ValidationFailed
from supply_ledger.models.account import Account
from supply_ledger.models.catalog import Category, Item, Location, Supplier
from supply_ledger.models.stock import StockRow

logger = logging.getLogger(__name__)


def _owned(row, account_id: int, label: str, row_id):
    if row is None:
        raise NotFound("{} {} not found.".format(label, row_id), **{"{}_id".format(label.lower()): row_id})
    if row.account_id != account_id:
        raise CrossAccountReference(
            "{} {} does not belong to this account.".format(label, row_id),
            **{"{}_id".format(label.lower()): row_id},
        )
    return row


def _clean_name(value: Optional[str], label: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationFailed("{} name is required.".format(label))
    return name


def _clean_scan_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def normalize_cost(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        cost = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationFailed("cost_per_unit must be a number.", cost_per_unit=str(value)) from exc
    if not cost.is_finite() or cost < 0:
        raise ValidationFailed("cost_per_unit must be non-negative.", cost_per_unit=str(value))
    return cost


def setup_account(session: Session, name: str, *, default_location_name: str) -> Account:
    account = Account(name=_clean_name(name, "Account"))
    session.add(account)
    session.flush()
    session.add(
        Location(
            account_id=account.id,
            name=default_location_name,
            is_protected_default=True,
        )
    )
    session.flush()
    logger.info("Account %s created with default location %r.", account.id, default_location_name)
    return account


def get_default_location(session: Session, account_id: int) -> Location:
    location = session.execute(
        select(Location).where(
            Location.account_id == account_id,
            Location.is_protected_default.is_(True),
        )
    ).scalars().first()
    if location is None:
        raise NotFound("Default location not found for this account.", account_id=account_id)
    return location


def resolve_item(session: Session, account_id: int, item_id: int) -> Item:
    return _owned(session.get(Item, item_id), account_id, "Item", item_id)


def resolve_location(session: Session, account_id: int, location_id: int) -> Location:
    return _owned(session.get(Location, location_id), account_id, "Location", location_id)


def find_item_by_name(session: Session, account_id: int, name: str) -> Optional[Item]:
    return session.execute(
        select(Item)
        .where(
            Item.account_id == account_id,
            func.lower(Item.name) == name.strip().lower(),
        )
        .order_by(Item.id)
    ).scalars().first()


def find_item_by_scan_code(session: Session, account_id: int, scan_code: str) -> Optional[Item]:
    return session.execute(
        select(Item).where(Item.account_id == account_id, Item.scan_code == scan_code)
    ).scalars().first()


def _check_scan_code_free(session: Session, account_id: int, scan_code: Optional[str], item_id=None) -> None:
    if not scan_code:
        return
    holder = find_item_by_scan_code(session, account_id, scan_code)
    if holder is not None and holder.id != item_id:
        raise DuplicateIdentifier(
            'Scan code "{}" is already used by item "{}".'.format(scan_code, holder.name),
            scan_code=scan_code,
            item_id=holder.id,
        )


def create_item(
    session: Session,
    account_id: int,
    *,
    name: str,
    unit: Optional[str] = None,
    cost_per_unit=None,
    scan_code: Optional[str] = None,
    category_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
) -> Item:
    name = _clean_name(name, "Item")
    scan_code = _clean_scan_code(scan_code)
    _check_scan_code_free(session, account_id, scan_code)
    if category_id is not None:
        _owned(session.get(Category, category_id), account_id, "Category", category_id)
    if supplier_id is not None:
        _owned(session.get(Supplier, supplier_id), account_id, "Supplier", supplier_id)

    item = Item(
        account_id=account_id,
        name=name,
        unit=(unit or "").strip() or "piece(s)",
        cost_per_unit=normalize_cost(cost_per_unit),
        scan_code=scan_code,
        category_id=category_id,
        supplier_id=supplier_id,
    )
    session.add(item)
    session.flush()
    return item


def ensure_item(session: Session, account_id: int, **fields) -> Item:
    """Return the item matching ``name`` case-insensitively, creating it if missing."""
    name = _clean_name(fields.get("name"), "Item")
    scan_code = _clean_scan_code(fields.get("scan_code"))
    existing = find_item_by_name(session, account_id, name)
    if existing is not None:
        _check_scan_code_free(session, account_id, scan_code, item_id=existing.id)
        return existing
    fields["name"] = name
    return create_item(session, account_id, **fields)


def update_item_cost(session: Session, account_id: int, item_id: int, cost_per_unit) -> Item:
    item = resolve_item(session, account_id, item_id)
    item.cost_per_unit = normalize_cost(cost_per_unit)
    session.flush()
    return item


def create_location(session: Session, account_id: int, name: str) -> Location:
    name = _clean_name(name, "Location")
    clash = session.execute(
        select(Location.id).where(Location.account_id == account_id, Location.name == name)
    ).first()
    if clash:
        raise DuplicateIdentifier('Location "{}" already exists.'.format(name), name=name)
    location = Location(account_id=account_id, name=name, is_protected_default=False)
    session.add(location)
    session.flush()
    return location


def _lock_stock_rows(session: Session, *criteria) -> int:
    """Lock the matching stock rows and return the quantity they hold."""
    rows = session.execute(
        select(StockRow.id, StockRow.quantity).where(*criteria).with_for_update()
    ).all()
    return sum(int(row.quantity) for row in rows)


def _delete_empty_rows(session: Session, *criteria, **context) -> None:
    session.execute(delete(StockRow).where(*criteria, StockRow.quantity == 0))
    remaining = session.execute(
        select(func.coalesce(func.sum(StockRow.quantity), 0)).where(*criteria)
    ).scalar_one()
    if remaining:
        raise ValidationFailed(
            "Stock arrived while deleting. Move or consume it before deleting.",
            quantity=int(remaining),
            **context,
        )


def _flush_catalog_delete(session: Session, **context) -> None:
    try:
        session.flush()
    except IntegrityError as exc:
        raise ValidationFailed(
            "Stock arrived while deleting. Move or consume it before deleting.",
            **context,
        ) from exc


def delete_location(session: Session, account_id: int, location_id: int) -> None:
    location = resolve_location(session, account_id, location_id)
    if location.is_protected_default:
        raise ValidationFailed(
            "This location is protected and cannot be deleted.",
            location_id=location_id,
        )
    held = _lock_stock_rows(session, StockRow.location_id == location_id)
    if held:
        raise ValidationFailed(
            "This location still holds stock. Move or consume it before deleting.",
            location_id=location_id,
            quantity=held,
        )
    _delete_empty_rows(session, StockRow.location_id == location_id, location_id=location_id)
    session.delete(location)
    _flush_catalog_delete(session, location_id=location_id)


def delete_item(session: Session, account_id: int, item_id: int) -> None:
    item = resolve_item(session, account_id, item_id)
    held = _lock_stock_rows(session, StockRow.item_id == item_id)
    if held:
        raise ValidationFailed(
            "This item still has stock on hand and cannot be deleted.",
            item_id=item_id,
            quantity=held,
        )
    _delete_empty_rows(session, StockRow.item_id == item_id, item_id=item_id)
    session.delete(item)
    _flush_catalog_delete(session, item_id=item_id)


def list_locations(session: Session, account_id: int) -> list[Location]:
    return list(
        session.execute(
            select(Location).where(Location.account_id == account_id).order_by(Location.id)
        ).scalars()
    )


def list_items(session: Session, account_id: int) -> list[Item]:
    return list(
        session.execute(
            select(Item).where(Item.account_id == account_id).order_by(Item.name)
        ).scalars()
    )


def create_supplier(session: Session, account_id: int, *, name: str, **contact) -> Supplier:
    supplier = Supplier(account_id=account_id, name=_clean_name(name, "Supplier"), **contact)
    session.add(supplier)
    session.flush()
    return supplier


def create_category(session: Session, account_id: int, name: str) -> Category:
    category = Category(account_id=account_id, name=_clean_name(name, "Category"))
    session.add(category)
    session.flush()
    return category
