from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class StockRowRead(BaseModel):
    item_id: int
    item_name: str
    unit: str
    scan_code: Optional[str]
    cost_per_unit: Decimal
    category_name: Optional[str]
    location_id: int
    location_name: str
    is_default_location: bool
    quantity: int
    low_stock_threshold: Optional[int]
    updated_at: Optional[datetime]


class SupplierContact(BaseModel):
    name: str
    contact_name: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    website: Optional[str]


class BelowThresholdRead(StockRowRead):
    supplier: Optional[SupplierContact]


class LocationQuantity(BaseModel):
    location_id: int
    location_name: str
    quantity: int


class ItemTotalRead(BaseModel):
    item_id: int
    item_name: str
    total: int
    locations: List[LocationQuantity]


class ThresholdUpdate(BaseModel):
    low_stock_threshold: Optional[int] = Field(None, ge=0)
