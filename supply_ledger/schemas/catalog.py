from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LocationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)


class LocationRead(BaseModel):
    id: int
    name: str
    is_protected_default: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    unit: Optional[str] = Field(None, max_length=40)
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    scan_code: Optional[str] = Field(None, max_length=64)
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None


class ItemRead(BaseModel):
    id: int
    name: str
    unit: str
    cost_per_unit: Decimal
    scan_code: Optional[str]
    category_id: Optional[int]
    supplier_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class ItemCostUpdate(BaseModel):
    cost_per_unit: Decimal = Field(ge=0)
