from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from supply_ledger.core.constants import DestinationPolicy
from supply_ledger.schemas.log import MovementEntryRead


class CauseFields(BaseModel):
    cause_type: Optional[str] = Field(None, max_length=40)
    cause_id: Optional[str] = Field(None, max_length=64)


class ReceiveRequest(CauseFields):
    item_id: int
    location_id: int
    quantity: int = Field(gt=0)
    unit_cost: Optional[Decimal] = Field(None, ge=0)


class ConsumeRequest(CauseFields):
    item_id: int
    location_id: int
    quantity: int = Field(gt=0)


class TransferRequest(CauseFields):
    item_id: int
    source_location_id: int
    destination_location_id: int
    quantity: int = Field(gt=0)


class AssignRequest(CauseFields):
    item_id: int
    sub_location_id: int
    quantity: int = Field(gt=0)


class CorrectRequest(BaseModel):
    item_id: int
    location_id: int
    new_quantity: int = Field(ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    note: Optional[str] = Field(None, max_length=500)


class BatchLineRequest(BaseModel):
    quantity: int = Field(gt=0)
    item_id: Optional[int] = None
    is_new: bool = False
    name: Optional[str] = None
    scan_code: Optional[str] = None
    unit: Optional[str] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    category_id: Optional[int] = None
    supplier_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_reference(self):
        if self.is_new and not (self.name or "").strip():
            raise ValueError("name is required for new items")
        if not self.is_new and self.item_id is None:
            raise ValueError("item_id is required unless is_new is set")
        return self


class BatchRequest(CauseFields):
    destination: DestinationPolicy
    location_id: Optional[int] = None
    lines: List[BatchLineRequest] = Field(min_length=1)


class MovementResponse(BaseModel):
    entry: Optional[MovementEntryRead]
    quantities: dict[int, int]


class BatchResponse(BaseModel):
    batch_id: str
    entries: List[MovementEntryRead]
