from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from supply_ledger.core.constants import Direction, MovementKind


class MovementEntryRead(BaseModel):
    id: int
    actor_id: str
    kind: MovementKind
    direction: Direction
    item_id: int
    item_name: str
    source_location_id: Optional[int]
    location_id: int
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    cause_type: Optional[str]
    cause_id: Optional[str]
    batch_id: Optional[str]
    note: Optional[str]
    occurred_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MovementSummaryRead(BaseModel):
    item_id: int
    item_name: str
    location_id: int
    direction: Direction
    movements: int
    quantity: int
    total_cost: Decimal
