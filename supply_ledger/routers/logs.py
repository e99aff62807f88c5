from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from supply_ledger.core.constants import DEFAULT_LOG_PAGE_SIZE, MAX_LOG_PAGE_SIZE
from supply_ledger.core.security import Actor
from supply_ledger.database.store import DurableStore
from supply_ledger.dependencies import get_store, require_actor
from supply_ledger.schemas.log import MovementEntryRead, MovementSummaryRead
from supply_ledger.services import audit_service

router = APIRouter(prefix="/logs", tags=["Logs"])


@router.get("", response_model=List[MovementEntryRead])
def list_logs(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    item_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    limit: int = Query(DEFAULT_LOG_PAGE_SIZE, ge=1, le=MAX_LOG_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        entries = audit_service.list_entries(
            session,
            actor.account_id,
            start=start,
            end=end,
            item_id=item_id,
            location_id=location_id,
            limit=limit,
            offset=offset,
        )
        return [MovementEntryRead.model_validate(entry) for entry in entries]


@router.get("/summary", response_model=List[MovementSummaryRead])
def summarize_logs(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        return audit_service.aggregate_by_item_and_location(
            session,
            actor.account_id,
            start=start,
            end=end,
        )


__all__ = ["router"]
