from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from supply_ledger.config import Settings
from supply_ledger.core.security import Actor
from supply_ledger.database.store import DurableStore
from supply_ledger.dependencies import get_engine, get_settings_dep, get_store, require_actor
from supply_ledger.schemas.stock import BelowThresholdRead, StockRowRead, ThresholdUpdate
from supply_ledger.services import query_service
from supply_ledger.services.alert_service import notify_low_stock
from supply_ledger.services.movement_service import MovementEngine

router = APIRouter(prefix="/low-stock", tags=["Low stock"])


@router.get("/below-threshold", response_model=List[BelowThresholdRead])
def get_below_threshold(
    location_id: Optional[int] = Query(None),
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        return query_service.below_threshold(session, actor.account_id, location_id=location_id)


@router.get("/all", response_model=List[StockRowRead])
def get_all_thresholds(
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        return query_service.list_thresholds(session, actor.account_id)


@router.patch("/{item_id}/location/{location_id}")
def update_threshold(
    item_id: int,
    location_id: int,
    payload: ThresholdUpdate,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
):
    row = engine.set_threshold(actor, item_id, location_id, payload.low_stock_threshold)
    return {
        "item_id": row.item_id,
        "location_id": row.location_id,
        "quantity": row.quantity,
        "low_stock_threshold": row.low_stock_threshold,
    }


@router.post("/alerts/run")
def run_low_stock_alerts(
    send_notifications: bool = Query(True, description="Send WhatsApp notifications"),
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    stats = notify_low_stock(
        store,
        settings,
        actor.account_id,
        send_notifications=send_notifications,
    )
    return {"status": "completed", "stats": stats}


__all__ = ["router"]
