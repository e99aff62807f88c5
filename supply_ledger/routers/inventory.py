from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response

from supply_ledger.config import Settings
from supply_ledger.core.security import Actor
from supply_ledger.database.store import DurableStore
from supply_ledger.dependencies import get_engine, get_settings_dep, get_store, require_actor
from supply_ledger.schemas.log import MovementEntryRead
from supply_ledger.schemas.movement import (
    AssignRequest,
    BatchRequest,
    BatchResponse,
    ConsumeRequest,
    CorrectRequest,
    MovementResponse,
    ReceiveRequest,
    TransferRequest,
)
from supply_ledger.schemas.stock import ItemTotalRead, StockRowRead
from supply_ledger.services import query_service
from supply_ledger.services.alert_service import notify_low_stock
from supply_ledger.services.movement_service import BatchLine, MovementEngine, MovementResult

router = APIRouter(prefix="/inventory", tags=["Inventory"])


def _respond(result: MovementResult) -> MovementResponse:
    entry = MovementEntryRead.model_validate(result.entry) if result.entry is not None else None
    return MovementResponse(entry=entry, quantities=result.quantities)


def _schedule_alerts(background: BackgroundTasks, store, settings, actor: Actor, keys) -> None:
    if settings.alert_phones():
        background.add_task(notify_low_stock, store, settings, actor.account_id, keys)


@router.post("/receive", response_model=MovementResponse)
def receive_stock(
    payload: ReceiveRequest,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
):
    result = engine.receive(
        actor,
        payload.item_id,
        payload.location_id,
        payload.quantity,
        unit_cost=payload.unit_cost,
        cause_type=payload.cause_type,
        cause_id=payload.cause_id,
    )
    return _respond(result)


@router.post("/consume", response_model=MovementResponse)
def consume_stock(
    payload: ConsumeRequest,
    background: BackgroundTasks,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
    store: DurableStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    result = engine.consume(
        actor,
        payload.item_id,
        payload.location_id,
        payload.quantity,
        cause_type=payload.cause_type,
        cause_id=payload.cause_id,
    )
    _schedule_alerts(background, store, settings, actor, result.keys)
    return _respond(result)


@router.post("/transfer", response_model=MovementResponse)
def transfer_stock(
    payload: TransferRequest,
    background: BackgroundTasks,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
    store: DurableStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    result = engine.transfer(
        actor,
        payload.item_id,
        payload.source_location_id,
        payload.destination_location_id,
        payload.quantity,
        cause_type=payload.cause_type,
        cause_id=payload.cause_id,
    )
    _schedule_alerts(background, store, settings, actor, result.keys)
    return _respond(result)


@router.post("/assign", response_model=MovementResponse)
def assign_stock(
    payload: AssignRequest,
    background: BackgroundTasks,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
    store: DurableStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    result = engine.assign_to_sub_location(
        actor,
        payload.item_id,
        payload.sub_location_id,
        payload.quantity,
        cause_type=payload.cause_type,
        cause_id=payload.cause_id,
    )
    _schedule_alerts(background, store, settings, actor, result.keys)
    return _respond(result)


@router.post("/correct", response_model=MovementResponse)
def correct_stock(
    payload: CorrectRequest,
    background: BackgroundTasks,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
    store: DurableStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    result = engine.correct(
        actor,
        payload.item_id,
        payload.location_id,
        payload.new_quantity,
        low_stock_threshold=payload.low_stock_threshold,
        note=payload.note,
    )
    _schedule_alerts(background, store, settings, actor, result.keys)
    return _respond(result)


@router.post("/batch", response_model=BatchResponse)
def apply_batch(
    payload: BatchRequest,
    background: BackgroundTasks,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
    store: DurableStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    lines = [BatchLine(**line.model_dump()) for line in payload.lines]
    result = engine.batch_apply(
        actor,
        payload.destination,
        lines,
        location_id=payload.location_id,
        cause_type=payload.cause_type,
        cause_id=payload.cause_id,
    )
    _schedule_alerts(background, store, settings, actor, result.keys)
    return BatchResponse(
        batch_id=result.batch_id,
        entries=[MovementEntryRead.model_validate(item.entry) for item in result.results],
    )


@router.get("", response_model=List[StockRowRead])
def list_inventory(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    locations: Optional[List[str]] = Query(None),
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        return query_service.list_stock(
            session,
            actor.account_id,
            search=search,
            category=category,
            locations=locations,
        )


@router.get("/items/{item_id}/total", response_model=ItemTotalRead)
def get_item_total(
    item_id: int,
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        return query_service.item_total(session, actor.account_id, item_id)


@router.delete("/{item_id}/location/{location_id}", status_code=204)
def remove_stock_row(
    item_id: int,
    location_id: int,
    actor: Actor = Depends(require_actor),
    engine: MovementEngine = Depends(get_engine),
):
    engine.remove_stock_row(actor, item_id, location_id)
    return Response(status_code=204)


__all__ = ["router"]
