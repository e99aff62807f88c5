from typing import List

from fastapi import APIRouter, Depends, Response

from supply_ledger.core.errors import NotFound
from supply_ledger.core.security import Actor
from supply_ledger.database.store import DurableStore
from supply_ledger.dependencies import get_store, require_actor
from supply_ledger.schemas.catalog import ItemCostUpdate, ItemCreate, ItemRead, LocationCreate, LocationRead
from supply_ledger.services import catalog_service

router = APIRouter(tags=["Catalog"])


@router.get("/locations", response_model=List[LocationRead])
def list_locations(
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        return [
            LocationRead.model_validate(location)
            for location in catalog_service.list_locations(session, actor.account_id)
        ]


@router.post("/locations", response_model=LocationRead, status_code=201)
def create_location(
    payload: LocationCreate,
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    location = store.run_in_transaction(
        lambda session: catalog_service.create_location(session, actor.account_id, payload.name),
        label="create_location",
    )
    return LocationRead.model_validate(location)


@router.delete("/locations/{location_id}", status_code=204)
def delete_location(
    location_id: int,
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    store.run_in_transaction(
        lambda session: catalog_service.delete_location(session, actor.account_id, location_id),
        label="delete_location",
    )
    return Response(status_code=204)


@router.get("/items", response_model=List[ItemRead])
def list_items(
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        return [ItemRead.model_validate(item) for item in catalog_service.list_items(session, actor.account_id)]


@router.post("/items", response_model=ItemRead, status_code=201)
def create_item(
    payload: ItemCreate,
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    item = store.run_in_transaction(
        lambda session: catalog_service.create_item(session, actor.account_id, **payload.model_dump()),
        label="create_item",
    )
    return ItemRead.model_validate(item)


@router.get("/items/scan/{scan_code}", response_model=ItemRead)
def get_item_by_scan_code(
    scan_code: str,
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    with store.read_session() as session:
        item = catalog_service.find_item_by_scan_code(session, actor.account_id, scan_code.strip())
        if item is None:
            raise NotFound("No item found with that scan code.", scan_code=scan_code)
        return ItemRead.model_validate(item)


@router.patch("/items/{item_id}/cost", response_model=ItemRead)
def update_item_cost(
    item_id: int,
    payload: ItemCostUpdate,
    actor: Actor = Depends(require_actor),
    store: DurableStore = Depends(get_store),
):
    item = store.run_in_transaction(
        lambda session: catalog_service.update_item_cost(
            session, actor.account_id, item_id, payload.cost_per_unit
        ),
        label="update_item_cost",
    )
    return ItemRead.model_validate(item)


__all__ = ["router"]
