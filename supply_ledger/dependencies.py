from typing import Optional

from fastapi import Depends, Header, Request

from supply_ledger.config import Settings
from supply_ledger.core.security import Actor, authenticate_actor
from supply_ledger.database.store import DurableStore
from supply_ledger.services.movement_service import MovementEngine


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> DurableStore:
    return request.app.state.store


def get_engine(request: Request) -> MovementEngine:
    return request.app.state.engine


def require_actor(
    request: Request,
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings_dep),
) -> Actor:
    cookie_token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    return authenticate_actor(authorization, cookie_token, settings)


__all__ = ["get_engine", "get_settings_dep", "get_store", "require_actor"]
