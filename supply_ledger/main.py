import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from supply_ledger.config import Settings, get_settings
from supply_ledger.core.errors import DuplicateIdentifier, Internal, LedgerError, ValidationFailed
from supply_ledger.core.logging import setup_logging
from supply_ledger.core.retry import is_unique_violation
from supply_ledger.database.store import DurableStore, create_store
from supply_ledger.routers import (
    catalog_router,
    health_router,
    inventory_router,
    logs_router,
    low_stock_router,
)
from supply_ledger.services.movement_service import MovementEngine

logger = logging.getLogger(__name__)


def _attach_store(app: FastAPI, store: DurableStore, settings: Settings) -> None:
    app.state.store = store
    app.state.engine = MovementEngine(store, settings)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerError)
    async def ledger_error_handler(_request: Request, exc: LedgerError):
        if exc.status_code >= 500:
            logger.warning("%s: %s", exc.code, exc.message, extra={"error_code": exc.code})
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        error = ValidationFailed("Request validation failed.", errors=errors)
        return JSONResponse(error.to_payload(), status_code=error.status_code)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(_request: Request, exc: IntegrityError):
        logger.warning("Integrity violation reached the API boundary: %s", exc.orig)
        if is_unique_violation(exc):
            error = DuplicateIdentifier("The record conflicts with an existing one.")
        else:
            error = ValidationFailed("The change violates a ledger constraint.")
        return JSONResponse(error.to_payload(), status_code=error.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_request: Request, exc: Exception):
        correlation_id = uuid.uuid4().hex
        logger.error(
            "Unhandled error %s",
            correlation_id,
            exc_info=exc,
            extra={"correlation_id": correlation_id, "error_code": Internal.code},
        )
        error = Internal("An internal error occurred.", correlation_id=correlation_id)
        return JSONResponse(error.to_payload(), status_code=error.status_code)


def create_app(settings: Optional[Settings] = None, store: Optional[DurableStore] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "store", None) is None
        if owned:
            _attach_store(app, create_store(settings), settings)
        app.state.store.create_schema()
        try:
            yield
        finally:
            if owned:
                app.state.store.dispose()
                app.state.store = None

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = None
    if store is not None:
        _attach_store(app, store, settings)

    _register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(inventory_router)
    app.include_router(low_stock_router)
    app.include_router(logs_router)
    app.include_router(catalog_router)
    return app


setup_logging()
app = create_app()


__all__ = ["app", "create_app"]
