from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from supply_ledger.config import Settings
from supply_ledger.database.store import DurableStore
from supply_ledger.dependencies import get_settings_dep, get_store

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(
    store: DurableStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
):
    database_ok = store.ping()
    payload = {
        "status": "ok" if database_ok else "degraded",
        "app": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "database": "ok" if database_ok else "unavailable",
        "pool": store.pool_status(),
        "time": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(payload, status_code=200 if database_ok else 503)
