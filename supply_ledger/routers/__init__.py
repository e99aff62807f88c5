from supply_ledger.routers.catalog import router as catalog_router
from supply_ledger.routers.health import router as health_router
from supply_ledger.routers.inventory import router as inventory_router
from supply_ledger.routers.logs import router as logs_router
from supply_ledger.routers.low_stock import router as low_stock_router

__all__ = [
    "catalog_router",
    "health_router",
    "inventory_router",
    "logs_router",
    "low_stock_router",
]
