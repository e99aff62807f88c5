from supply_ledger.services.alert_service import notify_low_stock
from supply_ledger.services.movement_service import BatchLine, BatchResult, MovementEngine, MovementResult

__all__ = [
    "BatchLine",
    "BatchResult",
    "MovementEngine",
    "MovementResult",
    "notify_low_stock",
]
