import importlib

from supply_ledger.models.account import Account
from supply_ledger.models.alert import LowStockAlert
from supply_ledger.models.catalog import Category, Item, Location, Supplier
from supply_ledger.models.movement_log import MovementLogEntry
from supply_ledger.models.stock import StockRow


def import_all_models() -> None:
    for module_name in (
        "supply_ledger.models.account",
        "supply_ledger.models.alert",
        "supply_ledger.models.catalog",
        "supply_ledger.models.movement_log",
        "supply_ledger.models.stock",
    ):
        importlib.import_module(module_name)


__all__ = [
    "Account",
    "Category",
    "Item",
    "Location",
    "LowStockAlert",
    "MovementLogEntry",
    "StockRow",
    "Supplier",
    "import_all_models",
]
