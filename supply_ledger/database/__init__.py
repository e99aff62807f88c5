from supply_ledger.database.base import Base
from supply_ledger.database.engine import build_engine
from supply_ledger.database.store import DurableStore, create_store

__all__ = ["Base", "DurableStore", "build_engine", "create_store"]
