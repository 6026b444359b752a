from .errors import (
    ProcurementError, ValidationError, InvalidStateError, OrderNotFoundError,
    UpstreamFailure, ConcurrencyConflict,
)
from .planner import ReplenishmentPlanner, suggest_quantity
from .reconciler import ReceptionReconciler
from .lifecycle import OrderLifecycleManager
from .database import Database
from .catalog import CsvCatalog
from .service import ProcurementService

__all__ = [
    "ProcurementError", "ValidationError", "InvalidStateError", "OrderNotFoundError",
    "UpstreamFailure", "ConcurrencyConflict",
    "ReplenishmentPlanner", "suggest_quantity", "ReceptionReconciler",
    "OrderLifecycleManager", "Database", "CsvCatalog", "ProcurementService",
]
