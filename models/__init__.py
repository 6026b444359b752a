from .product import Product
from .supplier import Supplier
from .purchase_order import (
    PurchaseOrder, OrderLine, RegisteredSupplier, GenericSupplier, SupplierRef,
    STATUS_PENDING, STATUS_SENT, STATUS_PARTIALLY_RECEIVED, STATUS_RECEIVED,
    STATUS_CANCELLED, ALL_STATUSES, TERMINAL_STATUSES,
)
from .draft import DraftLine, OrderDraft, OrderPatch
from .result import Discrepancy, StockDelta, ReceptionResult, GenerationResult

__all__ = [
    "Product",
    "Supplier",
    "PurchaseOrder", "OrderLine", "RegisteredSupplier", "GenericSupplier", "SupplierRef",
    "STATUS_PENDING", "STATUS_SENT", "STATUS_PARTIALLY_RECEIVED", "STATUS_RECEIVED",
    "STATUS_CANCELLED", "ALL_STATUSES", "TERMINAL_STATUSES",
    "DraftLine", "OrderDraft", "OrderPatch",
    "Discrepancy", "StockDelta", "ReceptionResult", "GenerationResult",
]
