from pydantic import BaseModel, Field
from typing import Optional, List

from .purchase_order import SupplierRef


class DraftLine(BaseModel):
    """
    A proposed order line.  quantity and unit_price are suggestions the
    operator may change before the draft is committed.
    """
    product_id: str
    product_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price: float = 0.0

    # Planning context (informational, not persisted on the order)
    current_stock: Optional[int] = None
    low_stock_threshold: Optional[int] = None
    reorder_point: Optional[int] = None


class OrderDraft(BaseModel):
    """Input for order creation, produced by the planner or by hand."""
    supplier: Optional[SupplierRef] = None
    lines: List[DraftLine] = Field(default_factory=list)
    notes: Optional[str] = None
    expected_delivery_date: Optional[str] = None   # YYYY-MM-DD


class OrderPatch(BaseModel):
    """
    Partial update for a pending order.  Only fields that were explicitly
    set are applied (see model_fields_set).
    """
    supplier: Optional[SupplierRef] = None
    lines: Optional[List[DraftLine]] = None
    notes: Optional[str] = None
    expected_delivery_date: Optional[str] = None
