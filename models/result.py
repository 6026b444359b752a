from pydantic import BaseModel, Field
from typing import List

from .draft import OrderDraft
from .purchase_order import PurchaseOrder


class Discrepancy(BaseModel):
    """Mismatch between ordered and received quantity on one order line."""
    line_id: str
    product_id: str
    product_name: str
    ordered: int
    received: int
    difference: int                     # received - ordered

    def describe(self) -> str:
        sign = "+" if self.difference > 0 else ""
        return (
            f"{self.product_name}: Pedido {self.ordered}, "
            f"Recibido {self.received} ({sign}{self.difference})"
        )


class StockDelta(BaseModel):
    """An additive stock change sent to the stock gateway."""
    product_id: str
    delta: int


class ReceptionResult(BaseModel):
    """
    Outcome of receiving an order.
    order is the updated copy; the caller persists it.
    """
    order: PurchaseOrder
    final_status: str
    applied_deltas: List[StockDelta] = Field(default_factory=list)
    discrepancies: List[Discrepancy] = Field(default_factory=list)

    @property
    def requires_attention(self) -> bool:
        return bool(self.discrepancies)


class GenerationResult(BaseModel):
    """
    Outcome of auto-generating orders from low stock.
    skipped holds drafts whose registered supplier is not active; they are
    left for the operator instead of being persisted.
    """
    orders: List[PurchaseOrder] = Field(default_factory=list)
    skipped: List[OrderDraft] = Field(default_factory=list)
