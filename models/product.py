from pydantic import BaseModel
from typing import Optional


class Product(BaseModel):
    """
    A catalog product as seen by the replenishment engine.
    Read-only here: stock only changes through the stock gateway.
    """
    id: str
    name: str
    sku: Optional[str] = None
    stock: int = 0
    low_stock_threshold: int = 0
    reorder_point: Optional[int] = None    # target level; None or 0 → 2 × threshold
    purchase_price: float = 0.0
    supplier_id: Optional[str] = None

    @property
    def effective_reorder_point(self) -> int:
        """Stock level a replenishment order should restore."""
        if self.reorder_point:
            return self.reorder_point
        return self.low_stock_threshold * 2

    @property
    def is_understocked(self) -> bool:
        return self.stock <= self.low_stock_threshold
