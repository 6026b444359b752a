from pydantic import BaseModel, Field
from typing import Annotated, Literal, Optional, List, Union


STATUS_PENDING            = "pending"
STATUS_SENT               = "sent"
STATUS_PARTIALLY_RECEIVED = "partially_received"
STATUS_RECEIVED           = "received"
STATUS_CANCELLED          = "cancelled"

ALL_STATUSES = (
    STATUS_PENDING,
    STATUS_SENT,
    STATUS_PARTIALLY_RECEIVED,
    STATUS_RECEIVED,
    STATUS_CANCELLED,
)
# Nothing moves an order out of these.
TERMINAL_STATUSES = frozenset({STATUS_PARTIALLY_RECEIVED, STATUS_RECEIVED, STATUS_CANCELLED})

OrderStatus = Literal[
    "pending",
    "sent",
    "partially_received",
    "received",
    "cancelled",
]


class RegisteredSupplier(BaseModel):
    """Reference to a supplier record from the master list."""
    kind: Literal["registered"] = "registered"
    supplier_id: str
    name: Optional[str] = None          # snapshot of the supplier name at order time


class GenericSupplier(BaseModel):
    """Free-text supplier label for orders with no registered supplier."""
    kind: Literal["generic"] = "generic"
    name: str


SupplierRef = Annotated[Union[RegisteredSupplier, GenericSupplier], Field(discriminator="kind")]


def supplier_label(ref: Union[RegisteredSupplier, GenericSupplier]) -> str:
    if isinstance(ref, RegisteredSupplier):
        return ref.name or ref.supplier_id
    return ref.name


class OrderLine(BaseModel):
    """A single line on a Purchase Order."""
    line_id: str
    product_id: str
    product_name: str
    sku: Optional[str] = None
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    subtotal: float = 0.0
    received_quantity: Optional[int] = None     # set once, by reception

    def compute_subtotal(self) -> float:
        self.subtotal = round(self.quantity * self.unit_price, 2)
        return self.subtotal


class PurchaseOrder(BaseModel):
    """
    A purchase order sent (or to be sent) to one supplier.

    items may only change while status is "pending"; subtotal, tax and total
    are derived from items and frozen once the order leaves "pending".
    Dates are ISO 8601 strings.
    """
    id: str
    order_number: str
    supplier: SupplierRef
    items: List[OrderLine] = Field(default_factory=list)
    status: OrderStatus = STATUS_PENDING

    order_date: str                             # ISO 8601 datetime (UTC)
    expected_delivery_date: Optional[str] = None  # YYYY-MM-DD
    received_date: Optional[str] = None         # stamped by reception only

    tax_rate: float = 0.0
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0

    notes: Optional[str] = None
    receive_notes: Optional[str] = None
    email_sent: bool = False                    # owned by the email delivery service

    version: int = 1                            # optimistic concurrency token
    updated_at: Optional[str] = None

    @property
    def supplier_name(self) -> str:
        return supplier_label(self.supplier)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def recompute_totals(self) -> None:
        """Recalculate line subtotals and order totals from items."""
        subtotal = sum(line.compute_subtotal() for line in self.items)
        self.subtotal = round(subtotal, 2)
        self.tax = round(self.subtotal * self.tax_rate, 2)
        self.total = round(self.subtotal + self.tax, 2)
