"""
Pydantic models for purchase order API requests.

Suppliers arrive flat, as either supplier_id or generic_supplier_name, the
way the order form sends them, and are turned into the tagged SupplierRef
the engine works with.
"""
from pydantic import BaseModel, Field
from typing import Optional

from models.draft import DraftLine, OrderDraft, OrderPatch
from models.purchase_order import GenericSupplier, RegisteredSupplier
from procurement.errors import ValidationError


def supplier_ref_from_fields(
    supplier_id: Optional[str],
    generic_supplier_name: Optional[str],
):
    """Return the supplier reference, or None if neither field was given."""
    supplier_id = (supplier_id or "").strip()
    generic_supplier_name = (generic_supplier_name or "").strip()
    if supplier_id and generic_supplier_name:
        raise ValidationError(
            "Give either supplier_id or generic_supplier_name, not both",
            field="supplier",
        )
    if supplier_id:
        return RegisteredSupplier(supplier_id=supplier_id)
    if generic_supplier_name:
        return GenericSupplier(name=generic_supplier_name)
    return None


class LineInput(BaseModel):
    product_id: str
    product_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price: float = 0.0

    def to_draft_line(self) -> DraftLine:
        return DraftLine(**self.model_dump())


class OrderCreate(BaseModel):
    supplier_id: Optional[str] = None
    generic_supplier_name: Optional[str] = None
    items: list[LineInput] = Field(default_factory=list)
    notes: Optional[str] = None
    expected_delivery_date: Optional[str] = None   # YYYY-MM-DD

    def to_draft(self) -> OrderDraft:
        return OrderDraft(
            supplier=supplier_ref_from_fields(self.supplier_id, self.generic_supplier_name),
            lines=[item.to_draft_line() for item in self.items],
            notes=self.notes,
            expected_delivery_date=self.expected_delivery_date,
        )


class OrderUpdate(BaseModel):
    supplier_id: Optional[str] = None
    generic_supplier_name: Optional[str] = None
    items: Optional[list[LineInput]] = None
    notes: Optional[str] = None
    expected_delivery_date: Optional[str] = None

    def to_patch(self) -> OrderPatch:
        fields = self.model_fields_set
        patch: dict = {}
        if fields & {"supplier_id", "generic_supplier_name"}:
            patch["supplier"] = supplier_ref_from_fields(self.supplier_id, self.generic_supplier_name)
        if "items" in fields:
            patch["lines"] = [item.to_draft_line() for item in self.items or []]
        if "notes" in fields:
            patch["notes"] = self.notes
        if "expected_delivery_date" in fields:
            patch["expected_delivery_date"] = self.expected_delivery_date
        return OrderPatch(**patch)


class StatusUpdate(BaseModel):
    status: str     # sent | cancelled | received (only when reception is not required)


class ReceiveRequest(BaseModel):
    received_quantities: dict[str, int] = Field(default_factory=dict)   # line_id → qty
    notes: Optional[str] = None


class GenerateRequest(BaseModel):
    supplier_id: Optional[str] = None
