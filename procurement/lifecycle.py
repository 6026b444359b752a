"""
Purchase order lifecycle.

State machine
-------------
  pending  --send-->     sent
  pending  --cancel-->   cancelled
  pending  --edit-->     pending            (lines, supplier, notes, dates)
  pending  --delete-->   (removed)
  pending  --receive-->  received | partially_received
  sent     --receive-->  received | partially_received

received, partially_received and cancelled are terminal.  Any other
(status, event) pair raises InvalidStateError and leaves the order as it was.

Receive has two handlers, picked by the require_reception setting:
  True   reconcile per-line received quantities (see reconciler.py);
         any discrepancy ends in partially_received, otherwise received
  False  finalize directly, assuming everything ordered arrived

Writes go through Database.update_order with the version that was read, so
a transition that loses a race raises ConcurrencyConflict rather than
overwriting the winner.  If the write of a reception fails for any
reason, the stock deltas it applied are reverted before the error
propagates.
"""
import logging
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from models.draft import DraftLine, OrderDraft, OrderPatch
from models.purchase_order import (
    GenericSupplier, OrderLine, PurchaseOrder, RegisteredSupplier,
    ALL_STATUSES, STATUS_CANCELLED, STATUS_PARTIALLY_RECEIVED, STATUS_PENDING,
    STATUS_RECEIVED, STATUS_SENT,
)
from models.result import Discrepancy
from .errors import (
    InvalidStateError, OrderNotFoundError, UpstreamFailure,
    ValidationError,
)
from .catalog import StockGateway, SupplierReader
from .reconciler import ReceptionReconciler

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = 0.18

EVENT_EDIT    = "edit"
EVENT_SEND    = "send"
EVENT_RECEIVE = "receive"
EVENT_CANCEL  = "cancel"
EVENT_DELETE  = "delete"

# (current status, event) -> statuses the event can lead to.  None = removed.
TRANSITIONS: dict[tuple[str, str], frozenset] = {
    (STATUS_PENDING, EVENT_EDIT):    frozenset({STATUS_PENDING}),
    (STATUS_PENDING, EVENT_SEND):    frozenset({STATUS_SENT}),
    (STATUS_PENDING, EVENT_CANCEL):  frozenset({STATUS_CANCELLED}),
    (STATUS_PENDING, EVENT_DELETE):  frozenset({None}),
    (STATUS_PENDING, EVENT_RECEIVE): frozenset({STATUS_RECEIVED, STATUS_PARTIALLY_RECEIVED}),
    (STATUS_SENT, EVENT_RECEIVE):    frozenset({STATUS_RECEIVED, STATUS_PARTIALLY_RECEIVED}),
}

# Target status accepted by transition_status() -> event it triggers.
_STATUS_EVENTS = {
    STATUS_SENT:      EVENT_SEND,
    STATUS_CANCELLED: EVENT_CANCEL,
    STATUS_RECEIVED:  EVENT_RECEIVE,
}


def can_apply(status: str, event: str) -> bool:
    return (status, event) in TRANSITIONS


def check_transition(order: PurchaseOrder, event: str) -> None:
    """Raise InvalidStateError unless event is allowed from the order's status."""
    if not can_apply(order.status, event):
        raise InvalidStateError(order.id, order.status, event)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce(model_cls: type[BaseModel], data: Any) -> Any:
    """Accept a model instance or a plain dict; report parse errors as ValidationError."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"{location}: {first.get('msg')}", field=location or None) from exc


def _check_delivery_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise ValidationError(
            f"expected_delivery_date must be YYYY-MM-DD, got {value!r}",
            field="expected_delivery_date",
        ) from exc


class OrderLifecycleManager:
    """
    Owns purchase orders and every change made to them.

    Collaborators:
      store      Database (or anything with the same order methods)
      gateway    stock gateway: apply_stock_delta(product_id, delta)
      suppliers  optional supplier reader: get_active_suppliers(); when given,
                 registered suppliers must be active to be ordered from
    """

    def __init__(
        self,
        store,
        gateway: StockGateway,
        suppliers: Optional[SupplierReader] = None,
        tax_rate: float = DEFAULT_TAX_RATE,
        require_reception: bool = True,
        order_number_prefix: str = "OC-",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.suppliers = suppliers
        self.tax_rate = tax_rate
        self.require_reception = require_reception
        self.order_number_prefix = order_number_prefix
        self.clock = clock
        self.reconciler = ReceptionReconciler(gateway, clock=clock)

        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> PurchaseOrder:
        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    # ------------------------------------------------------------------
    # Create / edit / delete
    # ------------------------------------------------------------------

    def create_order(self, draft: Union[OrderDraft, Mapping], actor: str = "system") -> PurchaseOrder:
        """
        Validate a draft and persist it as a new pending order.

        Nothing is stored (and no order number is consumed) unless the
        draft has at least one valid line and a supplier.
        """
        draft = _coerce(OrderDraft, draft)
        supplier = self._resolve_supplier(draft.supplier)
        lines = self._build_lines(draft.lines)
        expected = _check_delivery_date(draft.expected_delivery_date)

        order = PurchaseOrder(
            id=uuid.uuid4().hex,
            order_number=self.store.next_order_number(self.order_number_prefix),
            supplier=supplier,
            items=lines,
            status=STATUS_PENDING,
            order_date=self.clock().isoformat(),
            expected_delivery_date=expected,
            tax_rate=self.tax_rate,
            notes=draft.notes,
        )
        order.recompute_totals()
        order = self.store.insert_order(order)

        logger.info(
            "Created %s for %s: %d line(s), total %.2f",
            order.order_number, order.supplier_name, len(order.items), order.total,
        )
        self.store.log_audit(order.id, "created", actor=actor, detail={
            "order_number": order.order_number,
            "total": order.total,
        })
        return order

    def edit_order(
        self,
        order_id: str,
        patch: Union[OrderPatch, Mapping],
        actor: str = "system",
    ) -> PurchaseOrder:
        """Apply a partial update to a pending order and recompute its totals."""
        with self._order_lock(order_id):
            order = self.get_order(order_id)
            check_transition(order, EVENT_EDIT)
            patch = _coerce(OrderPatch, patch)

            updated = order.model_copy(deep=True)
            changed = sorted(patch.model_fields_set)
            if "supplier" in patch.model_fields_set:
                updated.supplier = self._resolve_supplier(patch.supplier)
            if "lines" in patch.model_fields_set:
                existing = {line.product_id: line.line_id for line in order.items}
                updated.items = self._build_lines(patch.lines, existing)
            if "notes" in patch.model_fields_set:
                updated.notes = patch.notes
            if "expected_delivery_date" in patch.model_fields_set:
                updated.expected_delivery_date = _check_delivery_date(patch.expected_delivery_date)
            updated.recompute_totals()

            stored = self.store.update_order(updated, expected_version=order.version)

        logger.info("Edited %s (%s)", stored.order_number, ", ".join(changed) or "no fields")
        self.store.log_audit(stored.id, "edited", actor=actor, detail={"fields": changed})
        return stored

    def delete_order(self, order_id: str, actor: str = "system") -> None:
        """Remove a pending order.  Its order number stays retired."""
        with self._order_lock(order_id):
            order = self.get_order(order_id)
            check_transition(order, EVENT_DELETE)
            self.store.delete_order(order.id, expected_version=order.version)
        self._forget_lock(order.id)

        logger.info("Deleted %s", order.order_number)
        self.store.log_audit(order.id, "deleted", actor=actor, detail={
            "order_number": order.order_number,
        })

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def transition_status(self, order_id: str, target_status: str, actor: str = "system") -> PurchaseOrder:
        """
        Move an order to target_status.

        "received" is only accepted here when reception is not required;
        otherwise quantities must be captured through receive_order().
        """
        if target_status not in ALL_STATUSES:
            raise ValidationError(f"Unknown status {target_status!r}", field="status")

        event = _STATUS_EVENTS.get(target_status)
        if event is None:
            order = self.get_order(order_id)
            raise InvalidStateError(
                order.id, order.status, f"move to {target_status}",
                message=f"Purchase orders cannot be moved to {target_status!r} directly",
            )
        if event == EVENT_RECEIVE:
            if self.require_reception:
                order = self.get_order(order_id)
                check_transition(order, EVENT_RECEIVE)
                raise ValidationError(
                    "Reception is required: received quantities must be captured per line",
                    field="received_quantities",
                )
            order, _ = self.receive_order(order_id, require_reception=False, actor=actor)
            return order
        return self._simple_transition(order_id, event, target_status, actor)

    def send_order(self, order_id: str, actor: str = "system") -> PurchaseOrder:
        return self._simple_transition(order_id, EVENT_SEND, STATUS_SENT, actor)

    def cancel_order(self, order_id: str, actor: str = "system") -> PurchaseOrder:
        return self._simple_transition(order_id, EVENT_CANCEL, STATUS_CANCELLED, actor)

    def receive_order(
        self,
        order_id: str,
        received_quantities: Optional[Mapping[str, int]] = None,
        notes: Optional[str] = None,
        require_reception: Optional[bool] = None,
        actor: str = "system",
    ) -> tuple[PurchaseOrder, list[Discrepancy]]:
        """
        Receive an order; stock is updated exactly once, here.

        require_reception overrides the manager default for this call.
        Returns the stored order and the discrepancies found (always empty
        for a direct finalize).
        """
        required = self.require_reception if require_reception is None else require_reception

        with self._order_lock(order_id):
            order = self.get_order(order_id)
            check_transition(order, EVENT_RECEIVE)

            if required:
                result = self.reconciler.reconcile(order, received_quantities or {}, notes)
            else:
                result = self.reconciler.finalize(order, notes)

            try:
                stored = self.store.update_order(result.order, expected_version=order.version)
            except Exception:
                self.reconciler.revert(result.applied_deltas)
                raise

        logger.info(
            "Received %s -> %s (%d discrepancy(ies))",
            stored.order_number, stored.status, len(result.discrepancies),
        )
        self.store.log_audit(stored.id, stored.status, actor=actor, detail={
            "reconciled": required,
            "discrepancies": [d.model_dump() for d in result.discrepancies],
        })
        return stored, result.discrepancies

    def _simple_transition(self, order_id: str, event: str, target: str, actor: str) -> PurchaseOrder:
        with self._order_lock(order_id):
            order = self.get_order(order_id)
            check_transition(order, event)
            updated = order.model_copy(deep=True)
            updated.status = target
            stored = self.store.update_order(updated, expected_version=order.version)

        logger.info("%s: %s -> %s", stored.order_number, order.status, stored.status)
        self.store.log_audit(stored.id, target, actor=actor, detail={"from": order.status})
        return stored

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _resolve_supplier(self, ref) -> Union[RegisteredSupplier, GenericSupplier]:
        if ref is None:
            raise ValidationError(
                "A registered supplier or a generic supplier name is required",
                field="supplier",
            )
        if isinstance(ref, GenericSupplier):
            name = ref.name.strip()
            if not name:
                raise ValidationError("Generic supplier name cannot be blank", field="supplier.name")
            return GenericSupplier(name=name)

        supplier_id = ref.supplier_id.strip()
        if not supplier_id:
            raise ValidationError("Supplier id cannot be blank", field="supplier.supplier_id")
        if self.suppliers is None:
            return RegisteredSupplier(supplier_id=supplier_id, name=ref.name)

        try:
            active = {s.id: s for s in self.suppliers.get_active_suppliers()}
        except Exception as exc:
            raise UpstreamFailure(f"Could not load suppliers: {exc}") from exc
        supplier = active.get(supplier_id)
        if supplier is None:
            raise ValidationError(
                f"Supplier {supplier_id!r} does not exist or is inactive",
                field="supplier.supplier_id",
            )
        return RegisteredSupplier(supplier_id=supplier.id, name=supplier.name)

    def _build_lines(
        self,
        draft_lines: Iterable[DraftLine],
        existing_ids: Optional[Mapping[str, str]] = None,
    ) -> list[OrderLine]:
        draft_lines = list(draft_lines or [])
        if not draft_lines:
            raise ValidationError("An order needs at least one line item", field="lines")

        existing_ids = existing_ids or {}
        seen: set[str] = set()
        lines: list[OrderLine] = []
        for i, dl in enumerate(draft_lines):
            product_id = (dl.product_id or "").strip()
            if not product_id:
                raise ValidationError(f"Line {i + 1} has no product", field=f"lines[{i}].product_id")
            if product_id in seen:
                raise ValidationError(
                    f"Product {product_id!r} appears on more than one line",
                    field=f"lines[{i}].product_id",
                )
            if dl.quantity < 1:
                raise ValidationError(
                    f"Line {i + 1} quantity must be at least 1, got {dl.quantity}",
                    field=f"lines[{i}].quantity",
                )
            if dl.unit_price < 0:
                raise ValidationError(
                    f"Line {i + 1} unit price cannot be negative, got {dl.unit_price}",
                    field=f"lines[{i}].unit_price",
                )
            seen.add(product_id)
            lines.append(OrderLine(
                line_id=existing_ids.get(product_id) or uuid.uuid4().hex,
                product_id=product_id,
                product_name=dl.product_name or product_id,
                sku=dl.sku,
                quantity=dl.quantity,
                unit_price=dl.unit_price,
            ))
        return lines

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextmanager
    def _order_lock(self, order_id: str):
        """Serialise writers to one order within this process."""
        with self._locks_guard:
            lock = self._locks[order_id]
        with lock:
            try:
                yield
            except OrderNotFoundError:
                self._forget_lock(order_id)
                raise

    def _forget_lock(self, order_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(order_id, None)
