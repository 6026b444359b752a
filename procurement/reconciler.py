"""
Reception reconciliation.

Compares what was ordered with what physically arrived, per order line:

  - received quantities come from the caller, keyed by line id (or, failing
    that, product id); a line with no entry counts as 0 received
  - every line where received != ordered yields a Discrepancy
  - the stock gateway is called once per line with the RECEIVED quantity
  - the discrepancy summary is appended to the operator's notes

Discrepancies never block a reception.  A gateway failure does: deltas
already applied are reverted and UpstreamFailure is raised, so the order
can be received again later without double-counting stock.

The reconciler never persists the order.  It returns an updated copy and
the caller commits it (or calls revert() if the commit loses a race).
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from models.purchase_order import (
    PurchaseOrder, STATUS_PARTIALLY_RECEIVED, STATUS_RECEIVED,
)
from models.result import Discrepancy, ReceptionResult, StockDelta
from .catalog import StockGateway
from .errors import UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

DISCREPANCY_HEADER = "--- Discrepancias en Recepción ---"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compose_receive_notes(notes: Optional[str], discrepancies: list[Discrepancy]) -> Optional[str]:
    """Operator notes followed by one summary line per discrepancy."""
    text = (notes or "").strip()
    if not discrepancies:
        return text or None
    summary = "\n".join([DISCREPANCY_HEADER] + [d.describe() for d in discrepancies])
    return f"{text}\n\n{summary}" if text else summary


class ReceptionReconciler:
    """
    Reconciles received quantities against an order and pushes the stock
    changes through the gateway.

    gateway must provide apply_stock_delta(product_id: str, delta: int).
    """

    def __init__(self, gateway: StockGateway, clock: Callable[[], datetime] = _utcnow):
        self.gateway = gateway
        self.clock = clock

    # ------------------------------------------------------------------
    # Pure comparison
    # ------------------------------------------------------------------

    def compare(
        self,
        order: PurchaseOrder,
        received_quantities: Mapping[str, int],
    ) -> tuple[dict[str, int], list[Discrepancy]]:
        """
        Resolve the received quantity for every line and list the mismatches.

        Returns ({line_id: received}, discrepancies).  Raises ValidationError
        for negative or non-integer quantities and for keys that match no line.
        """
        known_keys = set()
        for line in order.items:
            known_keys.add(line.line_id)
            known_keys.add(line.product_id)
        unknown = sorted(k for k in received_quantities if k not in known_keys)
        if unknown:
            raise ValidationError(
                f"Received quantities reference unknown lines: {', '.join(unknown)}",
                field="received_quantities",
            )

        received: dict[str, int] = {}
        discrepancies: list[Discrepancy] = []
        for line in order.items:
            if line.line_id in received_quantities:
                qty = received_quantities[line.line_id]
            else:
                qty = received_quantities.get(line.product_id, 0)
            if isinstance(qty, bool) or not isinstance(qty, int) or qty < 0:
                raise ValidationError(
                    f"Received quantity for {line.product_name} must be a whole number >= 0, got {qty!r}",
                    field=f"received_quantities.{line.line_id}",
                )
            received[line.line_id] = qty
            if qty != line.quantity:
                discrepancies.append(Discrepancy(
                    line_id=line.line_id,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    ordered=line.quantity,
                    received=qty,
                    difference=qty - line.quantity,
                ))
        return received, discrepancies

    # ------------------------------------------------------------------
    # Reception handlers
    # ------------------------------------------------------------------

    def reconcile(
        self,
        order: PurchaseOrder,
        received_quantities: Mapping[str, int],
        notes: Optional[str] = None,
    ) -> ReceptionResult:
        """Receive with explicit per-line quantities."""
        received, discrepancies = self.compare(order, received_quantities)

        deltas = [
            StockDelta(product_id=line.product_id, delta=received[line.line_id])
            for line in order.items
            if received[line.line_id] > 0
        ]
        applied = self._apply(order, deltas)

        updated = order.model_copy(deep=True)
        for line in updated.items:
            line.received_quantity = received[line.line_id]
        updated.status = STATUS_PARTIALLY_RECEIVED if discrepancies else STATUS_RECEIVED
        updated.received_date = self.clock().isoformat()
        updated.receive_notes = compose_receive_notes(notes, discrepancies)

        logger.info(
            "Reconciled %s: %d line(s), %d discrepancy(ies)",
            order.order_number, len(order.items), len(discrepancies),
        )
        return ReceptionResult(
            order=updated,
            final_status=updated.status,
            applied_deltas=applied,
            discrepancies=discrepancies,
        )

    def finalize(self, order: PurchaseOrder, notes: Optional[str] = None) -> ReceptionResult:
        """
        Receive without capturing quantities: everything ordered is assumed
        to have arrived.  No reception date is recorded in this mode.
        """
        deltas = [
            StockDelta(product_id=line.product_id, delta=line.quantity)
            for line in order.items
        ]
        applied = self._apply(order, deltas)

        updated = order.model_copy(deep=True)
        for line in updated.items:
            line.received_quantity = line.quantity
        updated.status = STATUS_RECEIVED
        updated.receive_notes = compose_receive_notes(notes, [])

        logger.info("Finalized %s without reconciliation", order.order_number)
        return ReceptionResult(order=updated, final_status=STATUS_RECEIVED, applied_deltas=applied)

    # ------------------------------------------------------------------
    # Stock mutation
    # ------------------------------------------------------------------

    def revert(self, deltas: list[StockDelta]) -> None:
        """Undo previously applied deltas.  Raises UpstreamFailure if any undo fails."""
        failed = self._compensate(deltas)
        if failed:
            raise UpstreamFailure(
                "Could not revert stock for: "
                + ", ".join(f"{d.product_id} ({d.delta:+d})" for d in failed)
            )

    def _apply(self, order: PurchaseOrder, deltas: list[StockDelta]) -> list[StockDelta]:
        applied: list[StockDelta] = []
        for delta in deltas:
            try:
                self.gateway.apply_stock_delta(delta.product_id, delta.delta)
            except Exception as exc:
                failed = self._compensate(applied)
                message = (
                    f"Stock update failed for {delta.product_id} while receiving "
                    f"{order.order_number}: {exc}"
                )
                if failed:
                    message += "; could not revert: " + ", ".join(d.product_id for d in failed)
                raise UpstreamFailure(message) from exc
            applied.append(delta)
        return applied

    def _compensate(self, applied: list[StockDelta]) -> list[StockDelta]:
        failed = []
        for delta in reversed(applied):
            try:
                self.gateway.apply_stock_delta(delta.product_id, -delta.delta)
            except Exception as exc:
                logger.error("Stock revert failed for %s: %s", delta.product_id, exc)
                failed.append(delta)
        return failed
