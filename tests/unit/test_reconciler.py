"""
Unit tests for reception reconciliation.
"""
import pytest

from conftest import FIXED_NOW, FakeStockGateway
from models.purchase_order import OrderLine, PurchaseOrder, RegisteredSupplier
from models.result import Discrepancy
from procurement.errors import UpstreamFailure, ValidationError
from procurement.reconciler import (
    DISCREPANCY_HEADER, ReceptionReconciler, compose_receive_notes,
)


def _order(**overrides) -> PurchaseOrder:
    data = dict(
        id="po-1",
        order_number="OC-000001",
        supplier=RegisteredSupplier(supplier_id="SUP-001", name="Distribuidora Caribe"),
        items=[
            OrderLine(line_id="L1", product_id="P-001", product_name="Arroz", quantity=10, unit_price=120),
            OrderLine(line_id="L2", product_id="P-002", product_name="Aceite", quantity=4, unit_price=250),
        ],
        status="sent",
        order_date="2024-03-01T09:00:00+00:00",
        tax_rate=0.18,
    )
    data.update(overrides)
    order = PurchaseOrder(**data)
    order.recompute_totals()
    return order


@pytest.mark.unit
class TestCompare:
    """Tests for ReceptionReconciler.compare()."""

    @pytest.fixture
    def reconciler(self):
        return ReceptionReconciler(FakeStockGateway(), clock=lambda: FIXED_NOW)

    def test_exact_match_has_no_discrepancies(self, reconciler):
        """Test matching quantities produce no discrepancies."""
        received, discrepancies = reconciler.compare(_order(), {"L1": 10, "L2": 4})
        assert received == {"L1": 10, "L2": 4}
        assert discrepancies == []

    def test_short_delivery(self, reconciler):
        """Test a short delivery is reported with a negative difference."""
        _, discrepancies = reconciler.compare(_order(), {"L1": 7, "L2": 4})

        assert discrepancies == [Discrepancy(
            line_id="L1", product_id="P-001", product_name="Arroz",
            ordered=10, received=7, difference=-3,
        )]

    def test_over_delivery(self, reconciler):
        """Test an over delivery is reported with a positive difference."""
        _, discrepancies = reconciler.compare(_order(), {"L1": 10, "L2": 6})
        assert discrepancies[0].difference == 2

    def test_missing_line_counts_as_zero(self, reconciler):
        """Test a line with no received entry is treated as 0 received."""
        received, discrepancies = reconciler.compare(_order(), {"L1": 10})
        assert received["L2"] == 0
        assert [(d.line_id, d.difference) for d in discrepancies] == [("L2", -4)]

    def test_product_id_keys_are_accepted(self, reconciler):
        """Test quantities may be keyed by product id instead of line id."""
        received, _ = reconciler.compare(_order(), {"P-001": 9, "L2": 4})
        assert received == {"L1": 9, "L2": 4}

    def test_unknown_key_rejected(self, reconciler):
        """Test a key matching no line raises ValidationError."""
        with pytest.raises(ValidationError):
            reconciler.compare(_order(), {"L1": 10, "L9": 1})

    @pytest.mark.parametrize("bad", [-1, 2.5, "3", True])
    def test_invalid_quantity_rejected(self, reconciler, bad):
        """Test negative or non-integer quantities raise ValidationError."""
        with pytest.raises(ValidationError):
            reconciler.compare(_order(), {"L1": bad})


@pytest.mark.unit
class TestReconcile:
    """Tests for ReceptionReconciler.reconcile() and finalize()."""

    def test_partial_reception(self):
        """Test ordered 10, received 7 adds 7 to stock and records -3."""
        gateway = FakeStockGateway()
        reconciler = ReceptionReconciler(gateway, clock=lambda: FIXED_NOW)
        order = _order()

        result = reconciler.reconcile(order, {"L1": 7, "L2": 4})

        assert gateway.calls == [("P-001", 7), ("P-002", 4)]
        assert result.final_status == "partially_received"
        assert result.order.status == "partially_received"
        assert result.order.received_date == FIXED_NOW.isoformat()
        assert [l.received_quantity for l in result.order.items] == [7, 4]
        assert result.requires_attention is True
        assert result.order.receive_notes == (
            f"{DISCREPANCY_HEADER}\nArroz: Pedido 10, Recibido 7 (-3)"
        )

    def test_full_reception(self):
        """Test matching quantities end in received with no notes."""
        gateway = FakeStockGateway()
        result = ReceptionReconciler(gateway).reconcile(_order(), {"L1": 10, "L2": 4})

        assert result.final_status == "received"
        assert result.discrepancies == []
        assert result.order.receive_notes is None
        assert gateway.stock == {"P-001": 10, "P-002": 4}

    def test_zero_received_lines_skip_the_gateway(self):
        """Test lines with nothing received send no stock delta."""
        gateway = FakeStockGateway()
        result = ReceptionReconciler(gateway).reconcile(_order(), {"L1": 10, "L2": 0})

        assert gateway.calls == [("P-001", 10)]
        assert [d.product_id for d in result.applied_deltas] == ["P-001"]

    def test_input_order_is_not_mutated(self):
        """Test the reconciler returns an updated copy."""
        order = _order()
        ReceptionReconciler(FakeStockGateway()).reconcile(order, {"L1": 1})

        assert order.status == "sent"
        assert order.received_date is None
        assert all(l.received_quantity is None for l in order.items)

    def test_gateway_failure_reverts_applied_deltas(self):
        """Test a gateway failure undoes earlier deltas and raises UpstreamFailure."""
        gateway = FakeStockGateway(fail_on="P-002")
        reconciler = ReceptionReconciler(gateway)

        with pytest.raises(UpstreamFailure):
            reconciler.reconcile(_order(), {"L1": 10, "L2": 4})

        assert gateway.calls == [("P-001", 10), ("P-001", -10)]
        assert gateway.stock == {"P-001": 0}

    def test_validation_happens_before_any_stock_change(self):
        """Test bad input leaves the gateway untouched."""
        gateway = FakeStockGateway()
        with pytest.raises(ValidationError):
            ReceptionReconciler(gateway).reconcile(_order(), {"L1": 10, "L2": -1})
        assert gateway.calls == []

    def test_finalize_assumes_ordered_quantities(self):
        """Test direct finalize applies ordered quantities and sets no date."""
        gateway = FakeStockGateway()
        result = ReceptionReconciler(gateway, clock=lambda: FIXED_NOW).finalize(_order(), notes="ok")

        assert gateway.calls == [("P-001", 10), ("P-002", 4)]
        assert result.final_status == "received"
        assert result.order.received_date is None
        assert result.order.receive_notes == "ok"
        assert [l.received_quantity for l in result.order.items] == [10, 4]
        assert result.discrepancies == []

    def test_revert(self):
        """Test revert() applies the negated deltas in reverse order."""
        gateway = FakeStockGateway()
        reconciler = ReceptionReconciler(gateway)
        result = reconciler.reconcile(_order(), {"L1": 10, "L2": 4})

        reconciler.revert(result.applied_deltas)

        assert gateway.calls[-2:] == [("P-002", -4), ("P-001", -10)]
        assert gateway.stock == {"P-001": 0, "P-002": 0}


@pytest.mark.unit
class TestReceiveNotes:
    """Tests for compose_receive_notes()."""

    def _discrepancy(self, ordered, received):
        return Discrepancy(
            line_id="L1", product_id="P-001", product_name="Arroz",
            ordered=ordered, received=received, difference=received - ordered,
        )

    def test_notes_then_summary(self):
        """Test operator notes come first, separated by a blank line."""
        notes = compose_receive_notes("  Caja dañada  ", [self._discrepancy(10, 12)])
        assert notes == (
            "Caja dañada\n\n"
            "--- Discrepancias en Recepción ---\n"
            "Arroz: Pedido 10, Recibido 12 (+2)"
        )

    def test_no_notes_no_discrepancies(self):
        """Test nothing to record yields None."""
        assert compose_receive_notes(None, []) is None
        assert compose_receive_notes("   ", []) is None

    def test_notes_only(self):
        """Test operator notes alone are kept as-is."""
        assert compose_receive_notes("Todo bien", []) == "Todo bien"
