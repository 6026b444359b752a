"""
Replenishment planning.

Scans a catalog snapshot for under-stocked products and proposes one order
draft per supplier:
  1. Select products with stock <= low_stock_threshold
     (optionally only those assigned to one supplier)
  2. Suggest max(reorder_point - stock, 1) units per product, where
     reorder_point defaults to 2 × low_stock_threshold
  3. Group by supplier; products with no supplier go into a single
     generic-supplier draft, placed last

The planner is a pure function of its inputs.  It never persists anything,
so it can be re-run freely to preview drafts before committing them.
"""
import logging
from collections import OrderedDict
from typing import Iterable, Optional

from models.draft import DraftLine, OrderDraft
from models.product import Product
from models.purchase_order import GenericSupplier, RegisteredSupplier
from models.supplier import Supplier

logger = logging.getLogger(__name__)

DEFAULT_GENERIC_SUPPLIER_NAME = "Proveedor Genérico"


def suggest_quantity(product: Product) -> int:
    """
    Units needed to bring the product back to its reorder point.

    Never below 1: the snapshot may be stale (a concurrent restock can push
    stock past the target), and a selected product must still yield a line.
    """
    return max(product.effective_reorder_point - product.stock, 1)


def select_understocked(
    products: Iterable[Product],
    supplier_id: Optional[str] = None,
) -> list[Product]:
    """Return under-stocked products, optionally restricted to one supplier."""
    selected = []
    for product in products:
        if not product.is_understocked:
            continue
        if supplier_id and product.supplier_id != supplier_id:
            continue
        selected.append(product)
    return selected


class ReplenishmentPlanner:
    """
    Builds OrderDraft proposals from a catalog snapshot.

    Usage:
        planner = ReplenishmentPlanner()
        drafts = planner.plan(products, supplier_id=None, suppliers=suppliers)
    """

    def __init__(self, generic_supplier_name: str = DEFAULT_GENERIC_SUPPLIER_NAME):
        self.generic_supplier_name = generic_supplier_name

    def plan(
        self,
        products: Iterable[Product],
        supplier_id: Optional[str] = None,
        suppliers: Optional[Iterable[Supplier]] = None,
    ) -> list[OrderDraft]:
        """
        Return one draft per supplier for the under-stocked products.

        Products are grouped by their own supplier_id, whether or not that
        supplier is active; suppliers only provides the draft labels.  An
        empty list means there is nothing to reorder.
        """
        names = {s.id: s.name for s in (suppliers or [])}
        candidates = select_understocked(products, supplier_id)
        if not candidates:
            logger.debug("No under-stocked products (supplier filter: %s)", supplier_id)
            return []

        grouped: "OrderedDict[str, list[DraftLine]]" = OrderedDict()
        generic_lines: list[DraftLine] = []

        for product in candidates:
            line = DraftLine(
                product_id=product.id,
                product_name=product.name,
                sku=product.sku,
                quantity=suggest_quantity(product),
                unit_price=product.purchase_price,
                current_stock=product.stock,
                low_stock_threshold=product.low_stock_threshold,
                reorder_point=product.effective_reorder_point,
            )
            if product.supplier_id:
                grouped.setdefault(product.supplier_id, []).append(line)
            else:
                generic_lines.append(line)

        drafts = [
            OrderDraft(
                supplier=RegisteredSupplier(supplier_id=sid, name=names.get(sid)),
                lines=lines,
            )
            for sid, lines in grouped.items()
        ]
        if generic_lines:
            drafts.append(OrderDraft(
                supplier=GenericSupplier(name=self.generic_supplier_name),
                lines=generic_lines,
            ))

        logger.info(
            "Planned %d draft(s) covering %d product(s)",
            len(drafts), len(candidates),
        )
        return drafts
