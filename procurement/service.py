"""
Procurement service orchestrator.

ProcurementService ties together the catalog, the replenishment planner
and the order lifecycle manager behind one object, built from a Config:

  1. CsvCatalog            -- products, suppliers, stock gateway
  2. ReplenishmentPlanner  -- propose per-supplier drafts from low stock
  3. OrderLifecycleManager -- create / edit / transition / receive / delete
  4. Database              -- SQLite file holding orders and the audit log

The CLI and the REST layer both talk to this class; neither reaches into
the collaborators on its own.
"""
import logging
from typing import Optional

from config import Config
from models.draft import OrderDraft
from models.purchase_order import RegisteredSupplier
from models.result import GenerationResult
from .catalog import CsvCatalog
from .database import Database
from .errors import UpstreamFailure
from .lifecycle import OrderLifecycleManager
from .planner import ReplenishmentPlanner
from .csv_manager import csv_manager

logger = logging.getLogger(__name__)


class ProcurementService:
    """
    Builds the engine from a Config and exposes the planning entry points.

    catalog defaults to a CsvCatalog over the configured files; any object
    implementing CatalogReader, SupplierReader and StockGateway will do.
    """

    def __init__(self, config: Optional[Config] = None, catalog=None):
        self.config = config or Config()
        self.config.ensure_output_dir()

        self.db = Database(self.config.db_path)
        self.catalog = catalog or CsvCatalog(self.config.products_csv, self.config.suppliers_csv)
        self.planner = ReplenishmentPlanner(generic_supplier_name=self.config.generic_supplier_name)
        self.orders = OrderLifecycleManager(
            store=self.db,
            gateway=self.catalog,
            suppliers=self.catalog,
            tax_rate=self.config.tax_rate,
            require_reception=self.config.require_reception,
            order_number_prefix=self.config.order_number_prefix,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def generate_plan(self, supplier_id: Optional[str] = None) -> list[OrderDraft]:
        """Preview replenishment drafts without persisting anything."""
        products, suppliers = self._read_catalog()
        return self.planner.plan(products, supplier_id=supplier_id, suppliers=suppliers)

    def generate_orders(
        self,
        supplier_id: Optional[str] = None,
        actor: str = "system",
    ) -> GenerationResult:
        """
        Plan and persist: one pending order per draft.

        Drafts for a registered supplier that is not active are not
        persisted; they come back in skipped.  Both lists are empty when
        nothing is under-stocked.
        """
        products, suppliers = self._read_catalog()
        active = {s.id for s in suppliers}
        drafts = self.planner.plan(products, supplier_id=supplier_id, suppliers=suppliers)

        result = GenerationResult()
        for draft in drafts:
            if isinstance(draft.supplier, RegisteredSupplier) and draft.supplier.supplier_id not in active:
                logger.warning(
                    "Skipping draft for inactive or unknown supplier %s (%d line(s))",
                    draft.supplier.supplier_id, len(draft.lines),
                )
                result.skipped.append(draft)
                continue
            result.orders.append(self.orders.create_order(draft, actor=actor))

        logger.info(
            "Generated %d purchase order(s) from low stock, %d draft(s) skipped",
            len(result.orders), len(result.skipped),
        )
        return result

    def _read_catalog(self):
        try:
            return self.catalog.list_products(), self.catalog.get_active_suppliers()
        except Exception as exc:
            raise UpstreamFailure(f"Could not read the catalog: {exc}") from exc

    # ------------------------------------------------------------------
    # Setup check
    # ------------------------------------------------------------------

    def check_setup(self) -> dict:
        """Report whether the data files and database are in place."""
        products = csv_manager.get_metadata(self.config.products_csv)
        suppliers = csv_manager.get_metadata(self.config.suppliers_csv)
        return {
            "products_csv":  {**products, "count": products["rows"]},
            "suppliers_csv": {**suppliers, "count": suppliers["rows"]},
            "database": {
                "path": str(self.config.db_path),
                "exists": self.config.db_path.exists(),
                "orders": self.db.get_stats().get("total") or 0,
            },
            "require_reception": self.config.require_reception,
            "tax_rate": self.config.tax_rate,
        }
