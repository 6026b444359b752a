"""
Catalog collaborator backed by CSV files.

Provides the three interfaces the engine consumes:
  - catalog read   list_products() / list_understocked()
  - supplier read  get_active_suppliers()
  - stock gateway  apply_stock_delta(product_id, delta)

CSV formats:
  products.csv:
    id, name, sku, stock, low_stock_threshold, reorder_point,
    purchase_price, supplier_id
  suppliers.csv:
    id, name, email, phone, active
"""
import logging
import threading
from pathlib import Path
from typing import Optional, Protocol

from models.product import Product
from models.supplier import Supplier
from .csv_manager import CSVManager, csv_manager

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = [
    "id", "name", "sku", "stock", "low_stock_threshold",
    "reorder_point", "purchase_price", "supplier_id",
]
SUPPLIER_FIELDS = ["id", "name", "email", "phone", "active"]

_FALSE_VALUES = {"0", "false", "no", "n", "inactive"}


class CatalogReader(Protocol):
    def list_products(self) -> list[Product]: ...
    def get_product(self, product_id: str) -> Optional[Product]: ...


class SupplierReader(Protocol):
    def get_active_suppliers(self) -> list[Supplier]: ...


class StockGateway(Protocol):
    def apply_stock_delta(self, product_id: str, delta: int) -> None: ...


def _text(value: Optional[str]) -> Optional[str]:
    return (value or "").strip() or None


def _to_int(value: Optional[str], default: Optional[int] = 0) -> Optional[int]:
    if value is None or not str(value).strip():
        return default
    return int(float(str(value).strip()))


def _to_float(value: Optional[str]) -> float:
    if value is None or not str(value).strip():
        return 0.0
    return float(str(value).replace(",", "").replace("$", "").strip())


class CsvCatalog:
    """
    Products and suppliers loaded from CSV.

    Stock changes are applied in memory and written straight back to
    products.csv, one product at a time, under a lock.
    """

    def __init__(
        self,
        products_csv: str | Path,
        suppliers_csv: str | Path,
        csv_io: CSVManager = csv_manager,
    ):
        self.products_csv = Path(products_csv)
        self.suppliers_csv = Path(suppliers_csv)
        self._csv = csv_io
        self._lock = threading.Lock()
        self.products: dict[str, Product] = {}
        self.suppliers: dict[str, Supplier] = {}
        self.reload()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def reload(self) -> None:
        products: dict[str, Product] = {}
        for row in self._csv.load_dicts(self.products_csv):
            product = Product(
                id=row["id"].strip(),
                name=row["name"].strip(),
                sku=_text(row.get("sku")),
                stock=_to_int(row.get("stock")),
                low_stock_threshold=_to_int(row.get("low_stock_threshold")),
                reorder_point=_to_int(row.get("reorder_point"), default=None),
                purchase_price=_to_float(row.get("purchase_price")),
                supplier_id=_text(row.get("supplier_id")),
            )
            products[product.id] = product

        suppliers: dict[str, Supplier] = {}
        for row in self._csv.load_dicts(self.suppliers_csv):
            supplier = Supplier(
                id=row["id"].strip(),
                name=row["name"].strip(),
                email=_text(row.get("email")),
                phone=_text(row.get("phone")),
                active=(row.get("active") or "true").strip().lower() not in _FALSE_VALUES,
            )
            suppliers[supplier.id] = supplier

        with self._lock:
            self.products = products
            self.suppliers = suppliers
        logger.info("Loaded %d products and %d suppliers", len(products), len(suppliers))

    # ------------------------------------------------------------------
    # Catalog / supplier reads
    # ------------------------------------------------------------------

    def list_products(self) -> list[Product]:
        with self._lock:
            return [p.model_copy() for p in self.products.values()]

    def list_understocked(self, supplier_id: Optional[str] = None) -> list[Product]:
        return [
            p for p in self.list_products()
            if p.is_understocked and (not supplier_id or p.supplier_id == supplier_id)
        ]

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._lock:
            product = self.products.get(product_id)
            return product.model_copy() if product else None

    def get_active_suppliers(self) -> list[Supplier]:
        with self._lock:
            return [s for s in self.suppliers.values() if s.active]

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        with self._lock:
            return self.suppliers.get(supplier_id)

    # ------------------------------------------------------------------
    # Stock gateway
    # ------------------------------------------------------------------

    def apply_stock_delta(self, product_id: str, delta: int) -> None:
        """Add delta to a product's stock and persist products.csv."""
        with self._lock:
            product = self.products.get(product_id)
            if product is None:
                raise KeyError(f"Unknown product: {product_id}")
            new_stock = product.stock + delta
            if new_stock < 0:
                raise ValueError(
                    f"Stock for {product_id} would become negative ({product.stock} {delta:+d})"
                )
            self.products[product_id] = product.model_copy(update={"stock": new_stock})
            self._csv.save_dicts(
                self.products_csv,
                [self._product_row(p) for p in self.products.values()],
                PRODUCT_FIELDS,
            )
        logger.info("Stock %s: %d -> %d (%+d)", product_id, product.stock, new_stock, delta)

    @staticmethod
    def _product_row(product: Product) -> dict:
        row = product.model_dump(include=set(PRODUCT_FIELDS))
        return {k: ("" if v is None else v) for k, v in row.items()}
