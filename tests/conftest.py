"""
Pytest configuration and shared fixtures for the procurement test suite.
"""
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)

FIXED_NOW = datetime(2024, 3, 15, 14, 30, tzinfo=timezone.utc)


class FakeStockGateway:
    """Records stock deltas; can be told to fail for one product."""

    def __init__(self, fail_on: str = None):
        self.calls: list[tuple[str, int]] = []
        self.stock: dict[str, int] = {}
        self.fail_on = fail_on

    def apply_stock_delta(self, product_id: str, delta: int) -> None:
        if product_id == self.fail_on:
            raise RuntimeError(f"gateway unavailable for {product_id}")
        self.calls.append((product_id, delta))
        self.stock[product_id] = self.stock.get(product_id, 0) + delta


class FakeSupplierReader:
    """Serves a fixed supplier list."""

    def __init__(self, suppliers=None, error: Exception = None):
        self.suppliers = suppliers or []
        self.error = error

    def get_active_suppliers(self):
        if self.error:
            raise self.error
        return [s for s in self.suppliers if s.active]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="procurement_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    config = Config()
    config.output_dir = temp_dir / "output"
    config.db_path = temp_dir / "output" / "procurement.db"
    config.products_csv = temp_dir / "data" / "products.csv"
    config.suppliers_csv = temp_dir / "data" / "suppliers.csv"
    config.require_reception = True
    config.tax_rate = 0.18
    config.order_number_prefix = "OC-"
    config.generic_supplier_name = "Proveedor Genérico"

    config.products_csv.parent.mkdir(parents=True, exist_ok=True)
    config.ensure_output_dir()
    return config


@pytest.fixture
def sample_products_csv(test_config) -> Path:
    """
    Products covering each planning case:
      P-001  under threshold, no reorder point  -> 2 × 5 - 2 = 8
      P-002  well stocked
      P-003  exactly at threshold               -> 15 - 4 = 11
      P-004  no supplier                        -> generic, 2 × 3 - 0 = 6
      P-005  supplier is inactive               -> SUP-003 draft, 2 × 2 - 1 = 3
    """
    csv_path = test_config.products_csv
    content = """id,name,sku,stock,low_stock_threshold,reorder_point,purchase_price,supplier_id
P-001,Arroz Selecto 5lb,ARR-5,2,5,,120.00,SUP-001
P-002,Aceite de Soya 1gal,ACE-1,10,4,20,250.00,SUP-001
P-003,Azúcar Crema 5lb,AZU-5,4,4,15,60.50,SUP-002
P-004,Sal Refinada 1lb,SAL-1,0,3,,15.00,
P-005,Café Molido 1lb,CAF-1,1,2,0,310.00,SUP-003
"""
    csv_path.write_text(content, encoding="utf-8")
    return csv_path


@pytest.fixture
def sample_suppliers_csv(test_config) -> Path:
    """Create a sample suppliers CSV file (SUP-003 is inactive)."""
    csv_path = test_config.suppliers_csv
    content = """id,name,email,phone,active
SUP-001,Distribuidora Caribe,ventas@caribe.do,809-555-0101,true
SUP-002,Central Azucarera,pedidos@azucarera.do,809-555-0199,1
SUP-003,Cafetalera del Norte,,,false
"""
    csv_path.write_text(content, encoding="utf-8")
    return csv_path


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a test database instance."""
    from procurement.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def catalog(test_config, sample_products_csv, sample_suppliers_csv) -> "CsvCatalog":
    """Provide a CSV catalog loaded from the sample files."""
    from procurement.catalog import CsvCatalog
    from procurement.csv_manager import CSVManager
    return CsvCatalog(test_config.products_csv, test_config.suppliers_csv, csv_io=CSVManager())


@pytest.fixture
def service(test_config, catalog) -> "ProcurementService":
    """Provide a fully wired service over the sample catalog."""
    from procurement.service import ProcurementService
    return ProcurementService(test_config, catalog=catalog)


@pytest.fixture
def gateway() -> FakeStockGateway:
    return FakeStockGateway()


@pytest.fixture
def supplier_reader() -> FakeSupplierReader:
    from models.supplier import Supplier
    return FakeSupplierReader([
        Supplier(id="SUP-001", name="Distribuidora Caribe"),
        Supplier(id="SUP-002", name="Central Azucarera"),
        Supplier(id="SUP-003", name="Cafetalera del Norte", active=False),
    ])


@pytest.fixture
def manager(test_db, gateway, supplier_reader) -> "OrderLifecycleManager":
    """Provide a lifecycle manager over a real database and fake collaborators."""
    from procurement.lifecycle import OrderLifecycleManager
    return OrderLifecycleManager(
        store=test_db,
        gateway=gateway,
        suppliers=supplier_reader,
        tax_rate=0.18,
        require_reception=True,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def sample_draft() -> "OrderDraft":
    """Two-line draft for SUP-001: 10 × 120.00 + 4 × 250.00 = 2200.00."""
    from models.draft import DraftLine, OrderDraft
    from models.purchase_order import RegisteredSupplier
    return OrderDraft(
        supplier=RegisteredSupplier(supplier_id="SUP-001"),
        lines=[
            DraftLine(product_id="P-001", product_name="Arroz Selecto 5lb", quantity=10, unit_price=120.00),
            DraftLine(product_id="P-002", product_name="Aceite de Soya 1gal", quantity=4, unit_price=250.00),
        ],
        notes="Entrega en almacén principal",
    )


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
