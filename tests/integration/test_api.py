"""
API tests for the purchase order REST endpoints.
"""
import pytest
from fastapi.testclient import TestClient

import api.app as api_app


@pytest.fixture
def client(service, monkeypatch):
    """Provide a test client bound to the isolated service."""
    monkeypatch.setattr(api_app, "_service", service)
    return TestClient(api_app.app)


def _create(client, **overrides):
    body = {
        "supplier_id": "SUP-001",
        "items": [
            {"product_id": "P-001", "product_name": "Arroz Selecto 5lb", "quantity": 10, "unit_price": 120.0},
            {"product_id": "P-002", "product_name": "Aceite de Soya 1gal", "quantity": 4, "unit_price": 250.0},
        ],
        "notes": "Entrega en almacén principal",
    }
    body.update(overrides)
    response = client.post("/api/purchase-orders", json=body)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.api
class TestOrderEndpoints:
    """Tests for order CRUD and transitions over HTTP."""

    def test_health(self, client):
        """Test the liveness check."""
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_create_and_get(self, client):
        """Test creating an order and reading it back."""
        created = _create(client)

        assert created["order_number"] == "OC-000001"
        assert created["status"] == "pending"
        assert created["supplier"] == {
            "kind": "registered", "supplier_id": "SUP-001", "name": "Distribuidora Caribe",
        }
        assert created["total"] == pytest.approx(2596.0)

        fetched = client.get(f"/api/purchase-orders/{created['id']}").json()
        assert fetched == created

    def test_create_generic_supplier(self, client):
        """Test a free-text supplier name creates a generic order."""
        created = _create(client, supplier_id=None, generic_supplier_name="Colmado Rosa")
        assert created["supplier"] == {"kind": "generic", "name": "Colmado Rosa"}

    def test_create_validation_errors(self, client):
        """Test invalid bodies map to 400 with the offending field."""
        both = client.post("/api/purchase-orders", json={
            "supplier_id": "SUP-001", "generic_supplier_name": "X",
            "items": [{"product_id": "P-001", "quantity": 1}],
        })
        assert both.status_code == 400
        assert both.json()["field"] == "supplier"

        empty = client.post("/api/purchase-orders", json={"supplier_id": "SUP-001", "items": []})
        assert empty.status_code == 400
        assert empty.json()["error"] == "ValidationError"

        inactive = client.post("/api/purchase-orders", json={
            "supplier_id": "SUP-003", "items": [{"product_id": "P-005", "quantity": 1}],
        })
        assert inactive.status_code == 400

    def test_get_missing_order(self, client):
        """Test an unknown id returns 404."""
        response = client.get("/api/purchase-orders/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "OrderNotFoundError"

    def test_list_and_filter(self, client):
        """Test listing with status and search filters."""
        a = _create(client)
        b = _create(client, supplier_id=None, generic_supplier_name="Colmado Rosa")
        client.put(f"/api/purchase-orders/{a['id']}/status", json={"status": "sent"})

        rows = client.get("/api/purchase-orders").json()
        assert {r["id"] for r in rows} == {a["id"], b["id"]}

        sent = client.get("/api/purchase-orders", params={"status": "sent"}).json()
        assert [r["id"] for r in sent] == [a["id"]]

        found = client.get("/api/purchase-orders", params={"search": "rosa"}).json()
        assert [r["id"] for r in found] == [b["id"]]

        assert client.get("/api/purchase-orders", params={"status": "bogus"}).status_code == 400

    def test_list_by_date_range(self, client):
        """Test start_date and end_date bound the listing by order day."""
        a = _create(client)
        day = a["order_date"][:10]

        same_day = client.get("/api/purchase-orders", params={"start_date": day, "end_date": day}).json()
        assert [r["id"] for r in same_day] == [a["id"]]
        assert client.get("/api/purchase-orders", params={"start_date": "3000-01-01"}).json() == []

        bad = client.get("/api/purchase-orders", params={"end_date": "31/12/2024"})
        assert bad.status_code == 400
        assert bad.json()["field"] == "end_date"

    def test_edit_pending_order(self, client):
        """Test PUT replaces items and keeps other fields."""
        created = _create(client)

        response = client.put(f"/api/purchase-orders/{created['id']}", json={
            "items": [{"product_id": "P-001", "quantity": 5, "unit_price": 120.0}],
        })

        assert response.status_code == 200
        edited = response.json()
        assert edited["subtotal"] == pytest.approx(600.0)
        assert edited["notes"] == created["notes"]
        assert edited["items"][0]["line_id"] == created["items"][0]["line_id"]

    def test_status_transitions(self, client):
        """Test send, then an illegal cancel returns 409."""
        created = _create(client)
        url = f"/api/purchase-orders/{created['id']}/status"

        assert client.put(url, json={"status": "sent"}).json()["status"] == "sent"

        conflict = client.put(url, json={"status": "cancelled"})
        assert conflict.status_code == 409
        assert conflict.json()["error"] == "InvalidStateError"

        edit = client.put(f"/api/purchase-orders/{created['id']}", json={"notes": "x"})
        assert edit.status_code == 409

    def test_status_received_requires_reception(self, client):
        """Test the status endpoint refuses "received" while reception is required."""
        created = _create(client)
        response = client.put(f"/api/purchase-orders/{created['id']}/status", json={"status": "received"})
        assert response.status_code == 400
        assert response.json()["field"] == "received_quantities"

    def test_receive_with_discrepancies(self, client, service):
        """Test reception reports discrepancies and updates stock."""
        created = _create(client)
        client.put(f"/api/purchase-orders/{created['id']}/status", json={"status": "sent"})
        line_id = created["items"][0]["line_id"]

        response = client.post(f"/api/purchase-orders/{created['id']}/receive", json={
            "received_quantities": {line_id: 7, "P-002": 4},
            "notes": "Faltan 3 sacos",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["requires_attention"] is True
        assert body["order"]["status"] == "partially_received"
        assert body["discrepancies"][0]["difference"] == -3
        assert service.catalog.get_product("P-001").stock == 9
        assert service.catalog.get_product("P-002").stock == 14

        again = client.post(f"/api/purchase-orders/{created['id']}/receive",
                            json={"received_quantities": {line_id: 7}})
        assert again.status_code == 409

    def test_receive_invalid_quantities(self, client):
        """Test negative quantities and unknown lines are 400s."""
        created = _create(client)
        url = f"/api/purchase-orders/{created['id']}/receive"

        assert client.post(url, json={"received_quantities": {"P-001": -1}}).status_code == 400
        assert client.post(url, json={"received_quantities": {"nope": 1}}).status_code == 400

    def test_delete(self, client):
        """Test deleting a pending order, then a second delete is 404."""
        created = _create(client)
        url = f"/api/purchase-orders/{created['id']}"

        assert client.delete(url).json() == {"deleted": created["id"]}
        assert client.delete(url).status_code == 404

        audit = client.get(f"{url}/audit")
        assert audit.status_code == 404

    def test_audit(self, client):
        """Test the audit endpoint lists actions in order."""
        created = _create(client)
        client.put(f"/api/purchase-orders/{created['id']}/status", json={"status": "cancelled"})

        audit = client.get(f"/api/purchase-orders/{created['id']}/audit").json()
        assert [a["action"] for a in audit] == ["created", "cancelled"]


@pytest.mark.api
class TestPlanningEndpoints:
    """Tests for plan preview, auto-generation and stats."""

    def test_plan_preview(self, client):
        """Test the plan is returned without creating orders."""
        drafts = client.get("/api/purchase-orders/plan").json()["drafts"]

        assert len(drafts) == 4
        assert drafts[2]["supplier"] == {"kind": "registered", "supplier_id": "SUP-003", "name": None}
        assert drafts[3]["supplier"] == {"kind": "generic", "name": "Proveedor Genérico"}
        assert client.get("/api/stats").json()["total"] == 0

    def test_generate_auto(self, client):
        """Test auto-generation creates pending orders and reports skipped drafts."""
        response = client.post("/api/purchase-orders/generate-auto")

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "3 órdenes generadas exitosamente, 1 omitidas por proveedor inactivo"
        assert [o["status"] for o in body["orders"]] == ["pending"] * 3
        assert [d["supplier"]["supplier_id"] for d in body["skipped"]] == ["SUP-003"]
        assert client.get("/api/stats").json()["pending"] == 3

    def test_generate_auto_nothing_to_do(self, client):
        """Test the message when no product is under-stocked."""
        response = client.post("/api/purchase-orders/generate-auto", json={"supplier_id": "SUP-404"})
        assert response.json() == {
            "message": "No hay productos con stock bajo", "orders": [], "skipped": [],
        }

    def test_stats(self, client):
        """Test stats count orders by status."""
        created = _create(client)
        _create(client)
        client.put(f"/api/purchase-orders/{created['id']}/status", json={"status": "cancelled"})

        stats = client.get("/api/stats").json()
        assert stats["total"] == 2
        assert stats["pending"] == 1
        assert stats["cancelled"] == 1
