"""
Purchase Orders — FastAPI backend.

Thin REST layer over ProcurementService.  All order state lives in the
SQLite database; products and suppliers come from the catalog CSVs.

Endpoints
---------
  GET    /api/health                          → liveness check
  GET    /api/stats                           → order counts by status
  GET    /api/purchase-orders                 → list summaries (?status= ?supplier_id= ?search=)
  GET    /api/purchase-orders/plan            → preview low-stock drafts (?supplier_id=)
  POST   /api/purchase-orders/generate-auto   → create one pending order per draft
  POST   /api/purchase-orders                 → create an order by hand
  GET    /api/purchase-orders/{id}            → full order
  GET    /api/purchase-orders/{id}/audit      → audit history
  PUT    /api/purchase-orders/{id}            → edit a pending order
  PUT    /api/purchase-orders/{id}/status     → send / cancel / finalize
  POST   /api/purchase-orders/{id}/receive    → receive with per-line quantities
  DELETE /api/purchase-orders/{id}            → delete a pending order
"""
import logging
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from config import Config
from procurement.errors import (
    ConcurrencyConflict, InvalidStateError, OrderNotFoundError, ProcurementError,
    UpstreamFailure, ValidationError,
)
from procurement.service import ProcurementService
from .schemas import GenerateRequest, OrderCreate, OrderUpdate, ReceiveRequest, StatusUpdate

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Service (built on first request)
# ---------------------------------------------------------------------------
_service: Optional[ProcurementService] = None


def get_service() -> ProcurementService:
    global _service
    if _service is None:
        _service = ProcurementService(Config())
    return _service


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Purchase Orders", docs_url=None, redoc_url=None)

_ERROR_STATUS = {
    ValidationError:     400,
    OrderNotFoundError:  404,
    InvalidStateError:   409,
    ConcurrencyConflict: 409,
    UpstreamFailure:     502,
}


@app.exception_handler(ProcurementError)
async def _procurement_error(request: Request, exc: ProcurementError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=body)


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/stats")
def stats():
    return get_service().db.get_stats()


@app.get("/api/purchase-orders")
def list_orders(
    status: Optional[str] = Query(None),
    supplier_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    limit: int = Query(500, ge=1, le=5000),
    offset: int = Query(0, ge=0),
):
    try:
        return get_service().db.list_orders(
            status=status, supplier_id=supplier_id, search=search,
            start_date=start_date, end_date=end_date, limit=limit, offset=offset,
        )
    except ValueError as exc:
        message = str(exc)
        field = next((f for f in ("start_date", "end_date") if message.startswith(f)), "status")
        raise ValidationError(message, field=field) from exc


@app.get("/api/purchase-orders/plan")
def plan(supplier_id: Optional[str] = Query(None)):
    drafts = get_service().generate_plan(supplier_id)
    return {"drafts": [d.model_dump() for d in drafts]}


@app.post("/api/purchase-orders/generate-auto", status_code=201)
def generate_auto(body: Optional[GenerateRequest] = None):
    result = get_service().generate_orders(body.supplier_id if body else None)
    if not result.orders and not result.skipped:
        message = "No hay productos con stock bajo"
    else:
        message = f"{len(result.orders)} órdenes generadas exitosamente"
        if result.skipped:
            message += f", {len(result.skipped)} omitidas por proveedor inactivo"
    return {
        "message": message,
        "orders": [o.model_dump() for o in result.orders],
        "skipped": [d.model_dump() for d in result.skipped],
    }


@app.post("/api/purchase-orders", status_code=201)
def create_order(body: OrderCreate):
    order = get_service().orders.create_order(body.to_draft())
    return order.model_dump()


@app.get("/api/purchase-orders/{order_id}")
def get_order(order_id: str):
    return get_service().orders.get_order(order_id).model_dump()


@app.get("/api/purchase-orders/{order_id}/audit")
def get_audit(order_id: str):
    service = get_service()
    service.orders.get_order(order_id)
    return service.db.get_audit_log(order_id)


@app.put("/api/purchase-orders/{order_id}")
def update_order(order_id: str, body: OrderUpdate):
    return get_service().orders.edit_order(order_id, body.to_patch()).model_dump()


@app.put("/api/purchase-orders/{order_id}/status")
def update_status(order_id: str, body: StatusUpdate):
    return get_service().orders.transition_status(order_id, body.status).model_dump()


@app.post("/api/purchase-orders/{order_id}/receive")
def receive_order(order_id: str, body: ReceiveRequest):
    order, discrepancies = get_service().orders.receive_order(
        order_id, body.received_quantities, body.notes,
    )
    return {
        "order": order.model_dump(),
        "discrepancies": [d.model_dump() for d in discrepancies],
        "requires_attention": bool(discrepancies),
    }


@app.delete("/api/purchase-orders/{order_id}")
def delete_order(order_id: str):
    get_service().orders.delete_order(order_id)
    return {"deleted": order_id}
