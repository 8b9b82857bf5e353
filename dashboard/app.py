"""
Procurement dashboard — FastAPI backend.

A thin JSON layer over the Workspace.  Responses are camelCase; business
failures become 400 (404 for unknown records) and non-fatal warnings are
returned in the body.

Endpoints
---------
  GET    /api/health                                       → liveness probe
  GET    /api/state                                        → current tenant snapshot
  POST   /api/reload                                       → reload current tenant
  POST   /api/companies/{company_id}/switch                → switch tenant and load it
  GET    /api/carts/{cart_id}                              → one cart
  POST   /api/carts                                        → create cart
  PATCH  /api/carts/{cart_id}/items                        → add / update / remove a line
  PATCH  /api/carts/{cart_id}/name                         → rename
  PATCH  /api/carts/{cart_id}/schedule                     → edit template schedule
  POST   /api/carts/{cart_id}/submit                       → submit for approval
  POST   /api/carts/{cart_id}/revert                       → back to Draft
  POST   /api/carts/{cart_id}/reuse                        → copy into a new Draft
  DELETE /api/carts/{cart_id}                              → delete with cascade
  POST   /api/carts/bulk-delete                            → delete many
  POST   /api/carts/bulk-submit                            → submit many
  GET    /api/orders/{order_id}                            → one order
  POST   /api/orders/{order_id}/approval                   → item approval decisions
  PATCH  /api/orders/{order_id}/status                     → manual status change
  POST   /api/orders/{order_id}/purchase-orders            → split into vendor POs
  PATCH  /api/orders/{order_id}/purchase-orders/{po_id}/status   → fulfillment status
  PATCH  /api/orders/{order_id}/purchase-orders/{po_id}/payment  → billing fields / payment
  POST   /api/billback/sync                                → backfill billable items
"""
import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException

from config import Config
from dashboard.models import (
    ApprovalRequest, CartCreate, CartIds, CartItemUpdate, CartRename,
    OrderStatusUpdate, PaymentUpdateRequest, PoStatusUpdate,
)
from engine.errors import PersistenceError
from engine.workspace import Workspace
from models.cart import CartSchedule
from models.result import LoadResult, OperationResult

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGES = {"Cart not found", "Order not found"}

# ---------------------------------------------------------------------------
# Workspace (built on first request so the app imports without store
# credentials)
# ---------------------------------------------------------------------------
_workspace: Optional[Workspace] = None


def get_workspace() -> Workspace:
    global _workspace
    if _workspace is None:
        _workspace = Workspace.from_config(Config())
    return _workspace


app = FastAPI(title="Procurement Dashboard", docs_url=None, redoc_url=None)


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


def _operation(result: OperationResult) -> dict:
    if not result.success:
        status = 404 if result.message in NOT_FOUND_MESSAGES else 400
        raise HTTPException(status, result.message)
    return _dump(result)


def _load(result: LoadResult) -> dict:
    if not result.success:
        if result.stale:
            raise HTTPException(409, result.message)
        raise HTTPException(503 if result.timed_out else 400, result.message)
    return _dump(result)


# ── Tenant / state ───────────────────────────────────────────────────────────

@app.get("/api/health")
def health(ws: Workspace = Depends(get_workspace)):
    return {
        "status": "ok",
        "companyId": ws.state.company_id,
        "loading": ws.state.loading,
        "error": ws.state.error,
    }


@app.get("/api/state")
def state(ws: Workspace = Depends(get_workspace)):
    snapshot = _dump(ws.state.snapshot())
    snapshot["activeCartId"] = ws.state.active_cart_id
    return snapshot


@app.post("/api/reload")
def reload(ws: Workspace = Depends(get_workspace)):
    return _load(ws.reload())


@app.post("/api/companies/{company_id}/switch")
def switch_company(company_id: str, ws: Workspace = Depends(get_workspace)):
    return _load(ws.switch_company(company_id))


# ── Carts ────────────────────────────────────────────────────────────────────

@app.get("/api/carts/{cart_id}")
def get_cart(cart_id: str, ws: Workspace = Depends(get_workspace)):
    cart = ws.state.find_cart(cart_id)
    if cart is None:
        try:
            cart = ws.carts.fetch_cart(cart_id)
        except PersistenceError as exc:
            raise HTTPException(502, exc.message)
    if cart is None:
        raise HTTPException(404, f"Cart not found: {cart_id}")
    return _dump(cart)


@app.post("/api/carts")
def create_cart(body: CartCreate, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.create_cart(
        body.type,
        name=body.name,
        property_id=body.property_id,
        unit_id=body.unit_id,
        category=body.category,
        items=body.items,
        schedule=body.schedule,
    ))


@app.patch("/api/carts/{cart_id}/items")
def update_cart_item(cart_id: str, body: CartItemUpdate, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.update_cart_item(
        cart_id, body.sku, body.quantity,
        name=body.name, unit_price=body.unit_price, note=body.note, vendor_id=body.vendor_id,
    ))


@app.patch("/api/carts/{cart_id}/name")
def rename_cart(cart_id: str, body: CartRename, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.rename_cart(cart_id, body.name))


@app.patch("/api/carts/{cart_id}/schedule")
def update_schedule(cart_id: str, body: CartSchedule, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.update_schedule(cart_id, body))


@app.post("/api/carts/bulk-delete")
def bulk_delete(body: CartIds, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.bulk_delete_carts(body.cart_ids))


@app.post("/api/carts/bulk-submit")
def bulk_submit(body: CartIds, ws: Workspace = Depends(get_workspace)):
    results = ws.carts.bulk_submit(body.cart_ids)
    return {
        "submitted": sum(1 for r in results if r.success),
        "results": [_dump(r) for r in results],
    }


@app.post("/api/carts/{cart_id}/submit")
def submit_cart(cart_id: str, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.submit_cart(cart_id))


@app.post("/api/carts/{cart_id}/revert")
def revert_cart(cart_id: str, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.revert_to_draft(cart_id))


@app.post("/api/carts/{cart_id}/reuse")
def reuse_cart(cart_id: str, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.reuse_cart(cart_id))


@app.delete("/api/carts/{cart_id}")
def delete_cart(cart_id: str, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.carts.delete_cart(cart_id))


# ── Orders / purchase orders ─────────────────────────────────────────────────

@app.get("/api/orders/{order_id}")
def get_order(order_id: str, ws: Workspace = Depends(get_workspace)):
    order = ws.state.find_order(order_id)
    if order is None:
        try:
            order = ws.orders.fetch_order(order_id)
        except PersistenceError as exc:
            raise HTTPException(502, exc.message)
    if order is None:
        raise HTTPException(404, f"Order not found: {order_id}")
    return _dump(order)


@app.post("/api/orders/{order_id}/approval")
def approval_decision(order_id: str, body: ApprovalRequest, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.orders.apply_approval_decision(order_id, body.decisions))


@app.patch("/api/orders/{order_id}/status")
def set_order_status(order_id: str, body: OrderStatusUpdate, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.orders.set_order_status(order_id, body.status))


@app.post("/api/orders/{order_id}/purchase-orders")
def create_purchase_orders(order_id: str, ws: Workspace = Depends(get_workspace)):
    return _operation(ws.orders.create_purchase_orders(order_id))


@app.patch("/api/orders/{order_id}/purchase-orders/{po_id}/status")
def update_po_status(order_id: str, po_id: str, body: PoStatusUpdate,
                     ws: Workspace = Depends(get_workspace)):
    return _operation(ws.orders.update_po_status(order_id, po_id, body.status, body.proof_url))


@app.patch("/api/orders/{order_id}/purchase-orders/{po_id}/payment")
def update_po_payment(order_id: str, po_id: str, body: PaymentUpdateRequest,
                      ws: Workspace = Depends(get_workspace)):
    return _operation(ws.reconciliation.record_payment_update(order_id, po_id, body.updates, body.metadata))


@app.post("/api/billback/sync")
def billback_sync(ws: Workspace = Depends(get_workspace)):
    company_id = ws.state.company_id
    if not company_id:
        raise HTTPException(400, "No company loaded")
    try:
        created = ws.billback.sync_missing_billable_items(company_id)
    except PersistenceError as exc:
        raise HTTPException(502, exc.message)
    return {"companyId": company_id, "synced": created}
