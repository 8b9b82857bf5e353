"""
Order status engine.

Orders move forward through stages:

    Draft / Ready for Review / Scheduled
      -> Submitted
      -> Pending My Approval | Pending Others
      -> Approved | Needs Revision
      -> Processing
      -> Shipped
      -> Completed

Rejected and Cancelled can be reached from any non-terminal state.
Completed, Rejected and Cancelled never move again.  Needs Revision may go
back into review.

Two derived transitions exist:
  - approval rollup: item approval decisions -> Approved / Needs Revision
  - PO rollup: purchase order fulfillment -> Shipped / Completed
"""
import logging
from typing import Callable, Iterable, Optional

from models.cart import ITEM_APPROVED, ITEM_PENDING, ITEM_REJECTED, CartItem
from models.order import (
    ORDER_APPROVED, ORDER_CANCELLED, ORDER_COMPLETED, ORDER_DRAFT, ORDER_NEEDS_REVISION,
    ORDER_PENDING_MY_APPROVAL, ORDER_PENDING_OTHERS, ORDER_PROCESSING,
    ORDER_READY_FOR_REVIEW, ORDER_REJECTED, ORDER_SCHEDULED, ORDER_SHIPPED,
    ORDER_SUBMITTED, TERMINAL_ORDER_STATUSES, ItemDecision, Order,
)
from models.purchase_order import (
    PAYMENT_UNBILLED, PO_ISSUED, PO_RECEIVED, SHIPPED_PO_STATUSES, PurchaseOrder,
)
from models.result import LoadResult, OperationResult

from .cart_aggregation import effective_line_total
from .database import ORDER_GRAPH, Store
from .errors import PersistenceError
from .field_mapper import item_vendor_id, map_order, purchase_order_to_record, utc_now_iso
from .state import AppState
from .work_order import new_record_id

logger = logging.getLogger(__name__)

ALL_PO_STATUSES = {PO_ISSUED, "Purchased", "Processing", "In Transit", PO_RECEIVED}

# Position of each status in the forward progression
_STAGE = {
    ORDER_DRAFT:               0,
    ORDER_READY_FOR_REVIEW:    0,
    ORDER_SCHEDULED:           0,
    ORDER_SUBMITTED:           1,
    ORDER_PENDING_MY_APPROVAL: 2,
    ORDER_PENDING_OTHERS:      2,
    ORDER_APPROVED:            3,
    ORDER_NEEDS_REVISION:      3,
    ORDER_PROCESSING:          4,
    ORDER_SHIPPED:             5,
    ORDER_COMPLETED:           6,
}
_REVIEW_STATUSES = {ORDER_SUBMITTED, ORDER_PENDING_MY_APPROVAL, ORDER_PENDING_OTHERS}


def can_transition(current: str, new: str) -> bool:
    """True if an order in `current` may be moved to `new`."""
    if current == new:
        return False
    if current in TERMINAL_ORDER_STATUSES:
        return False
    if new in (ORDER_REJECTED, ORDER_CANCELLED):
        return True
    if new not in _STAGE:
        return False
    if current == ORDER_NEEDS_REVISION and new in _REVIEW_STATUSES:
        return True
    return _STAGE[new] >= _STAGE.get(current, 0)


def derive_status_from_approvals(items: Iterable[CartItem]) -> Optional[str]:
    """
    Approved when every item is approved; Needs Revision when something was
    rejected and nothing is pending; otherwise None (still under review).
    """
    statuses = [i.approval_status or ITEM_PENDING for i in items]
    if not statuses:
        return None
    if all(s == ITEM_APPROVED for s in statuses):
        return ORDER_APPROVED
    if any(s == ITEM_REJECTED for s in statuses) and ITEM_PENDING not in statuses:
        return ORDER_NEEDS_REVISION
    return None


def derive_status_from_purchase_orders(current: str, purchase_orders: Iterable[PurchaseOrder]) -> Optional[str]:
    """
    First matching rule wins: all Received -> Completed, all In Transit or
    Received -> Shipped.  Returns None when the status should not change.
    """
    pos = list(purchase_orders)
    if not pos:
        return None
    if all(po.status == PO_RECEIVED for po in pos):
        return ORDER_COMPLETED if current != ORDER_COMPLETED else None
    if all(po.status in SHIPPED_PO_STATUSES for po in pos):
        if current in (ORDER_COMPLETED, ORDER_SHIPPED):
            return None
        return ORDER_SHIPPED
    return None


class OrderService:
    """Order and purchase-order mutations.  Every write is followed by a re-read."""

    def __init__(self, store: Store, state: AppState, reload: Callable[[], LoadResult]):
        self.store = store
        self.state = state
        self.reload = reload

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_order(self, order_id: str) -> Optional[Order]:
        row = self.store.select_one("orders", embed=ORDER_GRAPH, eq={"id": order_id})
        if row is None:
            return None
        return map_order(row, self.state.graph.products)

    def refresh_order(self, order_id: str) -> Optional[Order]:
        order = self.fetch_order(order_id)
        if order is not None:
            self.state.upsert_order(order)
        return order

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def set_order_status(self, order_id: str, status: str) -> OperationResult:
        """Write a new status, append it to the history and re-read the order."""
        try:
            order = self.fetch_order(order_id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to update order status: {exc.message}")
        if order is None:
            return OperationResult.fail("Order not found")
        if order.status == status:
            return OperationResult.ok(order=order)
        if not can_transition(order.status, status):
            return OperationResult.fail(f"Cannot move order from {order.status} to {status}")
        try:
            return OperationResult.ok(order=self._write_status(order_id, status, order.status))
        except PersistenceError as exc:
            logger.error("Status change on order %s failed: %s", order_id, exc)
            return OperationResult.fail(f"Failed to update order status: {exc.message}")

    def _write_status(self, order_id: str, status: str, previous: str) -> Optional[Order]:
        self.store.update("orders", order_id, {"status": status})
        self.store.insert("order_status_history", {
            "order_id": order_id, "status": status, "date": utc_now_iso(),
        })
        logger.info("Order %s: %s -> %s", order_id, previous, status)
        return self.refresh_order(order_id)

    def apply_approval_decision(self, order_id: str, decisions: dict[str, ItemDecision]) -> OperationResult:
        """
        Persist per-item decisions, then roll the order up to Approved or
        Needs Revision when the decisions settle it.
        """
        for item_id, decision in decisions.items():
            if decision.status not in (ITEM_PENDING, ITEM_APPROVED, ITEM_REJECTED):
                return OperationResult.fail(f"Unknown approval status: {decision.status}")
        try:
            order = self.fetch_order(order_id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to record approval: {exc.message}")
        if order is None:
            return OperationResult.fail("Order not found")
        on_order = {item.id for item in order.items}
        foreign = [item_id for item_id in decisions if item_id not in on_order]
        if foreign:
            return OperationResult.fail(f"Items not on order {order_id}: {', '.join(foreign)}")

        try:
            for item_id, decision in decisions.items():
                self.store.update("cart_items", item_id, {
                    "approval_status": decision.status,
                    "rejection_reason": decision.reason,
                })
            order = self.fetch_order(order_id)
        except PersistenceError as exc:
            logger.error("Approval decision on order %s failed: %s", order_id, exc)
            self.reload()
            return OperationResult.fail(f"Failed to record approval: {exc.message}")
        if order is None:
            return OperationResult.fail("Order not found")
        return self._roll_up(order, derive_status_from_approvals(order.items))

    def reconcile_order_status_from_pos(self, order_id: str) -> OperationResult:
        """Apply the PO rollup to an order.  At most one transition per call."""
        try:
            order = self.fetch_order(order_id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to read order: {exc.message}")
        if order is None:
            return OperationResult.fail("Order not found")
        return self._roll_up(order, derive_status_from_purchase_orders(order.status, order.purchase_orders))

    def _roll_up(self, order: Order, new_status: Optional[str]) -> OperationResult:
        # The child write has already landed, so a refused rollup is a warning
        if new_status is None or new_status == order.status:
            self.state.upsert_order(order)
            return OperationResult.ok(order=order)
        if not can_transition(order.status, new_status):
            logger.warning("Order %s stays %s; rollup to %s not allowed", order.id, order.status, new_status)
            self.state.upsert_order(order)
            return OperationResult.ok(
                order=order, warnings=[f"Order stays {order.status}; cannot move to {new_status}"],
            )
        return self.set_order_status(order.id, new_status)

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def update_po_status(self, order_id: str, po_id: str, status: str,
                         proof_url: Optional[str] = None) -> OperationResult:
        """Change a PO's fulfillment status, then run the PO rollup."""
        if status not in ALL_PO_STATUSES:
            return OperationResult.fail(f"Unknown purchase order status: {status}")
        values = {"status": status}
        if proof_url:
            values["delivery_proof_url"] = proof_url
        try:
            self.store.update("purchase_orders", po_id, values)
        except PersistenceError as exc:
            logger.error("PO %s status update failed: %s", po_id, exc)
            return OperationResult.fail(f"Failed to update purchase order: {exc.message}")
        logger.info("PO %s on order %s -> %s", po_id, order_id, status)
        result = self.reconcile_order_status_from_pos(order_id)
        if result.order is not None:
            result.purchase_order = next((p for p in result.order.purchase_orders if p.id == po_id), None)
        return result

    def save_order(self, order: Order) -> OperationResult:
        """
        Persist an edited order: status (through the transition rules) and
        each PO's fulfillment fields.  An existing PO keeps its vendor.
        """
        try:
            stored = self.fetch_order(order.id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to save order: {exc.message}")
        if stored is None:
            return OperationResult.fail("Order not found")
        if order.status != stored.status and not can_transition(stored.status, order.status):
            return OperationResult.fail(f"Cannot move order from {stored.status} to {order.status}")

        vendors = {po.id: po.vendor_id for po in stored.purchase_orders}
        try:
            if order.status != stored.status:
                self._write_status(order.id, order.status, stored.status)
            for po in order.purchase_orders:
                record = purchase_order_to_record(po, order.id)
                if po.id in vendors:
                    record["vendor_id"] = vendors[po.id]
                self.store.upsert("purchase_orders", record)
            saved = self.refresh_order(order.id)
        except PersistenceError as exc:
            logger.error("Saving order %s failed: %s", order.id, exc)
            self.reload()
            return OperationResult.fail(f"Failed to save order: {exc.message}")
        return OperationResult.ok(order=saved)

    def create_purchase_orders(self, order_id: str) -> OperationResult:
        """
        Split an approved order by vendor: one Issued PO per vendor, its
        amount due being that vendor's item total.  The order moves to
        Processing.
        """
        try:
            order = self.fetch_order(order_id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to read order: {exc.message}")
        if order is None:
            return OperationResult.fail("Order not found")
        if order.status != ORDER_APPROVED:
            return OperationResult.fail(f"Order is {order.status}; only approved orders can be split")
        if order.purchase_orders:
            return OperationResult.fail("Purchase orders already exist for this order")

        products_by_sku = {p.sku: p for p in self.state.graph.products if p.sku}
        by_vendor: dict[str, list[CartItem]] = {}
        unassigned = []
        for item in order.items:
            vendor_id = item_vendor_id(item, products_by_sku)
            if vendor_id:
                by_vendor.setdefault(vendor_id, []).append(item)
            else:
                unassigned.append(item)
        if not by_vendor:
            return OperationResult.fail("No items have a vendor")

        warnings = []
        if unassigned:
            warnings.append(f"{len(unassigned)} item(s) have no vendor and were not ordered")
        try:
            for vendor_id, items in by_vendor.items():
                po_id = new_record_id("po")
                self.store.insert("purchase_orders", {
                    "id": po_id,
                    "original_order_id": order_id,
                    "vendor_id": vendor_id,
                    "status": PO_ISSUED,
                    "payment_status": PAYMENT_UNBILLED,
                    "amount_due": sum(effective_line_total(i) for i in items),
                })
                for item in items:
                    if item.id:
                        self.store.update("cart_items", item.id, {"purchase_order_id": po_id})
                logger.info("Issued PO %s to vendor %s for order %s", po_id, vendor_id, order_id)
        except PersistenceError as exc:
            logger.error("Creating purchase orders for %s failed: %s", order_id, exc)
            self.reload()
            return OperationResult.fail(f"Failed to create purchase orders: {exc.message}")

        result = self.set_order_status(order_id, ORDER_PROCESSING)
        result.warnings = warnings + result.warnings
        return result

    def delete_order(self, order_id: str) -> OperationResult:
        self.state.remove_orders([order_id])
        try:
            self.store.delete("purchase_orders", order_id, column="original_order_id")
            self.store.delete("order_status_history", order_id, column="order_id")
            self.store.delete("orders", order_id)
        except PersistenceError as exc:
            logger.error("Failed to delete order %s: %s", order_id, exc)
            self.reload()
            return OperationResult.fail(f"Failed to delete order: {exc.message}")
        return OperationResult.ok()
