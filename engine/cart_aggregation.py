"""
Cart totals and the cart mutations that keep them correct.

recompute_totals() is the single definition of a cart's cached aggregates:
item_count is the number of lines (not units) and total_cost is the sum of
effective line totals.  CartService runs it after every item change and at
submission, and writes the pair back onto the cart row.
"""
import logging
from typing import Callable, Iterable, Optional

from models.cart import (
    CART_DRAFT, CART_STANDARD, CART_SUBMITTED, SUBMITTABLE_CART_STATUSES,
    Cart, CartItem, CartSchedule, NewCartItem,
)
from models.order import ORDER_PENDING_MY_APPROVAL, Order
from models.result import CartTotals, LoadResult, OperationResult

from .database import CART_ITEMS, ORDER_GRAPH, Store
from .errors import PersistenceError, ValidationError
from .field_mapper import (
    cart_item_to_record, cart_to_record, map_cart, map_cart_item, map_order,
    order_to_record, safe_number, utc_now_iso,
)
from .recurrence import validate_schedule
from .state import AppState
from .work_order import WORK_ORDER_FAILURE_MESSAGE, WorkOrderIdGenerator, new_record_id

logger = logging.getLogger(__name__)


def effective_line_total(item: CartItem) -> float:
    """Stored total unless it is zero, then quantity x unit price when both are positive."""
    total = safe_number(item.total_price)
    if total != 0:
        return total
    qty = safe_number(item.quantity)
    price = safe_number(item.unit_price)
    if qty > 0 and price > 0:
        return qty * price
    return 0.0


def recompute_totals(items: Iterable[CartItem]) -> CartTotals:
    items = list(items)
    return CartTotals(
        item_count=len(items),
        total_cost=sum(effective_line_total(i) for i in items),
    )


def validate_new_item(item: NewCartItem) -> None:
    if not item.sku or not item.sku.strip():
        raise ValidationError("Item SKU is required", "sku")
    if not item.name or not item.name.strip():
        raise ValidationError("Item name is required", "name")
    if safe_number(item.quantity) <= 0:
        raise ValidationError(f"Quantity must be greater than 0 for {item.sku}", "quantity")
    if safe_number(item.unit_price) <= 0:
        raise ValidationError(f"Unit price must be greater than 0 for {item.sku}", "unitPrice")


def _to_cart_item(item: NewCartItem) -> CartItem:
    return CartItem(
        sku=item.sku,
        name=item.name,
        quantity=item.quantity,
        unit_price=item.unit_price,
        note=item.note,
        vendor_id=item.vendor_id,
    )


class CartService:
    """
    Cart mutations.  Each returns an OperationResult; store failures are
    reported in the result and, where local state was changed ahead of the
    write, followed by a full reload.
    """

    def __init__(
        self,
        store: Store,
        state: AppState,
        work_orders: WorkOrderIdGenerator,
        reload: Callable[[], LoadResult],
        user_id: Optional[str] = None,
    ):
        self.store = store
        self.state = state
        self.work_orders = work_orders
        self.reload = reload
        self.user_id = user_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_cart(self, cart_id: str) -> Optional[Cart]:
        row = self.store.select_one("carts", embed=(CART_ITEMS,), eq={"id": cart_id})
        return map_cart(row) if row else None

    def fetch_items(self, cart_id: str) -> list[CartItem]:
        return [map_cart_item(r) for r in self.store.select("cart_items", eq={"cart_id": cart_id})]

    def _refresh_cart(self, cart_id: str) -> Optional[Cart]:
        cart = self.fetch_cart(cart_id)
        if cart is not None:
            self.state.upsert_cart(cart)
        return cart

    # ------------------------------------------------------------------
    # Create / copy
    # ------------------------------------------------------------------

    def create_cart(
        self,
        cart_type: str = CART_STANDARD,
        *,
        company_id: Optional[str] = None,
        name: Optional[str] = None,
        property_id: Optional[str] = None,
        unit_id: Optional[str] = None,
        category: Optional[str] = None,
        items: Iterable[NewCartItem] = (),
        schedule: Optional[CartSchedule] = None,
    ) -> OperationResult:
        """Create a Draft cart with optional initial items and scheduling."""
        items = list(items)
        try:
            for item in items:
                validate_new_item(item)
            validate_schedule(cart_type, schedule)
        except ValidationError as exc:
            return OperationResult.fail(str(exc))

        graph = self.state.graph
        company_id = company_id or self.state.viewing_company_id or graph.company_id
        if not company_id:
            return OperationResult.fail("No company selected")
        if not property_id:
            if not graph.properties:
                return OperationResult.fail("No properties available")
            property_id = graph.properties[0].id

        try:
            work_order_id = self.work_orders.generate()
        except PersistenceError as exc:
            return OperationResult.fail(f"Error creating cart: {exc.message}")
        if not work_order_id:
            return OperationResult.fail(WORK_ORDER_FAILURE_MESSAGE)

        cart_items = [_to_cart_item(i) for i in items]
        totals = recompute_totals(cart_items)
        schedule = schedule or CartSchedule()
        cart = Cart(
            id=new_record_id("cart"),
            company_id=company_id,
            work_order_id=work_order_id,
            name=name or f"New {cart_type} Cart",
            type=cart_type,
            status=CART_DRAFT,
            property_id=property_id,
            unit_id=unit_id,
            category=category,
            created_by=self.user_id,
            item_count=totals.item_count,
            total_cost=totals.total_cost,
            last_modified=utc_now_iso(),
            scheduled_date=schedule.scheduled_date,
            frequency=schedule.frequency,
            start_date=schedule.start_date,
            day_of_week=schedule.day_of_week,
            day_of_month=schedule.day_of_month,
            items=cart_items,
        )
        return self._write_new_cart(cart)

    def reuse_cart(self, cart_id: str, user_name: Optional[str] = None) -> OperationResult:
        """Copy a cart (type, property, schedule, items) into a new Draft."""
        try:
            original = self.fetch_cart(cart_id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to fetch original cart details: {exc.message}")
        if original is None:
            return OperationResult.fail("Failed to fetch original cart details.")

        try:
            work_order_id = self.work_orders.generate()
        except PersistenceError as exc:
            return OperationResult.fail(f"Error reusing cart: {exc.message}")
        if not work_order_id:
            return OperationResult.fail(WORK_ORDER_FAILURE_MESSAGE)

        user_name = user_name or self._current_user_name()
        copy = original.model_copy(deep=True, update={
            "id": new_record_id("cart"),
            "work_order_id": work_order_id,
            "name": f"{original.type} Cart - {user_name} - {work_order_id}",
            "status": CART_DRAFT,
            "created_by": self.user_id,
            "last_modified": utc_now_iso(),
            "last_run_at": None,
        })
        for item in copy.items:
            item.id = None
            item.approval_status = "Pending"
            item.rejection_reason = None
            item.purchase_order_id = None
        return self._write_new_cart(copy)

    def _current_user_name(self) -> str:
        user = next((u for u in self.state.graph.users if u.id == self.user_id), None)
        return user.name if user else "User"

    def _write_new_cart(self, cart: Cart) -> OperationResult:
        try:
            self.store.insert("carts", cart_to_record(cart))
        except PersistenceError as exc:
            logger.error("Error creating cart %s: %s", cart.id, exc)
            return OperationResult.fail(f"Error creating cart: {exc.message}")

        warnings = []
        if cart.items:
            try:
                self.store.insert("cart_items", [cart_item_to_record(i, cart.id) for i in cart.items])
            except PersistenceError as exc:
                logger.error("Cart %s created but its items were not saved: %s", cart.id, exc)
                warnings.append(f"Cart created but items could not be saved: {exc.message}")

        try:
            stored = self._refresh_cart(cart.id)
        except PersistenceError as exc:
            logger.warning("Could not re-read cart %s: %s", cart.id, exc)
            stored = None
        if stored is None:
            stored = cart
            self.state.upsert_cart(stored)
        elif stored.total_cost == 0 and cart.total_cost > 0:
            stored.total_cost = cart.total_cost
        self.state.active_cart_id = stored.id
        logger.info("Created %s cart %s (%s)", stored.type, stored.id, stored.work_order_id)
        return OperationResult.ok(cart=stored, warnings=warnings)

    # ------------------------------------------------------------------
    # Items and fields
    # ------------------------------------------------------------------

    def update_cart_item(
        self,
        cart_id: str,
        sku: str,
        quantity: float,
        *,
        name: str = "",
        unit_price: float = 0,
        note: Optional[str] = None,
        vendor_id: Optional[str] = None,
    ) -> OperationResult:
        """
        Set the quantity of the line with this SKU.  quantity <= 0 removes
        it; otherwise the line is updated or added.  Totals are recomputed
        from the stored items afterwards.
        """
        cart = self.state.find_cart(cart_id)
        try:
            if cart is None:
                cart = self.fetch_cart(cart_id)
            if cart is None:
                return OperationResult.fail("Cart not found")
            existing = next((i for i in cart.items if i.sku == sku), None)

            if quantity <= 0:
                if existing is not None and existing.id:
                    self.store.delete("cart_items", existing.id)
            else:
                if existing is None:
                    try:
                        validate_new_item(NewCartItem(
                            sku=sku, name=name, quantity=quantity, unit_price=unit_price,
                        ))
                    except ValidationError as exc:
                        return OperationResult.fail(str(exc))
                payload = {
                    "cart_id": cart_id,
                    "name": name or (existing.name if existing else ""),
                    "sku": sku,
                    "unit_price": unit_price or (existing.unit_price if existing else 0),
                    "quantity": quantity,
                    "note": note,
                }
                if vendor_id:
                    payload["vendor_id"] = vendor_id
                if existing is not None and existing.id:
                    self.store.update("cart_items", existing.id, payload)
                else:
                    self.store.insert("cart_items", payload)

            totals = self.write_totals(cart_id)
            updated = self._refresh_cart(cart_id)
        except PersistenceError as exc:
            logger.error("Failed to update item %s on cart %s: %s", sku, cart_id, exc)
            return OperationResult.fail(f"Failed to update item: {exc.message}")

        logger.info("Cart %s now has %d line(s), total %.2f", cart_id, totals.item_count, totals.total_cost)
        return OperationResult.ok(cart=updated)

    def write_totals(self, cart_id: str) -> CartTotals:
        """Recompute totals from the stored items and write them to the cart row."""
        totals = recompute_totals(self.fetch_items(cart_id))
        self.store.update("carts", cart_id, {
            "total_cost": totals.total_cost,
            "item_count": totals.item_count,
            "last_modified": utc_now_iso(),
        })
        return totals

    def _update_fields(self, cart_id: str, values: dict, action: str) -> OperationResult:
        try:
            self.store.update("carts", cart_id, values)
            cart = self._refresh_cart(cart_id)
        except PersistenceError as exc:
            logger.error("Failed to %s cart %s: %s", action, cart_id, exc)
            return OperationResult.fail(f"Failed to {action} cart: {exc.message}")
        if cart is None:
            return OperationResult.fail("Cart not found")
        return OperationResult.ok(cart=cart)

    def rename_cart(self, cart_id: str, name: str) -> OperationResult:
        if not name or not name.strip():
            return OperationResult.fail("Cart name cannot be empty")
        return self._update_fields(cart_id, {"name": name.strip()}, "rename")

    def revert_to_draft(self, cart_id: str) -> OperationResult:
        return self._update_fields(cart_id, {"status": CART_DRAFT}, "revert")

    def update_schedule(self, cart_id: str, schedule: CartSchedule) -> OperationResult:
        """Edit a template's cadence.  last_run_at is left as is."""
        cart = self.state.find_cart(cart_id)
        try:
            cart = cart or self.fetch_cart(cart_id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to update schedule: {exc.message}")
        if cart is None:
            return OperationResult.fail("Cart not found")
        if not cart.is_template:
            return OperationResult.fail("Only scheduled or recurring carts have a schedule")
        try:
            validate_schedule(cart.type, schedule)
        except ValidationError as exc:
            return OperationResult.fail(str(exc))
        return self._update_fields(cart_id, {
            "scheduled_date": schedule.scheduled_date,
            "frequency": schedule.frequency,
            "start_date": schedule.start_date,
            "day_of_week": schedule.day_of_week,
            "day_of_month": schedule.day_of_month,
        }, "reschedule")

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_cart(self, cart_id: str) -> OperationResult:
        return self.bulk_delete_carts([cart_id])

    def bulk_delete_carts(self, cart_ids: list[str]) -> OperationResult:
        """
        Remove carts from local state immediately, then delete them with
        their items and dependent orders.  A failed write reloads everything.
        """
        cart_ids = [c for c in cart_ids if c]
        if not cart_ids:
            return OperationResult.fail("No carts selected")
        self.state.remove_carts(cart_ids)
        try:
            order_ids = [r["id"] for r in self.store.select("orders", columns="id", in_={"cart_id": cart_ids})]
            if order_ids:
                self.store.delete("purchase_orders", order_ids, column="original_order_id")
                self.store.delete("order_status_history", order_ids, column="order_id")
                self.store.delete("orders", order_ids)
            self.store.delete("cart_items", cart_ids, column="cart_id")
            self.store.delete("carts", cart_ids)
        except PersistenceError as exc:
            logger.error("Failed to delete carts %s: %s", cart_ids, exc)
            self.reload()
            return OperationResult.fail(f"Failed to delete cart(s): {exc.message}")
        logger.info("Deleted %d cart(s)", len(cart_ids))
        return OperationResult.ok()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_cart(self, cart_id: str) -> OperationResult:
        """
        Submit a Draft / Ready for Review cart: the cart becomes Submitted
        with recomputed totals and an Order is created in Pending My Approval.
        """
        try:
            row = self.store.select_one("carts", eq={"id": cart_id})
            if row is None:
                return OperationResult.fail("Cart not found")
            items = self.fetch_items(cart_id)
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to submit cart: {exc.message}")

        cart = map_cart(row)
        if not items:
            return OperationResult.fail("Cart has no items")
        if cart.status not in SUBMITTABLE_CART_STATUSES:
            return OperationResult.fail(f"Cart is {cart.status} and cannot be submitted")

        totals = recompute_totals(items)
        now = utc_now_iso()
        order = Order(
            id=new_record_id("ord"),
            company_id=cart.company_id or self.state.company_id,
            cart_id=cart_id,
            cart_name=cart.name,
            submitted_by=self.user_id,
            submission_date=now,
            total_cost=totals.total_cost,
            status=ORDER_PENDING_MY_APPROVAL,
            type=cart.type,
            item_count=totals.item_count,
            property_id=cart.property_id,
            unit_id=cart.unit_id,
        )

        try:
            self.store.update("carts", cart_id, {
                "status": CART_SUBMITTED,
                "total_cost": totals.total_cost,
                "item_count": totals.item_count,
                "last_modified": now,
            })
        except PersistenceError as exc:
            return OperationResult.fail(f"Failed to submit cart: {exc.message}")

        try:
            self.store.insert("orders", order_to_record(order))
        except PersistenceError as exc:
            logger.error("Order insert for cart %s failed, restoring %s: %s", cart_id, cart.status, exc)
            try:
                self.store.update("carts", cart_id, {"status": cart.status})
            except PersistenceError as undo_exc:
                logger.error("Could not restore cart %s: %s", cart_id, undo_exc)
                self.reload()
            return OperationResult.fail(f"Failed to create order: {exc.message}")

        warnings = []
        try:
            self.store.insert("order_status_history", {
                "order_id": order.id, "status": order.status, "date": now,
            })
        except PersistenceError as exc:
            logger.warning("Status history for order %s not written: %s", order.id, exc)
            warnings.append(f"Order created but status history was not recorded: {exc.message}")

        try:
            stored = self.store.select_one("orders", embed=ORDER_GRAPH, eq={"id": order.id})
        except PersistenceError as exc:
            logger.warning("Could not re-read order %s: %s", order.id, exc)
            stored = None
        if stored is not None:
            order = map_order(stored, self.state.graph.products)
        else:
            order.items = items
        self.state.upsert_order(order)

        submitted = cart.model_copy(update={
            "status": CART_SUBMITTED,
            "total_cost": totals.total_cost,
            "item_count": totals.item_count,
            "last_modified": now,
            "items": items,
        })
        self.state.upsert_cart(submitted)
        logger.info(
            "Submitted cart %s as order %s (%d line(s), %.2f)",
            cart_id, order.id, totals.item_count, totals.total_cost,
        )
        return OperationResult.ok(cart=submitted, order=order, warnings=warnings)

    def bulk_submit(self, cart_ids: list[str]) -> list[OperationResult]:
        return [self.submit_cart(cart_id) for cart_id in cart_ids]
