"""
Integration tests for approval, purchase orders and status rollups.
"""
import pytest

from models.order import ItemDecision


@pytest.mark.integration
class TestApproval:
    """Tests for item decisions rolling up to the order."""

    def test_all_approved(self, loaded_workspace, submitted_order, store):
        result = loaded_workspace.orders.apply_approval_decision(submitted_order, {
            "ci-1": ItemDecision(status="Approved"),
            "ci-2": ItemDecision(status="Approved"),
        })
        assert result.success, result.message
        assert result.order.status == "Approved"
        assert [h.status for h in result.order.status_history] == ["Pending My Approval", "Approved"]
        assert store.row("orders", submitted_order)["status"] == "Approved"

    def test_rejection_needs_revision(self, loaded_workspace, submitted_order, store):
        result = loaded_workspace.orders.apply_approval_decision(submitted_order, {
            "ci-1": ItemDecision(status="Approved"),
            "ci-2": ItemDecision(status="Rejected", reason="Wrong wattage"),
        })
        assert result.order.status == "Needs Revision"
        assert store.row("cart_items", "ci-2")["rejection_reason"] == "Wrong wattage"

    def test_partial_review_keeps_status(self, loaded_workspace, submitted_order):
        """Test that the order stays in review while items are pending."""
        result = loaded_workspace.orders.apply_approval_decision(submitted_order, {
            "ci-1": ItemDecision(status="Rejected"),
        })
        assert result.success
        assert result.order.status == "Pending My Approval"
        item = next(i for i in result.order.items if i.id == "ci-1")
        assert item.approval_status == "Rejected"

    def test_unknown_decision(self, loaded_workspace, submitted_order, store):
        result = loaded_workspace.orders.apply_approval_decision(submitted_order, {
            "ci-1": ItemDecision(status="Maybe"),
        })
        assert not result.success
        assert store.row("cart_items", "ci-1").get("approval_status") is None

    def test_items_from_other_orders_rejected(self, loaded_workspace, submitted_order, store):
        """Test that a decision naming an item outside the order writes nothing."""
        store.tables["cart_items"].append({"id": "ci-9", "cart_id": "cart-9", "sku": "SKU-BULB", "quantity": 1})
        result = loaded_workspace.orders.apply_approval_decision(submitted_order, {
            "ci-1": ItemDecision(status="Approved"),
            "ci-9": ItemDecision(status="Rejected"),
        })
        assert not result.success
        assert "ci-9" in result.message
        assert store.row("cart_items", "ci-9").get("approval_status") is None
        assert store.row("cart_items", "ci-1").get("approval_status") is None

    def test_rejection_after_processing_is_kept_as_warning(self, loaded_workspace, approved_order, store):
        """Test that a late rejection is recorded while the order stays Processing."""
        loaded_workspace.orders.create_purchase_orders(approved_order)
        result = loaded_workspace.orders.apply_approval_decision(approved_order, {
            "ci-1": ItemDecision(status="Rejected", reason="Damaged"),
        })
        assert result.success, result.message
        assert result.order.status == "Processing"
        assert result.warnings == ["Order stays Processing; cannot move to Needs Revision"]
        assert store.row("cart_items", "ci-1")["approval_status"] == "Rejected"
        cached = loaded_workspace.state.find_order(approved_order)
        assert next(i for i in cached.items if i.id == "ci-1").approval_status == "Rejected"


@pytest.mark.integration
class TestStatusChanges:
    """Tests for manual status changes."""

    def test_invalid_transition(self, loaded_workspace, submitted_order):
        result = loaded_workspace.orders.set_order_status(submitted_order, "Shipped")
        assert result.success
        result = loaded_workspace.orders.set_order_status(submitted_order, "Approved")
        assert not result.success
        assert result.message == "Cannot move order from Shipped to Approved"

    def test_same_status_is_noop(self, loaded_workspace, submitted_order, store):
        writes = store.count("update", "orders")
        result = loaded_workspace.orders.set_order_status(submitted_order, "Pending My Approval")
        assert result.success
        assert store.count("update", "orders") == writes

    def test_cancel(self, loaded_workspace, submitted_order):
        result = loaded_workspace.orders.set_order_status(submitted_order, "Cancelled")
        assert result.order.status == "Cancelled"
        assert not loaded_workspace.orders.set_order_status(submitted_order, "Processing").success

    def test_missing_order(self, loaded_workspace):
        assert loaded_workspace.orders.set_order_status("ord-missing", "Approved").message == "Order not found"

    def test_delete_order(self, loaded_workspace, submitted_order, store):
        assert loaded_workspace.orders.delete_order(submitted_order).success
        assert store.row("orders", submitted_order) is None
        assert loaded_workspace.state.find_order(submitted_order) is None


@pytest.mark.integration
class TestPurchaseOrders:
    """Tests for splitting an order by vendor and the fulfillment rollup."""

    def test_split_by_vendor(self, loaded_workspace, approved_order, store):
        """Test one Issued PO per vendor with that vendor's item total."""
        result = loaded_workspace.orders.create_purchase_orders(approved_order)

        assert result.success, result.message
        order = result.order
        assert order.status == "Processing"
        by_vendor = {po.vendor_id: po for po in order.purchase_orders}
        assert set(by_vendor) == {"ven-1", "ven-2"}
        assert by_vendor["ven-1"].amount_due == 20
        assert by_vendor["ven-2"].amount_due == 5
        assert all(po.status == "Issued" for po in order.purchase_orders)
        assert [i.id for i in by_vendor["ven-1"].items] == ["ci-1"]
        assert store.row("cart_items", "ci-2")["purchase_order_id"] == by_vendor["ven-2"].id

    def test_only_approved_orders(self, loaded_workspace, submitted_order):
        result = loaded_workspace.orders.create_purchase_orders(submitted_order)
        assert not result.success

    def test_items_without_vendor_are_reported(self, loaded_workspace, approved_order, store):
        store.update("cart_items", "ci-2", {"sku": "SKU-UNKNOWN"})
        result = loaded_workspace.orders.create_purchase_orders(approved_order)
        assert result.success
        assert len(result.order.purchase_orders) == 1
        assert result.warnings

    def test_received_pos_complete_order(self, loaded_workspace, approved_order):
        """Test that the order completes only when every PO is received."""
        orders = loaded_workspace.orders
        split = orders.create_purchase_orders(approved_order).order
        first, second = (po.id for po in split.purchase_orders)

        result = orders.update_po_status(approved_order, first, "Received", proof_url="https://img.test/1.jpg")
        assert result.order.status == "Processing"
        assert result.purchase_order.delivery_proof_url == "https://img.test/1.jpg"

        result = orders.update_po_status(approved_order, second, "Received")
        assert result.order.status == "Completed"

    def test_in_transit_ships_order(self, loaded_workspace, approved_order):
        orders = loaded_workspace.orders
        split = orders.create_purchase_orders(approved_order).order
        for po in split.purchase_orders:
            result = orders.update_po_status(approved_order, po.id, "In Transit")
        assert result.order.status == "Shipped"

    def test_received_po_on_cancelled_order(self, loaded_workspace, approved_order, store):
        """Test that a PO received after cancellation is stored and the order stays Cancelled."""
        orders = loaded_workspace.orders
        split = orders.create_purchase_orders(approved_order).order
        first, second = (po.id for po in split.purchase_orders)
        orders.update_po_status(approved_order, first, "Received")
        assert orders.set_order_status(approved_order, "Cancelled").success

        result = orders.update_po_status(approved_order, second, "Received")

        assert result.success, result.message
        assert result.order.status == "Cancelled"
        assert result.warnings == ["Order stays Cancelled; cannot move to Completed"]
        assert result.purchase_order.status == "Received"
        assert store.row("purchase_orders", second)["status"] == "Received"
        cached = loaded_workspace.state.find_order(approved_order)
        assert {po.status for po in cached.purchase_orders} == {"Received"}

    def test_unknown_po_status(self, loaded_workspace, approved_order):
        assert not loaded_workspace.orders.update_po_status(approved_order, "po-1", "Lost").success

    def test_save_order_keeps_vendor(self, loaded_workspace, approved_order, store):
        """Test that saving an edited PO cannot move it to another vendor."""
        orders = loaded_workspace.orders
        order = orders.create_purchase_orders(approved_order).order
        po = order.purchase_orders[0]
        original_vendor = po.vendor_id
        po.vendor_id = "ven-other"
        po.tracking_number = "1Z999"
        po.carrier = "UPS"

        result = orders.save_order(order)

        assert result.success, result.message
        row = store.row("purchase_orders", po.id)
        assert row["vendor_id"] == original_vendor
        assert row["tracking_number"] == "1Z999"
