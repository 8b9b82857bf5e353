"""
Billback: turning paid vendor costs into billable items (accounts receivable).

One Pending billable item is created per line of a paid purchase order or
vendor invoice, at cost (no markup).  Creation is keyed by
(source_type, source_id): if items already exist for a source nothing new
is inserted, so a repeated call after a payment retry is harmless.
"""
import logging
from typing import Optional

from models.billing import (
    BILLABLE_PENDING, SOURCE_PURCHASE_ORDER, SOURCE_VENDOR_INVOICE, BillableItem,
)

from .cart_aggregation import effective_line_total
from .database import Embed, PO_ORDER, Store
from .errors import PersistenceError, ProcurementError
from .field_mapper import billable_item_to_record, items_for_purchase_order, map_cart_item, safe_number

logger = logging.getLogger(__name__)

PO_ORDER_HEADER = Embed(
    "order", "orders", local_key="original_order_id", foreign_key="id", many=False,
    hint="original_order_id",
)
INVOICE_PO = Embed(
    "purchase_order", "purchase_orders", local_key="purchase_order_id", foreign_key="id",
    many=False, children=(PO_ORDER_HEADER,),
)


class BillbackService:

    def __init__(self, store: Store, batch_size: int = 5):
        self.store = store
        self.batch_size = max(1, batch_size)

    def has_items_for(self, source_type: str, source_id: str) -> bool:
        row = self.store.select_one(
            "billable_items", columns="id",
            eq={"source_type": source_type, "source_id": source_id},
        )
        return row is not None

    def _insert(self, items: list[BillableItem]) -> int:
        if not items:
            return 0
        self.store.insert("billable_items", [billable_item_to_record(i) for i in items])
        return len(items)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_billable_items_from_purchase_order(self, po_id: str) -> int:
        """
        Create billable items for every line of a purchase order.

        Returns the number of items created (0 when they already exist or
        the PO has no lines).  Raises ProcurementError if the PO cannot be read.
        """
        if self.has_items_for(SOURCE_PURCHASE_ORDER, po_id):
            logger.info("Billable items for PO %s already exist — skipping", po_id)
            return 0

        po = self.store.select_one("purchase_orders", embed=(PO_ORDER,), eq={"id": po_id})
        if po is None:
            raise ProcurementError(f"Could not fetch PO details for {po_id}")

        order = po.get("order") or {}
        cart = order.get("cart") or {}
        items = [map_cart_item(r) for r in (cart.get("cart_items") or []) if r]
        po_items = items_for_purchase_order(po_id, po.get("vendor_id"), items, {})
        if not po_items:
            logger.warning("No items found linked to PO %s", po_id)
            return 0

        company_id = order.get("company_id") or po.get("company_id")
        billables = []
        for item in po_items:
            cost = effective_line_total(item)
            billables.append(BillableItem(
                company_id=company_id,
                source_type=SOURCE_PURCHASE_ORDER,
                source_id=po_id,
                property_id=order.get("property_id"),
                unit_id=order.get("unit_id"),
                description=f"{item.name} (Qty: {item.quantity:g})",
                cost_amount=cost,
                markup_amount=0,
                total_amount=cost,
                status=BILLABLE_PENDING,
            ))
        created = self._insert(billables)
        logger.info("Created %d billable item(s) for PO %s", created, po_id)
        return created

    def create_billable_items_from_vendor_invoice(self, invoice_id: str) -> int:
        """Create billable items for every line of a paid vendor invoice."""
        if self.has_items_for(SOURCE_VENDOR_INVOICE, invoice_id):
            logger.info("Billable items for vendor invoice %s already exist — skipping", invoice_id)
            return 0

        lines = self.store.select("vendor_invoice_items", eq={"invoice_id": invoice_id})
        if not lines:
            return 0
        invoice = self.store.select_one("vendor_invoices", embed=(INVOICE_PO,), eq={"id": invoice_id})
        if invoice is None:
            raise ProcurementError(f"Could not fetch vendor invoice {invoice_id}")

        order = (invoice.get("purchase_order") or {}).get("order") or {}
        billables = []
        for line in lines:
            cost = safe_number(line.get("total_price")) or (
                safe_number(line.get("unit_price")) * safe_number(line.get("quantity"))
            )
            billables.append(BillableItem(
                company_id=invoice.get("company_id"),
                source_type=SOURCE_VENDOR_INVOICE,
                source_id=invoice_id,
                property_id=order.get("property_id"),
                unit_id=order.get("unit_id"),
                description=line.get("description") or "",
                cost_amount=cost,
                markup_amount=0,
                total_amount=cost,
                status=BILLABLE_PENDING,
            ))
        created = self._insert(billables)
        logger.info("Created %d billable item(s) for vendor invoice %s", created, invoice_id)
        return created

    def sync_missing_billable_items(self, company_id: Optional[str]) -> int:
        """
        Backfill: create billable items for paid POs (payment date set) of a
        company that have none.  Existence is checked in batches; a failing
        batch or PO is logged and skipped.  Returns the number of POs synced.
        """
        paid = self.store.select(
            "purchase_orders", columns="id, payment_date, original_order_id",
            embed=(PO_ORDER_HEADER,), not_null=["payment_date"],
        )
        paid_ids = [
            r["id"] for r in paid
            if company_id is None or (r.get("order") or {}).get("company_id") == company_id
        ]
        if not paid_ids:
            return 0

        existing: set[str] = set()
        for start in range(0, len(paid_ids), self.batch_size):
            chunk = paid_ids[start:start + self.batch_size]
            try:
                rows = self.store.select(
                    "billable_items", columns="source_id",
                    eq={"source_type": SOURCE_PURCHASE_ORDER}, in_={"source_id": chunk},
                )
            except PersistenceError as exc:
                logger.error("Error checking existing billable items for %s: %s", chunk, exc)
                continue
            existing.update(r["source_id"] for r in rows)

        missing = [po_id for po_id in paid_ids if po_id not in existing]
        logger.info("Found %d paid PO(s) without billable items", len(missing))

        synced = 0
        for po_id in missing:
            try:
                if self.create_billable_items_from_purchase_order(po_id):
                    synced += 1
            except ProcurementError as exc:
                logger.error("Failed to sync PO %s: %s", po_id, exc)
        return synced
