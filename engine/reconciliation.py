"""
Purchase order payment reconciliation.

record_payment_update() is a two-step saga:

  1. (optional, opt-in) authorize the charge; a decline aborts before
     anything is written
  2. write the billing fields on the PO

then, when the PO is marked Paid, billback items are created.  Billback
is best-effort: its failure is reported as a warning and never undoes the
payment record.
"""
import logging
from typing import Optional

from models.purchase_order import ALL_PAYMENT_STATUSES, PAYMENT_PAID, PaymentMetadata, PaymentUpdate
from models.result import OperationResult

from .billback import BillbackService
from .database import Store
from .errors import PersistenceError
from .field_mapper import payment_update_to_record
from .order_lifecycle import OrderService
from .payments import PaymentGateway

logger = logging.getLogger(__name__)


class ReconciliationService:

    def __init__(self, store: Store, orders: OrderService, billback: BillbackService,
                 payments: PaymentGateway):
        self.store = store
        self.orders = orders
        self.billback = billback
        self.payments = payments

    def record_payment_update(
        self,
        order_id: str,
        po_id: str,
        updates: PaymentUpdate,
        metadata: Optional[PaymentMetadata] = None,
    ) -> OperationResult:
        if updates.payment_status and updates.payment_status not in ALL_PAYMENT_STATUSES:
            return OperationResult.fail(f"Unknown payment status: {updates.payment_status}")
        if updates.amount_due is not None and updates.amount_due < 0:
            return OperationResult.fail("Amount due cannot be negative")
        values = payment_update_to_record(updates)
        if not values:
            return OperationResult.fail("No payment fields to update")

        message = None
        if metadata is not None and metadata.process_payment:
            amount = metadata.charge_amount or updates.amount_due
            if not amount:
                return OperationResult.fail("Payment amount is missing. Cannot process.")
            payment = self.payments.process_payment(po_id, metadata.payment_token, amount, metadata)
            if not payment.success:
                return OperationResult.fail(f"Payment Failed: {payment.error}")
            message = f"Payment processed ({payment.transaction_id})"

        try:
            self.store.update("purchase_orders", po_id, values)
        except PersistenceError as exc:
            logger.error("Payment update on PO %s failed: %s", po_id, exc)
            return OperationResult.fail(f"Failed to update status: {exc.message}")
        logger.info("PO %s billing updated: %s", po_id, sorted(values))

        warnings = []
        if updates.payment_status == PAYMENT_PAID:
            try:
                self.billback.create_billable_items_from_purchase_order(po_id)
            except Exception as exc:
                logger.error("Billback for PO %s failed: %s", po_id, exc, exc_info=True)
                warnings.append(f"Payment recorded, but failed to create AR Billable Items: {exc}")

        try:
            order = self.orders.refresh_order(order_id)
        except PersistenceError as exc:
            logger.warning("Could not re-read order %s: %s", order_id, exc)
            warnings.append(f"Payment recorded, but the order could not be refreshed: {exc.message}")
            order = None

        po = next((p for p in order.purchase_orders if p.id == po_id), None) if order else None
        return OperationResult.ok(message=message, warnings=warnings, order=order, purchase_order=po)
