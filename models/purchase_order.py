from typing import List, Literal, Optional

from pydantic import Field

from .base import DomainModel
from .cart import CartItem


PurchaseOrderStatus = Literal["Issued", "Purchased", "Processing", "In Transit", "Received"]
PaymentStatus = Literal["Unbilled", "Billed", "Paid"]

PO_ISSUED     = "Issued"
PO_PURCHASED  = "Purchased"
PO_PROCESSING = "Processing"
PO_IN_TRANSIT = "In Transit"
PO_RECEIVED   = "Received"
SHIPPED_PO_STATUSES = {PO_IN_TRANSIT, PO_RECEIVED}

PAYMENT_UNBILLED = "Unbilled"
PAYMENT_BILLED   = "Billed"
PAYMENT_PAID     = "Paid"
ALL_PAYMENT_STATUSES = {PAYMENT_UNBILLED, PAYMENT_BILLED, PAYMENT_PAID}


class PurchaseOrder(DomainModel):
    """
    The subset of an order's items sourced from one vendor.

    Fulfillment fields (status, eta, carrier, tracking) and billing fields
    (payment_status, invoice_*, amount_due) are tracked independently.
    vendor_id is fixed once the PO exists.
    """
    id: str
    original_order_id: Optional[str] = None
    vendor_id: Optional[str] = None
    items: List[CartItem] = Field(default_factory=list)

    # Fulfillment
    status: str = PO_ISSUED                 # One of PurchaseOrderStatus
    eta: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    vendor_confirmation_number: Optional[str] = None
    delivery_proof_url: Optional[str] = None

    # Billing
    payment_status: str = PAYMENT_UNBILLED  # One of PaymentStatus
    invoice_number: Optional[str] = None
    invoice_url: Optional[str] = None
    invoice_date: Optional[str] = None      # YYYY-MM-DD
    due_date: Optional[str] = None          # YYYY-MM-DD
    amount_due: float = 0
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None

    created_at: Optional[str] = None


class PaymentUpdate(DomainModel):
    """
    Billing fields an operator may change on a PO.  Unset (or empty)
    fields are left untouched.
    """
    payment_status: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    amount_due: Optional[float] = None
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None
    invoice_url: Optional[str] = None


class PaymentMetadata(DomainModel):
    """Options for charging a PO through the payment collaborator."""
    process_payment: bool = False           # Explicit opt-in; nothing is charged otherwise
    charge_amount: Optional[float] = None   # Falls back to PaymentUpdate.amount_due
    payment_token: str = "placeholder-token"
    gateway: str = "stripe"
    settings_id: Optional[str] = None
    save_card: bool = False
    email_receipt: bool = False
