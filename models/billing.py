from typing import Literal, Optional

from .base import DomainModel


BillableSourceType = Literal[
    "Expense", "WorkOrder", "Manual", "Recurring", "VendorInvoice", "PurchaseOrder",
]
BillableStatus = Literal["Pending", "Invoiced", "Paid", "Waived"]

SOURCE_PURCHASE_ORDER = "PurchaseOrder"
SOURCE_VENDOR_INVOICE = "VendorInvoice"
BILLABLE_PENDING = "Pending"


class BillableItem(DomainModel):
    """A paid vendor cost waiting to be charged on to a property/customer."""
    id: Optional[str] = None
    company_id: Optional[str] = None
    source_type: str = SOURCE_PURCHASE_ORDER
    source_id: Optional[str] = None
    property_id: Optional[str] = None
    unit_id: Optional[str] = None
    customer_id: Optional[str] = None
    description: str = ""
    cost_amount: float = 0
    markup_amount: float = 0
    total_amount: float = 0
    status: str = BILLABLE_PENDING
    invoice_id: Optional[str] = None


class PaymentResult(DomainModel):
    """Outcome of a payment-authorization call."""
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
