from typing import List, Literal, Optional

from pydantic import Field

from .base import DomainModel
from .cart import CartItem
from .purchase_order import PurchaseOrder


OrderStatus = Literal[
    "Draft",
    "Ready for Review",
    "Scheduled",
    "Submitted",
    "Pending My Approval",
    "Pending Others",
    "Approved",
    "Needs Revision",
    "Processing",
    "Shipped",
    "Completed",
    "Rejected",
    "Cancelled",
]

ORDER_DRAFT               = "Draft"
ORDER_READY_FOR_REVIEW    = "Ready for Review"
ORDER_SCHEDULED           = "Scheduled"
ORDER_SUBMITTED           = "Submitted"
ORDER_PENDING_MY_APPROVAL = "Pending My Approval"
ORDER_PENDING_OTHERS      = "Pending Others"
ORDER_APPROVED            = "Approved"
ORDER_NEEDS_REVISION      = "Needs Revision"
ORDER_PROCESSING          = "Processing"
ORDER_SHIPPED             = "Shipped"
ORDER_COMPLETED           = "Completed"
ORDER_REJECTED            = "Rejected"
ORDER_CANCELLED           = "Cancelled"

TERMINAL_ORDER_STATUSES = {ORDER_COMPLETED, ORDER_REJECTED, ORDER_CANCELLED}


class StatusHistoryEntry(DomainModel):
    status: str
    date: str                               # ISO 8601 datetime


class Order(DomainModel):
    """
    A submitted cart.

    items is the origin cart's item list as read at load time; status and
    status_history are the mutable part.  One PurchaseOrder per vendor.
    """
    id: str
    company_id: Optional[str] = None
    cart_id: Optional[str] = None
    cart_name: str = "Untitled Order"
    work_order_id: Optional[str] = None
    submitted_by: Optional[str] = None
    submission_date: str = ""
    total_cost: float = 0
    status: str = ORDER_SUBMITTED           # One of OrderStatus
    type: str = "Standard"
    item_count: int = 0
    property_id: Optional[str] = None
    unit_id: Optional[str] = None
    thread_id: Optional[str] = None
    billing_status: str = "Unbilled"
    invoice_id: Optional[str] = None

    items: List[CartItem] = Field(default_factory=list)
    purchase_orders: List[PurchaseOrder] = Field(default_factory=list)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)


class ItemDecision(DomainModel):
    """An approver's verdict on one cart item."""
    status: str                             # One of ItemApprovalStatus
    reason: Optional[str] = None
