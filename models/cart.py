from typing import List, Literal, Optional

from pydantic import Field

from .base import DomainModel


CartType = Literal["Standard", "Scheduled", "Recurring"]
CartStatus = Literal["Draft", "Ready for Review", "Submitted"]
RecurringFrequency = Literal["Weekly", "Bi-weekly", "Monthly", "Quarterly"]
ItemApprovalStatus = Literal["Pending", "Approved", "Rejected"]

CART_STANDARD  = "Standard"
CART_SCHEDULED = "Scheduled"
CART_RECURRING = "Recurring"
TEMPLATE_CART_TYPES = {CART_SCHEDULED, CART_RECURRING}

CART_DRAFT            = "Draft"
CART_READY_FOR_REVIEW = "Ready for Review"
CART_SUBMITTED        = "Submitted"
SUBMITTABLE_CART_STATUSES = {CART_DRAFT, CART_READY_FOR_REVIEW}

FREQ_WEEKLY    = "Weekly"
FREQ_BIWEEKLY  = "Bi-weekly"
FREQ_MONTHLY   = "Monthly"
FREQ_QUARTERLY = "Quarterly"
ALL_FREQUENCIES = {FREQ_WEEKLY, FREQ_BIWEEKLY, FREQ_MONTHLY, FREQ_QUARTERLY}

ITEM_PENDING  = "Pending"
ITEM_APPROVED = "Approved"
ITEM_REJECTED = "Rejected"


class CartItem(DomainModel):
    """A single line on a cart.  Owned exclusively by its cart."""
    id: Optional[str] = None
    sku: str = ""
    name: str = ""
    quantity: float = 0
    unit_price: float = 0
    total_price: float = 0          # quantity * unit_price unless explicitly overridden
    note: Optional[str] = None
    vendor_id: Optional[str] = None
    purchase_order_id: Optional[str] = None
    approval_status: str = ITEM_PENDING     # One of ItemApprovalStatus
    rejection_reason: Optional[str] = None


class CartSchedule(DomainModel):
    """Scheduling fields of a template cart.  Dates are YYYY-MM-DD strings."""
    scheduled_date: Optional[str] = None    # Scheduled carts: fire once on/after this day
    frequency: Optional[str] = None         # One of RecurringFrequency
    start_date: Optional[str] = None        # Bi-weekly / Quarterly anchor
    day_of_week: Optional[int] = None       # 0 = Sunday ... 6 = Saturday
    day_of_month: Optional[int] = None      # 1 - 31


class Cart(DomainModel):
    """
    A container of line items.

    Standard carts are one-off orders in progress; Scheduled and Recurring
    carts are templates that spawn Standard drafts on their cadence.
    item_count / total_cost are cached aggregates of items.
    """
    id: str
    company_id: Optional[str] = None
    work_order_id: str = ""             # Human-facing, globally unique
    name: str = "Untitled"
    type: str = CART_STANDARD           # One of CartType
    status: str = CART_DRAFT            # One of CartStatus
    property_id: Optional[str] = None
    unit_id: Optional[str] = None
    category: Optional[str] = None
    created_by: Optional[str] = None
    item_count: int = 0
    total_cost: float = 0
    last_modified: str = ""             # ISO 8601 datetime

    # Scheduling
    scheduled_date: Optional[str] = None
    frequency: Optional[str] = None
    start_date: Optional[str] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    last_run_at: Optional[str] = None   # ISO 8601 datetime of the last spawn

    items: List[CartItem] = Field(default_factory=list)

    @property
    def is_template(self) -> bool:
        return self.type in TEMPLATE_CART_TYPES

    @property
    def schedule(self) -> CartSchedule:
        return CartSchedule(
            scheduled_date=self.scheduled_date,
            frequency=self.frequency,
            start_date=self.start_date,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
        )


class NewCartItem(DomainModel):
    """Item input for cart creation or a catalog add."""
    sku: str
    name: str
    quantity: float
    unit_price: float
    note: Optional[str] = None
    vendor_id: Optional[str] = None
