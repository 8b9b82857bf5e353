"""
Request bodies for the procurement API.  Field names are camelCase on the
wire; snake_case is accepted too.
"""
from typing import Optional

from pydantic import Field

from models.base import DomainModel
from models.cart import CartSchedule, NewCartItem
from models.order import ItemDecision
from models.purchase_order import PaymentMetadata, PaymentUpdate


class CartCreate(DomainModel):
    type: str = "Standard"
    name: Optional[str] = None
    property_id: Optional[str] = None
    unit_id: Optional[str] = None
    category: Optional[str] = None
    items: list[NewCartItem] = Field(default_factory=list)
    schedule: Optional[CartSchedule] = None


class CartItemUpdate(DomainModel):
    sku: str
    quantity: float                 # <= 0 removes the line
    name: str = ""
    unit_price: float = 0
    note: Optional[str] = None
    vendor_id: Optional[str] = None


class CartRename(DomainModel):
    name: str


class CartIds(DomainModel):
    cart_ids: list[str]


class ApprovalRequest(DomainModel):
    decisions: dict[str, ItemDecision]      # { cart item id: decision }


class OrderStatusUpdate(DomainModel):
    status: str


class PoStatusUpdate(DomainModel):
    status: str
    proof_url: Optional[str] = None


class PaymentUpdateRequest(DomainModel):
    updates: PaymentUpdate
    metadata: Optional[PaymentMetadata] = None
