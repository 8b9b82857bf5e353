from typing import List, Optional

from pydantic import Field

from .base import DomainModel
from .cart import Cart
from .order import Order
from .purchase_order import PurchaseOrder
from .reference import (
    Account, AdminUser, Company, Customer, Product, Property, Role, Unit, Vendor,
)


class CartTotals(DomainModel):
    """Aggregates cached on a cart."""
    item_count: int = 0                     # Number of lines, not units
    total_cost: float = 0


class RecurrenceDecision(DomainModel):
    """Whether a template cart fires today, and the draft it would spawn."""
    should_run: bool = False
    reason: str = ""
    spawned_cart: Optional[Cart] = None


class RecurrenceReport(DomainModel):
    """Outcome of running every template cart of a tenant for one day."""
    evaluated: int = 0
    spawned_cart_ids: List[str] = Field(default_factory=list)
    skipped_existing: List[str] = Field(default_factory=list)   # spawn already present
    errors: List[str] = Field(default_factory=list)

    @property
    def fired(self) -> bool:
        return bool(self.spawned_cart_ids or self.skipped_existing)


class OperationResult(DomainModel):
    """
    Result of a mutation contract.

    success=False means nothing (or nothing further) was written and
    message explains why.  warnings carry non-fatal downstream failures
    that did not undo the primary change.
    """
    success: bool
    message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    cart: Optional[Cart] = None
    order: Optional[Order] = None
    purchase_order: Optional[PurchaseOrder] = None

    @classmethod
    def ok(cls, **kwargs) -> "OperationResult":
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, message: str, **kwargs) -> "OperationResult":
        return cls(success=False, message=message, **kwargs)


class DataGraph(DomainModel):
    """The composed, tenant-scoped snapshot handed to presentation."""
    company_id: Optional[str] = None
    company_name: str = "ProcurePro"
    companies: List[Company] = Field(default_factory=list)
    carts: List[Cart] = Field(default_factory=list)
    orders: List[Order] = Field(default_factory=list)
    products: List[Product] = Field(default_factory=list)
    vendors: List[Vendor] = Field(default_factory=list)
    properties: List[Property] = Field(default_factory=list)
    units: List[Unit] = Field(default_factory=list)
    users: List[AdminUser] = Field(default_factory=list)
    roles: List[Role] = Field(default_factory=list)
    accounts: List[Account] = Field(default_factory=list)
    customers: List[Customer] = Field(default_factory=list)


class LoadResult(DomainModel):
    """Outcome of one load/refresh cycle."""
    success: bool
    company_id: Optional[str] = None
    message: Optional[str] = None
    stale: bool = False                     # Superseded by a newer load; result discarded
    timed_out: bool = False
    signed_out: bool = False
    warnings: List[str] = Field(default_factory=list)
    recurrence: Optional[RecurrenceReport] = None
    elapsed_seconds: float = 0.0
