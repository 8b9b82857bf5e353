from .cart import Cart, CartItem, CartSchedule, NewCartItem
from .order import Order, StatusHistoryEntry, ItemDecision
from .purchase_order import PurchaseOrder, PaymentUpdate, PaymentMetadata
from .reference import (
    Company, Vendor, VendorAccount, Product, ProductVendorOption,
    Property, Unit, Account, Customer, AdminUser, Role,
)
from .billing import BillableItem, PaymentResult
from .result import (
    CartTotals, RecurrenceDecision, RecurrenceReport,
    OperationResult, DataGraph, LoadResult,
)

__all__ = [
    "Cart", "CartItem", "CartSchedule", "NewCartItem",
    "Order", "StatusHistoryEntry", "ItemDecision",
    "PurchaseOrder", "PaymentUpdate", "PaymentMetadata",
    "Company", "Vendor", "VendorAccount", "Product", "ProductVendorOption",
    "Property", "Unit", "Account", "Customer", "AdminUser", "Role",
    "BillableItem", "PaymentResult",
    "CartTotals", "RecurrenceDecision", "RecurrenceReport",
    "OperationResult", "DataGraph", "LoadResult",
]
