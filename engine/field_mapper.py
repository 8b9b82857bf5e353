"""
Translation between store records and domain models.

Store records are snake_case, nullable and loosely typed; domain models
are defaulted and numeric-safe.  This is the single place where missing
or malformed fields turn into explicit defaults, so nothing here raises
on bad input.
"""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from models.billing import BillableItem
from models.cart import Cart, CartItem, ITEM_PENDING
from models.order import Order, StatusHistoryEntry
from models.purchase_order import PaymentUpdate, PurchaseOrder
from models.reference import (
    Account, AdminUser, Company, Customer, DEFAULT_ROLE_ID, OWNER_ROLE_ID,
    Product, ProductVendorOption, Property, Role, Unit, Vendor, VendorAccount,
)

logger = logging.getLogger(__name__)

OWNER_DISPLAY_NAME = "Procure Pro Owner"
DEFAULT_AVATAR_URL = "https://via.placeholder.com/150"

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def safe_number(value: Any) -> float:
    """
    Coerce anything to a finite float.  Missing or non-numeric input is 0.

    Strings are read like a lenient float parse: "12.5 kg" -> 12.5.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        n = float(value)
    else:
        try:
            n = float(str(value).strip())
        except ValueError:
            m = _LEADING_NUMBER.match(str(value))
            if not m:
                return 0.0
            n = float(m.group(0))
    if math.isnan(n) or math.isinf(n):
        return 0.0
    return n


def _str(value: Any, default: str = "") -> str:
    return default if value is None else str(value)


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ------------------------------------------------------------------
# Carts
# ------------------------------------------------------------------

def map_cart_item(raw: dict) -> CartItem:
    qty = safe_number(raw.get("quantity"))
    unit_price = safe_number(raw.get("unit_price"))
    total = safe_number(raw.get("total_price"))
    if total == 0 and qty > 0 and unit_price > 0:
        total = qty * unit_price
    return CartItem(
        id=raw.get("id"),
        sku=_str(raw.get("sku")),
        name=_str(raw.get("name")),
        quantity=qty,
        unit_price=unit_price,
        total_price=total,
        note=raw.get("note"),
        vendor_id=raw.get("vendor_id"),
        purchase_order_id=raw.get("purchase_order_id"),
        approval_status=raw.get("approval_status") or ITEM_PENDING,
        rejection_reason=raw.get("rejection_reason"),
    )


def cart_item_to_record(item: CartItem, cart_id: str) -> dict:
    """Insert payload for a line.  total_price is left to the store."""
    record = {
        "cart_id": cart_id,
        "name": item.name,
        "sku": item.sku,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "note": item.note,
    }
    if item.vendor_id:
        record["vendor_id"] = item.vendor_id
    return record


def map_cart(raw: dict) -> Cart:
    items = [map_cart_item(i) for i in (raw.get("cart_items") or []) if i]
    return Cart(
        id=raw["id"],
        company_id=raw.get("company_id"),
        work_order_id=raw.get("work_order_id") or raw["id"],
        name=raw.get("name") or "Untitled",
        type=raw.get("type") or "Standard",
        status=raw.get("status") or "Draft",
        property_id=raw.get("property_id"),
        unit_id=raw.get("unit_id"),
        category=raw.get("category"),
        created_by=raw.get("created_by"),
        item_count=int(safe_number(raw.get("item_count"))),
        total_cost=safe_number(raw.get("total_cost")),
        last_modified=raw.get("last_modified") or utc_now_iso(),
        scheduled_date=raw.get("scheduled_date"),
        frequency=raw.get("frequency"),
        start_date=raw.get("start_date"),
        day_of_week=_opt_int(raw.get("day_of_week")),
        day_of_month=_opt_int(raw.get("day_of_month")),
        last_run_at=raw.get("last_run_at"),
        items=items,
    )


def cart_to_record(cart: Cart) -> dict:
    """Cart row without its items.  Unset scheduling fields are omitted."""
    record = {
        "id": cart.id,
        "company_id": cart.company_id,
        "work_order_id": cart.work_order_id,
        "name": cart.name,
        "type": cart.type,
        "status": cart.status,
        "property_id": cart.property_id,
        "unit_id": cart.unit_id,
        "created_by": cart.created_by,
        "total_cost": cart.total_cost,
        "item_count": cart.item_count,
    }
    optional = {
        "category": cart.category,
        "scheduled_date": cart.scheduled_date,
        "frequency": cart.frequency,
        "start_date": cart.start_date,
        "day_of_week": cart.day_of_week,
        "day_of_month": cart.day_of_month,
        "last_run_at": cart.last_run_at,
    }
    record.update({k: v for k, v in optional.items() if v is not None})
    return record


# ------------------------------------------------------------------
# Orders and purchase orders
# ------------------------------------------------------------------

def item_vendor_id(item: CartItem, products_by_sku: dict[str, Product]) -> Optional[str]:
    """Vendor an item is sourced from: its own vendor, else its catalog product's."""
    if item.vendor_id:
        return item.vendor_id
    product = products_by_sku.get(item.sku)
    return product.vendor_id if product else None


def items_for_purchase_order(
    po_id: str,
    vendor_id: Optional[str],
    items: Iterable[CartItem],
    products_by_sku: dict[str, Product],
) -> list[CartItem]:
    """
    Items belonging to a PO.  An explicit purchase_order_id link wins;
    otherwise items are matched on vendor.
    """
    items = list(items)
    linked = [i for i in items if i.purchase_order_id == po_id]
    if linked:
        return linked
    if not vendor_id:
        return []
    return [
        i for i in items
        if not i.purchase_order_id and item_vendor_id(i, products_by_sku) == vendor_id
    ]


def map_purchase_order(raw: dict, order_id: Optional[str] = None,
                       items: Optional[list[CartItem]] = None) -> PurchaseOrder:
    return PurchaseOrder(
        id=raw["id"],
        original_order_id=order_id or raw.get("original_order_id"),
        vendor_id=raw.get("vendor_id"),
        items=[i.model_copy(deep=True) for i in (items or [])],
        status=raw.get("status") or "Issued",
        eta=raw.get("eta"),
        carrier=raw.get("carrier"),
        tracking_number=raw.get("tracking_number"),
        vendor_confirmation_number=raw.get("vendor_confirmation_number"),
        delivery_proof_url=raw.get("delivery_proof_url"),
        payment_status=raw.get("payment_status") or "Unbilled",
        invoice_number=raw.get("invoice_number"),
        invoice_url=raw.get("invoice_url"),
        invoice_date=raw.get("invoice_date"),
        due_date=raw.get("due_date"),
        amount_due=safe_number(raw.get("amount_due")),
        payment_date=raw.get("payment_date"),
        payment_method=raw.get("payment_method"),
        created_at=raw.get("created_at"),
    )


def purchase_order_to_record(po: PurchaseOrder, order_id: str) -> dict:
    """Fulfillment-side upsert payload.  Billing fields have their own path."""
    return {
        "id": po.id,
        "original_order_id": order_id,
        "vendor_id": po.vendor_id,
        "status": po.status,
        "eta": po.eta,
        "carrier": po.carrier,
        "tracking_number": po.tracking_number,
        "vendor_confirmation_number": po.vendor_confirmation_number,
        "invoice_number": po.invoice_number,
        "invoice_url": po.invoice_url,
    }


def payment_update_to_record(update: PaymentUpdate) -> dict:
    """Only fields that carry a value are written; empty ones leave the PO untouched."""
    values = {
        "payment_status": update.payment_status,
        "invoice_number": update.invoice_number,
        "invoice_date": update.invoice_date,
        "due_date": update.due_date,
        "amount_due": update.amount_due,
        "payment_date": update.payment_date,
        "payment_method": update.payment_method,
        "invoice_url": update.invoice_url,
    }
    return {k: v for k, v in values.items() if v}


def map_order(raw: dict, products: Iterable[Product] = ()) -> Order:
    """
    Map an order row with its embedded cart items, purchase orders and
    status history.

    total_cost is the sum of item totals when that sum is positive,
    otherwise the stored value.
    """
    cart = raw.get("cart") or {}
    items = [map_cart_item(i) for i in (cart.get("cart_items") or []) if i]

    total_cost = safe_number(raw.get("total_cost"))
    from_items = sum(i.total_price for i in items)
    if items and from_items > 0:
        total_cost = from_items

    products_by_sku = {p.sku: p for p in products if p.sku}
    purchase_orders = []
    for po_raw in raw.get("purchase_orders") or []:
        po_items = items_for_purchase_order(po_raw["id"], po_raw.get("vendor_id"), items, products_by_sku)
        purchase_orders.append(map_purchase_order(po_raw, raw["id"], po_items))
    purchase_orders.sort(key=lambda po: po.created_at or "")

    history = [
        StatusHistoryEntry(status=h.get("status") or "", date=_str(h.get("date")))
        for h in (raw.get("order_status_history") or [])
    ]
    history.sort(key=lambda h: h.date)

    return Order(
        id=raw["id"],
        company_id=raw.get("company_id"),
        cart_id=raw.get("cart_id"),
        cart_name=raw.get("cart_name") or "Untitled Order",
        work_order_id=cart.get("work_order_id"),
        submitted_by=raw.get("submitted_by"),
        submission_date=_str(raw.get("submission_date") or raw.get("created_at")),
        total_cost=total_cost,
        status=raw.get("status") or "Submitted",
        type=raw.get("type") or "Standard",
        item_count=int(safe_number(raw.get("item_count"))) or len(items),
        property_id=raw.get("property_id"),
        unit_id=raw.get("unit_id"),
        thread_id=raw.get("thread_id"),
        billing_status=raw.get("billing_status") or "Unbilled",
        invoice_id=raw.get("invoice_id"),
        items=items,
        purchase_orders=purchase_orders,
        status_history=history,
    )


def order_to_record(order: Order) -> dict:
    return {
        "id": order.id,
        "company_id": order.company_id,
        "cart_id": order.cart_id,
        "cart_name": order.cart_name,
        "submitted_by": order.submitted_by,
        "status": order.status,
        "total_cost": order.total_cost,
        "item_count": order.item_count,
        "property_id": order.property_id,
        "unit_id": order.unit_id,
        "type": order.type,
        "submission_date": order.submission_date,
    }


# ------------------------------------------------------------------
# Reference data
# ------------------------------------------------------------------

def map_company(raw: dict) -> Company:
    return Company(id=raw["id"], name=_str(raw.get("name")))


def map_product_vendor(raw: dict, vendor_names: dict[str, str]) -> ProductVendorOption:
    return ProductVendorOption(
        id=raw.get("id"),
        vendor_id=raw.get("vendor_id"),
        vendor_name=vendor_names.get(raw.get("vendor_id")) or "Unknown Vendor",
        vendor_sku=raw.get("vendor_sku"),
        price=safe_number(raw.get("price")),
        is_preferred=bool(raw.get("is_preferred")),
    )


def map_product(raw: dict) -> Product:
    rating = raw.get("rating")
    return Product(
        id=raw["id"],
        company_id=raw.get("company_id"),
        name=_str(raw.get("name")),
        sku=_str(raw.get("sku")),
        description=_str(raw.get("description")),
        unit_price=safe_number(raw.get("unit_price")),
        image_url=_str(raw.get("image_url")),
        vendor_id=raw.get("vendor_id"),
        primary_category=_str(raw.get("primary_category")),
        secondary_category=_str(raw.get("secondary_category")),
        rating=safe_number(rating) if rating is not None else None,
        tags=list(raw.get("tags") or []),
        global_product_id=raw.get("global_product_id"),
    )


def map_vendor(raw: dict) -> Vendor:
    return Vendor(
        id=raw["id"],
        company_id=raw.get("company_id"),
        name=_str(raw.get("name")),
        phone=raw.get("phone"),
        email=raw.get("email"),
        accounts=[
            VendorAccount(
                id=acc.get("id"),
                property_id=acc.get("property_id"),
                account_number=_str(acc.get("account_number")),
            )
            for acc in (raw.get("vendor_accounts") or [])
        ],
    )


def map_property(raw: dict) -> Property:
    return Property(
        id=raw["id"],
        company_id=raw.get("company_id"),
        name=_str(raw.get("name")),
        address=raw.get("address"),
    )


def map_unit(raw: dict) -> Unit:
    return Unit(id=raw["id"], property_id=raw.get("property_id"), name=_str(raw.get("name")))


def map_account(raw: dict) -> Account:
    balance = raw.get("balance")
    return Account(
        id=raw["id"],
        company_id=raw.get("company_id"),
        code=_str(raw.get("code")),
        name=_str(raw.get("name")),
        type=_str(raw.get("type")),
        subtype=raw.get("subtype"),
        is_active=raw.get("is_active") is not False,
        balance=safe_number(balance) if balance is not None else None,
    )


def map_customer(raw: dict) -> Customer:
    return Customer(
        id=raw["id"],
        company_id=raw.get("company_id"),
        name=_str(raw.get("name")),
        email=raw.get("email"),
        phone=raw.get("phone"),
        billing_address=raw.get("billing_address"),
        shipping_address=raw.get("shipping_address"),
        tax_id=raw.get("tax_id"),
        payment_terms=raw.get("payment_terms"),
    )


def map_role(raw: dict) -> Role:
    return Role(
        id=raw["id"],
        name=_str(raw.get("name")),
        description=raw.get("description"),
        permissions=raw.get("permissions") or {},
    )


def user_display_name(raw: dict) -> str:
    if raw.get("role_id") == OWNER_ROLE_ID:
        return OWNER_DISPLAY_NAME
    name = (raw.get("full_name") or "").strip()
    if name:
        return name
    email = raw.get("email")
    return email.split("@")[0] if email else "New User"


def map_user(raw: dict) -> AdminUser:
    return AdminUser(
        id=raw["id"],
        company_id=raw.get("company_id"),
        name=user_display_name(raw),
        email=_str(raw.get("email")),
        role_id=raw.get("role_id") or DEFAULT_ROLE_ID,
        property_ids=list(raw.get("property_ids") or []),
        avatar_url=raw.get("avatar_url") or DEFAULT_AVATAR_URL,
        status="Inactive" if raw.get("status") == "Inactive" else "Active",
    )


# ------------------------------------------------------------------
# Billing
# ------------------------------------------------------------------

def map_billable_item(raw: dict) -> BillableItem:
    return BillableItem(
        id=raw.get("id"),
        company_id=raw.get("company_id"),
        source_type=raw.get("source_type") or "PurchaseOrder",
        source_id=raw.get("source_id"),
        property_id=raw.get("property_id"),
        unit_id=raw.get("unit_id"),
        customer_id=raw.get("customer_id"),
        description=_str(raw.get("description")),
        cost_amount=safe_number(raw.get("cost_amount")),
        markup_amount=safe_number(raw.get("markup_amount")),
        total_amount=safe_number(raw.get("total_amount")),
        status=raw.get("status") or "Pending",
        invoice_id=raw.get("invoice_id"),
    )


def billable_item_to_record(item: BillableItem) -> dict:
    return {
        "company_id": item.company_id,
        "property_id": item.property_id,
        "unit_id": item.unit_id,
        "source_type": item.source_type,
        "source_id": item.source_id,
        "description": item.description,
        "cost_amount": item.cost_amount,
        "markup_amount": item.markup_amount,
        "total_amount": item.total_amount,
        "status": item.status,
    }
