"""
Company-scoped master data.  Plain CRUD records with no derived state.
"""
from typing import List, Optional

from pydantic import Field

from .base import DomainModel


OWNER_ROLE_ID = "role-0"
DEFAULT_ROLE_ID = "role-2"


class Company(DomainModel):
    id: str
    name: str = ""


class VendorAccount(DomainModel):
    id: Optional[str] = None
    property_id: Optional[str] = None
    account_number: str = ""


class Vendor(DomainModel):
    id: str
    company_id: Optional[str] = None
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    accounts: List[VendorAccount] = Field(default_factory=list)


class ProductVendorOption(DomainModel):
    """One vendor's offer for a product (enriched with the vendor name)."""
    id: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: str = "Unknown Vendor"
    vendor_sku: Optional[str] = None
    price: float = 0
    is_preferred: bool = False


class Product(DomainModel):
    id: str
    company_id: Optional[str] = None
    name: str = ""
    sku: str = ""
    description: str = ""
    unit_price: float = 0
    image_url: str = ""
    vendor_id: Optional[str] = None
    primary_category: str = ""
    secondary_category: str = ""
    rating: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    global_product_id: Optional[str] = None
    vendor_options: List[ProductVendorOption] = Field(default_factory=list)


class Property(DomainModel):
    id: str
    company_id: Optional[str] = None
    name: str = ""
    address: Optional[dict] = None          # street / city / state / zip


class Unit(DomainModel):
    id: str
    property_id: Optional[str] = None
    name: str = ""


class Account(DomainModel):
    """Chart-of-accounts entry."""
    id: str
    company_id: Optional[str] = None
    code: str = ""
    name: str = ""
    type: str = ""                          # Asset / Liability / Equity / Income / Expense
    subtype: Optional[str] = None
    is_active: bool = True
    balance: Optional[float] = None


class Customer(DomainModel):
    id: str
    company_id: Optional[str] = None
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    billing_address: Optional[dict] = None
    shipping_address: Optional[dict] = None
    tax_id: Optional[str] = None
    payment_terms: Optional[str] = None


class AdminUser(DomainModel):
    id: str
    company_id: Optional[str] = None
    name: str = "User"
    email: str = ""
    role_id: str = DEFAULT_ROLE_ID
    property_ids: List[str] = Field(default_factory=list)
    avatar_url: str = "https://via.placeholder.com/150"
    status: str = "Active"                  # Active / Inactive

    @property
    def is_owner(self) -> bool:
        return self.role_id == OWNER_ROLE_ID


class Role(DomainModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    permissions: dict = Field(default_factory=dict)
