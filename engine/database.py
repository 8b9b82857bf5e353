"""
Persistence layer for the procurement engine.

The engine never talks to a transport directly; it consumes the Store
interface below.  Every collection supports filtered select, insert,
update, upsert and delete, tenant scoping is an equality filter on
company_id, and related child collections can be embedded in a single
read through Embed descriptors.

SupabaseStore is the production implementation (PostgREST via the
supabase client).  Each call is a suspension point that may fail; all
client errors surface as PersistenceError.

Tables
------
  carts, cart_items, orders, order_status_history, purchase_orders,
  products, product_vendors, vendors, vendor_accounts, properties, units,
  profiles, roles, accounts, customers, companies, billable_items,
  vendor_invoices, vendor_invoice_items
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import PersistenceError, SessionExpiredError, is_session_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Embed:
    """
    A related collection fetched together with its parent row.

    many=True  -> parent[name] is a list of rows where row[foreign_key] == parent[local_key]
    many=False -> parent[name] is the single row where row[foreign_key] == parent[local_key]
    hint disambiguates the foreign key when two relations link the same tables.
    """
    name: str
    table: str
    local_key: str
    foreign_key: str
    many: bool = True
    hint: Optional[str] = None
    children: tuple = field(default_factory=tuple)

    def render(self) -> str:
        """PostgREST embedded-resource syntax, e.g. cart:carts(*, cart_items(*))."""
        inner = ", ".join(["*"] + [c.render() for c in self.children])
        target = self.table + (f"!{self.hint}" if self.hint else "")
        if self.name == self.table and not self.hint:
            return f"{target}({inner})"
        return f"{self.name}:{target}({inner})"


# ---------------------------------------------------------------------------
# Standard relation graph
# ---------------------------------------------------------------------------

CART_ITEMS = Embed("cart_items", "cart_items", local_key="id", foreign_key="cart_id")

ORDER_CART = Embed(
    "cart", "carts", local_key="cart_id", foreign_key="id", many=False,
    children=(CART_ITEMS,),
)
ORDER_PURCHASE_ORDERS = Embed(
    "purchase_orders", "purchase_orders", local_key="id", foreign_key="original_order_id",
)
ORDER_STATUS_HISTORY = Embed(
    "order_status_history", "order_status_history", local_key="id", foreign_key="order_id",
)
ORDER_GRAPH = (ORDER_CART, ORDER_PURCHASE_ORDERS, ORDER_STATUS_HISTORY)

VENDOR_ACCOUNTS = Embed("vendor_accounts", "vendor_accounts", local_key="id", foreign_key="vendor_id")

PO_ORDER = Embed(
    "order", "orders", local_key="original_order_id", foreign_key="id", many=False,
    hint="original_order_id", children=(ORDER_CART,),
)


def render_columns(columns: str, embed: tuple = ()) -> str:
    if not embed:
        return columns
    return ", ".join([columns] + [e.render() for e in embed])


class Store(ABC):
    """Abstract persistence interface consumed by the engine."""

    @abstractmethod
    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        embed: tuple = (),
        eq: Optional[dict] = None,
        in_: Optional[dict] = None,
        not_null: Optional[list] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Return rows matching every filter (eq: column == value, in_: column in values)."""

    @abstractmethod
    def insert(self, table: str, records: dict | list[dict]) -> list[dict]:
        """Insert one or more rows and return them as stored."""

    @abstractmethod
    def update(self, table: str, record_id: Any, values: dict, column: str = "id") -> list[dict]:
        """Apply a partial update to rows where column == record_id."""

    @abstractmethod
    def upsert(self, table: str, records: dict | list[dict]) -> list[dict]:
        """Insert rows, or update them when the primary key already exists."""

    @abstractmethod
    def delete(self, table: str, ids: Any, column: str = "id") -> None:
        """Delete rows where column equals ids (scalar) or is one of ids (list)."""

    @abstractmethod
    def invoke_function(self, name: str, body: dict) -> dict:
        """Call a server-side function and return its decoded JSON response."""

    @abstractmethod
    def sign_out(self) -> None:
        """Drop the current session so stale credentials are not reused."""

    def select_one(self, table: str, **kwargs) -> Optional[dict]:
        """Return the first matching row or None."""
        kwargs["limit"] = 1
        rows = self.select(table, **kwargs)
        return rows[0] if rows else None


class SupabaseStore(Store):
    """Store backed by a Supabase project (PostgREST + edge functions)."""

    def __init__(self, url: str, key: str, schema: str = "public", client=None) -> None:
        if client is None:
            from supabase import create_client
            client = create_client(url, key)
        self._client = client
        self.schema = schema

    @classmethod
    def from_config(cls, config) -> "SupabaseStore":
        if not config.store_configured:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
        return cls(config.supabase_url, config.supabase_key, config.supabase_schema)

    def _table(self, table: str):
        return self._client.schema(self.schema).table(table)

    def _execute(self, table: str, operation: str, query) -> list[dict]:
        try:
            resp = query.execute()
        except Exception as exc:
            if is_session_error(str(exc)):
                raise SessionExpiredError(table, operation, str(exc)) from exc
            raise PersistenceError(table, operation, str(exc)) from exc
        if getattr(resp, "error", None):
            raise PersistenceError(table, operation, str(resp.error))
        return list(resp.data or [])

    # ------------------------------------------------------------------
    # Store interface
    # ------------------------------------------------------------------

    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        embed: tuple = (),
        eq: Optional[dict] = None,
        in_: Optional[dict] = None,
        not_null: Optional[list] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        query = self._table(table).select(render_columns(columns, embed))
        for col, val in (eq or {}).items():
            query = query.eq(col, val)
        for col, values in (in_ or {}).items():
            query = query.in_(col, list(values))
        for col in (not_null or []):
            query = query.not_.is_(col, "null")
        if order_by:
            query = query.order(order_by, desc=descending)
        if limit is not None:
            query = query.limit(limit)
        rows = self._execute(table, "select", query)
        logger.debug("select %s -> %d row(s)", table, len(rows))
        return rows

    def insert(self, table: str, records: dict | list[dict]) -> list[dict]:
        return self._execute(table, "insert", self._table(table).insert(records))

    def update(self, table: str, record_id: Any, values: dict, column: str = "id") -> list[dict]:
        return self._execute(table, "update", self._table(table).update(values).eq(column, record_id))

    def upsert(self, table: str, records: dict | list[dict]) -> list[dict]:
        return self._execute(table, "upsert", self._table(table).upsert(records))

    def delete(self, table: str, ids: Any, column: str = "id") -> None:
        query = self._table(table).delete()
        if isinstance(ids, (list, tuple, set)):
            query = query.in_(column, list(ids))
        else:
            query = query.eq(column, ids)
        self._execute(table, "delete", query)

    def invoke_function(self, name: str, body: dict) -> dict:
        try:
            raw = self._client.functions.invoke(name, invoke_options={"body": body})
        except Exception as exc:
            raise PersistenceError(name, "invoke", str(exc)) from exc
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        if isinstance(raw, str):
            try:
                return json.loads(raw) if raw else {}
            except json.JSONDecodeError as exc:
                raise PersistenceError(name, "invoke", f"Invalid JSON response: {exc}") from exc
        return dict(raw or {})

    def sign_out(self) -> None:
        try:
            self._client.auth.sign_out()
        except Exception as exc:
            logger.warning("Sign-out failed: %s", exc)
