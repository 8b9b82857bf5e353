"""
Application state shared by the orchestrator and the mutation services.

AppState is the explicit replacement for the app-wide entity collections.
Only the DataOrchestrator replaces the graph wholesale (commit); services
apply targeted updates through the helpers below.  Every access goes
through one re-entrant lock.

Loads are tagged with a generation token.  A load may only commit while
its token is still the newest one, so a slow load for a tenant the user
has already switched away from is dropped instead of overwriting newer
state.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional

from models.cart import CART_DRAFT, Cart
from models.order import Order
from models.result import DataGraph

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    graph: DataGraph = field(default_factory=DataGraph)
    viewing_company_id: Optional[str] = None    # Tenant picked by the user (switcher)
    active_cart_id: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None
    generation: int = 0
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def company_id(self) -> Optional[str]:
        return self.graph.company_id

    # ------------------------------------------------------------------
    # Load lifecycle
    # ------------------------------------------------------------------

    def begin_load(self, company_id: Optional[str] = None) -> int:
        """Start a load and return its token.  Supersedes any load in flight."""
        with self._lock:
            self.generation += 1
            self.loading = True
            self.error = None
            if company_id and company_id != self.graph.company_id:
                # Different tenant: nothing of the old one may stay visible
                self.graph = DataGraph(company_id=company_id)
                self.active_cart_id = None
            return self.generation

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self.generation

    def commit(self, token: int, graph: DataGraph) -> bool:
        """Install a freshly loaded graph.  Returns False if the load is stale."""
        with self._lock:
            if token != self.generation:
                logger.info(
                    "Discarding stale load for %s (token %d, current %d)",
                    graph.company_id, token, self.generation,
                )
                return False
            self.graph = graph
            self.loading = False
            self.error = None
            if self.find_cart(self.active_cart_id) is None:
                draft = next((c for c in graph.carts if c.status == CART_DRAFT), None)
                self.active_cart_id = draft.id if draft else None
            return True

    def fail(self, token: int, message: str) -> bool:
        """
        Record a failed load and drop its partial state.  The token is
        retired so a result that still arrives later cannot commit.
        """
        with self._lock:
            if token != self.generation:
                return False
            self.generation += 1
            self.graph = DataGraph(company_id=self.graph.company_id)
            self.active_cart_id = None
            self.loading = False
            self.error = message
            return True

    def snapshot(self) -> DataGraph:
        with self._lock:
            return self.graph.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_cart(self, cart_id: Optional[str]) -> Optional[Cart]:
        if not cart_id:
            return None
        with self._lock:
            return next((c for c in self.graph.carts if c.id == cart_id), None)

    def find_order(self, order_id: Optional[str]) -> Optional[Order]:
        if not order_id:
            return None
        with self._lock:
            return next((o for o in self.graph.orders if o.id == order_id), None)

    @property
    def active_cart(self) -> Optional[Cart]:
        return self.find_cart(self.active_cart_id)

    # ------------------------------------------------------------------
    # Targeted updates
    # ------------------------------------------------------------------

    def upsert_cart(self, cart: Cart) -> None:
        with self._lock:
            carts = self.graph.carts
            for i, existing in enumerate(carts):
                if existing.id == cart.id:
                    carts[i] = cart
                    return
            carts.insert(0, cart)

    def upsert_order(self, order: Order) -> None:
        with self._lock:
            orders = self.graph.orders
            for i, existing in enumerate(orders):
                if existing.id == order.id:
                    orders[i] = order
                    return
            orders.insert(0, order)

    def remove_carts(self, cart_ids: Iterable[str]) -> None:
        """Optimistically drop carts and any orders created from them."""
        ids = set(cart_ids)
        with self._lock:
            self.graph.carts = [c for c in self.graph.carts if c.id not in ids]
            self.graph.orders = [o for o in self.graph.orders if o.cart_id not in ids]
            if self.active_cart_id in ids:
                self.active_cart_id = None

    def remove_orders(self, order_ids: Iterable[str]) -> None:
        ids = set(order_ids)
        with self._lock:
            self.graph.orders = [o for o in self.graph.orders if o.id not in ids]
