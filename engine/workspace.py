"""
Workspace: one tenant session wired together.

Holds the store, the shared AppState and every service built on them, so
callers (CLI, HTTP app, tests) construct a single object instead of
threading collaborators around by hand.
"""
import logging
from typing import Optional

from config import Config
from models.result import LoadResult

from .billback import BillbackService
from .cart_aggregation import CartService
from .database import Store, SupabaseStore
from .orchestrator import DataOrchestrator
from .order_lifecycle import OrderService
from .payments import PaymentGateway
from .reconciliation import ReconciliationService
from .recurrence import RecurrenceRunner
from .state import AppState
from .work_order import WorkOrderIdGenerator

logger = logging.getLogger(__name__)


class Workspace:

    def __init__(self, store: Store, config: Optional[Config] = None, user_id: Optional[str] = None):
        self.store = store
        self.config = config or Config()
        self.user_id = user_id
        self.state = AppState(viewing_company_id=self.config.default_company_id)

        self.work_orders = WorkOrderIdGenerator(store, self.config.work_order_max_attempts)
        self.recurrence = RecurrenceRunner(store, self.work_orders, created_by=user_id)
        self.orchestrator = DataOrchestrator(store, self.config, self.state, self.recurrence, user_id)
        self.carts = CartService(store, self.state, self.work_orders, self.reload, user_id)
        self.orders = OrderService(store, self.state, self.reload)
        self.billback = BillbackService(store, self.config.billback_batch_size)
        self.payments = PaymentGateway(store, self.state)
        self.reconciliation = ReconciliationService(store, self.orders, self.billback, self.payments)

    @classmethod
    def from_config(cls, config: Config, user_id: Optional[str] = None) -> "Workspace":
        return cls(SupabaseStore.from_config(config), config, user_id)

    def reload(self) -> LoadResult:
        """Full reload of the current tenant."""
        return self.orchestrator.load()

    def switch_company(self, company_id: str) -> LoadResult:
        return self.orchestrator.switch_company(company_id)

    def close(self) -> None:
        self.orchestrator.close()
