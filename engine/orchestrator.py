"""
Data Orchestrator: the load / refresh sequence for one tenant.

  1. resolve the tenant (company id)
  2. fetch every collection concurrently, tenant-scoped and page-limited
  3. map records to domain models
  4. run the recurrence engine over template carts; if anything fired,
     re-fetch carts (strictly after the spawn writes)
  5. compose cross references (vendor options onto products, POs onto
     orders, units filtered to the tenant's properties)
  6. commit the graph to AppState, unless a newer load has started

The whole sequence races a deadline.  On timeout or error the partial
state is dropped and the failure is returned in the LoadResult; a session
failure also signs the store out.  This is the one place where unexpected
faults from the store are turned into user-facing messages.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import date
from typing import Callable, Optional

from config import Config
from models.reference import OWNER_ROLE_ID
from models.result import DataGraph, LoadResult, RecurrenceReport

from .database import CART_ITEMS, ORDER_GRAPH, VENDOR_ACCOUNTS, Store
from .errors import (
    LoadTimeoutError, PersistenceError, ProcurementError, SessionExpiredError, is_session_error,
)
from .field_mapper import (
    map_account, map_cart, map_company, map_customer, map_order, map_product,
    map_product_vendor, map_property, map_role, map_unit, map_user, map_vendor,
)
from .recurrence import RecurrenceRunner
from .state import AppState

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Connection timed out. Please check your internet."
DEFAULT_COMPANY_NAME = "ProcurePro"

# A failure in one of these fails the load; the rest degrade to empty
REQUIRED_COLLECTIONS = {"carts", "orders"}


class DataOrchestrator:

    def __init__(
        self,
        store: Store,
        config: Config,
        state: AppState,
        recurrence: RecurrenceRunner,
        user_id: Optional[str] = None,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.config = config
        self.state = state
        self.recurrence = recurrence
        self.user_id = user_id
        self._today = today
        self._closed = False

    def close(self) -> None:
        """Refuse further loads.  Loads still waiting on the store are left to finish and be discarded."""
        self._closed = True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def switch_company(self, company_id: str) -> LoadResult:
        """Make company_id the viewed tenant and load it.  Older loads are discarded."""
        self.state.viewing_company_id = company_id
        return self.load(company_id)

    def load(self, company_id: Optional[str] = None) -> LoadResult:
        started = time.monotonic()
        requested = company_id or self.state.viewing_company_id or self.state.company_id
        token = self.state.begin_load(requested)
        logger.info("Loading data for %s (load %d)", requested or "<resolve>", token)

        if self._closed:
            self.state.fail(token, "Workspace is closed")
            return LoadResult(success=False, message="Workspace is closed")

        future = self._start(requested, token)
        try:
            graph, warnings, report = future.result(timeout=self.config.load_timeout_seconds)
        except FutureTimeout:
            return self._failed(token, LoadTimeoutError("Data fetch timed out"), started)
        except Exception as exc:
            return self._failed(token, exc, started)

        elapsed = time.monotonic() - started
        if graph is None:
            self.state.fail(token, "No company selected")
            return LoadResult(success=False, message="No company selected", elapsed_seconds=elapsed)
        if not self.state.commit(token, graph):
            return LoadResult(
                success=False, company_id=graph.company_id, stale=True,
                message="Superseded by a newer load", elapsed_seconds=elapsed,
            )
        logger.info(
            "Loaded %s: %d carts, %d orders, %d products in %.2fs",
            graph.company_id, len(graph.carts), len(graph.orders), len(graph.products), elapsed,
        )
        return LoadResult(
            success=True, company_id=graph.company_id, warnings=warnings,
            recurrence=report, elapsed_seconds=elapsed,
        )

    def _start(self, requested: Optional[str], token: int) -> Future:
        """
        Run one load on its own daemon thread so the caller can stop waiting at
        the deadline.  A load stuck on the store never holds up later loads.
        """
        future: Future = Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._load(requested, token))
            except Exception as exc:
                future.set_exception(exc)

        threading.Thread(target=run, name=f"load-{token}", daemon=True).start()
        return future

    def _failed(self, token: int, exc: Exception, started: float) -> LoadResult:
        message = str(exc) or "Database sync error."
        timed_out = isinstance(exc, LoadTimeoutError) or "timed out" in message
        if timed_out:
            logger.error("Load %d timed out after %.0fs", token, self.config.load_timeout_seconds)
            message = TIMEOUT_MESSAGE
        elif isinstance(exc, ProcurementError):
            logger.error("Load %d failed: %s", token, message)
        else:
            logger.exception("Load %d failed unexpectedly", token)

        self.state.fail(token, message)
        signed_out = False
        if isinstance(exc, SessionExpiredError) or is_session_error(message):
            logger.warning("Session is no longer valid — signing out")
            self.store.sign_out()
            signed_out = True
        return LoadResult(
            success=False, message=message, timed_out=timed_out, signed_out=signed_out,
            elapsed_seconds=time.monotonic() - started,
        )

    # ------------------------------------------------------------------
    # Load steps
    # ------------------------------------------------------------------

    def _resolve_company(self, requested: Optional[str]) -> tuple[Optional[str], list[dict]]:
        """
        Tenant: the requested company, else the signed-in profile's company,
        else (platform owner only) the first company.
        """
        profile = None
        if self.user_id:
            profile = self.store.select_one("profiles", eq={"id": self.user_id})
        companies: list[dict] = []
        if profile and profile.get("role_id") == OWNER_ROLE_ID:
            companies = self.store.select("companies")
        company_id = requested or (profile or {}).get("company_id")
        if not company_id and companies:
            company_id = companies[0]["id"]
            self.state.viewing_company_id = company_id
        return company_id, companies

    def _fetchers(self, company_id: str) -> dict[str, Callable[[], list[dict]]]:
        cfg = self.config
        scoped = {"company_id": company_id}
        return {
            "carts": lambda: self._fetch_carts(company_id),
            "orders": lambda: self.store.select(
                "orders", embed=ORDER_GRAPH, eq=scoped,
                order_by="created_at", descending=True, limit=cfg.order_page_size,
            ),
            "products": lambda: self.store.select("products", eq=scoped, limit=cfg.product_page_size),
            "vendors": lambda: self.store.select("vendors", embed=(VENDOR_ACCOUNTS,), eq=scoped),
            "properties": lambda: self.store.select("properties", eq=scoped),
            "profiles": lambda: self.store.select("profiles", eq=scoped),
            "roles": lambda: self.store.select("roles"),
            "units": lambda: self.store.select("units"),
            "accounts": lambda: self.store.select("accounts", eq=scoped),
            "product_vendors": lambda: self.store.select("product_vendors"),
            "customers": lambda: self.store.select("customers", eq=scoped, order_by="name"),
            "company": lambda: self.store.select("companies", columns="id, name", eq={"id": company_id}, limit=1),
        }

    def _fetch_carts(self, company_id: str) -> list[dict]:
        return self.store.select(
            "carts", embed=(CART_ITEMS,), eq={"company_id": company_id},
            order_by="created_at", descending=True, limit=self.config.cart_page_size,
        )

    def _fetch_all(self, company_id: str, warnings: list[str]) -> dict[str, list[dict]]:
        fetchers = self._fetchers(company_id)
        raw: dict[str, list[dict]] = {}
        with ThreadPoolExecutor(max_workers=self.config.fetch_workers, thread_name_prefix="fetch") as pool:
            futures = {name: pool.submit(fn) for name, fn in fetchers.items()}
            for name, fut in futures.items():
                try:
                    raw[name] = fut.result()
                except PersistenceError as exc:
                    if name in REQUIRED_COLLECTIONS:
                        raise
                    logger.warning("Could not load %s: %s", name, exc)
                    warnings.append(f"Could not load {name}: {exc.message}")
                    raw[name] = []
        return raw

    def _load(self, requested: Optional[str], token: int):
        company_id, companies = self._resolve_company(requested)
        if not company_id:
            return None, [], None

        warnings: list[str] = []
        raw = self._fetch_all(company_id, warnings)
        logger.debug("Load %d fetched %d collections", token, len(raw))

        vendor_names = {v["id"]: v.get("name") for v in raw["vendors"]}
        products = [map_product(p) for p in raw["products"]]
        options_by_product: dict[str, list] = {}
        for pv in raw["product_vendors"]:
            options_by_product.setdefault(pv.get("product_id"), []).append(
                map_product_vendor(pv, vendor_names)
            )
        for product in products:
            product.vendor_options = options_by_product.get(product.id, [])

        carts = [map_cart(c) for c in raw["carts"]]
        report = self._run_recurrence(carts, company_id, warnings)
        if report is not None and report.fired:
            carts = [map_cart(c) for c in self._fetch_carts(company_id)]

        property_ids = {p["id"] for p in raw["properties"]}
        company_rows = raw["company"]
        graph = DataGraph(
            company_id=company_id,
            company_name=(company_rows[0].get("name") if company_rows else None) or DEFAULT_COMPANY_NAME,
            companies=[map_company(c) for c in companies],
            carts=carts,
            orders=[map_order(o, products) for o in raw["orders"]],
            products=products,
            vendors=[map_vendor(v) for v in raw["vendors"]],
            properties=[map_property(p) for p in raw["properties"]],
            units=[map_unit(u) for u in raw["units"] if u.get("property_id") in property_ids],
            users=[map_user(u) for u in raw["profiles"]],
            roles=[map_role(r) for r in raw["roles"]],
            accounts=[map_account(a) for a in raw["accounts"]],
            customers=[map_customer(c) for c in raw["customers"]],
        )
        return graph, warnings, report

    def _run_recurrence(self, carts, company_id: str, warnings: list[str]) -> Optional[RecurrenceReport]:
        """Recurrence never fails the load; problems become warnings."""
        try:
            report = self.recurrence.process(carts, company_id, self._today())
        except ProcurementError as exc:
            logger.error("Error processing recurring carts: %s", exc)
            warnings.append(f"Recurring carts were not processed: {exc}")
            return None
        warnings.extend(f"Recurring cart failed: {e}" for e in report.errors)
        return report
