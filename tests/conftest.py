"""
Pytest configuration and shared fixtures for the procurement engine test suite.

FakeStore is an in-memory Store: tables are lists of dicts, embeds are
resolved through the same Embed descriptors the engine passes to the real
store, and individual (table, operation) pairs can be made to fail, stall
or run a hook so error paths are reachable without a backend.
"""
import itertools
import os
import shutil
import tempfile
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Generator, Optional

import pytest

from engine.database import Store
from engine.errors import PersistenceError

PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)

COMPANY_ID = "comp-1"
OTHER_COMPANY_ID = "comp-2"
USER_ID = "user-1"


class FakeStore(Store):
    """In-memory Store with failure injection and call recording."""

    def __init__(self, tables: Optional[dict[str, list[dict]]] = None):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        for name, rows in (tables or {}).items():
            self.tables[name] = [dict(r) for r in rows]
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.delays: dict[tuple[str, str], float] = {}
        self.hooks: dict[tuple[str, str], Callable[[], None]] = {}
        self.functions: dict[str, Any] = {}
        self.function_calls: list[tuple[str, dict]] = []
        self.signed_out = False
        self._seq = itertools.count(1)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def fail_on(self, table: str, operation: str, error: Optional[Exception] = None) -> None:
        self.failures[(table, operation)] = error or PersistenceError(table, operation, "simulated failure")

    def delay_on(self, table: str, operation: str, seconds: float) -> None:
        self.delays[(table, operation)] = seconds

    def on(self, table: str, operation: str, hook: Callable[[], None]) -> None:
        self.hooks[(table, operation)] = hook

    def rows(self, table: str) -> list[dict]:
        with self._lock:
            return [dict(r) for r in self.tables[table]]

    def row(self, table: str, record_id: Any) -> Optional[dict]:
        return next((r for r in self.rows(table) if r.get("id") == record_id), None)

    def count(self, operation: str, table: str) -> int:
        return sum(1 for call in self.calls if call == (operation, table))

    def _enter(self, table: str, operation: str) -> None:
        with self._lock:
            self.calls.append((operation, table))
        hook = self.hooks.get((table, operation))
        if hook is not None:
            hook()
        delay = self.delays.get((table, operation))
        if delay:
            time.sleep(delay)
        error = self.failures.get((table, operation))
        if error is not None:
            raise error

    def _resolve(self, row: dict, embed: tuple) -> dict:
        out = dict(row)
        for e in embed:
            key = row.get(e.local_key)
            related = [] if key is None else [r for r in self.tables[e.table] if r.get(e.foreign_key) == key]
            if e.many:
                out[e.name] = [self._resolve(r, e.children) for r in related]
            else:
                out[e.name] = self._resolve(related[0], e.children) if related else None
        return out

    def _stamp(self, record: dict, table: str) -> dict:
        record = dict(record)
        record.setdefault("id", f"{table}-{next(self._seq)}")
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return record

    # ------------------------------------------------------------------
    # Store interface
    # ------------------------------------------------------------------

    def select(self, table, *, columns="*", embed=(), eq=None, in_=None, not_null=None,
               order_by=None, descending=False, limit=None):
        self._enter(table, "select")
        with self._lock:
            rows = list(self.tables[table])
            for col, val in (eq or {}).items():
                rows = [r for r in rows if r.get(col) == val]
            for col, values in (in_ or {}).items():
                allowed = set(values)
                rows = [r for r in rows if r.get(col) in allowed]
            for col in (not_null or []):
                rows = [r for r in rows if r.get(col) is not None]
            if order_by:
                rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
            if limit is not None:
                rows = rows[:limit]
            return [self._resolve(r, embed) for r in rows]

    def insert(self, table, records):
        self._enter(table, "insert")
        batch = records if isinstance(records, list) else [records]
        with self._lock:
            stored = [self._stamp(r, table) for r in batch]
            existing = {r.get("id") for r in self.tables[table]}
            for record in stored:
                if record["id"] in existing:
                    raise PersistenceError(table, "insert", "duplicate key value violates unique constraint")
            self.tables[table].extend(stored)
            return [dict(r) for r in stored]

    def update(self, table, record_id, values, column="id"):
        self._enter(table, "update")
        with self._lock:
            changed = []
            for row in self.tables[table]:
                if row.get(column) == record_id:
                    row.update(values)
                    changed.append(dict(row))
            return changed

    def upsert(self, table, records):
        self._enter(table, "upsert")
        batch = records if isinstance(records, list) else [records]
        with self._lock:
            out = []
            for record in batch:
                current = next((r for r in self.tables[table] if r.get("id") == record.get("id")), None)
                if current is not None:
                    current.update(record)
                    out.append(dict(current))
                else:
                    stored = self._stamp(record, table)
                    self.tables[table].append(stored)
                    out.append(dict(stored))
            return out

    def delete(self, table, ids, column="id"):
        self._enter(table, "delete")
        targets = set(ids) if isinstance(ids, (list, tuple, set)) else {ids}
        with self._lock:
            self.tables[table] = [r for r in self.tables[table] if r.get(column) not in targets]

    def invoke_function(self, name, body):
        self._enter(name, "invoke")
        self.function_calls.append((name, body))
        response = self.functions.get(name)
        if isinstance(response, Exception):
            raise response
        return dict(response or {})

    def sign_out(self):
        self.signed_out = True


def tenant_tables() -> dict[str, list[dict]]:
    """Two tenants; comp-1 holds one Draft cart with two lines."""
    return {
        "companies": [
            {"id": COMPANY_ID, "name": "Maple Property Group"},
            {"id": OTHER_COMPANY_ID, "name": "Harbor Homes"},
        ],
        "roles": [
            {"id": "role-0", "name": "Owner"},
            {"id": "role-1", "name": "Admin", "permissions": {"orders": "write"}},
        ],
        "profiles": [
            {"id": USER_ID, "company_id": COMPANY_ID, "role_id": "role-1",
             "full_name": "Dana Buyer", "email": "dana@maple.test"},
            {"id": "user-2", "company_id": COMPANY_ID, "role_id": None,
             "full_name": "", "email": "sam@maple.test", "status": "Inactive"},
            {"id": "owner-1", "company_id": None, "role_id": "role-0", "email": "owner@procure.test"},
        ],
        "properties": [
            {"id": "prop-1", "company_id": COMPANY_ID, "name": "Maple Court"},
            {"id": "prop-9", "company_id": OTHER_COMPANY_ID, "name": "Harbor View"},
        ],
        "units": [
            {"id": "unit-1", "property_id": "prop-1", "name": "4B"},
            {"id": "unit-9", "property_id": "prop-9", "name": "1A"},
        ],
        "vendors": [
            {"id": "ven-1", "company_id": COMPANY_ID, "name": "Home Depot"},
            {"id": "ven-2", "company_id": COMPANY_ID, "name": "Grainger"},
        ],
        "vendor_accounts": [
            {"id": "va-1", "vendor_id": "ven-1", "property_id": "prop-1", "account_number": "HD-7781"},
        ],
        "products": [
            {"id": "prod-1", "company_id": COMPANY_ID, "name": "Interior Paint", "sku": "SKU-PAINT",
             "unit_price": 10, "vendor_id": "ven-1"},
            {"id": "prod-2", "company_id": COMPANY_ID, "name": "LED Bulb", "sku": "SKU-BULB",
             "unit_price": 5, "vendor_id": "ven-2"},
        ],
        "product_vendors": [
            {"id": "pv-1", "product_id": "prod-1", "vendor_id": "ven-1", "price": 9.5, "is_preferred": True},
            {"id": "pv-2", "product_id": "prod-1", "vendor_id": "ven-x", "price": 11},
        ],
        "accounts": [
            {"id": "acct-1", "company_id": COMPANY_ID, "code": "5000", "name": "Repairs", "type": "Expense"},
        ],
        "customers": [
            {"id": "cust-1", "company_id": COMPANY_ID, "name": "Maple Court HOA"},
        ],
        "carts": [
            {"id": "cart-1", "company_id": COMPANY_ID, "work_order_id": "WO-0001-0001",
             "name": "Unit 4B turnover", "type": "Standard", "status": "Draft",
             "property_id": "prop-1", "unit_id": "unit-1", "item_count": 2, "total_cost": 25,
             "created_at": "2026-10-01T09:00:00+00:00"},
            {"id": "cart-9", "company_id": OTHER_COMPANY_ID, "work_order_id": "WO-0009-0009",
             "name": "Harbor lobby", "type": "Standard", "status": "Draft",
             "created_at": "2026-10-02T09:00:00+00:00"},
        ],
        "cart_items": [
            {"id": "ci-1", "cart_id": "cart-1", "sku": "SKU-PAINT", "name": "Interior Paint",
             "quantity": 2, "unit_price": 10},
            {"id": "ci-2", "cart_id": "cart-1", "sku": "SKU-BULB", "name": "LED Bulb",
             "quantity": 1, "unit_price": 5},
        ],
    }


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="procurement_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a configuration isolated from the developer's environment."""
    from config import Config

    monkeypatch.setenv("CONFIG_DIR", str(temp_dir))
    for name in ("SUPABASE_URL", "SUPABASE_KEY", "SUPABASE_ANON_KEY", "DEFAULT_COMPANY_ID", "LOAD_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return Config(load_timeout_seconds=5.0, fetch_workers=4)


@pytest.fixture
def store() -> FakeStore:
    """Provide an in-memory store seeded with two tenants."""
    return FakeStore(tenant_tables())


@pytest.fixture
def empty_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def workspace(store: FakeStore, test_config) -> Generator["Workspace", None, None]:
    """Provide a workspace for user-1 that has not loaded anything yet."""
    from engine.workspace import Workspace

    ws = Workspace(store, test_config, user_id=USER_ID)
    yield ws
    ws.close()


@pytest.fixture
def loaded_workspace(workspace) -> "Workspace":
    """Provide a workspace with comp-1 loaded."""
    result = workspace.switch_company(COMPANY_ID)
    assert result.success, result.message
    return workspace


@pytest.fixture
def submitted_order(loaded_workspace) -> str:
    """Submit cart-1 and return the new order id."""
    result = loaded_workspace.carts.submit_cart("cart-1")
    assert result.success, result.message
    return result.order.id


@pytest.fixture
def approved_order(loaded_workspace, submitted_order) -> str:
    """Approve every line of the submitted order and return its id."""
    from models.order import ItemDecision

    result = loaded_workspace.orders.apply_approval_decision(submitted_order, {
        "ci-1": ItemDecision(status="Approved"),
        "ci-2": ItemDecision(status="Approved"),
    })
    assert result.success, result.message
    return submitted_order


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
