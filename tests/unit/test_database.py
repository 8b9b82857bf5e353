"""
Unit tests for the Supabase-backed store and embed rendering.
"""
import json

import pytest

from engine.database import CART_ITEMS, ORDER_CART, ORDER_GRAPH, PO_ORDER, SupabaseStore, render_columns
from engine.errors import PersistenceError, SessionExpiredError


class Response:
    def __init__(self, data):
        self.data = data


class RecordingQuery:
    """Chainable stand-in for a postgrest request builder."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.steps = []

    def __getattr__(self, name):
        def step(*args, **kwargs):
            self.steps.append((name, args, kwargs))
            return self
        return step

    @property
    def not_(self):
        self.steps.append(("not_", (), {}))
        return self

    def execute(self):
        self.client.executed.append(self)
        if self.client.error is not None:
            raise self.client.error
        return Response(self.client.data)


class RecordingFunctions:
    def __init__(self, client):
        self.client = client

    def invoke(self, name, invoke_options=None):
        self.client.invoked.append((name, invoke_options))
        return self.client.function_response


class RecordingAuth:
    def __init__(self, client):
        self.client = client

    def sign_out(self):
        self.client.signed_out = True


class RecordingClient:
    def __init__(self, data=None, error=None):
        self.data = data if data is not None else []
        self.error = error
        self.schemas = []
        self.executed = []
        self.invoked = []
        self.function_response = b"{}"
        self.signed_out = False
        self.functions = RecordingFunctions(self)
        self.auth = RecordingAuth(self)

    def schema(self, name):
        self.schemas.append(name)
        return self

    def table(self, name):
        return RecordingQuery(self, name)


@pytest.mark.unit
class TestEmbedRendering:
    """Tests for PostgREST select strings."""

    def test_plain_embed(self):
        assert CART_ITEMS.render() == "cart_items(*)"

    def test_aliased_nested_embed(self):
        assert ORDER_CART.render() == "cart:carts(*, cart_items(*))"

    def test_hinted_embed(self):
        assert PO_ORDER.render() == "order:orders!original_order_id(*, cart:carts(*, cart_items(*)))"

    def test_render_columns(self):
        assert render_columns("*") == "*"
        assert render_columns("id", (CART_ITEMS,)) == "id, cart_items(*)"
        assert render_columns("*", ORDER_GRAPH).startswith("*, cart:carts(")


@pytest.mark.unit
class TestSupabaseStore:
    """Tests for query building and error translation."""

    def test_select_builds_filters(self):
        """Test that every filter is passed to the request builder in order."""
        client = RecordingClient(data=[{"id": "cart-1"}])
        store = SupabaseStore("url", "key", schema="procurement", client=client)

        rows = store.select(
            "carts", embed=(CART_ITEMS,), eq={"company_id": "comp-1"}, in_={"status": {"Draft"}},
            not_null=["work_order_id"], order_by="created_at", descending=True, limit=100,
        )

        assert rows == [{"id": "cart-1"}]
        assert client.schemas == ["procurement"]
        steps = [(name, args, kwargs) for name, args, kwargs in client.executed[0].steps]
        assert steps == [
            ("select", ("*, cart_items(*)",), {}),
            ("eq", ("company_id", "comp-1"), {}),
            ("in_", ("status", ["Draft"]), {}),
            ("not_", (), {}),
            ("is_", ("work_order_id", "null"), {}),
            ("order", ("created_at",), {"desc": True}),
            ("limit", (100,), {}),
        ]

    def test_select_one_limits(self):
        client = RecordingClient(data=[])
        assert SupabaseStore("url", "key", client=client).select_one("carts", eq={"id": "x"}) is None
        assert client.executed[0].steps[-1] == ("limit", (1,), {})

    def test_delete_scalar_and_list(self):
        client = RecordingClient()
        store = SupabaseStore("url", "key", client=client)
        store.delete("carts", "cart-1")
        store.delete("cart_items", ["cart-1", "cart-2"], column="cart_id")
        assert client.executed[0].steps[-1] == ("eq", ("id", "cart-1"), {})
        assert client.executed[1].steps[-1] == ("in_", ("cart_id", ["cart-1", "cart-2"]), {})

    def test_client_error_becomes_persistence_error(self):
        client = RecordingClient(error=RuntimeError("connection reset"))
        store = SupabaseStore("url", "key", client=client)
        with pytest.raises(PersistenceError) as exc_info:
            store.update("orders", "ord-1", {"status": "Approved"})
        assert exc_info.value.table == "orders"
        assert exc_info.value.operation == "update"
        assert not isinstance(exc_info.value, SessionExpiredError)

    def test_session_error_detected(self):
        """Test that an expired token surfaces as SessionExpiredError."""
        client = RecordingClient(error=RuntimeError("Invalid Refresh Token: Refresh Token Not Found"))
        store = SupabaseStore("url", "key", client=client)
        with pytest.raises(SessionExpiredError):
            store.select("carts")

    def test_invoke_function_decodes_json(self):
        client = RecordingClient()
        client.function_response = json.dumps({"success": True}).encode()
        store = SupabaseStore("url", "key", client=client)
        assert store.invoke_function("process-payment", {"amount": 5}) == {"success": True}
        assert client.invoked == [("process-payment", {"body": {"amount": 5}})]

    def test_invoke_function_bad_json(self):
        client = RecordingClient()
        client.function_response = "<html>"
        with pytest.raises(PersistenceError):
            SupabaseStore("url", "key", client=client).invoke_function("process-payment", {})

    def test_sign_out(self):
        client = RecordingClient()
        SupabaseStore("url", "key", client=client).sign_out()
        assert client.signed_out

    def test_from_config_requires_credentials(self, test_config):
        with pytest.raises(ValueError):
            SupabaseStore.from_config(test_config)
