"""
Unit tests for the payment gateway collaborator.
"""
import pytest

from engine.errors import PersistenceError
from engine.payments import PAYMENT_FUNCTION, PaymentGateway
from engine.state import AppState
from models.purchase_order import PaymentMetadata
from models.result import DataGraph


@pytest.mark.unit
class TestPaymentGateway:
    """Tests for request building and response interpretation."""

    @pytest.fixture
    def gateway(self, empty_store) -> PaymentGateway:
        return PaymentGateway(empty_store, AppState(graph=DataGraph(company_id="comp-1")))

    def test_stripe_request(self, gateway):
        body = gateway.build_request("po-1", "pm_card", 20.0, PaymentMetadata(settings_id="gw-1"))
        assert body["company_id"] == "comp-1"
        assert body["invoice_id"] == "po-1"
        assert body["method_id"] == "pm_card"
        assert body["payment_token"] is None
        assert body["settings_id"] == "gw-1"

    def test_sola_request(self, gateway):
        body = gateway.build_request("po-1", "tok_1", 20.0, PaymentMetadata(gateway="sola"))
        assert body["method_id"] is None
        assert body["payment_token"] == "tok_1"

    def test_success_uses_payment_intent(self, gateway, empty_store):
        empty_store.functions[PAYMENT_FUNCTION] = {"success": True, "paymentIntent": {"id": "pi_123"}}
        result = gateway.process_payment("po-1", "pm_card", 20.0)
        assert result.success
        assert result.transaction_id == "pi_123"
        assert empty_store.function_calls[0][1]["amount"] == 20.0

    def test_success_falls_back_to_transaction_id(self, gateway, empty_store):
        empty_store.functions[PAYMENT_FUNCTION] = {"success": True, "transactionId": "txn_9"}
        assert gateway.process_payment("po-1", "tok", 5).transaction_id == "txn_9"

    def test_decline(self, gateway, empty_store):
        """Test that a decline is returned, not raised."""
        empty_store.functions[PAYMENT_FUNCTION] = {"success": False, "error": {"message": "Card declined"}}
        result = gateway.process_payment("po-1", "tok", 5)
        assert not result.success
        assert result.error == "Card declined"

    def test_missing_error_message(self, gateway, empty_store):
        empty_store.functions[PAYMENT_FUNCTION] = {}
        assert gateway.process_payment("po-1", "tok", 5).error == "Unknown Error"

    def test_transport_failure(self, gateway, empty_store):
        empty_store.functions[PAYMENT_FUNCTION] = PersistenceError(PAYMENT_FUNCTION, "invoke", "502 Bad Gateway")
        result = gateway.process_payment("po-1", "tok", 5)
        assert not result.success
        assert result.error == "502 Bad Gateway"
