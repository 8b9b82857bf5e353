"""
Payment authorization collaborator.

Charges go through the `process-payment` server-side function; this module
only builds its request body and interprets the answer.  Failures of any
kind come back as PaymentResult(success=False), never as exceptions.
"""
import logging
from typing import Optional

from models.billing import PaymentResult
from models.purchase_order import PaymentMetadata

from .database import Store
from .errors import PersistenceError
from .state import AppState

logger = logging.getLogger(__name__)

PAYMENT_FUNCTION = "process-payment"


class PaymentGateway:

    def __init__(self, store: Store, state: Optional[AppState] = None):
        self.store = store
        self.state = state

    def build_request(self, reference_id: str, token: str, amount: float,
                      metadata: PaymentMetadata) -> dict:
        gateway = metadata.gateway or "stripe"
        return {
            "company_id": self.state.company_id if self.state else None,
            "settings_id": metadata.settings_id,
            "amount": amount,
            "invoice_id": reference_id,
            "gateway": gateway,
            "method_id": token if gateway == "stripe" else None,
            "payment_token": token if gateway == "sola" else None,
            "save_card": metadata.save_card,
            "email_receipt": metadata.email_receipt,
        }

    def process_payment(self, reference_id: str, token: str, amount: float,
                        metadata: Optional[PaymentMetadata] = None) -> PaymentResult:
        metadata = metadata or PaymentMetadata()
        logger.info("Processing payment of %.2f for %s via %s", amount, reference_id, metadata.gateway)
        try:
            response = self.store.invoke_function(
                PAYMENT_FUNCTION, self.build_request(reference_id, token, amount, metadata),
            )
        except PersistenceError as exc:
            logger.error("Payment function error for %s: %s", reference_id, exc.message)
            return PaymentResult(success=False, error=exc.message)

        if response.get("success") is True:
            intent = response.get("paymentIntent") or {}
            txn = intent.get("id") or response.get("transactionId")
            logger.info("Payment for %s succeeded (%s)", reference_id, txn)
            return PaymentResult(success=True, transaction_id=txn)

        error = response.get("error") or "Unknown Error"
        if isinstance(error, dict):
            error = error.get("message") or str(error)
        logger.warning("Payment for %s declined: %s", reference_id, error)
        return PaymentResult(success=False, error=str(error))
