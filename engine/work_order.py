"""
Identifier generation.

Work Order IDs are the human-facing cart identifiers (WO-1234-5678).  They
must be unique across every tenant, so each candidate is checked against
the store and generation gives up after a fixed number of collisions.
"""
import logging
import random
import time
import uuid
from typing import Callable, Optional

from .database import Store

logger = logging.getLogger(__name__)

WORK_ORDER_FAILURE_MESSAGE = "Failed to generate unique Work Order ID. Please try again."


def new_record_id(prefix: str) -> str:
    """Internal record id, e.g. cart-3f9a1c2b7d4e."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def candidate_work_order_id(now_ms: int, rng: random.Random) -> str:
    """WO-{last four digits of the millisecond clock}-{four random digits}."""
    return f"WO-{str(now_ms)[-4:]}-{rng.randrange(10000):04d}"


class WorkOrderIdGenerator:
    """Generates globally unique Work Order IDs with bounded retries."""

    def __init__(
        self,
        store: Store,
        max_attempts: int = 10,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self._clock = clock
        self._rng = rng or random.Random()

    def is_taken(self, work_order_id: str) -> bool:
        # Deliberately not company-scoped
        row = self.store.select_one("carts", columns="id", eq={"work_order_id": work_order_id})
        return row is not None

    def generate(self) -> Optional[str]:
        """
        Return an unused Work Order ID, or None when every attempt collided.
        Store failures propagate.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = candidate_work_order_id(int(self._clock() * 1000), self._rng)
            if not self.is_taken(candidate):
                logger.debug("Work order id %s (attempt %d)", candidate, attempt)
                return candidate
            logger.debug("Work order id %s already in use", candidate)
        logger.warning("No unique work order id after %d attempts", self.max_attempts)
        return None
