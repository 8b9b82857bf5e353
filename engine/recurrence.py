"""
Recurring and scheduled cart generation.

A template cart (type Scheduled or Recurring) spawns a Standard draft on
each day it is due.  evaluate() is the pure decision; RecurrenceRunner
performs the writes.

All comparisons are in local calendar days.  Day-of-week numbering is
0 = Sunday ... 6 = Saturday.

Firing is at-least-once, not exactly-once: the spawn and the template's
last_run_at stamp are separate writes.  The spawn id is derived from the
template id and the day, so a retry after a crash between the two writes
finds the existing spawn instead of creating a second one.
"""
import logging
from datetime import date, datetime, time
from typing import Iterable, Optional

from models.cart import (
    ALL_FREQUENCIES, CART_DRAFT, CART_RECURRING, CART_SCHEDULED, CART_STANDARD,
    FREQ_BIWEEKLY, FREQ_MONTHLY, FREQ_QUARTERLY, FREQ_WEEKLY,
    Cart, CartSchedule,
)
from models.result import RecurrenceDecision, RecurrenceReport

from .database import CART_ITEMS, Store
from .errors import ProcurementError, ValidationError
from .field_mapper import cart_item_to_record, cart_to_record, utc_now_iso
from .work_order import WorkOrderIdGenerator

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Calendar helpers
# ------------------------------------------------------------------

def js_day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def parse_day(value: Optional[str]) -> Optional[date]:
    """YYYY-MM-DD (any trailing time part ignored) -> date, or None."""
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def local_day(value: Optional[str]) -> Optional[date]:
    """
    Calendar day of a timestamp in local time.  Aware timestamps are
    converted to the local zone first; naive ones are taken as local.
    """
    if not value:
        return None
    text = str(value).strip().replace("Z", "+00:00")
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return parse_day(text)
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date()


def local_midnight_iso(day: date) -> str:
    return datetime.combine(day, time.min).astimezone().isoformat()


def biweekly_due(start: date, today: date) -> bool:
    """Even number of whole weeks between the anchor and today."""
    days = abs((today - start).days)
    return (days // 7) % 2 == 0


def quarterly_due(start: date, today: date) -> bool:
    months = (today.year - start.year) * 12 + today.month - start.month
    return months >= 0 and months % 3 == 0


def spawn_id(template_id: str, today: date) -> str:
    """Idempotency key: one spawn per template per day."""
    return f"cart-{template_id}-{today:%Y%m%d}"


def spawn_name(template_name: str, today: date) -> str:
    return f"{template_name} - {today.month}/{today.day}/{today.year}"


# ------------------------------------------------------------------
# Decision
# ------------------------------------------------------------------

def is_due(cart: Cart, today: date) -> tuple[bool, str]:
    """Return (due, reason) for one cart on one day."""
    if cart.type == CART_STANDARD:
        return False, "standard cart"

    last_run = local_day(cart.last_run_at)
    if last_run == today:
        return False, "already ran today"

    if cart.type == CART_SCHEDULED:
        scheduled = parse_day(cart.scheduled_date)
        if scheduled is None:
            return False, "no scheduled date"
        if cart.last_run_at:
            return False, "scheduled cart already consumed"
        if today < scheduled:
            return False, "scheduled date not reached"
        return True, "scheduled date reached"

    if cart.type != CART_RECURRING:
        return False, f"unknown cart type {cart.type!r}"

    freq = cart.frequency
    if freq == FREQ_WEEKLY:
        if cart.day_of_week is not None and js_day_of_week(today) == cart.day_of_week:
            return True, "weekly day matched"
        return False, "not the weekly day"

    if freq == FREQ_MONTHLY:
        if cart.day_of_month is not None and today.day == cart.day_of_month:
            return True, "monthly day matched"
        return False, "not the monthly day"

    if freq == FREQ_BIWEEKLY:
        start = parse_day(cart.start_date)
        if start is None or cart.day_of_week is None:
            return False, "bi-weekly cart missing start date or weekday"
        if js_day_of_week(today) != cart.day_of_week:
            return False, "not the bi-weekly day"
        if not biweekly_due(start, today):
            return False, "off week"
        return True, "bi-weekly day matched"

    if freq == FREQ_QUARTERLY:
        start = parse_day(cart.start_date)
        if start is None or cart.day_of_month is None:
            return False, "quarterly cart missing start date or day"
        if today.day != cart.day_of_month:
            return False, "not the quarterly day"
        if not quarterly_due(start, today):
            return False, "not a quarter month"
        return True, "quarterly day matched"

    return False, f"unknown frequency {freq!r}"


def build_spawn(template: Cart, today: date, company_id: Optional[str] = None,
                created_by: Optional[str] = None) -> Cart:
    """Standard draft copied from a template.  Items are deep copies."""
    new_id = spawn_id(template.id, today)
    return Cart(
        id=new_id,
        company_id=company_id or template.company_id,
        work_order_id=new_id,
        name=spawn_name(template.name, today),
        type=CART_STANDARD,
        status=CART_DRAFT,
        property_id=template.property_id,
        unit_id=template.unit_id,
        category=template.category,
        created_by=created_by,
        item_count=template.item_count,
        total_cost=template.total_cost,
        last_modified=utc_now_iso(),
        items=[item.model_copy(deep=True) for item in template.items],
    )


def evaluate(template: Cart, today: date, company_id: Optional[str] = None,
             created_by: Optional[str] = None) -> RecurrenceDecision:
    due, reason = is_due(template, today)
    if not due:
        return RecurrenceDecision(should_run=False, reason=reason)
    return RecurrenceDecision(
        should_run=True,
        reason=reason,
        spawned_cart=build_spawn(template, today, company_id, created_by),
    )


# ------------------------------------------------------------------
# Schedule validation (cart creation / schedule edits)
# ------------------------------------------------------------------

def validate_schedule(cart_type: str, schedule: Optional[CartSchedule]) -> None:
    """Raise ValidationError if a template cart lacks the fields its cadence needs."""
    if cart_type == CART_STANDARD:
        return
    schedule = schedule or CartSchedule()

    if cart_type == CART_SCHEDULED:
        if parse_day(schedule.scheduled_date) is None:
            raise ValidationError("Scheduled carts need a valid scheduled date (YYYY-MM-DD)", "scheduledDate")
        return

    if cart_type != CART_RECURRING:
        raise ValidationError(f"Unknown cart type: {cart_type}", "type")

    freq = schedule.frequency
    if freq not in ALL_FREQUENCIES:
        raise ValidationError(f"Unknown frequency: {freq}", "frequency")
    if freq in (FREQ_WEEKLY, FREQ_BIWEEKLY):
        if schedule.day_of_week is None or not 0 <= schedule.day_of_week <= 6:
            raise ValidationError(f"{freq} carts need a day of week between 0 and 6", "dayOfWeek")
    if freq in (FREQ_MONTHLY, FREQ_QUARTERLY):
        if schedule.day_of_month is None or not 1 <= schedule.day_of_month <= 31:
            raise ValidationError(f"{freq} carts need a day of month between 1 and 31", "dayOfMonth")
    if freq in (FREQ_BIWEEKLY, FREQ_QUARTERLY) and parse_day(schedule.start_date) is None:
        raise ValidationError(f"{freq} carts need a valid start date (YYYY-MM-DD)", "startDate")


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------

class RecurrenceRunner:
    """
    Fires every due template for one tenant and day.

    Write order per template: spawn cart, spawn items, then the template's
    last_run_at stamp.  A failure on one template is recorded in the report
    and the remaining templates are still processed.
    """

    def __init__(self, store: Store, work_orders: Optional[WorkOrderIdGenerator] = None,
                 created_by: Optional[str] = None):
        self.store = store
        self.work_orders = work_orders
        self.created_by = created_by

    def process(self, carts: Iterable[Cart], company_id: str,
                today: Optional[date] = None) -> RecurrenceReport:
        today = today or date.today()
        report = RecurrenceReport()
        for cart in carts:
            if not cart.is_template:
                continue
            report.evaluated += 1
            decision = evaluate(cart, today, company_id, self.created_by)
            if not decision.should_run:
                logger.debug("Template %s not due: %s", cart.id, decision.reason)
                continue
            try:
                created = self._fire(cart, decision.spawned_cart, today)
            except ProcurementError as exc:
                logger.error("Recurring cart %s failed: %s", cart.id, exc)
                report.errors.append(f"{cart.id}: {exc}")
                continue
            if created:
                report.spawned_cart_ids.append(decision.spawned_cart.id)
            else:
                report.skipped_existing.append(decision.spawned_cart.id)
        if report.fired:
            logger.info(
                "Recurring carts for %s on %s: %d spawned, %d already present",
                company_id, today, len(report.spawned_cart_ids), len(report.skipped_existing),
            )
        return report

    def _fire(self, template: Cart, spawn: Cart, today: date) -> bool:
        """Returns False when the spawn already existed (retry after a partial run)."""
        existing = self.store.select_one("carts", embed=(CART_ITEMS,), eq={"id": spawn.id})
        created = existing is None
        if created:
            if self.work_orders is not None:
                spawn.work_order_id = self.work_orders.generate() or spawn.id
            self.store.insert("carts", cart_to_record(spawn))
            logger.info("Spawned cart %s from template %s", spawn.id, template.id)
        if spawn.items and (created or not existing.get("cart_items")):
            self.store.insert("cart_items", [cart_item_to_record(i, spawn.id) for i in spawn.items])
        self.store.update("carts", template.id, {"last_run_at": local_midnight_iso(today)})
        template.last_run_at = local_midnight_iso(today)
        return created
