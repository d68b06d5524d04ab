"""Weekly subscriptions: one charge up front, one paid booking per occurrence."""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List

from flask import current_app
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import PAYMENT_PAID, PAYMENT_PENDING, Booking
from models.slot import Slot
from models.subscription import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    SUBSCRIPTION_STATUSES,
    Subscription,
)
from models.user import User
from services.bookings import get_client, manager_reference
from services.calendar import add_months, utcnow, weekday_number
from services.errors import Conflict, InvalidDate, InvalidInput, NotFound
from services.otp import generate_booking_otp
from services.reservations import PendingReservation, charge_payment
from services.slots import get_slot

logger = logging.getLogger(__name__)

MANAGER_SUBSCRIPTION_FIELDS = ("status", "auto_renew", "description")


def enumerate_occurrences(start_day: date, end_day: date, weekly_day: int) -> List[date]:
    """Every ``weekly_day`` (0=Sunday) in ``[start_day, end_day)``."""
    current = start_day + timedelta(days=(weekly_day - weekday_number(start_day)) % 7)
    out = []
    while current < end_day:
        out.append(current)
        current += timedelta(days=7)
    return out


@dataclass
class SubscriptionPlan:
    start: datetime
    end: datetime
    weekly_day: int
    occurrences: List[date]
    instants: List[datetime] = field(default_factory=list)
    amount: Decimal = Decimal("0")


def validate_weekly_day(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
        raise InvalidInput("Invalid day of week (0-6, Sunday-Saturday)")
    return value


def validate_months(value) -> int:
    max_months = current_app.config.get("SUBSCRIPTION_MAX_MONTHS", 12)
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= max_months:
        raise InvalidInput(f"months must be a whole number between 1 and {max_months}")
    return value


def plan_subscription(calendar, slot, start_date, weekly_day, months=1) -> SubscriptionPlan:
    start = calendar.to_business_midnight_utc(start_date)
    if calendar.is_past(start):
        raise InvalidDate("Start date cannot be in the past")

    start_day = calendar.business_date(start)
    end_day = add_months(start_day, months)
    occurrences = enumerate_occurrences(start_day, end_day, weekly_day)
    return SubscriptionPlan(
        start=start,
        end=calendar.to_business_midnight_utc(end_day),
        weekly_day=weekly_day,
        occurrences=occurrences,
        instants=[calendar.to_business_midnight_utc(d) for d in occurrences],
        # billed per generated occurrence, not a flat monthly rate
        amount=slot.price * len(occurrences),
    )


def _lock_slot(slot_id):
    # row lock on the slot serializes check-and-write across concurrent requests
    db.session.query(Slot).filter(Slot.id == slot_id).with_for_update().one()


def _active_overlap(slot_id, weekly_day, client_id, start, end, exclude_id=None):
    q = Subscription.query.filter(
        Subscription.slot_id == slot_id,
        Subscription.weekly_day == weekly_day,
        Subscription.status == STATUS_ACTIVE,
        or_(
            Subscription.client_id == client_id,
            and_(Subscription.start_date < end, Subscription.end_date > start),
        ),
    )
    if exclude_id is not None:
        q = q.filter(Subscription.id != exclude_id)
    return q.first()


def _check_conflicts(calendar, client_id, slot, plan: SubscriptionPlan):
    _lock_slot(slot.id)
    if _active_overlap(slot.id, plan.weekly_day, client_id, plan.start, plan.end):
        raise Conflict("This slot is already subscribed for this day of the week")

    if plan.instants:
        taken = (
            Booking.query
            .filter(Booking.slot_id == slot.id, Booking.date.in_(plan.instants))
            .order_by(Booking.date.asc())
            .first()
        )
        if taken:
            raise Conflict(f"Slot is already booked on {calendar.date_key(taken.date)}")


def _occurrence_booking(calendar, subscription, day, payment_status, taken) -> Booking:
    reference = f"{subscription.reference_id}-{day.isoformat()}" if subscription.reference_id else None
    return Booking(
        client_id=subscription.client_id,
        slot_id=subscription.slot_id,
        date=calendar.to_business_midnight_utc(day),
        amount=subscription.slot.price,
        payment_status=payment_status,
        otp=generate_booking_otp(taken),
        reference_id=reference,
        is_subscription_booking=True,
    )


def _insert(calendar, subscription, plan, payment_status):
    """Write the subscription together with one booking per occurrence.

    uq_booking_slot_date holds every occurrence from here on, so a paid
    subscription can never end up without its dates.
    """
    db.session.add(subscription)
    taken = set()
    with db.session.no_autoflush:
        for day in plan.occurrences:
            subscription.bookings.append(
                _occurrence_booking(calendar, subscription, day, payment_status, taken)
            )
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("This slot is already subscribed or booked for one of these dates")


def _mark_paid(calendar, subscription, reference_id):
    subscription.reference_id = reference_id
    subscription.payment_status = PAYMENT_PAID
    for booking in subscription.bookings:
        booking.payment_status = PAYMENT_PAID
        booking.reference_id = f"{reference_id}-{calendar.date_key(booking.date)}"


def _prepare(calendar, client_id, slot_id, start_date, weekly_day, months):
    weekly_day = validate_weekly_day(weekly_day)
    months = validate_months(months)
    slot = get_slot(slot_id)
    plan = plan_subscription(calendar, slot, start_date, weekly_day, months)
    _check_conflicts(calendar, client_id, slot, plan)
    return slot, plan


def _new_subscription(client_id, slot, plan, **extra) -> Subscription:
    return Subscription(
        client_id=client_id,
        slot_id=slot.id,
        slot=slot,
        weekly_day=plan.weekly_day,
        start_date=plan.start,
        end_date=plan.end,
        monthly_amount=plan.amount,
        status=STATUS_ACTIVE,
        last_billing_date=utcnow(),
        next_billing_date=plan.end,
        **extra,
    )


def create_subscription(calendar, gateway, client, slot_id, start_date, weekly_day, months=1):
    """Reserve every occurrence as a pending booking, charge once, then mark
    the subscription and its bookings paid.

    Returns ``(subscription, payment_result, bookings_created)``. A failed
    charge deletes the subscription and, by cascade, its pending bookings.
    """
    slot, plan = _prepare(calendar, client.id, slot_id, start_date, weekly_day, months)

    subscription = _new_subscription(client.id, slot, plan, payment_status=PAYMENT_PENDING)
    _insert(calendar, subscription, plan, PAYMENT_PENDING)

    with PendingReservation(subscription, user_id=client.id) as reservation:
        result = charge_payment(gateway, client.phone_number, plan.amount, str(subscription.id))
        _mark_paid(calendar, subscription, result.reference_id)
        reservation.commit()

    return subscription, result, len(plan.occurrences)


def create_subscription_by_manager(calendar, client_id, slot_id, start_date, weekly_day, months=1):
    client = get_client(client_id)
    slot, plan = _prepare(calendar, client.id, slot_id, start_date, weekly_day, months)

    subscription = _new_subscription(
        client.id, slot, plan,
        payment_status=PAYMENT_PAID,
        reference_id=manager_reference("MGR-SUB"),
    )
    _insert(calendar, subscription, plan, PAYMENT_PAID)
    return subscription, len(plan.occurrences)


def occurrences_for(calendar, subscription) -> List[date]:
    return enumerate_occurrences(
        calendar.business_date(subscription.start_date),
        calendar.business_date(subscription.end_date),
        subscription.weekly_day,
    )


def materialize_occurrences(calendar, subscription, skip_past=False) -> int:
    """Create the missing paid bookings for ``subscription``. Safe to re-run."""
    have = {
        calendar.date_key(b.date)
        for b in Booking.query.filter_by(subscription_id=subscription.id).all()
    }
    taken = set()
    created = 0
    # OTP lookups must not flush half-built rows before the guarded commit
    with db.session.no_autoflush:
        for day in occurrences_for(calendar, subscription):
            key = day.isoformat()
            if key in have or (skip_past and calendar.is_past(day)):
                continue
            subscription.bookings.append(
                _occurrence_booking(calendar, subscription, day, PAYMENT_PAID, taken)
            )
            created += 1

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.error("Occurrence bookings for subscription %s collided with existing bookings", subscription.id)
        raise Conflict("Could not create every subscription booking; a date is already taken")
    return created


def get_subscription(subscription_id) -> Subscription:
    sub = db.session.get(Subscription, subscription_id) if subscription_id is not None else None
    if sub is None:
        raise NotFound("Subscription not found")
    return sub


def cancel_subscription(subscription_id, client_id) -> Subscription:
    # already-materialized bookings stay valid; cancelling only stops renewal
    sub = Subscription.query.filter_by(id=subscription_id, client_id=client_id, status=STATUS_ACTIVE).first()
    if sub is None:
        raise NotFound("Subscription not found or not active")
    sub.status = STATUS_CANCELLED
    sub.auto_renew = False
    db.session.commit()
    return sub


def update_subscription(subscription_id, fields: dict) -> Subscription:
    unknown = set(fields) - set(MANAGER_SUBSCRIPTION_FIELDS)
    if unknown:
        raise InvalidInput(f"Unsupported subscription fields: {', '.join(sorted(unknown))}")

    sub = get_subscription(subscription_id)
    if "status" in fields and fields["status"] not in SUBSCRIPTION_STATUSES:
        raise InvalidInput(f"status must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
    if "auto_renew" in fields and not isinstance(fields["auto_renew"], bool):
        raise InvalidInput("auto_renew must be true or false")
    if "description" in fields:
        description = fields["description"]
        if not isinstance(description, str) or not description.strip() or len(description) > 255:
            raise InvalidInput("Invalid description")
        fields = dict(fields, description=description.strip())

    if fields.get("status") == STATUS_ACTIVE and sub.status != STATUS_ACTIVE:
        _lock_slot(sub.slot_id)
        if _active_overlap(sub.slot_id, sub.weekly_day, sub.client_id, sub.start_date, sub.end_date, exclude_id=sub.id):
            raise Conflict("Another active subscription already covers this slot and day of the week")

    for name, value in fields.items():
        setattr(sub, name, value)
    db.session.commit()
    return sub


def delete_subscription(subscription_id) -> int:
    """Delete the subscription and every booking generated from it."""
    sub = get_subscription(subscription_id)
    removed = Booking.query.filter_by(subscription_id=sub.id).count()
    db.session.delete(sub)
    db.session.commit()
    return removed


def _status_filter(q, status):
    if status:
        if status not in SUBSCRIPTION_STATUSES:
            raise InvalidInput(f"status must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
        q = q.filter(Subscription.status == status)
    return q


def list_for_client(client_id, status=None):
    q = _status_filter(Subscription.query.filter(Subscription.client_id == client_id), status)
    return q.order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()


def list_all(status=None, search=None):
    q = _status_filter(Subscription.query.join(User, Subscription.client_id == User.id), status)
    if search:
        q = q.filter(or_(
            func.lower(User.name).contains(search.lower()),
            User.phone_number.contains(search),
        ))
    return q.order_by(Subscription.created_at.desc(), Subscription.id.desc()).limit(500).all()


# ---------- sweeps (run from the CLI) ----------

def expire_finished(calendar) -> int:
    rows = (
        Subscription.query
        .filter(Subscription.status == STATUS_ACTIVE, Subscription.end_date <= calendar.today_midnight_utc())
        .all()
    )
    for sub in rows:
        sub.status = STATUS_EXPIRED
        sub.auto_renew = False
    db.session.commit()
    return len(rows)


def reconcile(calendar) -> dict:
    """Re-materialize upcoming occurrences for paid subscriptions missing bookings."""
    repaired = 0
    created = 0
    rows = Subscription.query.filter_by(status=STATUS_ACTIVE, payment_status=PAYMENT_PAID).all()
    for sub in rows:
        expected = len(occurrences_for(calendar, sub))
        have = Booking.query.filter_by(subscription_id=sub.id).count()
        if have >= expected:
            continue
        try:
            made = materialize_occurrences(calendar, sub, skip_past=True)
        except Conflict:
            logger.warning("Subscription %s left incomplete; an occurrence date is booked by someone else", sub.id)
            continue
        if made:
            repaired += 1
            created += made
    return {"subscriptions_repaired": repaired, "bookings_created": created}
