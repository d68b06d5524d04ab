import secrets
import time

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import PAYMENT_PAID, PAYMENT_PENDING, PAYMENT_STATUSES, Booking
from models.slot import Slot
from models.user import User
from services.errors import Conflict, InvalidDate, InvalidInput, NotFound
from services.otp import generate_booking_otp
from services.reservations import PendingReservation, charge_payment
from services.slots import get_slot, parse_price

CLIENT_STATUS_FILTERS = ("upcoming", "past", "paid", "pending")
MANAGER_BOOKING_FIELDS = ("slot_id", "date", "payment_status", "amount")


def manager_reference(prefix="MGR") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def get_client(client_id) -> User:
    client = db.session.get(User, client_id) if client_id is not None else None
    if client is None:
        raise NotFound("Client not found")
    return client


def get_booking(booking_id) -> Booking:
    booking = db.session.get(Booking, booking_id) if booking_id is not None else None
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def _bookable_day(calendar, slot, date_value):
    day = calendar.to_business_midnight_utc(date_value)
    if Booking.query.filter_by(slot_id=slot.id, date=day).first():
        raise Conflict("Slot is already booked for this date")
    if calendar.is_past(day):
        raise InvalidDate("Cannot book slots for past dates")
    return day


def _insert(booking):
    db.session.add(booking)
    try:
        db.session.commit()
    except IntegrityError:
        # uq_booking_slot_date lost a race with a concurrent request
        db.session.rollback()
        raise Conflict("Slot is already booked for this date")


def create_booking(calendar, gateway, client, slot_id, date):
    """Reserve the slot, charge the client, then mark the booking paid.

    Returns ``(booking, payment_result)``. Any failure after the pending row is
    written deletes it again and surfaces as ``PaymentFailed``.
    """
    slot = get_slot(slot_id)
    day = _bookable_day(calendar, slot, date)
    price = slot.price

    booking = Booking(
        client_id=client.id,
        slot_id=slot.id,
        date=day,
        amount=price,
        payment_status=PAYMENT_PENDING,
        otp=generate_booking_otp(),
    )
    _insert(booking)

    with PendingReservation(booking, user_id=client.id) as reservation:
        result = charge_payment(gateway, client.phone_number, price, str(booking.id))
        booking.reference_id = result.reference_id
        booking.payment_status = PAYMENT_PAID
        reservation.commit()

    return booking, result


def create_booking_by_manager(calendar, client_id, slot_id, date) -> Booking:
    slot = get_slot(slot_id)
    client = get_client(client_id)
    day = _bookable_day(calendar, slot, date)

    booking = Booking(
        client_id=client.id,
        slot_id=slot.id,
        date=day,
        amount=slot.price,
        payment_status=PAYMENT_PAID,
        otp=generate_booking_otp(),
        reference_id=manager_reference(),
    )
    _insert(booking)
    return booking


def list_for_client(calendar, client_id, status=None):
    q = (
        Booking.query
        .join(Slot, Booking.slot_id == Slot.id)
        .filter(Booking.client_id == client_id)
    )
    if status:
        if status not in CLIENT_STATUS_FILTERS:
            raise InvalidInput(f"status must be one of: {', '.join(CLIENT_STATUS_FILTERS)}")
        today = calendar.today_midnight_utc()
        if status == "upcoming":
            q = q.filter(Booking.date >= today)
        elif status == "past":
            q = q.filter(Booking.date < today)
        else:
            q = q.filter(Booking.payment_status == status)

    return q.order_by(Booking.date.desc(), Slot.start_time.asc()).all()


def list_all(calendar, date=None, search=None):
    q = (
        Booking.query
        .join(Slot, Booking.slot_id == Slot.id)
        .join(User, Booking.client_id == User.id)
    )
    if date:
        q = q.filter(Booking.date == calendar.to_business_midnight_utc(date))
    if search:
        q = q.filter(or_(
            func.lower(User.name).contains(search.lower()),
            User.phone_number.contains(search),
        ))
    return q.order_by(Booking.date.asc(), Slot.start_time.asc()).limit(500).all()


def update_booking(calendar, booking_id, fields: dict) -> Booking:
    unknown = set(fields) - set(MANAGER_BOOKING_FIELDS)
    if unknown:
        raise InvalidInput(f"Unsupported booking fields: {', '.join(sorted(unknown))}")

    booking = get_booking(booking_id)
    changes = {}
    if "slot_id" in fields:
        changes["slot_id"] = get_slot(fields["slot_id"]).id
    if "date" in fields:
        changes["date"] = calendar.to_business_midnight_utc(fields["date"])
    if "payment_status" in fields:
        if fields["payment_status"] not in PAYMENT_STATUSES:
            raise InvalidInput(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
        changes["payment_status"] = fields["payment_status"]
    if "amount" in fields:
        changes["amount"] = parse_price(fields["amount"])

    for name, value in changes.items():
        setattr(booking, name, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Slot is already booked for this date")
    return booking


def delete_booking(booking_id) -> dict:
    # availability is derived from bookings, so removing the row frees the slot for that day
    booking = get_booking(booking_id)
    released = {
        "id": booking.id,
        "slot_id": booking.slot_id,
        "date": booking.date,
        "subscription_id": booking.subscription_id,
    }
    db.session.delete(booking)
    db.session.commit()
    return released
