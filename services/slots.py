import re
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.slot import Slot
from models.subscription import Subscription
from services.calendar import parse_time_string
from services.errors import Conflict, InvalidInput, NotFound

SLOT_FIELDS = ("start_time", "end_time", "price")

_PRICE_RE = re.compile(r"^\d+(\.\d{1,2})?$")


def parse_price(value) -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidInput("price is required")
    text = str(value).strip()
    if not _PRICE_RE.match(text):
        raise InvalidInput("Invalid price. Must be a non-negative number with up to 2 decimal places")
    return Decimal(text)


def intervals_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    return start1 < end2 and end1 > start2


def _window(start_time, end_time):
    start = parse_time_string(start_time)
    end = parse_time_string(end_time)
    if end <= start:
        raise InvalidInput("end_time must be after start_time")
    return start, end


def _find_overlap(start: int, end: int, exclude_id=None):
    q = Slot.query
    if exclude_id is not None:
        q = q.filter(Slot.id != exclude_id)
    for other in q.all():
        if intervals_overlap(start, end, parse_time_string(other.start_time), parse_time_string(other.end_time)):
            return other
    return None


def get_slot(slot_id) -> Slot:
    slot = db.session.get(Slot, slot_id) if slot_id is not None else None
    if slot is None:
        raise NotFound("Slot not found")
    return slot


def _commit_slot():
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("A slot with these exact times already exists")


def create_slot(start_time, end_time, price) -> Slot:
    start, end = _window(start_time, end_time)
    amount = parse_price(price)

    other = _find_overlap(start, end)
    if other:
        raise Conflict(f"This slot overlaps with an existing slot ({other.start_time}-{other.end_time})")

    slot = Slot(start_time=start_time, end_time=end_time, price=amount)
    db.session.add(slot)
    _commit_slot()
    return slot


def update_slot(calendar, slot_id, fields: dict) -> Slot:
    unknown = set(fields) - set(SLOT_FIELDS)
    if unknown:
        raise InvalidInput(f"Unsupported slot fields: {', '.join(sorted(unknown))}")

    slot = get_slot(slot_id)
    new_start = fields.get("start_time", slot.start_time)
    new_end = fields.get("end_time", slot.end_time)

    if (new_start, new_end) != (slot.start_time, slot.end_time):
        start, end = _window(new_start, new_end)
        other = _find_overlap(start, end, exclude_id=slot.id)
        if other:
            raise Conflict(f"This slot would overlap with an existing slot ({other.start_time}-{other.end_time})")

        upcoming = (
            Booking.query
            .filter(Booking.slot_id == slot.id, Booking.date >= calendar.today_midnight_utc())
            .first()
        )
        if upcoming:
            raise Conflict("Cannot modify slot times with existing future bookings")

        slot.start_time = new_start
        slot.end_time = new_end

    if "price" in fields:
        slot.price = parse_price(fields["price"])

    _commit_slot()
    return slot


def delete_slot(slot_id):
    slot = get_slot(slot_id)
    if Booking.query.filter_by(slot_id=slot.id).first():
        raise Conflict("Cannot delete slot with existing bookings")
    if Subscription.query.filter_by(slot_id=slot.id).first():
        raise Conflict("Cannot delete slot referenced by a subscription")
    db.session.delete(slot)
    db.session.commit()


def list_slots(calendar, date=None):
    """All slots by start time; with ``date``, each row carries that day's booking state."""
    slots = Slot.query.order_by(Slot.start_time.asc()).all()
    if date is None:
        return [s.to_dict() for s in slots]

    day = calendar.to_business_midnight_utc(date)
    booked = {b.slot_id: b for b in Booking.query.filter(Booking.date == day).all()}

    out = []
    for s in slots:
        row = s.to_dict()
        b = booked.get(s.id)
        row.update({
            "is_booked": b is not None,
            "booked_by": (b.client.name if b.client else "Unknown") if b else None,
            "payment_status": b.payment_status if b else None,
            "is_subscription_booking": b.is_subscription_booking if b else False,
        })
        out.append(row)
    return out
