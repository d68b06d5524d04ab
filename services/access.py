"""Gate OTP verification.

A booking's code moves ``issued-unused -> issued-used`` exactly once. Every
call re-checks payment, day and window; failures never mark the code used.
"""
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from models import db
from models.booking import PAYMENT_PAID, Booking
from services.calendar import compare_time_strings
from services.errors import InvalidCode, OutsideWindow, Unpaid, WrongDate

ACCESS_GRANTED_FIRST = 6
ACCESS_GRANTED_AGAIN = 7

GRANTED_MESSAGE = "Access granted. Gate will open now."


@dataclass
class AccessGrant:
    code: int
    message: str
    data: Optional[dict] = None
    booking_id: Optional[int] = None

    def to_dict(self):
        out = {"success": True, "code": self.code, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


def verify_otp(calendar, otp) -> AccessGrant:
    code = otp.strip() if isinstance(otp, str) else ""
    booking = Booking.query.filter_by(otp=code).first() if code else None
    if booking is None:
        raise InvalidCode("Invalid OTP")

    slot = booking.slot
    log = current_app.logger
    log.debug(
        "OTP check booking=%s slot=%s-%s paid=%s used=%s",
        booking.id, slot.start_time, slot.end_time, booking.payment_status, booking.is_used,
    )

    if booking.payment_status != PAYMENT_PAID:
        raise Unpaid("Booking is not paid yet")

    booking_day = calendar.date_key(booking.date)
    today = calendar.today_key()
    if booking_day != today:
        raise WrongDate(f"Access denied. Your booking is for {booking_day}, not today ({today})")

    now = calendar.current_time_string()
    since_start = compare_time_strings(now, slot.start_time)
    until_end = compare_time_strings(slot.end_time, now)
    if since_start < 0 or until_end <= 0:
        raise OutsideWindow(
            f"Access denied. Your slot is {slot.start_time}-{slot.end_time}; current time is {now}"
        )

    # compare-and-set so two simultaneous first scans cannot both see an unused code
    first = (
        Booking.query
        .filter(Booking.id == booking.id, Booking.is_used.is_(False))
        .update({Booking.is_used: True}, synchronize_session=False)
    )
    db.session.commit()

    if not first:
        return AccessGrant(ACCESS_GRANTED_AGAIN, GRANTED_MESSAGE, booking_id=booking.id)

    log.info("First access for booking %s on %s", booking.id, today)
    return AccessGrant(
        ACCESS_GRANTED_FIRST,
        GRANTED_MESSAGE,
        {
            "slot_time": f"{slot.start_time}-{slot.end_time}",
            "duration": until_end,
            "full_duration": compare_time_strings(slot.end_time, slot.start_time),
            "client_id": booking.client_id,
            "date": today,
            "timezone": calendar.label,
        },
        booking_id=booking.id,
    )
