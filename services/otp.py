import secrets

from flask import current_app

from models.booking import Booking

MAX_OTP_ATTEMPTS = 20


def generate_booking_otp(taken=None) -> str:
    """Numeric gate code unused by any stored booking (or by ``taken``)."""
    length = current_app.config.get("BOOKING_OTP_LENGTH", 6)
    taken = taken if taken is not None else set()
    for _ in range(MAX_OTP_ATTEMPTS):
        code = "".join(secrets.choice("0123456789") for _ in range(length))
        if code in taken:
            continue
        if Booking.query.filter_by(otp=code).first() is None:
            taken.add(code)
            return code
    raise RuntimeError("Could not allocate a unique booking OTP; increase BOOKING_OTP_LENGTH")
