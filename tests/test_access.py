from datetime import datetime

import pytest
import pytz

from models import db
from models.audit_log import AuditLog
from models.booking import Booking
from services.access import verify_otp
from services.bookings import create_booking_by_manager, update_booking
from services.errors import InvalidCode
from services.slots import create_slot


def _booking(app, calendar, client_id, slot_id, day="2024-01-02"):
    with app.app_context():
        booking = create_booking_by_manager(calendar, client_id, slot_id, day)
        return booking.id, booking.otp


def _verify(app, otp):
    return app.test_client().post("/access/verify", json={"otp": otp})


def _at_local(clock, hour, minute=0):
    # Mogadishu is UTC+3 all year
    clock.current = datetime(2024, 1, 2, hour - 3, minute, tzinfo=pytz.UTC)


def test_first_scan_grants_access_and_marks_used(app, calendar, client_id, slot_id):
    booking_id, otp = _booking(app, calendar, client_id, slot_id)

    resp = _verify(app, otp)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["code"] == 6
    assert body["data"]["slot_time"] == "11:00-13:00"
    assert body["data"]["full_duration"] == 120
    assert body["data"]["duration"] == 60
    assert body["data"]["client_id"] == client_id
    assert body["data"]["date"] == "2024-01-02"

    with app.app_context():
        assert db.session.get(Booking, booking_id).is_used is True
        assert AuditLog.query.filter_by(action="ACCESS_GRANTED", entity_id=str(booking_id)).count() == 1


def test_repeat_scan_inside_window(app, calendar, client_id, slot_id):
    _, otp = _booking(app, calendar, client_id, slot_id)
    _verify(app, otp)

    body = _verify(app, otp).get_json()
    assert body["success"] is True
    assert body["code"] == 7
    assert "data" not in body


@pytest.mark.parametrize("otp", ["ABC123", "", None, 123456])
def test_unknown_code(app, calendar, client_id, slot_id, otp):
    _booking(app, calendar, client_id, slot_id)
    resp = _verify(app, otp)
    assert resp.status_code == 400
    assert resp.get_json() == {"success": False, "code": 1, "message": "Invalid OTP"}


def test_unpaid_booking(app, calendar, client_id, slot_id):
    booking_id, otp = _booking(app, calendar, client_id, slot_id)
    with app.app_context():
        update_booking(calendar, booking_id, {"payment_status": "pending"})

    assert _verify(app, otp).get_json()["code"] == 3


def test_booking_for_another_day(app, calendar, client_id, slot_id):
    _, otp = _booking(app, calendar, client_id, slot_id, day="2024-01-03")
    body = _verify(app, otp).get_json()
    assert body["code"] == 4
    assert "2024-01-03" in body["message"]


def test_window_start_is_inclusive_and_end_exclusive(app, calendar, clock, client_id, slot_id):
    booking_id, otp = _booking(app, calendar, client_id, slot_id)

    _at_local(clock, 10, 59)
    assert _verify(app, otp).get_json()["code"] == 5

    _at_local(clock, 13, 0)
    assert _verify(app, otp).get_json()["code"] == 5

    with app.app_context():
        assert db.session.get(Booking, booking_id).is_used is False

    _at_local(clock, 11, 0)
    body = _verify(app, otp).get_json()
    assert body["code"] == 6
    assert body["data"]["duration"] == 120


def test_repeat_scan_after_window_is_denied(app, calendar, clock, client_id, slot_id):
    _, otp = _booking(app, calendar, client_id, slot_id)
    assert _verify(app, otp).get_json()["code"] == 6

    _at_local(clock, 14)
    assert _verify(app, otp).get_json()["code"] == 5


def test_verification_uses_business_day_not_utc_day(app, calendar, clock, client_id):
    # 00:30 local on Jan 3 is still Jan 2 in UTC
    with app.app_context():
        late_slot = create_slot("00:00", "01:00", "15").id
    _, otp = _booking(app, calendar, client_id, late_slot, day="2024-01-03")

    clock.current = datetime(2024, 1, 2, 21, 30, tzinfo=pytz.UTC)
    assert _verify(app, otp).get_json()["code"] == 6


def test_service_raises_typed_denial(app, calendar):
    with app.app_context():
        with pytest.raises(InvalidCode) as exc:
            verify_otp(calendar, "999999")
    assert exc.value.code == 1


def test_gate_endpoint_is_exempt_from_csrf(app, calendar, client_id, slot_id):
    _, otp = _booking(app, calendar, client_id, slot_id)
    app.config["CSRF_ENABLED"] = True
    assert _verify(app, otp).get_json()["code"] == 6
