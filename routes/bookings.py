from flask import Blueprint, request, jsonify, g

from security.rbac import require_roles, MANAGER
from services import bookings as booking_service
from utils.audit import log_event
from utils.auth_context import login_required
from utils.extensions import get_calendar, get_gateway
from utils.payload import json_body, require_int, require_str

booking_bp = Blueprint("booking", __name__)


# ---------- CLIENTS: book a slot for a day (pay, then receive the gate OTP) ----------
@booking_bp.post("/bookings/me")
@login_required
def create_booking():
    data = json_body()
    slot_id = require_int(data, "slot_id")
    date_str = require_str(data, "date", max_len=10)

    calendar = get_calendar()
    booking, payment = booking_service.create_booking(
        calendar, get_gateway(), g.user, slot_id, date_str
    )

    log_event("BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
              metadata={"slot_id": slot_id, "date": date_str, "reference_id": payment.reference_id})
    return jsonify(
        message="Booking created and payment completed successfully",
        booking=booking.to_dict(calendar),
        payment={
            "reference_id": payment.reference_id,
            "status": "success",
            "transaction_id": payment.transaction_id,
        },
        otp=booking.otp,
    ), 201


# ---------- CLIENTS: view my bookings ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    # optional: status=upcoming|past|paid|pending
    status = request.args.get("status") or None
    calendar = get_calendar()
    rows = booking_service.list_for_client(calendar, g.user.id, status)
    return jsonify([b.to_dict(calendar) for b in rows]), 200


# ---------- MANAGER: list all bookings ----------
@booking_bp.get("/manager/bookings")
@require_roles(MANAGER)
def list_all_bookings():
    calendar = get_calendar()
    rows = booking_service.list_all(
        calendar,
        date=request.args.get("date") or None,
        search=(request.args.get("search") or "").strip() or None,
    )
    out = []
    for b in rows:
        row = b.to_dict(calendar)
        row["client"] = {"id": b.client.id, "name": b.client.name, "phone_number": b.client.phone_number}
        out.append(row)
    return jsonify(out), 200


# ---------- MANAGER: book on behalf of a client (paid at the desk) ----------
@booking_bp.post("/manager/bookings")
@require_roles(MANAGER)
def create_booking_for_client():
    data = json_body()
    calendar = get_calendar()
    booking = booking_service.create_booking_by_manager(
        calendar,
        require_int(data, "client_id"),
        require_int(data, "slot_id"),
        require_str(data, "date", max_len=10),
    )

    log_event("MANAGER_BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
              metadata={"client_id": booking.client_id})
    return jsonify(
        message=f"Booking created successfully. OTP: {booking.otp}",
        booking=booking.to_dict(calendar),
        otp=booking.otp,
    ), 201


@booking_bp.patch("/manager/bookings/<int:booking_id>")
@require_roles(MANAGER)
def update_booking(booking_id: int):
    data = json_body()
    if "slot_id" in data:
        data["slot_id"] = require_int(data, "slot_id")

    calendar = get_calendar()
    booking = booking_service.update_booking(calendar, booking_id, data)

    log_event("MANAGER_BOOKING_UPDATE", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata=data)
    return jsonify(booking.to_dict(calendar)), 200


@booking_bp.delete("/manager/bookings/<int:booking_id>")
@require_roles(MANAGER)
def delete_booking(booking_id: int):
    released = booking_service.delete_booking(booking_id)

    log_event("MANAGER_BOOKING_DELETE", user_id=g.user.id, entity="booking", entity_id=booking_id,
              metadata={"slot_id": released["slot_id"], "date": get_calendar().date_key(released["date"])})
    return jsonify(message="Booking deleted successfully"), 200
