from flask import Blueprint, current_app, jsonify

from services.access import verify_otp
from services.errors import AccessDenied
from utils.audit import log_event
from utils.extensions import get_calendar
from utils.payload import json_body

access_bp = Blueprint("access", __name__, url_prefix="/access")


# ---------- GATE: verify booking OTP (no session; called by the door device) ----------
@access_bp.post("/verify")
def verify():
    data = json_body()
    try:
        grant = verify_otp(get_calendar(), data.get("otp"))
    except AccessDenied as exc:
        current_app.logger.info("Access denied (code %s): %s", exc.code, exc.message)
        return jsonify(success=False, code=exc.code, message=exc.message), exc.status_code
    except Exception:
        current_app.logger.exception("OTP verification crashed")
        return jsonify(success=False, code=0, message="Verification failed"), 500

    if grant.data is not None:
        log_event("ACCESS_GRANTED", user_id=grant.data["client_id"], entity="booking",
                  entity_id=grant.booking_id, metadata={"date": grant.data["date"], "slot_time": grant.data["slot_time"]})
    return jsonify(grant.to_dict()), 200
