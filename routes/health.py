from flask import Blueprint, jsonify

from utils.extensions import get_calendar

health_bp = Blueprint("health", __name__)

@health_bp.get("/health")
def health():
    calendar = get_calendar()
    return jsonify(status="ok", timezone=calendar.label, now=calendar.now().isoformat()), 200
