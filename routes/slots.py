from flask import Blueprint, request, jsonify, g

from security.rbac import require_roles, MANAGER
from services import slots as slot_service
from utils.audit import log_event
from utils.extensions import get_calendar
from utils.payload import json_body

slots_bp = Blueprint("slots", __name__)


# ---------- PUBLIC: view slots (optionally with one day's booking state) ----------
@slots_bp.get("/slots")
def list_public_slots():
    date_str = request.args.get("date") or None
    return jsonify(slot_service.list_slots(get_calendar(), date_str)), 200


# ---------- MANAGER: manage slots ----------
@slots_bp.get("/manager/slots")
@require_roles(MANAGER)
def list_slots():
    return jsonify(slot_service.list_slots(get_calendar())), 200


@slots_bp.post("/manager/slots")
@require_roles(MANAGER)
def create_slot():
    data = json_body()
    slot = slot_service.create_slot(data.get("start_time"), data.get("end_time"), data.get("price"))

    log_event("SLOT_CREATE", user_id=g.user.id, entity="slot", entity_id=slot.id,
              metadata={"start_time": slot.start_time, "end_time": slot.end_time})
    return jsonify(message="Slot created successfully", slot=slot.to_dict()), 201


@slots_bp.patch("/manager/slots/<int:slot_id>")
@require_roles(MANAGER)
def update_slot(slot_id: int):
    data = json_body()
    slot = slot_service.update_slot(get_calendar(), slot_id, data)

    log_event("SLOT_UPDATE", user_id=g.user.id, entity="slot", entity_id=slot_id, metadata=data)
    return jsonify(message="Slot updated successfully", slot=slot.to_dict()), 200


@slots_bp.delete("/manager/slots/<int:slot_id>")
@require_roles(MANAGER)
def delete_slot(slot_id: int):
    slot_service.delete_slot(slot_id)

    log_event("SLOT_DELETE", user_id=g.user.id, entity="slot", entity_id=slot_id)
    return jsonify(message="Slot deleted successfully"), 200
