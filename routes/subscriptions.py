from flask import Blueprint, request, jsonify, g

from security.rbac import require_roles, MANAGER
from services import subscriptions as subscription_service
from utils.audit import log_event
from utils.auth_context import login_required
from utils.extensions import get_calendar, get_gateway
from utils.payload import json_body, require_int, require_str

subscription_bp = Blueprint("subscriptions", __name__, url_prefix="/subscriptions")


def _status_arg():
    return request.args.get("status") or None


# ---------- CLIENTS: subscribe to a slot every week ----------
@subscription_bp.post("")
@login_required
def create_subscription():
    data = json_body()
    slot_id = require_int(data, "slot_id")
    start_date = require_str(data, "start_date", max_len=10)
    weekly_day = require_int(data, "weekly_day")
    months = require_int(data, "months", default=1)

    calendar = get_calendar()
    subscription, payment, created = subscription_service.create_subscription(
        calendar, get_gateway(), g.user, slot_id, start_date, weekly_day, months
    )

    log_event("SUBSCRIPTION_CREATE", user_id=g.user.id, entity="subscription", entity_id=subscription.id,
              metadata={"slot_id": slot_id, "weekly_day": weekly_day, "months": months, "bookings": created})
    return jsonify(
        message="Monthly subscription created and payment completed successfully",
        subscription=subscription.to_dict(calendar),
        payment={
            "reference_id": payment.reference_id,
            "status": "success",
            "transaction_id": payment.transaction_id,
            "monthly_amount": float(subscription.monthly_amount),
            "months": months,
        },
        bookings_created=created,
    ), 201


@subscription_bp.get("/me")
@login_required
def my_subscriptions():
    calendar = get_calendar()
    rows = subscription_service.list_for_client(g.user.id, _status_arg())
    return jsonify([s.to_dict(calendar) for s in rows]), 200


@subscription_bp.put("/<int:subscription_id>/cancel")
@login_required
def cancel_subscription(subscription_id: int):
    subscription = subscription_service.cancel_subscription(subscription_id, g.user.id)

    log_event("SUBSCRIPTION_CANCEL", user_id=g.user.id, entity="subscription", entity_id=subscription_id)
    return jsonify(
        message="Subscription cancelled successfully",
        subscription=subscription.to_dict(get_calendar()),
    ), 200


# ---------- MANAGER ----------
@subscription_bp.get("")
@require_roles(MANAGER)
def list_all_subscriptions():
    calendar = get_calendar()
    rows = subscription_service.list_all(
        status=_status_arg(),
        search=(request.args.get("search") or "").strip() or None,
    )
    out = []
    for s in rows:
        row = s.to_dict(calendar)
        row["client"] = {"id": s.client.id, "name": s.client.name, "phone_number": s.client.phone_number}
        out.append(row)
    return jsonify(out), 200


@subscription_bp.post("/manager")
@require_roles(MANAGER)
def create_subscription_for_client():
    data = json_body()
    calendar = get_calendar()
    subscription, created = subscription_service.create_subscription_by_manager(
        calendar,
        require_int(data, "client_id"),
        require_int(data, "slot_id"),
        require_str(data, "start_date", max_len=10),
        require_int(data, "weekly_day"),
        require_int(data, "months", default=1),
    )

    log_event("MANAGER_SUBSCRIPTION_CREATE", user_id=g.user.id, entity="subscription",
              entity_id=subscription.id, metadata={"client_id": subscription.client_id, "bookings": created})
    return jsonify(
        message="Monthly subscription created successfully",
        subscription=subscription.to_dict(calendar),
        bookings_created=created,
    ), 201


@subscription_bp.put("/<int:subscription_id>")
@require_roles(MANAGER)
def update_subscription(subscription_id: int):
    data = json_body()
    subscription = subscription_service.update_subscription(subscription_id, data)

    log_event("MANAGER_SUBSCRIPTION_UPDATE", user_id=g.user.id, entity="subscription",
              entity_id=subscription_id, metadata=data)
    return jsonify(
        message="Subscription updated successfully",
        subscription=subscription.to_dict(get_calendar()),
    ), 200


@subscription_bp.delete("/<int:subscription_id>")
@require_roles(MANAGER)
def delete_subscription(subscription_id: int):
    removed = subscription_service.delete_subscription(subscription_id)

    log_event("MANAGER_SUBSCRIPTION_DELETE", user_id=g.user.id, entity="subscription",
              entity_id=subscription_id, metadata={"bookings_removed": removed})
    return jsonify(message="Subscription deleted successfully", bookings_removed=removed), 200
