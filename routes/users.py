from flask import Blueprint, request, jsonify, g
from sqlalchemy import func, or_

from models import db
from models.booking import Booking
from models.session import Session
from models.subscription import Subscription
from models.user import User, Role
from routes.auth import create_user, normalize_phone, validate_new_password
from security.password import hash_password
from security.rbac import require_roles, CLIENT, MANAGER, ROLES
from services.bookings import get_client
from services.errors import Conflict, Forbidden, InvalidInput
from utils.audit import log_event
from utils.payload import json_body, require_str

users_bp = Blueprint("users", __name__, url_prefix="/manager/users")


def _role_names(data):
    roles = data.get("roles") or [CLIENT]
    if not isinstance(roles, list) or not all(r in ROLES for r in roles):
        raise InvalidInput("roles must be a list of CLIENT / MANAGER")
    return tuple(roles)


@users_bp.get("")
@require_roles(MANAGER)
def list_users():
    search = (request.args.get("search") or "").strip()
    q = User.query
    if search:
        q = q.filter(or_(
            func.lower(User.name).contains(search.lower()),
            User.phone_number.contains(search),
        ))
    rows = q.order_by(User.created_at.desc()).limit(200).all()
    return jsonify([u.to_dict() for u in rows]), 200


@users_bp.post("")
@require_roles(MANAGER)
def create():
    data = json_body()
    user = create_user(
        require_str(data, "name", max_len=120),
        require_str(data, "phone_number", max_len=30),
        data.get("password"),
        role_names=_role_names(data),
    )
    log_event("USER_CREATE", user_id=g.user.id, entity="user", entity_id=user.id)
    return jsonify(message="User created successfully", user=user.to_dict()), 201


@users_bp.get("/<int:user_id>")
@require_roles(MANAGER)
def detail(user_id: int):
    return jsonify(get_client(user_id).to_dict()), 200


@users_bp.patch("/<int:user_id>")
@require_roles(MANAGER)
def update(user_id: int):
    data = json_body()
    user = get_client(user_id)

    if "name" in data:
        user.name = require_str(data, "name", max_len=120)
    if "phone_number" in data:
        phone = normalize_phone(require_str(data, "phone_number", max_len=30))
        if User.query.filter(User.phone_number == phone, User.id != user.id).first():
            raise Conflict("Phone number is already in use")
        user.phone_number = phone
    if "roles" in data:
        user.roles = Role.query.filter(Role.name.in_(_role_names(data))).all()
    if data.get("password"):
        user.password_hash = hash_password(validate_new_password(data["password"]))

    db.session.commit()
    log_event("USER_UPDATE", user_id=g.user.id, entity="user", entity_id=user.id)
    return jsonify(message="User updated successfully", user=user.to_dict()), 200


@users_bp.delete("/<int:user_id>")
@require_roles(MANAGER)
def delete(user_id: int):
    user = get_client(user_id)
    if user.id == g.user.id:
        raise Forbidden("You cannot delete your own account")
    if Booking.query.filter_by(client_id=user.id).first() or Subscription.query.filter_by(client_id=user.id).first():
        raise Conflict("Cannot delete a user with bookings or subscriptions")

    Session.query.filter_by(user_id=user.id).delete()
    user.roles = []
    db.session.delete(user)
    db.session.commit()
    log_event("USER_DELETE", user_id=g.user.id, entity="user", entity_id=user_id)
    return jsonify(message="User deleted successfully"), 200
