from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User, Role
from security.csrf import issue_csrf_token
from security.password import hash_password, verify_password
from security.rbac import CLIENT
from security.session import create_session, revoke_session, revoke_all_sessions
from services.errors import Conflict, InvalidInput
from utils.audit import log_event
from utils.auth_context import login_required
from utils.payload import json_body, require_str


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def normalize_phone(value: str) -> str:
    phone = "".join(ch for ch in (value or "") if ch.isdigit() or ch == "+")
    if len(phone) < 7 or len(phone) > 20:
        raise InvalidInput("Invalid phone_number")
    return phone


def validate_new_password(password) -> str:
    min_len = current_app.config.get("PASSWORD_MIN_LENGTH", 8)
    if not isinstance(password, str) or len(password) < min_len:
        raise InvalidInput(f"Password must be at least {min_len} characters")
    if len(password) > 128:
        raise InvalidInput("Password is too long")
    return password


def create_user(name: str, phone_number: str, password: str, role_names=(CLIENT,)) -> User:
    phone = normalize_phone(phone_number)
    if User.query.filter_by(phone_number=phone).first():
        raise Conflict("Phone number already registered")

    roles = Role.query.filter(Role.name.in_(role_names)).all()
    if len(roles) != len(set(role_names)):
        raise InvalidInput("Unknown role")

    user = User(name=name, phone_number=phone, password_hash=hash_password(validate_new_password(password)))
    user.roles.extend(roles)
    db.session.add(user)
    db.session.commit()
    return user


@auth_bp.post("/register")
def register():
    data = json_body()
    user = create_user(
        require_str(data, "name", max_len=120),
        require_str(data, "phone_number", max_len=30),
        data.get("password"),
    )
    log_event("REGISTER_SUCCESS", user_id=user.id)
    return jsonify(message="Registered successfully", user=user.to_dict()), 201


@auth_bp.post("/login")
def login():
    data = json_body()
    raw_phone = data.get("phone_number") or ""
    password = data.get("password") or ""

    try:
        phone = normalize_phone(raw_phone)
    except InvalidInput:
        phone = None
    user = User.query.filter_by(phone_number=phone).first() if phone else None
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"phone_number": raw_phone})
        return jsonify(error="Invalid credentials"), 401

    # Rotate: revoke any existing sessions for this user
    revoked_count = revoke_all_sessions(user.id)
    raw_token = create_session(user.id)

    resp = jsonify(message="Login OK", user=user.to_dict())
    resp.set_cookie(
        current_app.config.get("AUTH_COOKIE_NAME", "futsal_session"),
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    resp = issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"revoked_sessions": revoked_count})
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(g.user.to_dict()), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "futsal_session")
    revoke_session(request.cookies.get(cookie_name))
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    return resp, 200


@auth_bp.patch("/profile")
@login_required
def update_profile():
    data = json_body()
    if "name" in data:
        g.user.name = require_str(data, "name", max_len=120)
    if "phone_number" in data:
        phone = normalize_phone(require_str(data, "phone_number", max_len=30))
        taken = User.query.filter(User.phone_number == phone, User.id != g.user.id).first()
        if taken:
            raise Conflict("Phone number is already in use")
        g.user.phone_number = phone
    if data.get("new_password"):
        if not verify_password(data.get("current_password") or "", g.user.password_hash):
            return jsonify(error="Current password is incorrect"), 401
        g.user.password_hash = hash_password(validate_new_password(data["new_password"]))

    db.session.commit()
    log_event("PROFILE_UPDATE", user_id=g.user.id)
    return jsonify(message="Profile updated", user=g.user.to_dict()), 200
