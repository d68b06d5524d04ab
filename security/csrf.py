import hmac
import secrets
from flask import g, request, jsonify, current_app

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

# cookie-less callers (gate device) and the endpoints that hand out the cookie
EXEMPT_PATHS = frozenset({"/auth/login", "/auth/register", "/access/verify", "/health"})
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

def issue_csrf_token(resp):
    """Double-submit token: the client echoes this cookie back in CSRF_HEADER."""
    token = secrets.token_urlsafe(32)
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    return resp

def require_csrf():
    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not hmac.compare_digest(cookie_token, header_token):
        current_app.logger.warning("CSRF rejected %s %s", request.method, request.path)
        return jsonify(error="CSRF validation failed"), 403
    return None

def csrf_protect():
    """before_request hook; only session-authenticated writes are checked."""
    if not current_app.config.get("CSRF_ENABLED", True):
        return None
    if request.method not in UNSAFE_METHODS or request.path in EXEMPT_PATHS:
        return None
    if getattr(g, "user", None) is None:
        return None
    return require_csrf()
