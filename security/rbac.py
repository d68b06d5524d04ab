from functools import wraps
from flask import g, jsonify

CLIENT = "CLIENT"
MANAGER = "MANAGER"
ROLES = (CLIENT, MANAGER)

def require_roles(*role_names: str):
    """
    Usage: @require_roles(MANAGER)
    Managers and clients are disjoint capabilities; there is no superuser bypass.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            if not set(user.role_names).intersection(role_names):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
