from .health import health_bp
from .auth import auth_bp
from .users import users_bp
from .slots import slots_bp
from .bookings import booking_bp
from .subscriptions import subscription_bp
from .access import access_bp
from .audit_logs import audit_bp
