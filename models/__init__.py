from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .slot import Slot
from .booking import Booking
from .subscription import Subscription
