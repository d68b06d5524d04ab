from models.db import db
from models.booking import PAYMENT_PENDING
from services.calendar import utcnow

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"
SUBSCRIPTION_STATUSES = (STATUS_ACTIVE, STATUS_EXPIRED, STATUS_CANCELLED)

class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)

    client_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)

    weekly_day = db.Column(db.Integer, nullable=False)  # 0=Sunday .. 6=Saturday
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)  # exclusive

    monthly_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_ACTIVE)
    auto_renew = db.Column(db.Boolean, default=True, nullable=False)

    last_billing_date = db.Column(db.DateTime, nullable=False)
    next_billing_date = db.Column(db.DateTime, nullable=False)

    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)
    reference_id = db.Column(db.String(120), unique=True, nullable=True)
    description = db.Column(db.String(255), nullable=False, default="Monthly Futsal Subscription")

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    slot = db.relationship("Slot", lazy="joined")
    client = db.relationship("User", lazy="joined")
    bookings = db.relationship(
        "Booking",
        backref="subscription",
        cascade="all, delete-orphan",
        passive_deletes=False,
        lazy="select",
    )

    __table_args__ = (
        db.Index("ix_subscription_slot_day_status", "slot_id", "weekly_day", "status"),
        db.Index("ix_subscription_client_status", "client_id", "status"),
    )

    def to_dict(self, calendar):
        return {
            "id": self.id,
            "client_id": self.client_id,
            "slot_id": self.slot_id,
            "weekly_day": self.weekly_day,
            "start_date": calendar.date_key(self.start_date),
            "end_date": calendar.date_key(self.end_date),
            "monthly_amount": float(self.monthly_amount),
            "status": self.status,
            "auto_renew": self.auto_renew,
            "last_billing_date": self.last_billing_date.isoformat(),
            "next_billing_date": calendar.date_key(self.next_billing_date),
            "payment_status": self.payment_status,
            "reference_id": self.reference_id,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "slot": self.slot.to_dict() if self.slot is not None else None,
        }
