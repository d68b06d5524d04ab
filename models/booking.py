from models.db import db
from services.calendar import utcnow

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID)

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    client_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)

    # naive UTC instant of business-timezone midnight for the booked day
    date = db.Column(db.DateTime, nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)

    payment_status = db.Column(db.String(20), nullable=False, default=PAYMENT_PENDING)
    otp = db.Column(db.String(16), unique=True, nullable=True, index=True)
    is_used = db.Column(db.Boolean, default=False, nullable=False)
    reference_id = db.Column(db.String(120), unique=True, nullable=True)

    is_subscription_booking = db.Column(db.Boolean, default=False, nullable=False)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscriptions.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    slot = db.relationship("Slot", lazy="joined")
    client = db.relationship("User", lazy="joined")

    __table_args__ = (
        # Hard business-rule: one booking per slot per day (prevents double booking)
        db.UniqueConstraint("slot_id", "date", name="uq_booking_slot_date"),
    )

    def to_dict(self, calendar, include_otp=True):
        out = {
            "id": self.id,
            "client_id": self.client_id,
            "slot_id": self.slot_id,
            "date": calendar.date_key(self.date),
            "date_utc": self.date.isoformat(),
            "amount": float(self.amount),
            "payment_status": self.payment_status,
            "is_used": self.is_used,
            "reference_id": self.reference_id,
            "is_subscription_booking": self.is_subscription_booking,
            "subscription_id": self.subscription_id,
            "created_at": self.created_at.isoformat(),
        }
        if include_otp:
            out["otp"] = self.otp
        if self.slot is not None:
            out["slot"] = self.slot.to_dict()
        return out
