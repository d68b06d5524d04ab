from models.db import db
from services.calendar import utcnow

class Slot(db.Model):
    __tablename__ = "slots"

    id = db.Column(db.Integer, primary_key=True)

    # recurring daily window, "HH:MM" 24h
    start_time = db.Column(db.String(5), nullable=False, index=True)
    end_time = db.Column(db.String(5), nullable=False)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("start_time", "end_time", name="uq_slot_times"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "price": float(self.price),
        }
