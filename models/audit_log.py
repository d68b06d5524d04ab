from models.db import db
from services.calendar import utcnow

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # null for gate devices and CLI sweeps
    action = db.Column(db.String(80), nullable=False)  # e.g. BOOKING_CREATE, ACCESS_GRANTED
    entity = db.Column(db.String(80), nullable=True)   # e.g. booking, subscription
    entity_id = db.Column(db.String(80), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
