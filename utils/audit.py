import json
from datetime import timedelta
from flask import current_app, has_request_context, request
from models import db
from models.audit_log import AuditLog
from services.calendar import utcnow

def log_event(action: str, user_id=None, entity=None, entity_id=None, metadata=None):
    ip = None
    user_agent = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = request.headers.get("User-Agent", "")

    row = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    db.session.add(row)
    db.session.commit()
    current_app.logger.info("%s %s=%s user=%s", action, entity or "-", entity_id, user_id)

def prune_audit_logs(retention_days: int) -> int:
    """Delete audit rows older than ``retention_days``; returns the count removed."""
    cutoff = utcnow() - timedelta(days=retention_days)
    removed = AuditLog.query.filter(AuditLog.timestamp < cutoff).delete(synchronize_session=False)
    db.session.commit()
    return removed
