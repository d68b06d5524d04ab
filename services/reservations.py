"""Reserve -> Charge -> Commit | Release.

A pending booking or subscription is written first so the storage constraints
reject double-booking before any money moves. The charge then runs inside a
:class:`PendingReservation`; leaving the block without ``commit()`` deletes
the pending row, whether the processor declined, raised, or the final write
failed.
"""
import logging

from models import db
from services.errors import PaymentFailed, ServiceError
from utils.audit import log_event

logger = logging.getLogger(__name__)


def charge_payment(gateway, phone, amount, correlation_id):
    try:
        result = gateway.charge(phone, amount, correlation_id)
    except Exception as exc:
        logger.warning("Charge for %s raised: %s", correlation_id, exc)
        raise PaymentFailed(f"Payment failed: {exc}") from exc
    if not result.success:
        raise PaymentFailed(result.response_msg)
    return result


class PendingReservation:
    def __init__(self, record, user_id=None):
        self._model = type(record)
        self._record_id = record.id
        self._user_id = user_id
        self.record = record
        self.committed = False

    @property
    def entity(self):
        return self._model.__tablename__.rstrip("s")

    def __enter__(self):
        return self

    def commit(self):
        db.session.commit()
        self.committed = True

    def release(self):
        db.session.rollback()
        row = db.session.get(self._model, self._record_id)
        if row is not None:
            db.session.delete(row)
            db.session.commit()
        log_event(
            f"{self.entity.upper()}_RELEASED",
            user_id=self._user_id,
            entity=self.entity,
            entity_id=self._record_id,
        )

    def __exit__(self, exc_type, exc, tb):
        if self.committed:
            return False
        logger.info("Releasing pending %s %s", self.entity, self._record_id)
        self.release()
        if exc is not None and not isinstance(exc, ServiceError):
            logger.error("Pending %s %s failed after reserve: %s", self.entity, self._record_id, exc)
            raise PaymentFailed(f"Payment could not be completed: {exc}") from exc
        return False
