"""Error taxonomy shared by the booking core.

Every error carries an HTTP-style ``status_code`` and a numeric ``code`` that
clients can switch on without parsing ``message``.
"""


class ServiceError(Exception):
    status_code = 400
    code = 0

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class InvalidInput(ServiceError):
    status_code = 400


class InvalidDate(ServiceError):
    status_code = 400


class Forbidden(ServiceError):
    status_code = 403


class PaymentFailed(ServiceError):
    status_code = 400


class PaymentGatewayError(Exception):
    """Transport-level failure talking to the payment processor."""


# ---------- gate access ----------

class AccessDenied(ServiceError):
    status_code = 400


class InvalidCode(AccessDenied):
    code = 1


class Unpaid(AccessDenied):
    code = 3


class WrongDate(AccessDenied):
    code = 4


class OutsideWindow(AccessDenied):
    code = 5
