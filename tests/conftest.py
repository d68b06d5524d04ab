from datetime import datetime

import pytest
import pytz

from app import create_app
from models import db
from routes.auth import create_user
from security.rbac import CLIENT, MANAGER
from services.calendar import BusinessCalendar
from services.errors import PaymentGatewayError
from services.payments import PaymentResult
from services.slots import create_slot

PASSWORD = "correct-horse-1"
CLIENT_PHONE = "+252611000001"
OTHER_CLIENT_PHONE = "+252611000002"
MANAGER_PHONE = "+252611000009"

# Tuesday 2024-01-02, 12:00 in Mogadishu (UTC+3)
FROZEN_NOW = datetime(2024, 1, 2, 9, 0, tzinfo=pytz.UTC)


class FrozenClock:
    def __init__(self, current):
        self.current = current

    def __call__(self):
        return self.current


class FakeGateway:
    """Records every charge; ``mode`` is approve, decline or raise.

    ``on_charge`` runs while the payment is in flight; ``reference`` pins the
    processor reference returned on approval.
    """

    def __init__(self):
        self.mode = "approve"
        self.calls = []
        self.reference = None
        self.on_charge = None

    def charge(self, phone, amount, correlation_id):
        self.calls.append((phone, amount, correlation_id))
        if self.on_charge is not None:
            self.on_charge()
        if self.mode == "raise":
            raise PaymentGatewayError("gateway timeout")
        if self.mode == "decline":
            return PaymentResult(False, None, {"response_msg": "Insufficient balance"})
        return PaymentResult(
            True,
            self.reference or f"REF-{correlation_id}",
            {"response_code": "2001", "params": {"orderId": f"ORD-{correlation_id}"}},
        )


def build_app(calendar, gateway, **overrides):
    config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "AUTO_CREATE_TABLES": True,
        "CSRF_ENABLED": False,
        "BCRYPT_ROUNDS": 4,
    }
    config.update(overrides)
    return create_app(config, calendar=calendar, gateway=gateway)


def login(http, phone):
    resp = http.post("/auth/login", json={"phone_number": phone, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return resp


@pytest.fixture
def clock():
    return FrozenClock(FROZEN_NOW)


@pytest.fixture
def calendar(clock):
    return BusinessCalendar("Africa/Mogadishu", clock=clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(calendar, gateway):
    app = build_app(calendar, gateway)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


def _make_user(app, name, phone, roles=(CLIENT,)):
    with app.app_context():
        return create_user(name, phone, PASSWORD, role_names=roles).id


@pytest.fixture
def client_id(app):
    return _make_user(app, "Amina Client", CLIENT_PHONE)


@pytest.fixture
def other_client_id(app):
    return _make_user(app, "Yusuf Client", OTHER_CLIENT_PHONE)


@pytest.fixture
def manager_id(app):
    return _make_user(app, "Farah Manager", MANAGER_PHONE, roles=(MANAGER,))


@pytest.fixture
def client_http(app, client_id):
    http = app.test_client()
    login(http, CLIENT_PHONE)
    return http


@pytest.fixture
def other_client_http(app, other_client_id):
    http = app.test_client()
    login(http, OTHER_CLIENT_PHONE)
    return http


@pytest.fixture
def manager_http(app, manager_id):
    http = app.test_client()
    login(http, MANAGER_PHONE)
    return http


@pytest.fixture
def slot_id(app):
    # 11:00-13:00 contains the frozen 12:00 local time
    with app.app_context():
        return create_slot("11:00", "13:00", "25.00").id
