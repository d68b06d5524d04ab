from datetime import datetime

import pytz

from models import db
from models.booking import Booking
from models.subscription import Subscription
from services.bookings import create_booking_by_manager
from services.errors import Conflict


def _subscribe(http, slot_id, start_date="2024-01-03", weekly_day=3, months=1):
    return http.post("/subscriptions", json={
        "slot_id": slot_id,
        "start_date": start_date,
        "weekly_day": weekly_day,
        "months": months,
    })


def test_subscription_charges_every_occurrence(app, calendar, client_http, slot_id, gateway):
    resp = _subscribe(client_http, slot_id)
    assert resp.status_code == 201

    body = resp.get_json()
    sub = body["subscription"]
    assert body["bookings_created"] == 5
    assert body["payment"]["monthly_amount"] == 125.0
    assert body["payment"]["months"] == 1
    assert sub["start_date"] == "2024-01-03"
    assert sub["end_date"] == "2024-02-03"
    assert sub["next_billing_date"] == "2024-02-03"
    assert sub["status"] == "active"
    assert sub["payment_status"] == "paid"

    assert len(gateway.calls) == 1
    assert gateway.calls[0][1] == 125

    with app.app_context():
        rows = Booking.query.filter_by(subscription_id=sub["id"]).all()
        assert sorted(calendar.date_key(b.date) for b in rows) == [
            "2024-01-03", "2024-01-10", "2024-01-17", "2024-01-24", "2024-01-31",
        ]
        assert all(b.is_subscription_booking and b.payment_status == "paid" for b in rows)
        assert len({b.otp for b in rows}) == 5


def test_multi_month_subscription(client_http, slot_id):
    resp = _subscribe(client_http, slot_id, start_date="2024-01-07", weekly_day=0, months=2)
    assert resp.status_code == 201
    body = resp.get_json()
    # Sundays from Jan 7 up to (not including) Mar 7
    assert body["bookings_created"] == 9
    assert body["subscription"]["end_date"] == "2024-03-07"


def test_invalid_subscription_input(client_http, slot_id, gateway):
    assert _subscribe(client_http, slot_id, weekly_day=7).status_code == 400
    assert _subscribe(client_http, slot_id, weekly_day=-1).status_code == 400
    assert _subscribe(client_http, slot_id, months=0).status_code == 400
    assert _subscribe(client_http, slot_id, months=13).status_code == 400
    assert _subscribe(client_http, slot_id, start_date="2024-01-01").status_code == 400
    assert _subscribe(client_http, 9999).status_code == 404
    assert gateway.calls == []


def test_overlapping_subscription_is_rejected(client_http, other_client_http, slot_id, gateway):
    assert _subscribe(client_http, slot_id).status_code == 201
    assert _subscribe(other_client_http, slot_id, start_date="2024-01-10").status_code == 409
    assert _subscribe(client_http, slot_id, start_date="2024-03-06").status_code == 409
    assert len(gateway.calls) == 1


def test_other_weekday_is_independent(client_http, other_client_http, slot_id):
    assert _subscribe(client_http, slot_id).status_code == 201
    assert _subscribe(other_client_http, slot_id, start_date="2024-01-04", weekly_day=4).status_code == 201


def test_existing_booking_blocks_subscription_before_charge(app, calendar, client_id, other_client_http, slot_id, gateway):
    with app.app_context():
        create_booking_by_manager(calendar, client_id, slot_id, "2024-01-17")

    resp = _subscribe(other_client_http, slot_id)
    assert resp.status_code == 409
    assert "2024-01-17" in resp.get_json()["error"]
    assert gateway.calls == []


def test_declined_subscription_is_released(app, client_http, slot_id, gateway):
    gateway.mode = "decline"
    assert _subscribe(client_http, slot_id).status_code == 400

    with app.app_context():
        assert Subscription.query.count() == 0
        assert Booking.query.count() == 0

    gateway.mode = "approve"
    assert _subscribe(client_http, slot_id).status_code == 201


def test_client_lists_and_cancels(app, client_http, other_client_http, slot_id):
    sub_id = _subscribe(client_http, slot_id).get_json()["subscription"]["id"]

    mine = client_http.get("/subscriptions/me").get_json()
    assert [s["id"] for s in mine] == [sub_id]
    assert other_client_http.get("/subscriptions/me").get_json() == []
    assert other_client_http.put(f"/subscriptions/{sub_id}/cancel").status_code == 404

    resp = client_http.put(f"/subscriptions/{sub_id}/cancel")
    assert resp.status_code == 200
    assert resp.get_json()["subscription"]["status"] == "cancelled"
    assert resp.get_json()["subscription"]["auto_renew"] is False
    assert client_http.put(f"/subscriptions/{sub_id}/cancel").status_code == 404

    assert client_http.get("/subscriptions/me?status=cancelled").get_json()[0]["id"] == sub_id
    with app.app_context():
        # bookings already paid for stay valid
        assert Booking.query.filter_by(subscription_id=sub_id).count() == 5


def test_cancelled_subscription_frees_the_weekday(client_http, other_client_http, slot_id):
    # Thursday start: Wednesdays Feb 14 .. Mar 6 inside [Feb 8, Mar 8)
    sub_id = _subscribe(client_http, slot_id, start_date="2024-02-08").get_json()["subscription"]["id"]
    client_http.put(f"/subscriptions/{sub_id}/cancel")

    # the Mar 6 booking survives cancellation
    clash = _subscribe(other_client_http, slot_id, start_date="2024-03-06")
    assert clash.status_code == 409
    assert "2024-03-06" in clash.get_json()["error"]

    # range still overlaps the cancelled one, first Wednesday is Mar 13
    resp = _subscribe(other_client_http, slot_id, start_date="2024-03-07")
    assert resp.status_code == 201


def test_reactivation_respects_other_active_subscriptions(manager_http, client_http, other_client_http, slot_id):
    first = _subscribe(client_http, slot_id, start_date="2024-02-08").get_json()["subscription"]["id"]
    client_http.put(f"/subscriptions/{first}/cancel")
    second = _subscribe(other_client_http, slot_id, start_date="2024-03-07").get_json()["subscription"]["id"]

    resp = manager_http.put(f"/subscriptions/{first}", json={"status": "active"})
    assert resp.status_code == 409
    assert manager_http.get("/subscriptions?status=active").get_json()[0]["id"] == second

    assert manager_http.delete(f"/subscriptions/{second}").status_code == 200
    resp = manager_http.put(f"/subscriptions/{first}", json={"status": "active"})
    assert resp.status_code == 200
    assert resp.get_json()["subscription"]["status"] == "active"


def test_occurrences_are_held_while_the_charge_is_in_flight(app, calendar, client_id, other_client_http, slot_id, gateway):
    seen = []

    def book_a_subscribed_date():
        seen.append(sorted({b.payment_status for b in Booking.query.all()}))
        try:
            create_booking_by_manager(calendar, client_id, slot_id, "2024-01-17")
        except Conflict as exc:
            seen.append(exc)

    gateway.on_charge = book_a_subscribed_date
    resp = _subscribe(other_client_http, slot_id)
    assert resp.status_code == 201
    sub_id = resp.get_json()["subscription"]["id"]

    assert seen[0] == ["pending"]
    assert isinstance(seen[1], Conflict)

    with app.app_context():
        rows = Booking.query.all()
        assert len(rows) == 5
        assert all(b.subscription_id == sub_id and b.payment_status == "paid" for b in rows)
        assert all(b.reference_id.startswith(f"REF-{sub_id}-") for b in rows)


def test_manager_creates_subscription_without_charge(manager_http, client_id, slot_id, gateway):
    resp = manager_http.post("/subscriptions/manager", json={
        "client_id": client_id,
        "slot_id": slot_id,
        "start_date": "2024-01-03",
        "weekly_day": 3,
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["bookings_created"] == 5
    assert body["subscription"]["reference_id"].startswith("MGR-SUB-")
    assert body["subscription"]["payment_status"] == "paid"
    assert gateway.calls == []


def test_manager_lists_updates_and_deletes(app, manager_http, client_http, slot_id):
    sub_id = _subscribe(client_http, slot_id).get_json()["subscription"]["id"]

    rows = manager_http.get("/subscriptions?search=amina").get_json()
    assert [r["id"] for r in rows] == [sub_id]
    assert rows[0]["client"]["phone_number"] == "+252611000001"
    assert manager_http.get("/subscriptions?status=bogus").status_code == 400
    assert client_http.get("/subscriptions").status_code == 403

    resp = manager_http.put(f"/subscriptions/{sub_id}", json={"auto_renew": False, "description": "Friday league"})
    assert resp.status_code == 200
    assert resp.get_json()["subscription"]["description"] == "Friday league"
    assert manager_http.put(f"/subscriptions/{sub_id}", json={"status": "paused"}).status_code == 400
    assert manager_http.put(f"/subscriptions/{sub_id}", json={"weekly_day": 1}).status_code == 400

    resp = manager_http.delete(f"/subscriptions/{sub_id}")
    assert resp.status_code == 200
    assert resp.get_json()["bookings_removed"] == 5
    with app.app_context():
        assert Booking.query.count() == 0
        assert db.session.get(Subscription, sub_id) is None
    assert manager_http.delete(f"/subscriptions/{sub_id}").status_code == 404


def test_expire_command(app, client_http, slot_id, clock):
    sub_id = _subscribe(client_http, slot_id).get_json()["subscription"]["id"]
    runner = app.test_cli_runner()

    result = runner.invoke(args=["expire-subscriptions"])
    assert "0 subscription(s) expired" in result.output

    clock.current = datetime(2024, 2, 5, 9, 0, tzinfo=pytz.UTC)
    result = runner.invoke(args=["expire-subscriptions"])
    assert "1 subscription(s) expired" in result.output

    with app.app_context():
        sub = db.session.get(Subscription, sub_id)
        assert sub.status == "expired"
        assert sub.auto_renew is False


def test_reconcile_command_restores_missing_bookings(app, calendar, client_http, slot_id):
    sub_id = _subscribe(client_http, slot_id).get_json()["subscription"]["id"]

    with app.app_context():
        rows = Booking.query.filter_by(subscription_id=sub_id).order_by(Booking.date.desc()).limit(2).all()
        for b in rows:
            db.session.delete(b)
        db.session.commit()

    result = app.test_cli_runner().invoke(args=["reconcile-subscriptions"])
    assert "1 subscription(s) repaired, 2 booking(s) created" in result.output

    with app.app_context():
        keys = sorted(calendar.date_key(b.date) for b in Booking.query.filter_by(subscription_id=sub_id))
        assert keys[-2:] == ["2024-01-24", "2024-01-31"]

    result = app.test_cli_runner().invoke(args=["reconcile-subscriptions"])
    assert "0 subscription(s) repaired, 0 booking(s) created" in result.output


def test_deleting_plain_booking_leaves_subscription_alone(app, calendar, manager_http, client_http, client_id, slot_id):
    sub_id = _subscribe(client_http, slot_id).get_json()["subscription"]["id"]
    with app.app_context():
        plain_id = create_booking_by_manager(calendar, client_id, slot_id, "2024-01-04").id

    assert manager_http.delete(f"/manager/bookings/{plain_id}").status_code == 200

    with app.app_context():
        assert db.session.get(Subscription, sub_id).status == "active"
        assert Booking.query.filter_by(subscription_id=sub_id).count() == 5
