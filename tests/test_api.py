import json
from datetime import date, timedelta

import pytest

from app.models.booking import Booking
from app.models.password_reset_token import PasswordResetToken
from conftest import auth_headers, make_user

INTENT_URL = "/api/v1/public/payment-intents"
WEBHOOK_URL = "/api/v1/webhooks/payments"


def intent_body(**overrides):
    body = {
        "tourId": "jerusalem-old-city",
        "productType": "day-tour",
        "amount": 20000,
        "currency": "EUR",
        "bookerName": "Dana Levi",
        "bookerEmail": "dana@example.com",
        "adults": 2,
        "children": 0,
    }
    body.update(overrides)
    return body


def pay(client, resp, amount, payment_type="full"):
    event = {
        "type": "payment_intent.succeeded",
        "data": {"object": {
            "id": resp["paymentIntentId"],
            "amount": amount,
            "metadata": {"bookingId": resp["bookingId"], "paymentType": payment_type},
        }},
    }
    return client.post(WEBHOOK_URL, content=json.dumps(event), headers={"Content-Type": "application/json"})


class TestPaymentIntentEndpoint:
    def test_create(self, client):
        r = client.post(INTENT_URL, json=intent_body())
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["isNewUser"] is True
        assert body["clientSecret"]
        assert body["paymentIntentId"].startswith("pi_")
        assert body["bookingId"]

    def test_price_mismatch_is_generic(self, client):
        r = client.post(INTENT_URL, json=intent_body(amount=19900))
        assert r.status_code == 422
        assert r.json()["detail"] == {"message": "Unable to process booking"}

    def test_unknown_item_is_generic(self, client):
        r = client.post(INTENT_URL, json=intent_body(tourId="atlantis"))
        assert r.status_code == 422
        assert r.json()["detail"] == {"message": "Unable to process booking"}

    @pytest.mark.parametrize("override", [
        {"amount": 50},
        {"amount": 10_000_001},
        {"currency": "jpy"},
        {"adults": 0},
        {"children": 51},
        {"bookerName": "D"},
        {"bookerEmail": "not-an-email"},
        {"bookerPhone": "call me"},
        {"specialRequests": "x" * 1001},
        {"selectedDate": (date.today() - timedelta(days=2)).isoformat()},
        {"paymentType": "bitcoin"},
    ])
    def test_validation(self, client, override):
        assert client.post(INTENT_URL, json=intent_body(**override)).status_code == 422

    def test_payment_method_not_allowed(self, client):
        r = client.post(INTENT_URL, json=intent_body(tourId="holy-land-7-days", productType="vacation-package",
                                                     amount=200000, paymentType="full"))
        assert r.status_code == 400


class TestWebhookEndpoint:
    def test_malformed_json(self, client):
        r = client.post(WEBHOOK_URL, content=b"{not json", headers={"Content-Type": "application/json"})
        assert r.status_code == 400

    def test_non_object_payload(self, client):
        r = client.post(WEBHOOK_URL, content=b"[1, 2]", headers={"Content-Type": "application/json"})
        assert r.status_code == 400

    def test_unknown_event_type(self, client):
        r = client.post(WEBHOOK_URL, json={"type": "invoice.paid", "data": {"object": {}}})
        assert r.status_code == 200
        assert r.json()["handled"] is False

    def test_success_twice(self, client, db):
        created = client.post(INTENT_URL, json=intent_body()).json()
        assert pay(client, created, 20000).json()["changed"] is True
        assert pay(client, created, 20000).json()["changed"] is False
        assert db.get(Booking, created["bookingId"]).status == "confirmed"

    def test_signature_required_when_enabled(self, client, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "PAYMENTS_WEBHOOK_VERIFY", True)
        monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
        r = client.post(WEBHOOK_URL, json={"type": "invoice.paid"})
        assert r.status_code == 400

    def test_valid_signature_accepted(self, client, monkeypatch):
        from app.core.config import settings
        from app.services.payment_gateway import sign_webhook_payload

        monkeypatch.setattr(settings, "PAYMENTS_WEBHOOK_VERIFY", True)
        monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
        raw = json.dumps({"type": "invoice.paid"}).encode()
        r = client.post(WEBHOOK_URL, content=raw, headers={
            "Content-Type": "application/json",
            "Stripe-Signature": sign_webhook_payload(raw, "whsec_test"),
        })
        assert r.status_code == 200

    def test_live_mode_rejects_unsigned_events(self, client, db, monkeypatch):
        from app.core.config import settings

        created = client.post(INTENT_URL, json=intent_body()).json()
        monkeypatch.setattr(settings, "PAYMENTS_SANDBOX", False)
        monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_live_x")
        monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_live")
        monkeypatch.setattr(settings, "PAYMENTS_WEBHOOK_VERIFY", False)
        assert pay(client, created, 20000).status_code == 400
        assert db.get(Booking, created["bookingId"]).status == "pending"

    @pytest.mark.parametrize("field,value", [
        ("metadata", "bookingId=b-1"),
        ("metadata", {"bookingId": 7}),
        ("amount", "20000"),
        ("id", 42),
    ])
    def test_malformed_event_object(self, client, db, field, value):
        created = client.post(INTENT_URL, json=intent_body()).json()
        event = {"type": "payment_intent.succeeded", "data": {"object": {
            "id": created["paymentIntentId"],
            "amount": 20000,
            "metadata": {"bookingId": created["bookingId"], "paymentType": "full"},
        }}}
        event["data"]["object"][field] = value
        r = client.post(WEBHOOK_URL, json=event)
        assert r.status_code == 400
        assert db.get(Booking, created["bookingId"]).status == "pending"

    def test_object_that_is_not_an_object(self, client):
        r = client.post(WEBHOOK_URL, json={"type": "charge.refunded", "data": {"object": ["pi_1"]}})
        assert r.status_code == 400


class TestAdminEndpoints:
    @pytest.fixture
    def awaiting(self, client):
        created = client.post(INTENT_URL, json=intent_body(tourId="holy-land-7-days", productType="vacation-package",
                                                           amount=200000)).json()
        pay(client, created, 60000, "deposit")
        return created["bookingId"]

    def test_requires_admin(self, client, db, awaiting):
        customer = make_user(db, "cust@example.com")
        assert client.get("/api/v1/admin/bookings").status_code == 401
        assert client.get("/api/v1/admin/bookings", headers=auth_headers(customer)).status_code == 403

    def test_list_and_stats(self, client, admin, awaiting):
        r = client.get("/api/v1/admin/bookings?approvalStatus=pending", headers=auth_headers(admin))
        assert r.status_code == 200
        body = r.json()
        assert [b["id"] for b in body["items"]] == [awaiting]
        assert body["stats"]["pendingCount"] == 1
        assert body["stats"]["revenue"] == 60000

    def test_pending_queue(self, client, admin, awaiting):
        r = client.get("/api/v1/admin/bookings/pending", headers=auth_headers(admin))
        assert [b["id"] for b in r.json()] == [awaiting]

    def test_pending_queue_skips_unpaid_bookings(self, client, admin, awaiting):
        unpaid = client.post(INTENT_URL, json=intent_body(tourId="holy-land-7-days", productType="vacation-package",
                                                          amount=200000, bookerEmail="noa@example.com")).json()
        r = client.get("/api/v1/admin/bookings/pending", headers=auth_headers(admin))
        ids = [b["id"] for b in r.json()]
        assert ids == [awaiting]
        assert unpaid["bookingId"] not in ids

    def test_approve(self, client, admin, awaiting):
        r = client.patch(f"/api/v1/admin/bookings/{awaiting}", json={"action": "approve", "adminNotes": "ok"},
                         headers=auth_headers(admin))
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "confirmed"
        assert r.json()["approvedBy"] == admin.id

    def test_second_decision_conflicts(self, client, admin, awaiting):
        client.patch(f"/api/v1/admin/bookings/{awaiting}", json={"action": "reject", "reason": "Full"},
                     headers=auth_headers(admin))
        r = client.patch(f"/api/v1/admin/bookings/{awaiting}", json={"action": "approve"},
                         headers=auth_headers(admin))
        assert r.status_code == 409
        assert r.json()["detail"]["code"] == "AlreadyDecided"
        assert "rejected" in r.json()["detail"]["message"]

    def test_reject_without_reason(self, client, admin, awaiting):
        r = client.patch(f"/api/v1/admin/bookings/{awaiting}", json={"action": "reject"},
                         headers=auth_headers(admin))
        assert r.status_code == 409

    def test_missing_booking(self, client, admin):
        r = client.get("/api/v1/admin/bookings/nope", headers=auth_headers(admin))
        assert r.status_code == 404

    def test_complete_requires_confirmed(self, client, admin, awaiting):
        r = client.post(f"/api/v1/admin/bookings/{awaiting}/complete", headers=auth_headers(admin))
        assert r.status_code == 409

    def test_cancel_needs_reason(self, client, admin, awaiting):
        assert client.post(f"/api/v1/admin/bookings/{awaiting}/cancel", json={},
                           headers=auth_headers(admin)).status_code == 400
        r = client.post(f"/api/v1/admin/bookings/{awaiting}/cancel", json={"reason": "customer called"},
                        headers=auth_headers(admin))
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"


class TestCustomerEndpoints:
    def test_guest_claims_account_and_sees_booking(self, client, db, notifier):
        created = client.post(INTENT_URL, json=intent_body()).json()
        token = next(kw["token"] for kind, kw in notifier.sent if kind == "welcome")

        r = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "my-new-pass"})
        assert r.status_code == 200
        assert db.query(PasswordResetToken).filter_by(token=token).one().used

        login = client.post("/api/v1/auth/login", json={"email": "DANA@example.com", "password": "my-new-pass"})
        assert login.status_code == 200
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

        mine = client.get("/api/v1/bookings", headers=headers).json()
        assert [b["id"] for b in mine] == [created["bookingId"]]
        assert "bookerEmail" not in mine[0]

        r = client.post(f"/api/v1/bookings/{created['bookingId']}/cancel", headers=headers)
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"

    def test_cancel_voids_the_payment_intent(self, client, db, gateway, notifier):
        created = client.post(INTENT_URL, json=intent_body()).json()
        token = next(kw["token"] for kind, kw in notifier.sent if kind == "welcome")
        client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "my-new-pass"})
        login = client.post("/api/v1/auth/login", json={"email": "dana@example.com", "password": "my-new-pass"})
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

        r = client.post(f"/api/v1/bookings/{created['bookingId']}/cancel", headers=headers)
        assert r.status_code == 200
        assert gateway.intents[created["paymentIntentId"]].status == "canceled"

    def test_other_users_booking_is_hidden(self, client, db):
        created = client.post(INTENT_URL, json=intent_body()).json()
        stranger = make_user(db, "stranger@example.com")
        r = client.get(f"/api/v1/bookings/{created['bookingId']}", headers=auth_headers(stranger))
        assert r.status_code == 404

    def test_reset_token_cannot_be_reused(self, client, notifier):
        client.post(INTENT_URL, json=intent_body())
        token = next(kw["token"] for kind, kw in notifier.sent if kind == "welcome")
        assert client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "first-pass1"}).status_code == 200
        assert client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "second-pass"}).status_code == 400


def test_health(client):
    r = client.get("/health")
    assert r.json() == {"status": "ok", "payments": "sandbox"}
