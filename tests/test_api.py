"""
End-to-end tests through the FastAPI routes, with the database and payment gateway swapped out.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.core.dependencies import get_db, get_payment_gateway
from app.main import app

from conftest import MONDAY, TODAY

WEDNESDAY = MONDAY + timedelta(days=2)


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register_and_login(client, role, email, name="Someone"):
    client.post(f"/auth/{role}/register", json={"name": name, "email": email, "password": "s3cret!"})
    response = client.post(f"/auth/{role}/login", json={"email": email, "password": "s3cret!"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    return register_and_login(client, "admin", "manager@example.com", "Manager")


@pytest.fixture
def guest_headers(client):
    return register_and_login(client, "user", "guest@example.com", "Guest")


@pytest.fixture
def hotel_id(client, admin_headers):
    response = client.post("/hotels/", headers=admin_headers, json={
        "name": "Seaside",
        "base_price": 100,
        "rooms": [{"number": "101", "type": "Standard"}],
    })
    assert response.status_code == 200
    return response.json()["id"]


def intent_body(hotel_id, **overrides):
    body = {
        "hotel_id": hotel_id,
        "check_in": MONDAY.isoformat(),
        "check_out": WEDNESDAY.isoformat(),
        "adults": 2,
        "children": 0,
        "room_type": "Standard",
    }
    body.update(overrides)
    return body


def pay_and_book(client, headers, hotel_id):
    intent = client.post("/bookings/create-payment-intent", headers=headers, json=intent_body(hotel_id))
    assert intent.status_code == 200
    response = client.post("/bookings/", headers=headers, json={
        "payment_intent_id": intent.json()["payment_intent_id"],
        "razorpay_payment_id": "pay_123",
        "razorpay_signature": "sig",
    })
    return intent.json(), response


class TestBookingFlow:

    def test_pay_then_book(self, client, guest_headers, hotel_id):
        intent, response = pay_and_book(client, guest_headers, hotel_id)

        assert 400 <= intent["total_price"] <= 520
        assert intent["room_number"] == "101"
        assert intent["client_secret"]

        assert response.status_code == 201
        booking = response.json()
        assert booking["status"] == "confirmed"
        assert booking["payment_status"] == "succeeded"
        assert booking["total_price"] == intent["total_price"]

        mine = client.get("/bookings/my", headers=guest_headers).json()
        assert [b["id"] for b in mine] == [booking["id"]]

    def test_sold_out_room_type(self, client, guest_headers, hotel_id):
        pay_and_book(client, guest_headers, hotel_id)
        other = register_and_login(client, "user", "other@example.com")

        response = client.post("/bookings/create-payment-intent", headers=other, json=intent_body(hotel_id))

        assert response.status_code == 409
        assert response.json()["code"] == "no_room_available"

    def test_past_check_in_rejected(self, client, guest_headers, hotel_id):
        response = client.post(
            "/bookings/create-payment-intent", headers=guest_headers,
            json=intent_body(hotel_id, check_in=(TODAY - timedelta(days=1)).isoformat()),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_availability_reflects_booking(self, client, guest_headers, hotel_id):
        params = {"room_type": "Standard", "check_in": MONDAY.isoformat(), "check_out": WEDNESDAY.isoformat()}

        before = client.get(f"/hotels/{hotel_id}/availability", params=params).json()
        pay_and_book(client, guest_headers, hotel_id)
        after = client.get(f"/hotels/{hotel_id}/availability", params=params).json()

        assert before["available"] and before["room_number"] == "101"
        assert not after["available"]

    def test_quote_matches_weekday_formula(self, client, hotel_id):
        response = client.get(f"/hotels/{hotel_id}/quote", params={
            "room_type": "Standard", "check_in": MONDAY.isoformat(), "check_out": WEDNESDAY.isoformat(),
            "adults": 2,
        })
        assert response.status_code == 200
        quote = response.json()
        assert quote["nights"] == 2
        assert 100 <= quote["nightly_price"] <= 130
        assert quote["total_price"] == quote["nightly_price"] * 2 * 2

    def test_unknown_booking_is_404(self, client, admin_headers):
        response = client.get("/bookings/999", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"


class TestRefundFlow:

    def test_admin_full_refund(self, client, admin_headers, guest_headers, hotel_id, gateway):
        intent, booked = pay_and_book(client, guest_headers, hotel_id)
        booking_id = booked.json()["id"]

        response = client.post(f"/bookings/{booking_id}/refund", headers=admin_headers, json={"type": "full"})

        assert response.status_code == 200
        body = response.json()
        assert body["refund_amount"] == intent["total_price"]
        assert body["booking"]["status"] == "cancelled"
        assert body["booking"]["refund_status"] == "completed"
        assert len(gateway.refunds) == 1

        again = client.post(f"/bookings/{booking_id}/refund", headers=admin_headers, json={"type": "full"})
        assert again.status_code == 400
        assert again.json()["code"] == "already_refunded"

    def test_guest_request_then_admin_queue(self, client, admin_headers, guest_headers, hotel_id):
        _, booked = pay_and_book(client, guest_headers, hotel_id)
        booking_id = booked.json()["id"]

        response = client.post(
            f"/bookings/{booking_id}/request-refund", headers=guest_headers, json={"reason": "Sick"},
        )
        assert response.status_code == 200
        assert response.json()["refund_status"] == "requested"

        queue = client.get("/bookings/admin/refund-requests", headers=admin_headers).json()
        assert queue["total"] == 1
        assert queue["bookings"][0]["refund_reason"] == "Sick"

        notes = client.get("/notifications/", headers=admin_headers).json()
        assert any(n["event"] == "refundRequested" for n in notes)

    def test_guest_cannot_issue_refund(self, client, guest_headers, hotel_id):
        _, booked = pay_and_book(client, guest_headers, hotel_id)

        response = client.post(
            f"/bookings/{booked.json()['id']}/refund", headers=guest_headers, json={"type": "full"},
        )
        assert response.status_code == 403


class TestHotelAdmin:

    def test_other_admin_cannot_edit(self, client, hotel_id):
        rival = register_and_login(client, "admin", "rival@example.com")
        response = client.post(f"/hotels/{hotel_id}/rooms", headers=rival, json={"number": "999"})
        assert response.status_code == 403

    def test_duplicate_room_number(self, client, admin_headers, hotel_id):
        response = client.post(f"/hotels/{hotel_id}/rooms", headers=admin_headers, json={"number": "101"})
        assert response.status_code == 400

    def test_room_with_booking_cannot_be_removed(self, client, admin_headers, guest_headers, hotel_id):
        pay_and_book(client, guest_headers, hotel_id)
        response = client.delete(f"/hotels/{hotel_id}/rooms/101", headers=admin_headers)
        assert response.status_code == 400

    def test_room_being_paid_for_cannot_be_removed(self, client, admin_headers, guest_headers, hotel_id):
        intent = client.post("/bookings/create-payment-intent", headers=guest_headers, json=intent_body(hotel_id))
        assert intent.status_code == 200

        response = client.delete(f"/hotels/{hotel_id}/rooms/101", headers=admin_headers)

        assert response.status_code == 400
        assert "paying" in response.json()["detail"]

    def test_room_being_paid_for_cannot_be_renumbered(self, client, admin_headers, guest_headers, hotel_id):
        client.post("/bookings/create-payment-intent", headers=guest_headers, json=intent_body(hotel_id))

        response = client.put(f"/hotels/{hotel_id}/rooms/101", headers=admin_headers, json={"number": "105"})

        assert response.status_code == 400
        rooms = client.get(f"/hotels/{hotel_id}").json()["rooms"]
        assert [r["number"] for r in rooms] == ["101"]

    def test_free_room_can_be_renumbered(self, client, admin_headers, hotel_id):
        response = client.put(f"/hotels/{hotel_id}/rooms/101", headers=admin_headers, json={"number": "105"})
        assert response.status_code == 200
        assert response.json()["number"] == "105"

    def test_maintenance_takes_room_out_of_sale(self, client, admin_headers, guest_headers, hotel_id):
        response = client.put(
            f"/hotels/{hotel_id}/rooms/101", headers=admin_headers, json={"status": "maintenance"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "maintenance"

        intent = client.post("/bookings/create-payment-intent", headers=guest_headers, json=intent_body(hotel_id))
        assert intent.status_code == 409


class TestAuth:

    def test_register_returns_account(self, client):
        response = client.post("/auth/user/register", json={
            "name": "Ada", "email": "ada@example.com", "password": "s3cret!", "phone": "+911234",
        })
        assert response.status_code == 201
        assert response.json()["email"] == "ada@example.com"
        assert "password_hash" not in response.json()

    def test_duplicate_email(self, client, guest_headers):
        response = client.post("/auth/user/register", json={
            "name": "Again", "email": "guest@example.com", "password": "s3cret!",
        })
        assert response.status_code == 400

    def test_wrong_password(self, client, guest_headers):
        response = client.post("/auth/user/login", json={"email": "guest@example.com", "password": "nope123"})
        assert response.status_code == 401

    def test_tampered_token(self, client):
        response = client.get("/bookings/my", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_admin_token_cannot_book(self, client, admin_headers, hotel_id):
        response = client.post("/bookings/create-payment-intent", headers=admin_headers, json=intent_body(hotel_id))
        assert response.status_code == 403
