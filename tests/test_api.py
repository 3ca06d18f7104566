"""HTTP tests for the public booking flow and the owner dashboard."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from slotbook import models
from slotbook.availability import to_storage
from slotbook.main import app
from slotbook.routers import public
from slotbook.security import create_access_token

from conftest import make_business, make_service


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[public.get_payment_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def owner_headers():
    return {"Authorization": f"Bearer {create_access_token('owner-1')}"}


def booking_payload(business_id, service_id=None, slot="10:00", day="2030-01-07", name="Jane Doe"):
    return {
        "business_id": business_id,
        "service_id": service_id,
        "customer": {"name": name, "phone": "(555) 123-4567", "email": "jane@example.com"},
        "date": day,
        "slot_start": slot,
    }


class TestPublicBooking:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_business_page_lists_active_services(self, client, db):
        business = make_business(db)
        make_service(db, business, name="Haircut")
        make_service(db, business, name="Retired", is_active=False)

        response = client.get("/api/businesses/studio")
        assert response.status_code == 200
        data = response.json()
        assert data["business_name"] == "Test Studio"
        assert [s["name"] for s in data["services"]] == ["Haircut"]

    def test_unknown_business_page(self, client):
        response = client.get("/api/businesses/nobody")
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_availability(self, client, db):
        business = make_business(db)
        service = make_service(db, business, duration=60)

        response = client.get("/api/availability", params={
            "business_id": business.id, "service_id": service.id, "date": "2030-01-07",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["duration_minutes"] == 60
        assert data["slots"][0]["label"] == "9:00 AM"
        assert data["slots"][0]["time"] == "09:00"
        assert len(data["slots"]) == 8

    def test_availability_closed_day_is_empty(self, client, db):
        business = make_business(db)
        response = client.get("/api/availability", params={"business_id": business.id, "date": "2030-01-12"})
        assert response.status_code == 200
        assert response.json()["slots"] == []

    def test_far_future_date(self, client, db):
        business = make_business(db)
        response = client.get("/api/availability", params={"business_id": business.id, "date": "9999-12-31"})
        assert response.status_code == 200
        assert response.json()["slots"] == []

        response = client.post("/api/bookings", json=booking_payload(business.id, day="9999-12-31"))
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_end_of_day_is_not_a_slot_start(self, client, db):
        business = make_business(db)
        response = client.post("/api/bookings", json=booking_payload(business.id, slot="24:00"))
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_book_then_conflict(self, client, db):
        business = make_business(db)

        response = client.post("/api/bookings", json=booking_payload(business.id))
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["payment_status"] == "not_required"
        assert data["customer_phone"] == "5551234567"

        response = client.post("/api/bookings", json=booking_payload(business.id, name="Bob"))
        assert response.status_code == 409
        assert response.json()["code"] == "slot_unavailable"

        slots = client.get("/api/availability", params={"business_id": business.id, "date": "2030-01-07"}).json()
        assert "10:00 AM" not in [s["label"] for s in slots["slots"]]

    def test_invalid_customer_is_rejected(self, client, db):
        business = make_business(db)
        payload = booking_payload(business.id)
        payload["customer"]["phone"] = "12"
        assert client.post("/api/bookings", json=payload).status_code == 422

    def test_reschedule_and_cancel_by_token(self, client, db):
        business = make_business(db)
        token = client.post("/api/bookings", json=booking_payload(business.id)).json()["reschedule_token"]

        assert client.get(f"/api/bookings/{token}").json()["appointment_start"].startswith("2030-01-07T10:00")

        response = client.post(f"/api/bookings/{token}/reschedule", json={"date": "2030-01-08", "slot_start": "2:00 PM"})
        assert response.status_code == 200
        assert response.json()["appointment_start"].startswith("2030-01-08T14:00")
        assert response.json()["reschedule_token"] == token

        first = client.post(f"/api/bookings/{token}/cancel")
        second = client.post(f"/api/bookings/{token}/cancel")
        assert first.status_code == second.status_code == 200
        assert second.json()["status"] == "cancelled"

        response = client.post(f"/api/bookings/{token}/reschedule", json={"date": "2030-01-09", "slot_start": "10:00"})
        assert response.status_code == 409
        assert response.json()["code"] == "booking_cancelled"

    def test_unknown_token(self, client):
        assert client.get("/api/bookings/not-a-token").status_code == 404
        assert client.post("/api/bookings/not-a-token/cancel").status_code == 404


class TestPublicPayments:
    def _paid_business(self, db):
        business = make_business(db, stripe_account_id="acct_1")
        service = make_service(db, business, price="45.00", is_paid=True, payment_mode="online")
        return business, service

    def test_pay_online(self, client, db, gateway):
        business, service = self._paid_business(db)
        booking = client.post("/api/bookings", json=booking_payload(business.id, service.id)).json()
        assert booking["payment_status"] == "pending"
        token = booking["reschedule_token"]

        intent = client.post(f"/api/bookings/{token}/payment-intent").json()
        assert intent["client_secret"]
        assert gateway.intents[intent["payment_intent_id"]]["amount"] == 4500

        gateway.succeed(intent["payment_intent_id"])
        response = client.post(f"/api/bookings/{token}/payment/confirm")
        assert response.json()["payment_status"] == "paid"

    def test_abandon_releases_slot(self, client, db):
        business, service = self._paid_business(db)
        token = client.post("/api/bookings", json=booking_payload(business.id, service.id)).json()["reschedule_token"]

        response = client.post(f"/api/bookings/{token}/payment/abandon")
        assert response.json()["status"] == "cancelled"
        assert client.post("/api/bookings", json=booking_payload(business.id, service.id)).status_code == 201

    def test_charges_disabled_refuses_booking(self, client, db, gateway):
        business, service = self._paid_business(db)
        gateway.charges_enabled = False

        response = client.post("/api/bookings", json=booking_payload(business.id, service.id))
        assert response.status_code == 400
        assert response.json()["code"] == "payment_misconfigured"
        assert db.query(models.Booking).count() == 0


class TestOwnerDashboard:
    def test_requires_token(self, client):
        assert client.get("/api/owner/businesses").status_code in (401, 403)
        response = client.get("/api/owner/businesses", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_create_business_and_services(self, client, owner_headers):
        response = client.post("/api/owner/businesses", headers=owner_headers, json={
            "business_name": "Corner Barber",
            "booking_slug": "corner-barber",
            "timezone": "Europe/Berlin",
        })
        assert response.status_code == 201
        business = response.json()
        assert business["owner_id"] == "owner-1"
        assert business["available_hours"]["monday"]["enabled"] is True

        response = client.post(f"/api/owner/businesses/{business['id']}/services", headers=owner_headers, json={
            "name": "Beard trim", "duration_minutes": 20, "price": "15.00", "is_paid": True, "payment_mode": "in_store",
        })
        assert response.status_code == 201

        services = client.get(f"/api/owner/businesses/{business['id']}/services", headers=owner_headers).json()
        assert [s["name"] for s in services] == ["Beard trim"]

    def test_duplicate_slug_and_bad_timezone(self, client, db, owner_headers):
        make_business(db)
        response = client.post("/api/owner/businesses", headers=owner_headers, json={
            "business_name": "Copy", "booking_slug": "studio",
        })
        assert response.status_code == 400

        response = client.post("/api/owner/businesses", headers=owner_headers, json={
            "business_name": "Lost", "booking_slug": "lost", "timezone": "Mars/Olympus",
        })
        assert response.status_code == 422

    @pytest.mark.parametrize("payload", [
        {"name": "Free but online", "duration_minutes": 30, "is_paid": False, "payment_mode": "online"},
        {"name": "Paid but free", "duration_minutes": 30, "price": "10.00", "is_paid": True, "payment_mode": "free"},
        {"name": "Odd length", "duration_minutes": 17},
    ])
    def test_service_invariants(self, client, db, owner_headers, payload):
        business = make_business(db)
        response = client.post(f"/api/owner/businesses/{business.id}/services", headers=owner_headers, json=payload)
        assert response.status_code == 422

    def test_online_service_needs_stripe_account(self, client, db, owner_headers):
        business = make_business(db)
        payload = {"name": "Massage", "duration_minutes": 60, "price": "80.00", "is_paid": True, "payment_mode": "online"}

        response = client.post(f"/api/owner/businesses/{business.id}/services", headers=owner_headers, json=payload)
        assert response.status_code == 400

        client.put(f"/api/owner/businesses/{business.id}/payment-account", headers=owner_headers,
                   json={"stripe_account_id": "acct_9"})
        response = client.post(f"/api/owner/businesses/{business.id}/services", headers=owner_headers, json=payload)
        assert response.status_code == 201

    def test_telegram_chat_is_per_business(self, client, db, owner_headers):
        business = make_business(db)
        other = make_business(db, owner_id="someone-else", slug="other")

        response = client.put(f"/api/owner/businesses/{business.id}/notifications", headers=owner_headers,
                              json={"telegram_chat_id": "-100123"})
        assert response.status_code == 200
        assert response.json()["telegram_chat_id"] == "-100123"

        response = client.put(f"/api/owner/businesses/{other.id}/notifications", headers=owner_headers,
                              json={"telegram_chat_id": "-100123"})
        assert response.status_code == 404

    def test_update_schedule(self, client, db, owner_headers):
        business = make_business(db)
        hours = {day: {"enabled": False} for day in
                 ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")}
        hours["saturday"] = {"enabled": True, "start": "10:00", "end": "14:00"}

        response = client.put(f"/api/owner/businesses/{business.id}/schedule", headers=owner_headers,
                              json={"available_hours": hours, "slot_duration": 60})
        assert response.status_code == 200

        slots = client.get("/api/availability", params={"business_id": business.id, "date": "2030-01-12"}).json()
        assert [s["label"] for s in slots["slots"]] == ["10:00 AM", "11:00 AM", "12:00 PM", "1:00 PM"]
        monday = client.get("/api/availability", params={"business_id": business.id, "date": "2030-01-07"}).json()
        assert monday["slots"] == []

    def test_schedule_with_inverted_hours_rejected(self, client, db, owner_headers):
        business = make_business(db)
        hours = {day: {"enabled": False} for day in
                 ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")}
        hours["monday"] = {"enabled": True, "start": "17:00", "end": "09:00"}

        response = client.put(f"/api/owner/businesses/{business.id}/schedule", headers=owner_headers,
                              json={"available_hours": hours, "slot_duration": 30})
        assert response.status_code == 422

    def test_other_owners_business_is_hidden(self, client, db, owner_headers):
        business = make_business(db, owner_id="someone-else")
        assert client.get(f"/api/owner/businesses/{business.id}/services", headers=owner_headers).status_code == 404
        assert client.delete(f"/api/owner/businesses/{business.id}", headers=owner_headers).status_code == 404

    def test_list_and_cancel_bookings(self, client, db, owner_headers):
        business = make_business(db)
        first = client.post("/api/bookings", json=booking_payload(business.id)).json()
        client.post("/api/bookings", json=booking_payload(business.id, slot="10:00", day="2030-01-08"))

        bookings = client.get(f"/api/owner/businesses/{business.id}/bookings", headers=owner_headers,
                              params={"start_date": "2030-01-07", "end_date": "2030-01-07"}).json()
        assert [b["id"] for b in bookings] == [first["id"]]

        for _ in range(2):
            response = client.post(f"/api/owner/bookings/{first['id']}/cancel", headers=owner_headers)
            assert response.json() == {"id": first["id"], "status": "cancelled"}

        assert client.post("/api/bookings", json=booking_payload(business.id)).status_code == 201

    def test_delete_service_keeps_bookings(self, client, db, owner_headers):
        business = make_business(db)
        service = make_service(db, business)
        booking = client.post("/api/bookings", json=booking_payload(business.id, service.id)).json()

        assert client.delete(f"/api/owner/services/{service.id}", headers=owner_headers).status_code == 204
        assert client.get(f"/api/bookings/{booking['reschedule_token']}").json()["service_id"] is None

    def test_stats(self, client, db, owner_headers):
        business = make_business(db)
        db.add(models.Booking(
            business_id=business.id,
            customer_name="Walk-in",
            customer_phone="5550000000",
            appointment_start=to_storage(datetime.now(timezone.utc)),
            duration_minutes=30,
            status=models.BOOKING_CONFIRMED,
            payment_status=models.PAYMENT_PAID,
            payment_amount=30,
            reschedule_token="paid-today",
        ))
        db.add(models.Booking(
            business_id=business.id,
            customer_name="No-show",
            customer_phone="5550000001",
            appointment_start=to_storage(datetime.now(timezone.utc)),
            duration_minutes=30,
            status=models.BOOKING_CANCELLED,
            reschedule_token="cancelled-today",
        ))
        db.commit()
        client.post("/api/bookings", json=booking_payload(business.id))

        stats = client.get(f"/api/owner/businesses/{business.id}/stats", headers=owner_headers).json()
        assert stats["bookings_today"] == 1
        assert stats["cancelled_today"] == 1
        assert stats["upcoming"] == 1
        assert float(stats["revenue_captured"]) == 30.0
