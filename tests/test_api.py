"""Tests for the HTTP API against the seeded demo clinic."""

import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


API_DB_PATH = Path(os.environ["DATABASE_URL"].removeprefix("sqlite+aiosqlite:///"))
PAYMENT_HEADERS = {"X-Payment-Secret": "test-payment-secret"}
DEMO_EMAIL = "sarah.thompson@clinic.example.com"
DEMO_PASSWORD = "demo-password"


def next_monday() -> date:
    """A Monday between one and two weeks from today, well past the cancellation notice."""
    today = datetime.now(timezone.utc).date()
    return today + timedelta(days=7 + (7 - today.weekday()) % 7)


@pytest.fixture
def client():
    """App with a freshly created and seeded database."""
    API_DB_PATH.unlink(missing_ok=True)
    from clinic_scheduler.main import app

    with TestClient(app) as c:
        yield c
    API_DB_PATH.unlink(missing_ok=True)


@pytest.fixture
def catalog(client):
    providers = {p["email"]: p for p in client.get("/api/v1/providers").json()}
    session_types = {s["name"]: s for s in client.get("/api/v1/session-types").json()}
    return providers[DEMO_EMAIL], session_types["Initial Consultation"]


@pytest.fixture
def auth_headers(client):
    response = client.post("/api/v1/auth/login", json={"email": DEMO_EMAIL, "password": DEMO_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def book(client, provider, session_type, start: datetime, email: str = "guest@example.com"):
    return client.post(
        "/api/v1/bookings",
        json={
            "provider_id": provider["id"],
            "session_type_id": session_type["id"],
            "appointment_datetime": start.isoformat(),
            "first_name": "Alex",
            "last_name": "Morgan",
            "email": email,
        },
    )


def pay(client, booking_id: int, succeeded: bool = True):
    return client.post(
        "/api/v1/payments/outcome",
        json={"booking_id": booking_id, "succeeded": succeeded},
        headers=PAYMENT_HEADERS,
    )


class TestHealthAndCatalog:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_demo_catalog_is_seeded(self, client):
        providers = client.get("/api/v1/providers").json()
        session_types = client.get("/api/v1/session-types").json()
        assert {p["email"] for p in providers} == {DEMO_EMAIL, "michael.chen@clinic.example.com"}
        assert "hashed_password" not in providers[0]
        assert len(session_types) == 4

    def test_slots_for_a_working_monday(self, client, catalog):
        provider, session_type = catalog
        monday = next_monday()
        response = client.get(
            f"/api/v1/providers/{provider['id']}/slots",
            params={"date": monday.isoformat(), "session_type_id": session_type["id"]},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["duration_minutes"] == 60
        assert [s["start"][11:16] for s in body["slots"]] == [f"{h:02d}:00" for h in range(9, 17)]

    def test_provider_detail(self, client, catalog):
        provider, _ = catalog
        response = client.get(f"/api/v1/providers/{provider['id']}")
        assert response.status_code == 200
        assert response.json()["email"] == DEMO_EMAIL
        assert client.get("/api/v1/providers/999").status_code == 404

    def test_session_types_by_modality(self, client):
        phone = client.get("/api/v1/session-types/modality/PHONE").json()
        assert [s["name"] for s in phone] == ["Phone Consultation"]
        online = client.get("/api/v1/session-types", params={"modality": "ONLINE"}).json()
        assert {s["modality"] for s in online} == {"ONLINE"}
        assert len(online) == 2
        assert client.get("/api/v1/session-types/modality/CARRIER_PIGEON").status_code == 422

    def test_slots_unknown_session_type(self, client, catalog):
        provider, _ = catalog
        response = client.get(
            f"/api/v1/providers/{provider['id']}/slots",
            params={"date": next_monday().isoformat(), "session_type_id": 999},
        )
        assert response.status_code == 404


class TestGuestBookingFlow:
    def test_book_pay_reschedule_cancel(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=10)

        created = book(client, provider, session_type, start)
        assert created.status_code == 201
        booking = created.json()
        token = booking["confirmation_token"]
        assert booking["booking_status"] == "PENDING_PAYMENT"

        paid = pay(client, booking["id"])
        assert paid.status_code == 200
        assert paid.json()["booking_status"] == "CONFIRMED"
        assert "confirmation_token" not in paid.json()
        assert pay(client, booking["id"]).status_code == 200

        moved = client.put(
            f"/api/v1/bookings/{token}/reschedule",
            json={"new_appointment_datetime": start.replace(hour=14).isoformat()},
        )
        assert moved.status_code == 200
        assert moved.json()["confirmation_token"] == token
        assert moved.json()["appointment_datetime"].startswith(start.replace(hour=14).isoformat()[:16])

        cancelled = client.put(f"/api/v1/bookings/{token}/cancel", json={"reason": "Feeling better"})
        assert cancelled.status_code == 200
        body = cancelled.json()
        assert body["cancelled"] is True
        assert body["refund_eligible"] is True
        assert Decimal(str(body["refund_amount"])) == Decimal("150.00")
        assert body["booking"]["booking_status"] == "CANCELLED"

        again = client.put(f"/api/v1/bookings/{token}/cancel")
        assert again.status_code == 409

    def test_double_booking_returns_409(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=11)
        assert book(client, provider, session_type, start).status_code == 201

        response = book(client, provider, session_type, start, email="someone.else@example.com")
        assert response.status_code == 409
        assert "detail" in response.json()

    def test_outside_hours_returns_409(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=20)
        assert book(client, provider, session_type, start).status_code == 409

    def test_unknown_token_returns_404(self, client):
        response = client.get("/api/v1/bookings/not-a-real-token")
        assert response.status_code == 404
        assert response.json() == {"detail": "Booking not found"}

    def test_invalid_email_rejected(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=9)
        assert book(client, provider, session_type, start, email="not-an-email").status_code == 422

    def test_lookup_by_email(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=9)
        book(client, provider, session_type, start, email="Lookup.Me@example.com")
        found = client.get("/api/v1/bookings/by-email/lookup.me@example.com").json()
        assert len(found) == 1
        assert found[0]["booking_status"] == "PENDING_PAYMENT"

    def test_email_lookup_does_not_hand_out_tokens(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=13)
        booking = book(client, provider, session_type, start, email="owner@example.com").json()
        pay(client, booking["id"])

        listed = client.get("/api/v1/bookings/by-email/owner@example.com").json()

        assert [b["id"] for b in listed] == [booking["id"]]
        assert "confirmation_token" not in listed[0]
        assert "email" not in listed[0]
        assert booking["confirmation_token"] not in str(listed)


class TestPaymentCallback:
    def test_requires_shared_secret(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=9)
        booking = book(client, provider, session_type, start).json()

        response = client.post("/api/v1/payments/outcome", json={"booking_id": booking["id"], "succeeded": True})
        assert response.status_code == 401
        wrong = client.post(
            "/api/v1/payments/outcome",
            json={"booking_id": booking["id"], "succeeded": True},
            headers={"X-Payment-Secret": "nope"},
        )
        assert wrong.status_code == 401

    def test_failed_payment_frees_the_slot(self, client, catalog):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=9)
        booking = book(client, provider, session_type, start).json()

        failed = pay(client, booking["id"], succeeded=False)
        assert failed.json()["booking_status"] == "CANCELLED"
        assert failed.json()["payment_status"] == "FAILED"
        assert book(client, provider, session_type, start, email="next@example.com").status_code == 201

    def test_unknown_booking(self, client):
        assert pay(client, 424242).status_code == 404


class TestProviderPortal:
    def test_login_rejects_bad_password(self, client):
        response = client.post("/api/v1/auth/login", json={"email": DEMO_EMAIL, "password": "wrong"})
        assert response.status_code == 401

    def test_me_requires_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401
        assert client.get("/api/v1/me/availability").status_code == 401

    def test_me(self, client, auth_headers):
        response = client.get("/api/v1/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["email"] == DEMO_EMAIL

    def test_manage_availability(self, client, auth_headers):
        rules = client.get("/api/v1/me/availability", headers=auth_headers).json()
        assert len(rules) == 5

        overlap = client.post(
            "/api/v1/me/availability",
            json={"day_of_week": "MONDAY", "start_time": "16:00:00", "end_time": "18:00:00"},
            headers=auth_headers,
        )
        assert overlap.status_code == 422

        created = client.post(
            "/api/v1/me/availability",
            json={"day_of_week": "SATURDAY", "start_time": "10:00:00", "end_time": "13:00:00"},
            headers=auth_headers,
        )
        assert created.status_code == 201
        rule_id = created.json()["id"]

        deleted = client.delete(f"/api/v1/me/availability/{rule_id}", headers=auth_headers)
        assert deleted.status_code == 204
        assert client.delete(f"/api/v1/me/availability/{rule_id}", headers=auth_headers).status_code == 404

    def test_time_off_blocks_slots(self, client, catalog, auth_headers):
        provider, session_type = catalog
        monday = next_monday()
        created = client.post(
            "/api/v1/me/time-off",
            json={
                "start_datetime": f"{monday.isoformat()}T00:00:00",
                "end_datetime": f"{(monday + timedelta(days=1)).isoformat()}T00:00:00",
                "reason": "Conference",
            },
            headers=auth_headers,
        )
        assert created.status_code == 201
        slots = client.get(
            f"/api/v1/providers/{provider['id']}/slots",
            params={"date": monday.isoformat(), "session_type_id": session_type["id"]},
        ).json()["slots"]
        assert slots == []

    def test_appointments_and_provider_cancel(self, client, catalog, auth_headers):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=15)
        booking = book(client, provider, session_type, start).json()
        pay(client, booking["id"])

        listed = client.get("/api/v1/me/appointments", params={"status": "CONFIRMED"}, headers=auth_headers)
        assert [a["id"] for a in listed.json()] == [booking["id"]]
        assert "confirmation_token" not in listed.json()[0]

        early = client.patch(
            f"/api/v1/me/appointments/{booking['id']}/status", json={"status": "COMPLETED"}, headers=auth_headers
        )
        assert early.status_code == 409

        cancelled = client.put(
            f"/api/v1/me/appointments/{booking['id']}/cancel", json={"reason": "Provider unavailable"}, headers=auth_headers
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["appointment"]["cancellation_reason"] == "Provider unavailable"
        assert cancelled.json()["refund_eligible"] is True

    def test_other_providers_appointment_not_found(self, client, catalog, auth_headers):
        _, session_type = catalog
        providers = {p["email"]: p for p in client.get("/api/v1/providers").json()}
        other = providers["michael.chen@clinic.example.com"]
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=9)
        booking = book(client, other, session_type, start).json()

        response = client.get(f"/api/v1/me/appointments/{booking['id']}", headers=auth_headers)
        assert response.status_code == 404

    def test_aware_time_off_is_converted(self, client, catalog, auth_headers):
        provider, session_type = catalog
        monday = next_monday()
        created = client.post(
            "/api/v1/me/time-off",
            json={
                "start_datetime": f"{monday.isoformat()}T11:00:00+02:00",
                "end_datetime": f"{monday.isoformat()}T12:00:00+02:00",
            },
            headers=auth_headers,
        )
        assert created.status_code == 201
        assert created.json()["start_datetime"].startswith(f"{monday.isoformat()}T09:00")
        slots = client.get(
            f"/api/v1/providers/{provider['id']}/slots",
            params={"date": monday.isoformat(), "session_type_id": session_type["id"]},
        ).json()["slots"]
        assert [s["start"][11:16] for s in slots][0] == "10:00"

    def test_update_availability(self, client, auth_headers):
        rules = client.get("/api/v1/me/availability", headers=auth_headers).json()
        monday = next(r for r in rules if r["day_of_week"] == "MONDAY")

        updated = client.put(
            f"/api/v1/me/availability/{monday['id']}",
            json={"day_of_week": "MONDAY", "start_time": "10:00:00", "end_time": "14:00:00"},
            headers=auth_headers,
        )
        assert updated.status_code == 200
        assert updated.json()["id"] == monday["id"]
        assert updated.json()["start_time"] == "10:00:00"

        backwards = client.put(
            f"/api/v1/me/availability/{monday['id']}",
            json={"day_of_week": "MONDAY", "start_time": "14:00:00", "end_time": "10:00:00"},
            headers=auth_headers,
        )
        assert backwards.status_code == 422
        missing = client.put(
            "/api/v1/me/availability/99999",
            json={"day_of_week": "MONDAY", "start_time": "10:00:00", "end_time": "14:00:00"},
            headers=auth_headers,
        )
        assert missing.status_code == 404

    def test_appointment_notes(self, client, catalog, auth_headers):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=12)
        booking = book(client, provider, session_type, start).json()
        pay(client, booking["id"])

        response = client.post(
            f"/api/v1/me/appointments/{booking['id']}/notes",
            json={"notes": "Bring intake form"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["provider_notes"] == "Bring intake form"
        guest_view = client.get(f"/api/v1/bookings/{booking['confirmation_token']}").json()
        assert "provider_notes" not in guest_view

    def test_profile(self, client, auth_headers):
        assert client.get("/api/v1/me/profile", headers=auth_headers).json()["email"] == DEMO_EMAIL

        response = client.put(
            "/api/v1/me/profile",
            json={"bio": "Fifteen years in community practice", "full_name": None},
            headers=auth_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["bio"] == "Fifteen years in community practice"
        assert body["full_name"] == "Sarah Thompson"
        assert client.get("/api/v1/auth/me", headers=auth_headers).json()["bio"] == body["bio"]

    def test_dashboard(self, client, catalog, auth_headers):
        provider, session_type = catalog
        start = datetime.combine(next_monday(), datetime.min.time()).replace(hour=9)
        booking = book(client, provider, session_type, start).json()
        pay(client, booking["id"])

        response = client.get("/api/v1/me/dashboard", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["provider"]["email"] == DEMO_EMAIL
        assert body["stats"]["total_bookings"] == 1
        assert body["stats"]["upcoming_confirmed"] == 1
        assert body["today_appointments"] == []
        assert client.get("/api/v1/me/dashboard").status_code == 401
