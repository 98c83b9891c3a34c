"""Tests for config helpers, security, database URL handling and email rendering."""

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from clinic_scheduler.core.db import to_async_url
from clinic_scheduler.core.exceptions import Busy, InvalidRule, NotFound, SchedulingError, SlotUnavailable
from clinic_scheduler.core.security import create_access_token, decode_access_token, hash_password, verify_password
from clinic_scheduler.models import Booking, Modality
from clinic_scheduler.services.email_service import EmailNotificationSink, build_booking_email_html
from clinic_scheduler.services.notifications import FanOutNotificationSink, NotificationKind


def sample_booking() -> Booking:
    start = datetime(2030, 1, 7, 10, 0)
    return Booking(
        id=7,
        provider_id=1,
        session_type_id=1,
        appointment_datetime=start,
        appointment_end=start + timedelta(minutes=60),
        duration_minutes=60,
        modality=Modality.IN_PERSON,
        amount=Decimal("120.00"),
        first_name="<Alex>",
        last_name="Morgan",
        email="alex@example.com",
        confirmation_token="tok123",
    )


class TestDatabaseUrl:
    def test_postgres_url_uses_asyncpg_without_psycopg_params(self):
        url = to_async_url("postgresql://u:p@db.example.com:5432/clinic?sslmode=require&channel_binding=require")
        assert url == "postgresql+asyncpg://u:p@db.example.com:5432/clinic"

    def test_sqlite_url_untouched(self):
        assert to_async_url("sqlite+aiosqlite:///./dev.db") == "sqlite+aiosqlite:///./dev.db"


class TestSecurity:
    def test_password_hash_roundtrip(self):
        hashed = hash_password("s3cret")
        assert verify_password("s3cret", hashed)
        assert not verify_password("wrong", hashed)

    def test_access_token_subject(self):
        assert decode_access_token(create_access_token(42)) == "42"

    def test_garbage_token(self):
        assert decode_access_token("not.a.jwt") is None


class TestErrors:
    @pytest.mark.parametrize(
        "error, status",
        [(SlotUnavailable(), 409), (InvalidRule("bad"), 422), (NotFound(), 404), (Busy(), 503)],
    )
    def test_status_codes(self, error, status):
        assert isinstance(error, SchedulingError)
        assert error.status_code == status
        assert error.detail


class TestEmail:
    def test_html_escapes_guest_name_and_links_booking(self):
        html = build_booking_email_html(NotificationKind.CREATED, sample_booking())
        assert "&lt;Alex&gt;" in html
        assert "/bookings/tok123" in html
        assert "in person" in html

    def test_cancelled_email_has_no_manage_link(self):
        html = build_booking_email_html(NotificationKind.CANCELLED, sample_booking())
        assert "/bookings/tok123" not in html

    async def test_sink_skips_when_smtp_not_configured(self):
        with patch("clinic_scheduler.services.email_service._send_email_sync") as send:
            await EmailNotificationSink().notify(NotificationKind.CREATED, sample_booking())
        send.assert_not_called()

    async def test_fan_out_survives_failing_sink(self):
        delivered = []

        class Broken:
            async def notify(self, kind, booking):
                raise RuntimeError("boom")

        class Recorder:
            async def notify(self, kind, booking):
                delivered.append(kind)

        await FanOutNotificationSink(Broken(), Recorder()).notify(NotificationKind.REMINDER_DUE, sample_booking())
        assert delivered == [NotificationKind.REMINDER_DUE]
