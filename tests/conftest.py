"""Shared fixtures: throwaway SQLite databases, a seeded clinic and a controllable clock."""

import os
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from pathlib import Path

# Settings are read at import time, so the environment must be in place first
API_DB_PATH = Path(tempfile.gettempdir()) / f"clinic_scheduler_api_{os.getpid()}.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{API_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENV"] = "test"
os.environ["CREATE_TABLES_ON_STARTUP"] = "true"
os.environ["SEED_DEMO_DATA"] = "true"
os.environ["DEMO_PROVIDER_PASSWORD"] = "demo-password"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-payment-secret"
os.environ["FACILITY_TIMEZONE"] = "UTC"
os.environ["CANCELLATION_NOTICE_HOURS"] = "24"
os.environ["PENDING_PAYMENT_HOLD_MINUTES"] = "30"
os.environ["REMINDER_LEAD_HOURS"] = "24"
os.environ["ORPHAN_POLICY"] = "allow"
os.environ["SMTP_HOST"] = ""

import pytest  # noqa: E402

from clinic_scheduler.core.db import build_engine, build_session_maker, init_db  # noqa: E402
from clinic_scheduler.core.locks import ProviderLocks  # noqa: E402
from clinic_scheduler.models import (  # noqa: E402
    AvailabilityRule,
    DayOfWeek,
    GuestInfo,
    Modality,
    Provider,
    SessionType,
)
from clinic_scheduler.services.booking_ledger import BookingLedger  # noqa: E402
from clinic_scheduler.services.notifications import NotificationKind  # noqa: E402
from clinic_scheduler.services.scheduling_service import SchedulingService  # noqa: E402

# 2030-01-01 is a Tuesday; the following Monday is 2030-01-07
NOW = datetime(2030, 1, 1, 8, 0)
MONDAY = date(2030, 1, 7)
WEEKDAYS = [DayOfWeek.MONDAY, DayOfWeek.TUESDAY, DayOfWeek.WEDNESDAY, DayOfWeek.THURSDAY, DayOfWeek.FRIDAY]


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[NotificationKind, int]] = []

    async def notify(self, kind, booking) -> None:
        self.events.append((kind, booking.id))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _ in self.events]


class RecordingGateway:
    def __init__(self) -> None:
        self.refunds: list[tuple[int, Decimal]] = []

    async def request_refund(self, booking, amount) -> None:
        self.refunds.append((booking.id, amount))


@dataclass
class Clinic:
    provider_id: int
    other_provider_id: int
    session_type_id: int
    short_session_type_id: int
    price: Decimal


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
async def session_maker(tmp_path: Path):
    """Fresh SQLite database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduler.db'}")
    await init_db(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
async def clinic(session_maker) -> Clinic:
    """Two providers; the first works weekdays 09:00-12:00. A 60 and a 30 minute session type."""
    async with session_maker() as session:
        provider = Provider(email="dr.lee@clinic.example.com", full_name="Dr Lee")
        other = Provider(email="dr.patel@clinic.example.com", full_name="Dr Patel")
        standard = SessionType(
            name="Standard Session", duration_minutes=60, price=Decimal("100.00"), modality=Modality.ONLINE
        )
        short = SessionType(
            name="Check-in", duration_minutes=30, price=Decimal("50.00"), modality=Modality.PHONE
        )
        session.add_all([provider, other, standard, short])
        await session.flush()
        for day in WEEKDAYS:
            session.add(
                AvailabilityRule(
                    provider_id=provider.id,
                    day_of_week=day,
                    start_time=time(9, 0),
                    end_time=time(12, 0),
                )
            )
        await session.commit()
        return Clinic(
            provider_id=provider.id,
            other_provider_id=other.id,
            session_type_id=standard.id,
            short_session_type_id=short.id,
            price=Decimal("100.00"),
        )


@pytest.fixture
def ledger(session_maker, clock) -> BookingLedger:
    return BookingLedger(session_maker, locks=ProviderLocks(timeout_seconds=5.0), clock=clock)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def service(ledger, sink, gateway) -> SchedulingService:
    return SchedulingService(ledger, notifier=sink, payments=gateway, orphan_policy="allow")


@pytest.fixture
def guest() -> GuestInfo:
    return GuestInfo(first_name="Alex", last_name="Morgan", email="alex.morgan@example.com", phone="555-0100")


@pytest.fixture
def other_guest() -> GuestInfo:
    return GuestInfo(first_name="Sam", last_name="Rivera", email="sam.rivera@example.com")
