from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel

from clinic_scheduler.core.config import facility_now
from clinic_scheduler.models.session_type import Modality


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW})


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    session_type_id: int = Field(foreign_key="session_types.id")
    appointment_datetime: datetime = Field(index=True)
    # start + duration_minutes, kept for range queries and the overlap constraint
    appointment_end: datetime = Field(index=True)
    duration_minutes: int
    modality: Modality
    amount: Decimal = Field(max_digits=10, decimal_places=2)

    first_name: str
    last_name: str
    email: str = Field(index=True)
    phone: str | None = None
    notes: str | None = None

    payment_status: PaymentStatus = PaymentStatus.PENDING
    booking_status: BookingStatus = Field(default=BookingStatus.PENDING_PAYMENT, index=True)
    confirmation_token: str = Field(unique=True, index=True)
    cancellation_reason: str | None = None
    # private to the provider, never shown to the guest
    provider_notes: str | None = None
    reminder_sent: bool = False

    created_at: datetime = Field(default_factory=facility_now)
    updated_at: datetime = Field(default_factory=facility_now)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.appointment_end and self.appointment_datetime < end

    def move_to(self, start: datetime) -> None:
        self.appointment_datetime = start
        self.appointment_end = start + timedelta(minutes=self.duration_minutes)


class GuestInfo(SQLModel):
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    notes: str | None = None


class BookingPublic(SQLModel):
    """What a token holder sees about their own booking."""

    id: int
    provider_id: int
    session_type_id: int
    appointment_datetime: datetime
    duration_minutes: int
    modality: Modality
    amount: Decimal
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    notes: str | None = None
    payment_status: PaymentStatus
    booking_status: BookingStatus
    confirmation_token: str
    created_at: datetime
    updated_at: datetime


class AppointmentPublic(SQLModel):
    """Provider-side view: no confirmation token."""

    id: int
    session_type_id: int
    appointment_datetime: datetime
    duration_minutes: int
    modality: Modality
    amount: Decimal
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    notes: str | None = None
    payment_status: PaymentStatus
    booking_status: BookingStatus
    cancellation_reason: str | None = None
    provider_notes: str | None = None


class BookingSummary(SQLModel):
    """Listing entry for an email lookup. Carries no token and no guest details."""

    id: int
    provider_id: int
    session_type_id: int
    appointment_datetime: datetime
    duration_minutes: int
    modality: Modality
    booking_status: BookingStatus
