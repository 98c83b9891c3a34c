from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from clinic_scheduler.models.booking import AppointmentPublic, BookingPublic
from clinic_scheduler.models.provider import ProviderPublic


class SlotInfo(BaseModel):
    start: datetime
    end: datetime


class AvailableSlotsResponse(BaseModel):
    provider_id: int
    date: str  # YYYY-MM-DD
    session_type_id: int
    duration_minutes: int
    slots: list[SlotInfo]


class CreateBookingRequest(BaseModel):
    provider_id: int
    session_type_id: int
    appointment_datetime: datetime
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=40)
    notes: str | None = Field(default=None, max_length=2000)


class RescheduleRequest(BaseModel):
    new_appointment_datetime: datetime


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class CancellationResponse(BaseModel):
    booking: BookingPublic
    cancelled: bool = True
    refund_eligible: bool
    refund_amount: Decimal


class ProviderCancellationResponse(BaseModel):
    appointment: AppointmentPublic
    cancelled: bool = True
    refund_eligible: bool
    refund_amount: Decimal


class UpdateStatusRequest(BaseModel):
    status: Literal["COMPLETED", "NO_SHOW"]


class PaymentOutcomeRequest(BaseModel):
    booking_id: int
    succeeded: bool


class NotesRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class DashboardStatsResponse(BaseModel):
    total_bookings: int
    upcoming_confirmed: int
    completed_this_week: int
    completed_this_month: int
    cancelled_this_month: int
    no_shows_this_month: int


class DashboardResponse(BaseModel):
    provider: ProviderPublic
    today_appointments: list[AppointmentPublic]
    upcoming_appointments: list[AppointmentPublic]
    stats: DashboardStatsResponse
