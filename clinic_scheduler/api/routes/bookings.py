"""Guest self-service: no account, the confirmation token is the credential."""

import logging

from fastapi import APIRouter, Depends, status

from clinic_scheduler.api.deps import get_scheduling_service
from clinic_scheduler.api.schemas.booking import (
    CancellationResponse,
    CancelRequest,
    CreateBookingRequest,
    RescheduleRequest,
)
from clinic_scheduler.models.booking import Booking, BookingPublic, BookingSummary, GuestInfo
from clinic_scheduler.services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


def to_public(booking: Booking) -> BookingPublic:
    return BookingPublic.model_validate(booking, from_attributes=True)


@router.post("", response_model=BookingPublic, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: CreateBookingRequest,
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> BookingPublic:
    guest = GuestInfo(
        first_name=body.first_name,
        last_name=body.last_name,
        email=str(body.email),
        phone=body.phone,
        notes=body.notes,
    )
    booking = await scheduling.create_booking(
        body.provider_id, body.session_type_id, body.appointment_datetime, guest
    )
    return to_public(booking)


@router.get("/by-email/{email}", response_model=list[BookingSummary])
async def list_bookings_by_email(
    email: str,
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> list[BookingSummary]:
    """Times and statuses only. Managing a booking still needs its token from the confirmation email."""
    return [BookingSummary.model_validate(b, from_attributes=True) for b in await scheduling.list_guest_bookings(email)]


@router.get("/{token}", response_model=BookingPublic)
async def get_booking(
    token: str,
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> BookingPublic:
    return to_public(await scheduling.get_booking(token))


@router.put("/{token}/cancel", response_model=CancellationResponse)
async def cancel_booking(
    token: str,
    body: CancelRequest | None = None,
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> CancellationResponse:
    result = await scheduling.cancel_booking(token, body.reason if body else None)
    return CancellationResponse(
        booking=to_public(result.booking),
        refund_eligible=result.refund_eligible,
        refund_amount=result.refund_amount,
    )


@router.put("/{token}/reschedule", response_model=BookingPublic)
async def reschedule_booking(
    token: str,
    body: RescheduleRequest,
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> BookingPublic:
    booking = await scheduling.reschedule_booking(token, body.new_appointment_datetime)
    return to_public(booking)
