"""Provider-facing routes, scoped to the authenticated provider's own schedule."""

from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.api.deps import get_current_provider, get_current_provider_id, get_scheduling_service
from clinic_scheduler.api.schemas.booking import (
    CancelRequest,
    DashboardResponse,
    DashboardStatsResponse,
    NotesRequest,
    ProviderCancellationResponse,
    UpdateStatusRequest,
)
from clinic_scheduler.core.db import get_session
from clinic_scheduler.models.availability import (
    AvailabilityRuleCreate,
    AvailabilityRulePublic,
    TimeOffCreate,
    TimeOffPublic,
)
from clinic_scheduler.models.booking import AppointmentPublic, Booking, BookingStatus
from clinic_scheduler.models.provider import Provider, ProviderPublic, ProviderUpdate
from clinic_scheduler.services.provider_service import provider_to_public, update_provider_profile
from clinic_scheduler.services.scheduling_service import SchedulingService

router = APIRouter(prefix="/me", tags=["provider"])


def to_appointment(booking: Booking) -> AppointmentPublic:
    return AppointmentPublic.model_validate(booking, from_attributes=True)


@router.get("/profile", response_model=ProviderPublic)
async def get_profile(current_provider: Provider = Depends(get_current_provider)) -> ProviderPublic:
    return provider_to_public(current_provider)


@router.put("/profile", response_model=ProviderPublic)
async def update_profile(
    body: ProviderUpdate,
    current_provider: Provider = Depends(get_current_provider),
    session: AsyncSession = Depends(get_session),
) -> ProviderPublic:
    return provider_to_public(await update_provider_profile(session, current_provider, body))


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    current_provider: Provider = Depends(get_current_provider),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> DashboardResponse:
    """Today's and the coming week's appointments with monthly counts."""
    data = await scheduling.dashboard(current_provider.id)
    return DashboardResponse(
        provider=provider_to_public(current_provider),
        today_appointments=[to_appointment(b) for b in data.today],
        upcoming_appointments=[to_appointment(b) for b in data.upcoming],
        stats=DashboardStatsResponse(**asdict(data.stats)),
    )


@router.get("/availability", response_model=list[AvailabilityRulePublic])
async def list_availability(
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> list[AvailabilityRulePublic]:
    rules = await scheduling.list_availability(provider_id)
    return [AvailabilityRulePublic.model_validate(r, from_attributes=True) for r in rules]


@router.post("/availability", response_model=AvailabilityRulePublic, status_code=status.HTTP_201_CREATED)
async def add_availability(
    body: AvailabilityRuleCreate,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> AvailabilityRulePublic:
    rule = await scheduling.add_availability_rule(provider_id, body)
    return AvailabilityRulePublic.model_validate(rule, from_attributes=True)


@router.put("/availability/{rule_id}", response_model=AvailabilityRulePublic)
async def update_availability(
    rule_id: int,
    body: AvailabilityRuleCreate,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> AvailabilityRulePublic:
    rule = await scheduling.update_availability_rule(provider_id, rule_id, body)
    return AvailabilityRulePublic.model_validate(rule, from_attributes=True)


@router.delete("/availability/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_availability(
    rule_id: int,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> None:
    await scheduling.delete_availability_rule(provider_id, rule_id)


@router.get("/time-off", response_model=list[TimeOffPublic])
async def list_time_off(
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> list[TimeOffPublic]:
    entries = await scheduling.list_time_off(provider_id)
    return [TimeOffPublic.model_validate(t, from_attributes=True) for t in entries]


@router.post("/time-off", response_model=TimeOffPublic, status_code=status.HTTP_201_CREATED)
async def add_time_off(
    body: TimeOffCreate,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> TimeOffPublic:
    time_off = await scheduling.add_time_off(provider_id, body)
    return TimeOffPublic.model_validate(time_off, from_attributes=True)


@router.delete("/time-off/{time_off_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_time_off(
    time_off_id: int,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> None:
    await scheduling.delete_time_off(provider_id, time_off_id)


@router.get("/appointments", response_model=list[AppointmentPublic])
async def list_appointments(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    status_filter: BookingStatus | None = Query(None, alias="status"),
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> list[AppointmentPublic]:
    bookings = await scheduling.list_appointments(provider_id, start_date, end_date, status_filter)
    return [to_appointment(b) for b in bookings]


@router.get("/appointments/{booking_id}", response_model=AppointmentPublic)
async def get_appointment(
    booking_id: int,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> AppointmentPublic:
    return to_appointment(await scheduling.get_appointment(provider_id, booking_id))


@router.patch("/appointments/{booking_id}/status", response_model=AppointmentPublic)
async def update_appointment_status(
    booking_id: int,
    body: UpdateStatusRequest,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> AppointmentPublic:
    booking = await scheduling.change_status(provider_id, booking_id, BookingStatus(body.status))
    return to_appointment(booking)


@router.put("/appointments/{booking_id}/cancel", response_model=ProviderCancellationResponse)
async def cancel_appointment(
    booking_id: int,
    body: CancelRequest | None = None,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> ProviderCancellationResponse:
    result = await scheduling.cancel_appointment(provider_id, booking_id, body.reason if body else None)
    return ProviderCancellationResponse(
        appointment=to_appointment(result.booking),
        refund_eligible=result.refund_eligible,
        refund_amount=result.refund_amount,
    )


@router.post("/appointments/{booking_id}/notes", response_model=AppointmentPublic)
async def add_appointment_notes(
    booking_id: int,
    body: NotesRequest,
    provider_id: int = Depends(get_current_provider_id),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> AppointmentPublic:
    return to_appointment(await scheduling.add_appointment_notes(provider_id, booking_id, body.notes))
