from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.api.deps import get_scheduling_service, get_session
from clinic_scheduler.api.schemas.booking import AvailableSlotsResponse, SlotInfo
from clinic_scheduler.models.provider import ProviderPublic
from clinic_scheduler.models.session_type import Modality, SessionType, SessionTypePublic
from clinic_scheduler.services.provider_service import (
    get_active_provider,
    list_active_providers,
    list_active_session_types,
    provider_to_public,
)
from clinic_scheduler.services.scheduling_service import SchedulingService

router = APIRouter(tags=["catalog"])


def _session_types_public(session_types: list[SessionType]) -> list[SessionTypePublic]:
    return [SessionTypePublic.model_validate(s, from_attributes=True) for s in session_types]


@router.get("/providers", response_model=list[ProviderPublic])
async def list_providers(session: AsyncSession = Depends(get_session)) -> list[ProviderPublic]:
    return [provider_to_public(p) for p in await list_active_providers(session)]


@router.get("/providers/{provider_id}", response_model=ProviderPublic)
async def get_provider(provider_id: int, session: AsyncSession = Depends(get_session)) -> ProviderPublic:
    provider = await get_active_provider(session, provider_id)
    if provider is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not found")
    return provider_to_public(provider)


@router.get("/session-types", response_model=list[SessionTypePublic])
async def list_session_types(
    modality: Modality | None = Query(None),
    session: AsyncSession = Depends(get_session),
) -> list[SessionTypePublic]:
    return _session_types_public(await list_active_session_types(session, modality))


@router.get("/session-types/modality/{modality}", response_model=list[SessionTypePublic])
async def list_session_types_by_modality(
    modality: Modality,
    session: AsyncSession = Depends(get_session),
) -> list[SessionTypePublic]:
    return _session_types_public(await list_active_session_types(session, modality))


@router.get("/providers/{provider_id}/slots", response_model=AvailableSlotsResponse)
async def available_slots(
    provider_id: int,
    date_param: date = Query(..., alias="date"),
    session_type_id: int = Query(...),
    session: AsyncSession = Depends(get_session),
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> AvailableSlotsResponse:
    """Bookable start times for a provider on a date. Advisory: booking re-checks the slot."""
    session_type = await session.get(SessionType, session_type_id)
    if session_type is None or not session_type.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session type not found")
    starts = await scheduling.available_slots(provider_id, date_param, session_type_id)
    duration = timedelta(minutes=session_type.duration_minutes)
    return AvailableSlotsResponse(
        provider_id=provider_id,
        date=date_param.isoformat(),
        session_type_id=session_type_id,
        duration_minutes=session_type.duration_minutes,
        slots=[SlotInfo(start=s, end=s + duration) for s in starts],
    )
