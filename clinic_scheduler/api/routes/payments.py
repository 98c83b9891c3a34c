import logging

from fastapi import APIRouter, Depends

from clinic_scheduler.api.deps import get_scheduling_service, verify_payment_secret
from clinic_scheduler.api.schemas.booking import PaymentOutcomeRequest
from clinic_scheduler.models.booking import AppointmentPublic
from clinic_scheduler.services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"], dependencies=[Depends(verify_payment_secret)])


@router.post("/outcome", response_model=AppointmentPublic)
async def payment_outcome(
    body: PaymentOutcomeRequest,
    scheduling: SchedulingService = Depends(get_scheduling_service),
) -> AppointmentPublic:
    """Callback from the payment collaborator; safe to deliver more than once."""
    logger.info("Payment outcome for booking %s: succeeded=%s", body.booking_id, body.succeeded)
    booking = await scheduling.handle_payment_outcome(body.booking_id, body.succeeded)
    return AppointmentPublic.model_validate(booking, from_attributes=True)
