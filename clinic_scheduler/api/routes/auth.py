import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.api.deps import get_current_provider
from clinic_scheduler.api.schemas.auth import AccessToken, LoginRequest
from clinic_scheduler.core.db import get_session
from clinic_scheduler.models.provider import Provider, ProviderPublic
from clinic_scheduler.services.provider_service import login_provider, provider_to_public

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=AccessToken)
async def login(
    body: LoginRequest,
    session: AsyncSession = Depends(get_session),
) -> AccessToken:
    result = await login_provider(session, body.email, body.password)
    if not result:
        logger.info("Failed provider login for %s", body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    _, access, expires_in = result
    return AccessToken(access_token=access, expires_in=expires_in)


@router.get("/me", response_model=ProviderPublic)
async def me(current_provider: Provider = Depends(get_current_provider)) -> ProviderPublic:
    return provider_to_public(current_provider)
