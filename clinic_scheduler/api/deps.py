import hmac

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.db import get_session
from clinic_scheduler.core.security import decode_access_token
from clinic_scheduler.models.provider import Provider
from clinic_scheduler.services.scheduling_service import SchedulingService

security = HTTPBearer(auto_error=False)


def get_scheduling_service(request: Request) -> SchedulingService:
    return request.app.state.scheduling


async def get_current_provider(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Provider:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    provider_id = decode_access_token(credentials.credentials)
    if not provider_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        pid = int(provider_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    provider = await session.get(Provider, pid)
    if not provider or not provider.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Provider not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return provider


async def get_current_provider_id(provider: Provider = Depends(get_current_provider)) -> int:
    return provider.id


def verify_payment_secret(x_payment_secret: str | None = Header(default=None, alias="X-Payment-Secret")) -> None:
    """Shared secret the payment collaborator sends with outcome callbacks."""
    expected = settings.payment_webhook_secret
    if not expected or not x_payment_secret or not hmac.compare_digest(x_payment_secret, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid payment callback secret")
