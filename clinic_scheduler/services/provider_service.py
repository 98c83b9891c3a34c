import logging
from datetime import time
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.security import create_access_token, hash_password, verify_password
from clinic_scheduler.models.availability import AvailabilityRule, DayOfWeek
from clinic_scheduler.models.provider import Provider, ProviderCreate, ProviderPublic, ProviderUpdate
from clinic_scheduler.models.session_type import Modality, SessionType

logger = logging.getLogger(__name__)


async def get_provider_by_email(session: AsyncSession, email: str) -> Provider | None:
    result = await session.execute(select(Provider).where(func.lower(Provider.email) == email.lower()))
    return result.scalar_one_or_none()


async def create_provider(session: AsyncSession, data: ProviderCreate) -> Provider:
    provider = Provider(
        email=data.email,
        full_name=data.full_name,
        specialization=data.specialization,
        bio=data.bio,
        hashed_password=hash_password(data.password),
    )
    session.add(provider)
    await session.flush()
    await session.refresh(provider)
    return provider


def provider_to_public(provider: Provider) -> ProviderPublic:
    return ProviderPublic(
        id=provider.id,
        email=provider.email,
        full_name=provider.full_name,
        specialization=provider.specialization,
        bio=provider.bio,
    )


async def login_provider(
    session: AsyncSession, email: str, password: str
) -> tuple[Provider, str, int] | None:
    provider = await get_provider_by_email(session, email)
    if not provider or not provider.is_active or not provider.hashed_password:
        return None
    if not verify_password(password, provider.hashed_password):
        return None
    access = create_access_token(provider.id)
    return provider, access, settings.access_token_expire_minutes * 60


async def list_active_providers(session: AsyncSession) -> list[Provider]:
    result = await session.execute(
        select(Provider).where(Provider.is_active == True).order_by(Provider.full_name)  # noqa: E712
    )
    return list(result.scalars().all())


async def get_active_provider(session: AsyncSession, provider_id: int) -> Provider | None:
    provider = await session.get(Provider, provider_id)
    if provider is None or not provider.is_active:
        return None
    return provider


async def update_provider_profile(session: AsyncSession, provider: Provider, data: ProviderUpdate) -> Provider:
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(provider, field, value)
    session.add(provider)
    await session.flush()
    await session.refresh(provider)
    logger.info("Profile updated for provider %s: %s", provider.id, ", ".join(sorted(changes)) or "no changes")
    return provider


async def list_active_session_types(session: AsyncSession, modality: Modality | None = None) -> list[SessionType]:
    q = select(SessionType).where(SessionType.is_active == True)  # noqa: E712
    if modality is not None:
        q = q.where(SessionType.modality == modality)
    result = await session.execute(q.order_by(SessionType.id))
    return list(result.scalars().all())


DEMO_SESSION_TYPES = [
    ("Initial Consultation", "First session to discuss your needs and goals", 60, "150.00", Modality.ONLINE),
    ("Standard Session", "Regular therapy session", 50, "120.00", Modality.ONLINE),
    ("In-Person Session", "Face-to-face session at the clinic", 50, "140.00", Modality.IN_PERSON),
    ("Phone Consultation", "Session via phone call", 30, "80.00", Modality.PHONE),
]

DEMO_PROVIDERS = [
    ("sarah.thompson@clinic.example.com", "Sarah Thompson", "Anxiety, Depression, Trauma"),
    ("michael.chen@clinic.example.com", "Michael Chen", "Relationship Issues, Stress Management"),
]

WEEKDAYS = [DayOfWeek.MONDAY, DayOfWeek.TUESDAY, DayOfWeek.WEDNESDAY, DayOfWeek.THURSDAY, DayOfWeek.FRIDAY]


async def seed_demo_data(session: AsyncSession) -> None:
    """Insert demo session types, providers and weekday 09:00-17:00 availability once."""
    count = (await session.execute(select(func.count()).select_from(SessionType))).scalar_one()
    if count == 0:
        for name, description, minutes, price, modality in DEMO_SESSION_TYPES:
            session.add(
                SessionType(
                    name=name,
                    description=description,
                    duration_minutes=minutes,
                    price=Decimal(price),
                    modality=modality,
                )
            )
        logger.info("Created %d demo session types", len(DEMO_SESSION_TYPES))

    count = (await session.execute(select(func.count()).select_from(Provider))).scalar_one()
    if count > 0:
        await session.flush()
        return
    for email, full_name, specialization in DEMO_PROVIDERS:
        provider = await create_provider(
            session,
            ProviderCreate(
                email=email,
                password=settings.demo_provider_password,
                full_name=full_name,
                specialization=specialization,
            ),
        )
        for day in WEEKDAYS:
            session.add(
                AvailabilityRule(
                    provider_id=provider.id,
                    day_of_week=day,
                    start_time=time(9, 0),
                    end_time=time(17, 0),
                )
            )
    await session.flush()
    logger.info("Created %d demo providers (password from DEMO_PROVIDER_PASSWORD)", len(DEMO_PROVIDERS))
