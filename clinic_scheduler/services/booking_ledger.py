"""Authoritative booking store: reservation, status lifecycle and confirmation tokens.

Every mutation runs as one transaction inside the provider's lock scope, so a
booking is either fully written or not at all, and the commit is visible before the
next caller for that provider is let in.
"""

import logging
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.core.config import facility_now, settings
from clinic_scheduler.core.exceptions import InvalidState, NotFound, SlotUnavailable
from clinic_scheduler.core.locks import ProviderLocks
from clinic_scheduler.models.booking import Booking, BookingStatus, GuestInfo, PaymentStatus
from clinic_scheduler.models.provider import Provider
from clinic_scheduler.models.session_type import SessionType
from clinic_scheduler.services.availability_service import covers
from clinic_scheduler.services.slot_service import get_booked_intervals

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

BOOKING_NOT_FOUND = "Booking not found"
HOLD_EXPIRED_REASON = "Payment not completed in time"
PROVIDER_OUTCOME_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.NO_SHOW})


def new_confirmation_token() -> str:
    return secrets.token_urlsafe(32)


def to_facility_naive(dt: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Convert aware datetimes to naive facility-local time; naive ones are taken as local."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(tz or ZoneInfo(settings.facility_timezone)).replace(tzinfo=None)
    return dt


@dataclass
class CancellationResult:
    booking: Booking
    refund_amount: Decimal

    @property
    def refund_eligible(self) -> bool:
        return self.refund_amount > 0


@dataclass
class PaymentResult:
    booking: Booking
    # set when a late success could not be honoured and the money goes back
    refund_amount: Decimal = Decimal("0")


class BookingLedger:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        locks: ProviderLocks | None = None,
        clock: Clock = facility_now,
        cancellation_notice_hours: int | None = None,
        token_factory: Callable[[], str] = new_confirmation_token,
        facility_timezone: str | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.locks = locks or ProviderLocks(settings.provider_lock_timeout_seconds)
        self.clock = clock
        notice = settings.cancellation_notice_hours if cancellation_notice_hours is None else cancellation_notice_hours
        self.cancellation_notice = timedelta(hours=notice)
        self.token_factory = token_factory
        self.tz = ZoneInfo(facility_timezone or settings.facility_timezone)

    # ------------------------------------------------------------------
    # Transaction scopes
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def provider_scope(self, provider_id: int) -> AsyncIterator[AsyncSession]:
        """Lock the provider's schedule and open a transaction committed before release.

        Raises Busy when the lock is contended past the timeout and NotFound for an
        unknown provider. The provider row is also locked FOR UPDATE (no-op on SQLite).
        """
        async with self.locks.hold(provider_id):
            async with self.session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        select(Provider.id).where(Provider.id == provider_id).with_for_update()
                    )
                    if result.scalar_one_or_none() is None:
                        raise NotFound("Provider not found")
                    yield session

    @asynccontextmanager
    async def _booking_scope(self, *criteria) -> AsyncIterator[tuple[AsyncSession, Booking]]:
        booking = await self._find_one(*criteria)
        if booking is None:
            raise NotFound(BOOKING_NOT_FOUND)
        async with self.provider_scope(booking.provider_id) as session:
            result = await session.execute(select(Booking).where(*criteria))
            locked = result.scalar_one_or_none()
            if locked is None:
                raise NotFound(BOOKING_NOT_FOUND)
            yield session, locked

    async def _find_one(self, *criteria) -> Booking | None:
        async with self.session_maker() as session:
            result = await session.execute(select(Booking).where(*criteria))
            return result.scalar_one_or_none()

    async def _validate_slot(
        self,
        session: AsyncSession,
        provider_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: int | None = None,
    ) -> None:
        if start <= self.clock():
            raise SlotUnavailable("Selected time slot is in the past")
        if not await covers(session, provider_id, start, end):
            raise SlotUnavailable("Selected time is outside the provider's availability")
        conflicts = await get_booked_intervals(
            session, provider_id, start, end, exclude_booking_id=exclude_booking_id
        )
        if conflicts:
            raise SlotUnavailable()

    # ------------------------------------------------------------------
    # Guest lifecycle
    # ------------------------------------------------------------------

    async def reserve(
        self,
        provider_id: int,
        session_type_id: int,
        start: datetime,
        guest: GuestInfo,
    ) -> Booking:
        start = to_facility_naive(start, self.tz)
        try:
            async with self.provider_scope(provider_id) as session:
                provider = await session.get(Provider, provider_id)
                if not provider.is_active:
                    raise NotFound("Provider not found")
                session_type = await session.get(SessionType, session_type_id)
                if session_type is None or not session_type.is_active:
                    raise NotFound("Session type not found")
                end = start + timedelta(minutes=session_type.duration_minutes)
                await self._validate_slot(session, provider_id, start, end)
                now = self.clock()
                booking = Booking(
                    provider_id=provider_id,
                    session_type_id=session_type.id,
                    appointment_datetime=start,
                    appointment_end=end,
                    duration_minutes=session_type.duration_minutes,
                    modality=session_type.modality,
                    amount=session_type.price,
                    first_name=guest.first_name,
                    last_name=guest.last_name,
                    email=guest.email,
                    phone=guest.phone,
                    notes=guest.notes,
                    payment_status=PaymentStatus.PENDING,
                    booking_status=BookingStatus.PENDING_PAYMENT,
                    confirmation_token=self.token_factory(),
                    created_at=now,
                    updated_at=now,
                )
                session.add(booking)
                await session.flush()
        except IntegrityError as e:
            # Exclusion constraint caught a concurrent writer from another process
            logger.warning("Reserve for provider %s at %s rejected by database: %s", provider_id, start, e)
            raise SlotUnavailable() from e
        logger.info(
            "Booking %s reserved for provider %s at %s (PENDING_PAYMENT)",
            booking.id,
            provider_id,
            start,
        )
        return booking

    async def confirm_payment(self, booking_id: int, succeeded: bool) -> Booking:
        return (await self.apply_payment_outcome(booking_id, succeeded)).booking

    async def apply_payment_outcome(self, booking_id: int, succeeded: bool) -> PaymentResult:
        """Apply a payment outcome. Replaying the outcome already applied is a no-op.

        A success that arrives after the hold expired re-confirms the booking when its
        slot is still free; otherwise the payment is marked REFUNDED and the result
        carries the amount to hand back.
        """
        refund = Decimal("0")
        try:
            async with self._booking_scope(Booking.id == booking_id) as (session, booking):
                if succeeded and booking.booking_status == BookingStatus.CONFIRMED:
                    return PaymentResult(booking)
                if (
                    not succeeded
                    and booking.booking_status == BookingStatus.CANCELLED
                    and booking.payment_status == PaymentStatus.FAILED
                ):
                    return PaymentResult(booking)
                if succeeded and self._is_expired_hold(booking):
                    if booking.payment_status == PaymentStatus.REFUNDED:
                        return PaymentResult(booking)
                    refund = await self._settle_late_payment(session, booking)
                elif booking.booking_status != BookingStatus.PENDING_PAYMENT:
                    raise InvalidState(
                        f"Cannot apply payment outcome to a booking in status {booking.booking_status.value}"
                    )
                elif succeeded:
                    booking.booking_status = BookingStatus.CONFIRMED
                    booking.payment_status = PaymentStatus.COMPLETED
                else:
                    booking.booking_status = BookingStatus.CANCELLED
                    booking.payment_status = PaymentStatus.FAILED
                    booking.cancellation_reason = "Payment failed"
                booking.updated_at = self.clock()
                session.add(booking)
                await session.flush()
        except IntegrityError as e:
            raise SlotUnavailable() from e
        logger.info(
            "Booking %s payment %s -> %s",
            booking_id,
            "succeeded" if succeeded else "failed",
            booking.booking_status.value,
        )
        return PaymentResult(booking, refund)

    @staticmethod
    def _is_expired_hold(booking: Booking) -> bool:
        return booking.booking_status == BookingStatus.CANCELLED and booking.cancellation_reason == HOLD_EXPIRED_REASON

    async def _settle_late_payment(self, session: AsyncSession, booking: Booking) -> Decimal:
        try:
            await self._validate_slot(
                session,
                booking.provider_id,
                booking.appointment_datetime,
                booking.appointment_end,
                exclude_booking_id=booking.id,
            )
        except SlotUnavailable as e:
            booking.payment_status = PaymentStatus.REFUNDED
            logger.warning("Late payment for expired hold %s cannot be honoured (%s), refunding", booking.id, e.detail)
            return booking.amount
        booking.booking_status = BookingStatus.CONFIRMED
        booking.payment_status = PaymentStatus.COMPLETED
        booking.cancellation_reason = None
        logger.info("Late payment re-confirmed expired hold %s", booking.id)
        return Decimal("0")

    def time_until(self, start: datetime, now: datetime) -> timedelta:
        """Elapsed real time between two facility-local wall-clock values, DST included."""
        return start.replace(tzinfo=self.tz).astimezone(timezone.utc) - now.replace(tzinfo=self.tz).astimezone(
            timezone.utc
        )

    async def lookup_by_token(self, token: str) -> Booking:
        booking = await self._find_one(Booking.confirmation_token == token) if token else None
        if booking is None:
            raise NotFound(BOOKING_NOT_FOUND)
        return booking

    async def cancel(self, token: str, reason: str | None = None) -> CancellationResult:
        if not token:
            raise NotFound(BOOKING_NOT_FOUND)
        return await self._cancel(Booking.confirmation_token == token, reason)

    async def cancel_by_provider(
        self, booking_id: int, provider_id: int, reason: str | None = None
    ) -> CancellationResult:
        return await self._cancel(
            Booking.id == booking_id, reason, provider_criteria=Booking.provider_id == provider_id
        )

    async def _cancel(self, criteria, reason: str | None, provider_criteria=None) -> CancellationResult:
        where = (criteria,) if provider_criteria is None else (criteria, provider_criteria)
        async with self._booking_scope(*where) as (session, booking):
            if booking.booking_status.is_terminal:
                raise InvalidState(f"Booking is already {booking.booking_status.value}")
            now = self.clock()
            refund = Decimal("0")
            if (
                booking.payment_status == PaymentStatus.COMPLETED
                and self.time_until(booking.appointment_datetime, now) >= self.cancellation_notice
            ):
                refund = booking.amount
                booking.payment_status = PaymentStatus.REFUNDED
            booking.booking_status = BookingStatus.CANCELLED
            booking.cancellation_reason = reason
            booking.updated_at = now
            session.add(booking)
        logger.info("Booking %s cancelled, refund %s", booking.id, refund)
        return CancellationResult(booking=booking, refund_amount=refund)

    async def reschedule(self, token: str, new_start: datetime) -> Booking:
        if not token:
            raise NotFound(BOOKING_NOT_FOUND)
        new_start = to_facility_naive(new_start, self.tz)
        try:
            async with self._booking_scope(Booking.confirmation_token == token) as (session, booking):
                if booking.booking_status != BookingStatus.CONFIRMED:
                    raise InvalidState("Only confirmed bookings can be rescheduled")
                new_end = new_start + timedelta(minutes=booking.duration_minutes)
                await self._validate_slot(
                    session, booking.provider_id, new_start, new_end, exclude_booking_id=booking.id
                )
                previous = booking.appointment_datetime
                booking.move_to(new_start)
                booking.reminder_sent = False
                booking.updated_at = self.clock()
                session.add(booking)
                await session.flush()
        except IntegrityError as e:
            raise SlotUnavailable() from e
        logger.info("Booking %s rescheduled from %s to %s", booking.id, previous, new_start)
        return booking

    async def list_by_email(self, email: str) -> list[Booking]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Booking)
                .where(func.lower(Booking.email) == email.strip().lower())
                .order_by(Booking.appointment_datetime.desc())
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Provider side
    # ------------------------------------------------------------------

    async def get_for_provider(self, booking_id: int, provider_id: int) -> Booking:
        booking = await self._find_one(Booking.id == booking_id, Booking.provider_id == provider_id)
        if booking is None:
            raise NotFound(BOOKING_NOT_FOUND)
        return booking

    async def set_status(self, booking_id: int, status: BookingStatus, provider_id: int) -> Booking:
        if status not in PROVIDER_OUTCOME_STATUSES:
            raise InvalidState("Providers may only mark appointments COMPLETED or NO_SHOW")
        async with self._booking_scope(
            Booking.id == booking_id, Booking.provider_id == provider_id
        ) as (session, booking):
            if booking.booking_status != BookingStatus.CONFIRMED:
                raise InvalidState(
                    f"Cannot mark a booking in status {booking.booking_status.value} as {status.value}"
                )
            now = self.clock()
            if booking.appointment_datetime > now:
                raise InvalidState("Appointment has not started yet")
            booking.booking_status = status
            booking.updated_at = now
            session.add(booking)
        logger.info("Booking %s marked %s by provider %s", booking_id, status.value, provider_id)
        return booking

    async def set_provider_notes(self, booking_id: int, provider_id: int, notes: str | None) -> Booking:
        """Replace the provider's private notes. Allowed in any status."""
        async with self._booking_scope(
            Booking.id == booking_id, Booking.provider_id == provider_id
        ) as (session, booking):
            booking.provider_notes = notes
            booking.updated_at = self.clock()
            session.add(booking)
        logger.info("Notes updated on booking %s by provider %s", booking_id, provider_id)
        return booking

    async def list_for_provider(
        self,
        provider_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        status: BookingStatus | None = None,
    ) -> list[Booking]:
        q = select(Booking).where(Booking.provider_id == provider_id)
        if start_date is not None:
            q = q.where(Booking.appointment_datetime >= datetime.combine(start_date, datetime.min.time()))
        if end_date is not None:
            end = datetime.combine(end_date + timedelta(days=1), datetime.min.time())
            q = q.where(Booking.appointment_datetime < end)
        if status is not None:
            q = q.where(Booking.booking_status == status)
        async with self.session_maker() as session:
            result = await session.execute(q.order_by(Booking.appointment_datetime))
            return list(result.scalars().all())

    async def list_confirmed_from(self, session: AsyncSession, provider_id: int, start: datetime) -> list[Booking]:
        result = await session.execute(
            select(Booking)
            .where(
                Booking.provider_id == provider_id,
                Booking.booking_status == BookingStatus.CONFIRMED,
                Booking.appointment_datetime >= start,
            )
            .order_by(Booking.appointment_datetime)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def expire_unpaid_holds(self, older_than: timedelta) -> list[Booking]:
        """Release PENDING_PAYMENT holds created before now - older_than."""
        cutoff = self.clock() - older_than
        async with self.session_maker() as session:
            result = await session.execute(
                select(Booking.id).where(
                    Booking.booking_status == BookingStatus.PENDING_PAYMENT,
                    Booking.created_at < cutoff,
                )
            )
            candidate_ids = list(result.scalars().all())
        released: list[Booking] = []
        for booking_id in candidate_ids:
            async with self._booking_scope(Booking.id == booking_id) as (session, booking):
                if booking.booking_status != BookingStatus.PENDING_PAYMENT or booking.created_at >= cutoff:
                    continue
                booking.booking_status = BookingStatus.CANCELLED
                booking.payment_status = PaymentStatus.FAILED
                booking.cancellation_reason = HOLD_EXPIRED_REASON
                booking.updated_at = self.clock()
                session.add(booking)
            released.append(booking)
            logger.info("Released unpaid hold on booking %s", booking_id)
        return released

    async def due_reminders(self, lead: timedelta) -> list[Booking]:
        now = self.clock()
        async with self.session_maker() as session:
            result = await session.execute(
                select(Booking)
                .where(
                    Booking.booking_status == BookingStatus.CONFIRMED,
                    Booking.reminder_sent == False,  # noqa: E712
                    Booking.appointment_datetime > now,
                    Booking.appointment_datetime <= now + lead,
                )
                .order_by(Booking.appointment_datetime)
            )
            return list(result.scalars().all())

    async def mark_reminded(self, booking_id: int) -> None:
        async with self._booking_scope(Booking.id == booking_id) as (session, booking):
            booking.reminder_sent = True
            session.add(booking)
