from collections.abc import Iterator, Sequence
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.models.booking import Booking, BookingStatus
from clinic_scheduler.services.availability_service import FreeRange, day_bounds, occurs_on


def iter_slot_starts(
    ranges: Sequence[FreeRange],
    duration_minutes: int,
    booked: Sequence[Booking],
    now: datetime,
) -> Iterator[datetime]:
    """Back-to-back slot starts inside each free range, skipping past and booked ones."""
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    delta = timedelta(minutes=duration_minutes)
    for free in ranges:
        current = free.start
        while current + delta <= free.end:
            end = current + delta
            if current > now and not any(b.overlaps(current, end) for b in booked):
                yield current
            current = end


async def get_booked_intervals(
    session: AsyncSession,
    provider_id: int,
    start_inclusive: datetime,
    end_exclusive: datetime,
    exclude_booking_id: int | None = None,
) -> list[Booking]:
    """Non-cancelled bookings of a provider that intersect [start, end)."""
    q = select(Booking).where(
        Booking.provider_id == provider_id,
        Booking.booking_status != BookingStatus.CANCELLED,
        Booking.appointment_datetime < end_exclusive,
        Booking.appointment_end > start_inclusive,
    )
    if exclude_booking_id is not None:
        q = q.where(Booking.id != exclude_booking_id)
    result = await session.execute(q.order_by(Booking.appointment_datetime))
    return list(result.scalars().all())


async def get_available_slots_for_date(
    session: AsyncSession,
    provider_id: int,
    d: date,
    duration_minutes: int,
    now: datetime,
) -> list[datetime]:
    """Bookable start times for a provider on a date, ascending.

    Recomputed on every call and taken without locks, so the result is advisory:
    reservation re-validates the chosen slot.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    ranges = await occurs_on(session, provider_id, d)
    if not ranges:
        return []
    day_start, day_end = day_bounds(d)
    booked = await get_booked_intervals(session, provider_id, day_start, day_end)
    return list(iter_slot_starts(ranges, duration_minutes, booked, now))
