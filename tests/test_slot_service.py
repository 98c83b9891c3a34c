"""Tests for slot generation."""

from datetime import date, datetime, time, timedelta

import pytest

from clinic_scheduler.models import Booking, BookingStatus, Modality
from clinic_scheduler.services.availability_service import FreeRange
from clinic_scheduler.services.slot_service import (
    get_available_slots_for_date,
    get_booked_intervals,
    iter_slot_starts,
)

MONDAY = date(2030, 1, 7)
EARLIER = datetime(2030, 1, 1, 8, 0)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


def booked(start: datetime, minutes: int = 60) -> Booking:
    return Booking(appointment_datetime=start, appointment_end=start + timedelta(minutes=minutes), duration_minutes=minutes)


class TestIterSlotStarts:
    def test_back_to_back_slots(self):
        starts = list(iter_slot_starts([FreeRange(at(9), at(12))], 60, [], EARLIER))
        assert starts == [at(9), at(10), at(11)]

    def test_partial_tail_is_dropped(self):
        starts = list(iter_slot_starts([FreeRange(at(9), at(12))], 50, [], EARLIER))
        assert starts == [at(9), at(9, 50), at(10, 40)]

    def test_each_free_range_starts_its_own_grid(self):
        ranges = [FreeRange(at(9), at(10, 30)), FreeRange(at(11), at(12))]
        assert list(iter_slot_starts(ranges, 60, [], EARLIER)) == [at(9), at(11)]

    def test_past_and_current_starts_are_skipped(self):
        assert list(iter_slot_starts([FreeRange(at(9), at(12))], 60, [], at(9))) == [at(10), at(11)]

    def test_booked_overlap_removes_slot_without_shifting_grid(self):
        starts = list(iter_slot_starts([FreeRange(at(9), at(12))], 60, [booked(at(10, 30), 30)], EARLIER))
        assert starts == [at(9), at(11)]

    def test_adjacent_booking_does_not_block(self):
        starts = list(iter_slot_starts([FreeRange(at(9), at(12))], 60, [booked(at(10))], EARLIER))
        assert starts == [at(9), at(11)]

    def test_non_positive_duration_rejected(self):
        with pytest.raises(ValueError):
            list(iter_slot_starts([FreeRange(at(9), at(12))], 0, [], EARLIER))


class TestStoredSlots:
    async def test_monday_slots(self, session_maker, clinic):
        async with session_maker() as session:
            slots = await get_available_slots_for_date(session, clinic.provider_id, MONDAY, 60, EARLIER)
        assert slots == [at(9), at(10), at(11)]

    async def test_no_availability_no_slots(self, session_maker, clinic):
        async with session_maker() as session:
            assert await get_available_slots_for_date(session, clinic.other_provider_id, MONDAY, 60, EARLIER) == []

    async def test_cancelled_bookings_do_not_block(self, session_maker, clinic):
        async with session_maker() as session:
            for start, status in ((at(9), BookingStatus.CONFIRMED), (at(10), BookingStatus.CANCELLED)):
                session.add(
                    Booking(
                        provider_id=clinic.provider_id,
                        session_type_id=clinic.session_type_id,
                        appointment_datetime=start,
                        appointment_end=start + timedelta(minutes=60),
                        duration_minutes=60,
                        modality=Modality.ONLINE,
                        amount=clinic.price,
                        first_name="A",
                        last_name="B",
                        email=f"{status.value.lower()}@example.com",
                        booking_status=status,
                        confirmation_token=f"token-{status.value}",
                    )
                )
            await session.commit()
        async with session_maker() as session:
            slots = await get_available_slots_for_date(session, clinic.provider_id, MONDAY, 60, EARLIER)
            intervals = await get_booked_intervals(session, clinic.provider_id, at(0), at(23, 59))
        assert slots == [at(10), at(11)]
        assert [b.appointment_datetime for b in intervals] == [at(9)]
