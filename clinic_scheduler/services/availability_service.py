"""Provider availability: weekly rules minus time off, resolved per calendar date."""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.models.availability import AvailabilityRule, DayOfWeek, TimeOff

logger = logging.getLogger(__name__)

# A one-off rule without an end date covers exactly one week from effective_from
ONE_OFF_WINDOW = timedelta(days=6)


class FreeRange(NamedTuple):
    start: datetime
    end: datetime


def rule_applies(rule: AvailabilityRule, d: date) -> bool:
    if rule.day_of_week != DayOfWeek.of(d):
        return False
    if not rule.is_recurring:
        if rule.effective_from is None:
            return False
        until = rule.effective_until or rule.effective_from + ONE_OFF_WINDOW
        return rule.effective_from <= d <= until
    if rule.effective_from is not None and d < rule.effective_from:
        return False
    if rule.effective_until is not None and d > rule.effective_until:
        return False
    return True


def merge_ranges(ranges: Iterable[tuple[datetime, datetime]]) -> list[FreeRange]:
    """Union of intervals; touching intervals merge."""
    merged: list[FreeRange] = []
    for start, end in sorted(ranges):
        if start >= end:
            continue
        if merged and start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = FreeRange(last.start, max(last.end, end))
        else:
            merged.append(FreeRange(start, end))
    return merged


def subtract_ranges(
    ranges: Sequence[FreeRange], blocked: Sequence[FreeRange]
) -> list[FreeRange]:
    """Remove every blocked interval from ranges. Both inputs must be merged/sorted."""
    out: list[FreeRange] = []
    for free in ranges:
        cursor = free.start
        for block in blocked:
            if block.end <= cursor or block.start >= free.end:
                continue
            if block.start > cursor:
                out.append(FreeRange(cursor, block.start))
            cursor = max(cursor, block.end)
            if cursor >= free.end:
                break
        if cursor < free.end:
            out.append(FreeRange(cursor, free.end))
    return out


def free_ranges_for_date(
    rules: Iterable[AvailabilityRule], time_off: Iterable[TimeOff], d: date
) -> list[FreeRange]:
    """Ordered free ranges of one date from already-loaded rules and time off."""
    day_start = datetime.combine(d, time.min)
    day_end = day_start + timedelta(days=1)
    working = merge_ranges(
        (datetime.combine(d, r.start_time), datetime.combine(d, r.end_time))
        for r in rules
        if rule_applies(r, d)
    )
    if not working:
        return []
    blocked = merge_ranges(
        (max(t.start_datetime, day_start), min(t.end_datetime, day_end))
        for t in time_off
        if t.start_datetime < day_end and t.end_datetime > day_start
    )
    return subtract_ranges(working, blocked)


def day_bounds(d: date) -> tuple[datetime, datetime]:
    start = datetime.combine(d, time.min)
    return start, start + timedelta(days=1)


async def list_rules(
    session: AsyncSession, provider_id: int, day_of_week: DayOfWeek | None = None
) -> list[AvailabilityRule]:
    q = select(AvailabilityRule).where(AvailabilityRule.provider_id == provider_id)
    if day_of_week is not None:
        q = q.where(AvailabilityRule.day_of_week == day_of_week)
    q = q.order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
    result = await session.execute(q)
    return list(result.scalars().all())


async def list_time_off(
    session: AsyncSession,
    provider_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[TimeOff]:
    """Time off of a provider, optionally only entries intersecting [start, end)."""
    q = select(TimeOff).where(TimeOff.provider_id == provider_id)
    if end is not None:
        q = q.where(TimeOff.start_datetime < end)
    if start is not None:
        q = q.where(TimeOff.end_datetime > start)
    result = await session.execute(q.order_by(TimeOff.start_datetime))
    return list(result.scalars().all())


async def occurs_on(session: AsyncSession, provider_id: int, d: date) -> list[FreeRange]:
    """Free ranges of a provider on a date: applicable rules minus intersecting time off."""
    rules = await list_rules(session, provider_id, DayOfWeek.of(d))
    if not rules:
        return []
    day_start, day_end = day_bounds(d)
    time_off = await list_time_off(session, provider_id, day_start, day_end)
    return free_ranges_for_date(rules, time_off, d)


def interval_within(ranges: Iterable[FreeRange], start: datetime, end: datetime) -> bool:
    return any(r.start <= start and end <= r.end for r in ranges)


async def covers(session: AsyncSession, provider_id: int, start: datetime, end: datetime) -> bool:
    """True if [start, end) lies inside one free range of its date."""
    if end <= start or end > datetime.combine(start.date() + timedelta(days=1), time.min):
        return False
    ranges = await occurs_on(session, provider_id, start.date())
    return interval_within(ranges, start, end)
