"""Guest and provider use cases on top of the availability calendar and booking ledger.

Holds no state of its own. Side channels (notifications, refund requests) are
fire-and-forget: their failures are logged and never undo a committed booking change.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.exceptions import InvalidRule, InvalidState, NotFound
from clinic_scheduler.models.availability import (
    AvailabilityRule,
    AvailabilityRuleCreate,
    TimeOff,
    TimeOffCreate,
)
from clinic_scheduler.models.booking import Booking, BookingStatus, GuestInfo
from clinic_scheduler.models.provider import Provider
from clinic_scheduler.models.session_type import SessionType
from clinic_scheduler.services.availability_service import (
    ONE_OFF_WINDOW,
    free_ranges_for_date,
    interval_within,
    list_rules,
    list_time_off,
)
from clinic_scheduler.services.booking_ledger import BookingLedger, CancellationResult, to_facility_naive
from clinic_scheduler.services.notifications import LoggingNotificationSink, NotificationKind, NotificationSink
from clinic_scheduler.services.payments import LoggingPaymentGateway, PaymentGateway
from clinic_scheduler.services.slot_service import get_available_slots_for_date

logger = logging.getLogger(__name__)


def _windows_intersect(a: AvailabilityRule | AvailabilityRuleCreate, b: AvailabilityRule | AvailabilityRuleCreate) -> bool:
    def window(r) -> tuple[date, date]:
        start = r.effective_from or date.min
        if r.effective_until is not None:
            end = r.effective_until
        elif not r.is_recurring and r.effective_from is not None:
            end = r.effective_from + ONE_OFF_WINDOW
        else:
            end = date.max
        return start, end

    a_start, a_end = window(a)
    b_start, b_end = window(b)
    return a_start <= b_end and b_start <= a_end


def validate_rule(data: AvailabilityRuleCreate) -> None:
    if data.start_time >= data.end_time:
        raise InvalidRule("start_time must be before end_time")
    if data.effective_from and data.effective_until and data.effective_from > data.effective_until:
        raise InvalidRule("effective_from must not be after effective_until")
    if not data.is_recurring and data.effective_from is None:
        raise InvalidRule("A one-off availability rule needs effective_from")


@dataclass
class DashboardStats:
    total_bookings: int = 0
    upcoming_confirmed: int = 0
    completed_this_week: int = 0
    completed_this_month: int = 0
    cancelled_this_month: int = 0
    no_shows_this_month: int = 0


@dataclass
class ProviderDashboard:
    today: list[Booking] = field(default_factory=list)
    upcoming: list[Booking] = field(default_factory=list)
    stats: DashboardStats = field(default_factory=DashboardStats)


def build_dashboard(bookings: list[Booking], now: datetime, upcoming_days: int = 7) -> ProviderDashboard:
    """Group a provider's bookings for the portal front page.

    "This week" starts on Monday and "this month" on the 1st; both count by appointment
    time up to now.
    """
    today = now.date()
    tomorrow = today + timedelta(days=1)
    horizon = today + timedelta(days=upcoming_days)
    week_start = datetime.combine(today - timedelta(days=today.weekday()), datetime.min.time())
    month_start = datetime.combine(today.replace(day=1), datetime.min.time())

    dashboard = ProviderDashboard()
    stats = dashboard.stats
    stats.total_bookings = len(bookings)
    for b in bookings:
        d = b.appointment_datetime.date()
        if d == today:
            dashboard.today.append(b)
        elif tomorrow <= d < horizon:
            dashboard.upcoming.append(b)

        if b.booking_status == BookingStatus.CONFIRMED and b.appointment_datetime > now:
            stats.upcoming_confirmed += 1
        in_month = month_start <= b.appointment_datetime <= now
        if b.booking_status == BookingStatus.COMPLETED:
            stats.completed_this_month += in_month
            stats.completed_this_week += week_start <= b.appointment_datetime <= now
        elif b.booking_status == BookingStatus.CANCELLED:
            stats.cancelled_this_month += in_month
        elif b.booking_status == BookingStatus.NO_SHOW:
            stats.no_shows_this_month += in_month
    return dashboard


class SchedulingService:
    def __init__(
        self,
        ledger: BookingLedger,
        notifier: NotificationSink | None = None,
        payments: PaymentGateway | None = None,
        orphan_policy: str | None = None,
    ) -> None:
        self.ledger = ledger
        self.notifier = notifier or LoggingNotificationSink()
        self.payments = payments or LoggingPaymentGateway()
        self.orphan_policy = orphan_policy or settings.orphan_policy

    # ------------------------------------------------------------------
    # Guest side
    # ------------------------------------------------------------------

    async def available_slots(self, provider_id: int, d: date, session_type_id: int) -> list[datetime]:
        async with self.ledger.session_maker() as session:
            provider = await session.get(Provider, provider_id)
            if provider is None or not provider.is_active:
                raise NotFound("Provider not found")
            session_type = await self._active_session_type(session, session_type_id)
            return await get_available_slots_for_date(
                session, provider_id, d, session_type.duration_minutes, self.ledger.clock()
            )

    async def create_booking(
        self, provider_id: int, session_type_id: int, start: datetime, guest: GuestInfo
    ) -> Booking:
        booking = await self.ledger.reserve(provider_id, session_type_id, start, guest)
        await self._notify(NotificationKind.CREATED, booking)
        return booking

    async def get_booking(self, token: str) -> Booking:
        return await self.ledger.lookup_by_token(token)

    async def list_guest_bookings(self, email: str) -> list[Booking]:
        return await self.ledger.list_by_email(email)

    async def cancel_booking(self, token: str, reason: str | None = None) -> CancellationResult:
        result = await self.ledger.cancel(token, reason)
        await self._after_cancel(result)
        return result

    async def reschedule_booking(self, token: str, new_start: datetime) -> Booking:
        booking = await self.ledger.reschedule(token, new_start)
        await self._notify(NotificationKind.RESCHEDULED, booking)
        return booking

    async def handle_payment_outcome(self, booking_id: int, succeeded: bool) -> Booking:
        result = await self.ledger.apply_payment_outcome(booking_id, succeeded)
        if result.refund_amount > 0:
            await self._request_refund(result.booking, result.refund_amount)
        return result.booking

    # ------------------------------------------------------------------
    # Provider side
    # ------------------------------------------------------------------

    async def list_availability(self, provider_id: int) -> list[AvailabilityRule]:
        async with self.ledger.session_maker() as session:
            return await list_rules(session, provider_id)

    async def add_availability_rule(self, provider_id: int, data: AvailabilityRuleCreate) -> AvailabilityRule:
        validate_rule(data)
        async with self.ledger.provider_scope(provider_id) as session:
            await self._check_rule_overlap(session, provider_id, data)
            rule = AvailabilityRule(provider_id=provider_id, **data.model_dump())
            session.add(rule)
            await session.flush()
        logger.info(
            "Availability added for provider %s: %s %s-%s",
            provider_id,
            rule.day_of_week.value,
            rule.start_time,
            rule.end_time,
        )
        return rule

    async def update_availability_rule(
        self, provider_id: int, rule_id: int, data: AvailabilityRuleCreate
    ) -> AvailabilityRule:
        """Replace a rule in place; same checks as adding, plus the orphan policy."""
        validate_rule(data)
        async with self.ledger.provider_scope(provider_id) as session:
            rule = await session.get(AvailabilityRule, rule_id)
            if rule is None or rule.provider_id != provider_id:
                raise NotFound("Availability not found")
            await self._check_rule_overlap(session, provider_id, data, exclude_rule_id=rule_id)
            replacement = AvailabilityRule(provider_id=provider_id, **data.model_dump())
            orphaned = await self._newly_orphaned(
                session, provider_id, removed_rule_id=rule_id, added_rule=replacement
            )
            self._apply_orphan_policy(provider_id, orphaned, "updating availability")
            for name, value in data.model_dump().items():
                setattr(rule, name, value)
            session.add(rule)
            await session.flush()
        logger.info(
            "Availability %s updated for provider %s: %s %s-%s",
            rule_id,
            provider_id,
            rule.day_of_week.value,
            rule.start_time,
            rule.end_time,
        )
        return rule

    async def delete_availability_rule(self, provider_id: int, rule_id: int) -> None:
        async with self.ledger.provider_scope(provider_id) as session:
            rule = await session.get(AvailabilityRule, rule_id)
            if rule is None or rule.provider_id != provider_id:
                raise NotFound("Availability not found")
            orphaned = await self._newly_orphaned(session, provider_id, removed_rule_id=rule_id)
            self._apply_orphan_policy(provider_id, orphaned, "deleting availability")
            await session.delete(rule)
        logger.info("Availability %s deleted for provider %s", rule_id, provider_id)

    async def list_time_off(self, provider_id: int) -> list[TimeOff]:
        async with self.ledger.session_maker() as session:
            return await list_time_off(session, provider_id)

    async def add_time_off(self, provider_id: int, data: TimeOffCreate) -> TimeOff:
        start = to_facility_naive(data.start_datetime, self.ledger.tz)
        end = to_facility_naive(data.end_datetime, self.ledger.tz)
        if start >= end:
            raise InvalidRule("start_datetime must be before end_datetime")
        time_off = TimeOff(
            provider_id=provider_id,
            start_datetime=start,
            end_datetime=end,
            reason=data.reason,
            created_at=self.ledger.clock(),
        )
        async with self.ledger.provider_scope(provider_id) as session:
            orphaned = await self._newly_orphaned(session, provider_id, added_time_off=time_off)
            self._apply_orphan_policy(provider_id, orphaned, "adding time off")
            session.add(time_off)
            await session.flush()
        logger.info(
            "Time off added for provider %s: %s to %s",
            provider_id,
            time_off.start_datetime,
            time_off.end_datetime,
        )
        return time_off

    async def delete_time_off(self, provider_id: int, time_off_id: int) -> None:
        async with self.ledger.provider_scope(provider_id) as session:
            time_off = await session.get(TimeOff, time_off_id)
            if time_off is None or time_off.provider_id != provider_id:
                raise NotFound("Time off not found")
            await session.delete(time_off)
        logger.info("Time off %s deleted for provider %s", time_off_id, provider_id)

    async def list_appointments(
        self,
        provider_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        status: BookingStatus | None = None,
    ) -> list[Booking]:
        return await self.ledger.list_for_provider(provider_id, start_date, end_date, status)

    async def get_appointment(self, provider_id: int, booking_id: int) -> Booking:
        return await self.ledger.get_for_provider(booking_id, provider_id)

    async def change_status(self, provider_id: int, booking_id: int, status: BookingStatus) -> Booking:
        return await self.ledger.set_status(booking_id, status, provider_id)

    async def cancel_appointment(
        self, provider_id: int, booking_id: int, reason: str | None = None
    ) -> CancellationResult:
        result = await self.ledger.cancel_by_provider(booking_id, provider_id, reason)
        await self._after_cancel(result)
        return result

    async def add_appointment_notes(self, provider_id: int, booking_id: int, notes: str | None) -> Booking:
        return await self.ledger.set_provider_notes(booking_id, provider_id, notes)

    async def dashboard(self, provider_id: int) -> ProviderDashboard:
        bookings = await self.ledger.list_for_provider(provider_id)
        return build_dashboard(bookings, self.ledger.clock())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def release_unpaid_holds(self) -> int:
        released = await self.ledger.expire_unpaid_holds(
            timedelta(minutes=settings.pending_payment_hold_minutes)
        )
        return len(released)

    async def dispatch_reminders(self) -> int:
        sent = 0
        for booking in await self.ledger.due_reminders(timedelta(hours=settings.reminder_lead_hours)):
            await self._notify(NotificationKind.REMINDER_DUE, booking)
            await self.ledger.mark_reminded(booking.id)
            sent += 1
        return sent

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _active_session_type(self, session: AsyncSession, session_type_id: int) -> SessionType:
        session_type = await session.get(SessionType, session_type_id)
        if session_type is None or not session_type.is_active:
            raise NotFound("Session type not found")
        return session_type

    async def _check_rule_overlap(
        self,
        session: AsyncSession,
        provider_id: int,
        data: AvailabilityRuleCreate,
        exclude_rule_id: int | None = None,
    ) -> None:
        for existing in await list_rules(session, provider_id, data.day_of_week):
            if existing.id == exclude_rule_id:
                continue
            if (
                data.start_time < existing.end_time
                and existing.start_time < data.end_time
                and _windows_intersect(data, existing)
            ):
                raise InvalidRule(
                    f"Overlaps existing {existing.day_of_week.value} availability "
                    f"{existing.start_time:%H:%M}-{existing.end_time:%H:%M}"
                )

    async def _newly_orphaned(
        self,
        session: AsyncSession,
        provider_id: int,
        removed_rule_id: int | None = None,
        added_rule: AvailabilityRule | None = None,
        added_time_off: TimeOff | None = None,
    ) -> list[Booking]:
        """Future confirmed bookings inside availability now but outside it after the change."""
        now = self.ledger.clock()
        bookings = await self.ledger.list_confirmed_from(session, provider_id, now)
        if not bookings:
            return []
        rules = await list_rules(session, provider_id)
        time_off = await list_time_off(session, provider_id, start=now)
        rules_after = [r for r in rules if r.id != removed_rule_id]
        if added_rule is not None:
            rules_after.append(added_rule)
        time_off_after = time_off + [added_time_off] if added_time_off is not None else time_off
        orphaned = []
        for booking in bookings:
            d = booking.appointment_datetime.date()
            start, end = booking.appointment_datetime, booking.appointment_end
            inside_before = interval_within(free_ranges_for_date(rules, time_off, d), start, end)
            inside_after = interval_within(free_ranges_for_date(rules_after, time_off_after, d), start, end)
            if inside_before and not inside_after:
                orphaned.append(booking)
        return orphaned

    def _apply_orphan_policy(self, provider_id: int, orphaned: list[Booking], action: str) -> None:
        if not orphaned:
            return
        ids = ", ".join(str(b.id) for b in orphaned)
        if self.orphan_policy == "reject":
            raise InvalidState(f"{action.capitalize()} would leave confirmed bookings outside availability: {ids}")
        logger.warning(
            "Provider %s: %s leaves confirmed bookings outside availability (kept as booked): %s",
            provider_id,
            action,
            ids,
        )

    async def _after_cancel(self, result: CancellationResult) -> None:
        if result.refund_eligible:
            await self._request_refund(result.booking, result.refund_amount)
        await self._notify(NotificationKind.CANCELLED, result.booking)

    async def _request_refund(self, booking: Booking, amount: Decimal) -> None:
        try:
            await self.payments.request_refund(booking, amount)
        except Exception as e:
            logger.exception("Refund request failed for booking %s: %s", booking.id, e)

    async def _notify(self, kind: NotificationKind, booking: Booking) -> None:
        try:
            await self.notifier.notify(kind, booking)
        except Exception as e:
            logger.exception("Notification %s failed for booking %s: %s", kind.value, booking.id, e)
