from clinic_scheduler.models.provider import Provider, ProviderCreate, ProviderPublic, ProviderUpdate
from clinic_scheduler.models.session_type import Modality, SessionType, SessionTypePublic
from clinic_scheduler.models.booking import (
    AppointmentPublic,
    Booking,
    BookingPublic,
    BookingStatus,
    BookingSummary,
    GuestInfo,
    PaymentStatus,
)
from clinic_scheduler.models.availability import (
    AvailabilityRule,
    AvailabilityRuleCreate,
    AvailabilityRulePublic,
    DayOfWeek,
    TimeOff,
    TimeOffCreate,
    TimeOffPublic,
)

__all__ = [
    "Provider",
    "ProviderCreate",
    "ProviderPublic",
    "ProviderUpdate",
    "Modality",
    "SessionType",
    "SessionTypePublic",
    "AppointmentPublic",
    "Booking",
    "BookingPublic",
    "BookingStatus",
    "BookingSummary",
    "GuestInfo",
    "PaymentStatus",
    "AvailabilityRule",
    "AvailabilityRuleCreate",
    "AvailabilityRulePublic",
    "DayOfWeek",
    "TimeOff",
    "TimeOffCreate",
    "TimeOffPublic",
]
