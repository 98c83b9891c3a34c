from datetime import date, datetime, time
from enum import Enum

from sqlmodel import Field, SQLModel

from clinic_scheduler.core.config import facility_now


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def of(cls, d: date) -> "DayOfWeek":
        return list(cls)[d.weekday()]


class AvailabilityRule(SQLModel, table=True):
    """Weekly working window of a provider (local time of day)."""

    __tablename__ = "availability_rules"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    day_of_week: DayOfWeek = Field(index=True)
    start_time: time
    end_time: time
    is_recurring: bool = True
    effective_from: date | None = None
    effective_until: date | None = None


class AvailabilityRuleCreate(SQLModel):
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_recurring: bool = True
    effective_from: date | None = None
    effective_until: date | None = None


class AvailabilityRulePublic(SQLModel):
    id: int
    provider_id: int
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_recurring: bool
    effective_from: date | None = None
    effective_until: date | None = None


class TimeOff(SQLModel, table=True):
    __tablename__ = "time_off"
    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="providers.id", index=True)
    start_datetime: datetime = Field(index=True)
    end_datetime: datetime = Field(index=True)
    reason: str | None = None
    created_at: datetime = Field(default_factory=facility_now)


class TimeOffCreate(SQLModel):
    start_datetime: datetime
    end_datetime: datetime
    reason: str | None = None


class TimeOffPublic(SQLModel):
    id: int
    provider_id: int
    start_datetime: datetime
    end_datetime: datetime
    reason: str | None = None
    created_at: datetime
