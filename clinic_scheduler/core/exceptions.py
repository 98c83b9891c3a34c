"""Expected, caller-recoverable outcomes of scheduling operations.

None of these indicate a defect; the API layer maps each to an HTTP status.
"""


class SchedulingError(Exception):
    """Base class for scheduling domain errors."""

    status_code = 400
    default_detail = "Scheduling request could not be completed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class SlotUnavailable(SchedulingError):
    """Slot lost to a concurrent booking, already booked, or outside availability.

    Callers should re-fetch candidate slots and retry.
    """

    status_code = 409
    default_detail = "Selected time slot is not available"


class InvalidState(SchedulingError):
    """Operation not valid for the booking's current status."""

    status_code = 409
    default_detail = "Operation not allowed for the current booking status"


class InvalidRule(SchedulingError):
    """Availability rule or time off rejected on insert."""

    status_code = 422
    default_detail = "Invalid availability definition"


class NotFound(SchedulingError):
    # Deliberately generic: never reveal whether a token existed
    status_code = 404
    default_detail = "Not found"


class Busy(SchedulingError):
    """Provider schedule is locked by another request; retry with backoff."""

    status_code = 503
    default_detail = "Schedule is busy, please retry"
