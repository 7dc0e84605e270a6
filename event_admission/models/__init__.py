from event_admission.models.events import CLOSED_STATUSES, Event, EventStatus
from event_admission.models.registrations import ACTIVE_STATUSES, Registration, RegistrationStatus
from event_admission.models.waitlist import OPEN_WAITLIST_STATUSES, WaitlistEntry, WaitlistStatus

__all__ = [
    "ACTIVE_STATUSES",
    "CLOSED_STATUSES",
    "OPEN_WAITLIST_STATUSES",
    "Event",
    "EventStatus",
    "Registration",
    "RegistrationStatus",
    "WaitlistEntry",
    "WaitlistStatus",
]
