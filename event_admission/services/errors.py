"""
Error taxonomy for admission control.

``NotFoundError`` and ``BusinessRejection`` subclasses reach the caller as-is.
``ConflictRace`` is raised by the store when a concurrent writer broke the
uniqueness or capacity invariant; the admission controller retries once and
turns a second conflict into ``RegistrationContended``.
"""


class AdmissionError(Exception):
    status_code = 400
    detail = "Request could not be processed."

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class NotFoundError(AdmissionError):
    status_code = 404


class EventNotFound(NotFoundError):
    detail = "Event not found"


class RegistrationNotFound(NotFoundError):
    detail = "Registration not found"


class WaitlistEntryNotFound(NotFoundError):
    detail = "You are not on the waitlist for this event"


class BusinessRejection(AdmissionError):
    status_code = 409


class EventClosed(BusinessRejection):
    detail = "Event is not open for registration"


class AlreadyRegistered(BusinessRejection):
    detail = "You are already registered for this event"


class AlreadyWaitlisted(BusinessRejection):
    detail = "You are already on the waitlist for this event"


class AlreadyCancelled(BusinessRejection):
    detail = "Registration is already cancelled"


class InvalidAttendeeCount(BusinessRejection):
    status_code = 400
    detail = "Attendee count must be at least 1"


class InvalidTransition(BusinessRejection):
    detail = "Registration cannot move to the requested status"


class NotEventOwner(BusinessRejection):
    status_code = 403
    detail = "You can only manage registrations for your own events"


class RegistrationContended(BusinessRejection):
    detail = "Registration conflicted with concurrent requests, please try again."


class ConflictRace(AdmissionError):
    status_code = 409
    detail = "Registration conflicted with a concurrent request, please try again."
