import logging
from dataclasses import dataclass, field
from typing import Literal

from event_admission.core.clock import utcnow
from event_admission.models.events import Event
from event_admission.models.registrations import Registration
from event_admission.models.waitlist import WaitlistEntry, WaitlistStatus
from event_admission.services.capacity import CapacityTracker
from event_admission.services.errors import (
    AlreadyRegistered,
    ConflictRace,
    EventClosed,
    InvalidAttendeeCount,
    RegistrationContended,
)
from event_admission.services.notifications import NotificationDispatcher
from event_admission.services.registration_store import RegistrationStore
from event_admission.services.waitlist import WaitlistManager

logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    kind: Literal["registered", "waitlisted"]
    event: Event
    registration: Registration | None = None
    entry: WaitlistEntry | None = None
    total_registrations: int = 0
    total_waiting: int = 0
    expired: list[WaitlistEntry] = field(default_factory=list)
    promoted: list[WaitlistEntry] = field(default_factory=list)

    @property
    def is_registered(self) -> bool:
        return self.kind == "registered"


class AdmissionController:
    """
    Decides whether a signup gets a seat now or a place in the queue.

    The capacity read and the insert happen in one locked unit of work, and the
    insert is re-checked against capacity before commit. A full event is not an
    error: the request is handed to the waitlist instead.
    """

    def __init__(
        self,
        store: RegistrationStore,
        capacity: CapacityTracker,
        waitlist: WaitlistManager,
        dispatcher: NotificationDispatcher,
    ):
        self.store = store
        self.capacity = capacity
        self.waitlist = waitlist
        self.dispatcher = dispatcher

    def register(
        self, event_id: int, user_id: int, attendee_count: int = 1, notes: str | None = None
    ) -> RegistrationResult:
        if attendee_count < 1:
            raise InvalidAttendeeCount()

        try:
            result = self._attempt(event_id, user_id, attendee_count, notes)
        except ConflictRace:
            logger.info(f"Conflict registering user {user_id} for event {event_id}, retrying once")
            try:
                result = self._attempt(event_id, user_id, attendee_count, notes)
            except ConflictRace as exc:
                raise RegistrationContended() from exc

        self._notify(result)
        return result

    def _attempt(self, event_id: int, user_id: int, attendee_count: int, notes: str | None) -> RegistrationResult:
        now = utcnow()
        with self.store.locked(event_id) as event:
            if not event.is_open_for_registration:
                raise EventClosed()
            if self.store.active_registration(event.id, user_id) is not None:
                raise AlreadyRegistered()

            # Lapsed offers go to the next in line before anyone else is considered.
            expired, promoted = self.waitlist.expire_overdue(event, now)
            entry = self.store.waitlist_entry(event.id, user_id)
            holds_offer = entry is not None and entry.status == WaitlistStatus.NOTIFIED.value

            if not self._has_room(event, attendee_count, holds_offer, now):
                entry = self.waitlist.enqueue(event, user_id)
                return RegistrationResult(
                    kind="waitlisted",
                    event=event,
                    entry=entry,
                    total_registrations=self.capacity.active_count(event.id),
                    total_waiting=self.store.count_waiting(event.id),
                    expired=expired,
                    promoted=promoted,
                )

            registration = self.store.create_registration(
                event_id=event.id, user_id=user_id, attendee_count=attendee_count, notes=notes
            )
            if entry is not None and entry.is_open:
                self.waitlist.convert(entry)

            total = self.capacity.active_count(event.id)
            if event.capacity is not None and total + self.capacity.held_seats(event.id, now) > event.capacity:
                logger.warning(f"Capacity overshoot detected on event {event.id}, rolling back")
                raise ConflictRace()

            logger.info(f"Registered user {user_id} for event {event.id} ({total}/{event.capacity or 'unlimited'})")
            return RegistrationResult(
                kind="registered",
                event=event,
                registration=registration,
                entry=entry,
                total_registrations=total,
                expired=expired,
                promoted=promoted,
            )

    def _has_room(self, event: Event, attendee_count: int, holds_offer: bool, now) -> bool:
        if event.capacity is None:
            return True
        active = self.capacity.active_count(event.id)
        held = self.capacity.held_seats(event.id, now)
        if holds_offer:
            # The seat held for this user is theirs to take.
            held -= 1
        return active + held + attendee_count <= event.capacity

    def _notify(self, result: RegistrationResult) -> None:
        event = result.event
        for entry in result.expired:
            self.waitlist.announce_expired(event, entry)
        for entry in result.promoted:
            # The registering user may have been promoted and converted in the same request.
            if entry.status == WaitlistStatus.NOTIFIED.value:
                self.waitlist.announce_promotion(event, entry)

        if not result.is_registered:
            self.waitlist.announce_joined(event, result.entry, result.total_waiting)
            return

        registration = result.registration
        total = result.total_registrations
        available = self.capacity.available_seats(event.capacity, total, self.capacity.held_seats(event.id))
        self.dispatcher.email(
            "registration_confirmation",
            registration.user_id,
            {
                "event_title": event.title,
                "start_date": event.starts_at,
                "attendee_count": registration.attendee_count,
            },
        )
        self.dispatcher.email(
            "new_registration",
            event.owner_id,
            {
                "event_title": event.title,
                "attendee_user_id": registration.user_id,
                "total_registrations": total,
                "max_attendees": event.capacity,
            },
        )
        self.dispatcher.new_registration(
            event.id,
            {
                "attendee_user_id": registration.user_id,
                "total_registrations": total,
                "max_attendees": event.capacity,
                "timestamp": registration.registered_at,
            },
        )
        self.dispatcher.attendees_count_update(
            event.id,
            {
                "total_registrations": total,
                "max_attendees": event.capacity,
                "available_seats": available,
                "is_full": available == 0 if available is not None else False,
            },
        )
