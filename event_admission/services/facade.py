"""
Entry point for registration commands and queries.

Routes, Celery tasks and anything else outside this package talk to
``EventsFacade`` only. Each command commits its state change first, then
invalidates caches and dispatches notifications, none of which can fail the
command.
"""
import logging
from dataclasses import dataclass

import redis
from sqlalchemy.orm import Session

from event_admission.core.clock import utcnow
from event_admission.core.redis_config import get_redis_client
from event_admission.models.events import Event
from event_admission.models.registrations import Registration
from event_admission.models.waitlist import WaitlistEntry
from event_admission.services.admission import AdmissionController, RegistrationResult
from event_admission.services.capacity import CapacityTracker
from event_admission.services.errors import (
    ConflictRace,
    EventNotFound,
    NotEventOwner,
    RegistrationNotFound,
)
from event_admission.services.notifications import NotificationDispatcher
from event_admission.services.registration_store import RegistrationStore
from event_admission.services.waitlist import WaitlistManager

logger = logging.getLogger(__name__)


def dashboard_cache_key(owner_id: int) -> str:
    return f"dashboard:stats:{owner_id}"


@dataclass
class CancellationOutcome:
    registration: Registration
    event: Event
    total_registrations: int
    available_seats: int | None
    promoted: WaitlistEntry | None = None


class EventsFacade:
    def __init__(
        self,
        db: Session,
        redis_client: redis.Redis | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.db = db
        self.redis = redis_client if redis_client is not None else get_redis_client()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.store = RegistrationStore(db, self.redis)
        self.capacity = CapacityTracker(self.store)
        self.waitlist = WaitlistManager(self.store, self.capacity, self.dispatcher)
        self.admission = AdmissionController(self.store, self.capacity, self.waitlist, self.dispatcher)

    # ---------- commands ----------

    def register(
        self, event_id: int, user_id: int, attendee_count: int = 1, notes: str | None = None
    ) -> RegistrationResult:
        result = self.admission.register(event_id, user_id, attendee_count, notes)
        self._after_change(result.event)
        return result

    def cancel_registration(self, user_id: int, event_id: int) -> CancellationOutcome:
        # One event lock spans both commits so no other writer can take the
        # freed seat before it is offered to the head of the waitlist.
        with self.store.event_lock(event_id):
            with self.store.locked_transaction(event_id) as event:
                registration = self.store.latest_registration(event.id, user_id)
                if registration is None:
                    raise RegistrationNotFound()
                self.store.mark_cancelled(registration)
            logger.info(f"User {user_id} cancelled registration {registration.id} for event {event_id}")

            promoted = self._promote_after_cancellation(event_id)

        total = self.capacity.active_count(event_id)
        outcome = CancellationOutcome(
            registration=registration,
            event=event,
            total_registrations=total,
            available_seats=self.capacity.available_seats(
                event.capacity, total, self.capacity.held_seats(event_id)
            ),
            promoted=promoted,
        )
        self._notify_cancellation(outcome)
        self._after_change(event)
        return outcome

    def confirm_registration(self, organizer_id: int, event_id: int, registration_id: int) -> Registration:
        with self.store.locked(event_id) as event:
            self._ensure_owner(event, organizer_id)
            registration = self._registration_of_event(event, registration_id)
            self.store.mark_confirmed(registration)
        logger.info(f"Organizer {organizer_id} confirmed registration {registration_id}")

        self.dispatcher.email(
            "registration_confirmed",
            registration.user_id,
            {"event_title": event.title, "start_date": event.starts_at},
        )
        self._after_change(event)
        return registration

    def check_in(self, organizer_id: int, event_id: int, registration_id: int) -> Registration:
        with self.store.locked(event_id) as event:
            self._ensure_owner(event, organizer_id)
            registration = self._registration_of_event(event, registration_id)
            self.store.mark_checked_in(registration)
        logger.info(f"Registration {registration_id} checked in for event {event_id}")
        self._after_change(event)
        return registration

    def expire_waitlist_offers(self, event_id: int | None = None) -> list[WaitlistEntry]:
        """
        Sweep overdue offers and re-offer free seats, for one event or for
        every event with an overdue offer or a waiting user.
        """
        now = utcnow()
        event_ids = [event_id] if event_id is not None else self.store.events_to_sweep(now)

        all_expired = []
        for eid in event_ids:
            try:
                with self.store.locked(eid) as event:
                    expired, promoted = self.waitlist.expire_overdue(event, now)
            except ConflictRace:
                logger.warning(f"Event {eid} is busy, leaving its waitlist for the next sweep")
                continue
            for entry in expired:
                self.waitlist.announce_expired(event, entry)
            for entry in promoted:
                self.waitlist.announce_promotion(event, entry)
            if expired or promoted:
                self._after_change(event)
            all_expired.extend(expired)
        return all_expired

    # ---------- queries ----------

    def my_registrations(self, user_id: int) -> list[Registration]:
        return self.store.registrations_for_user(user_id)

    def event_registrations(self, organizer_id: int, event_id: int) -> list[Registration]:
        event = self._get_event(event_id)
        self._ensure_owner(event, organizer_id)
        return self.store.registrations_for_event(event_id)

    def waitlist_position(self, user_id: int, event_id: int) -> dict:
        self._get_event(event_id)
        return self.waitlist.position_of(event_id, user_id)

    def event_stats(self, event_id: int) -> dict:
        return self.capacity.stats(event_id)

    # ---------- helpers ----------

    def _promote_after_cancellation(self, event_id: int) -> WaitlistEntry | None:
        """Offer the freed seat under the event lock the caller holds."""
        for attempt in (1, 2):
            try:
                with self.store.locked_transaction(event_id) as event:
                    if self.waitlist.free_seats(event) < 1:
                        return None
                    return self.waitlist.promote_next(event)
            except ConflictRace:
                if attempt == 1:
                    logger.info(f"Conflict promoting waitlist on event {event_id}, retrying once")
        # The cancellation stands; the next sweep or registration re-offers the seat.
        logger.warning(f"Could not promote waitlist on event {event_id} after cancellation")
        return None

    def _notify_cancellation(self, outcome: CancellationOutcome) -> None:
        event = outcome.event
        registration = outcome.registration
        self.dispatcher.email(
            "registration_cancelled",
            registration.user_id,
            {"event_title": event.title, "start_date": event.starts_at},
        )
        self.dispatcher.email(
            "registration_cancelled_organizer",
            event.owner_id,
            {
                "event_title": event.title,
                "attendee_user_id": registration.user_id,
                "total_registrations": outcome.total_registrations,
            },
        )
        self.dispatcher.registration_cancelled(
            event.id,
            {
                "attendee_user_id": registration.user_id,
                "total_registrations": outcome.total_registrations,
                "max_attendees": event.capacity,
                "timestamp": registration.cancelled_at,
            },
        )
        self.dispatcher.attendees_count_update(
            event.id,
            {
                "total_registrations": outcome.total_registrations,
                "max_attendees": event.capacity,
                "available_seats": outcome.available_seats,
                "is_full": outcome.available_seats == 0 if outcome.available_seats is not None else False,
            },
        )
        if outcome.available_seats:
            self.dispatcher.availability_changed(
                event.id,
                {
                    "is_available": True,
                    "available_seats": outcome.available_seats,
                    "message": f"{outcome.available_seats} seats now available!",
                },
            )
        if outcome.promoted is not None:
            self.waitlist.announce_promotion(event, outcome.promoted)

    def _after_change(self, event: Event) -> None:
        self.capacity.invalidate_stats(event.id)
        self._invalidate_owner_cache(event.owner_id)
        try:
            stats = self.capacity.stats(event.id)
        except EventNotFound:
            return
        self.dispatcher.event_stats_update(event.id, stats)

    def _invalidate_owner_cache(self, owner_id: int) -> None:
        try:
            self.redis.delete(dashboard_cache_key(owner_id))
        except redis.RedisError as e:
            logger.warning(f"Redis cache invalidation error for owner {owner_id}: {e}")

    def _get_event(self, event_id: int) -> Event:
        event = self.store.get_event(event_id)
        if event is None:
            raise EventNotFound()
        return event

    def _ensure_owner(self, event: Event, organizer_id: int) -> None:
        if event.owner_id != organizer_id:
            raise NotEventOwner()

    def _registration_of_event(self, event: Event, registration_id: int) -> Registration:
        registration = self.store.get_registration(registration_id)
        if registration is None or registration.event_id != event.id:
            raise RegistrationNotFound()
        return registration
