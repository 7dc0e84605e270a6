import logging
from datetime import datetime, timedelta

from event_admission.core.clock import ensure_utc, utcnow
from event_admission.core.settings import settings
from event_admission.models.events import Event
from event_admission.models.waitlist import WaitlistEntry, WaitlistStatus
from event_admission.services.capacity import CapacityTracker
from event_admission.services.errors import AlreadyWaitlisted, WaitlistEntryNotFound
from event_admission.services.notifications import NotificationDispatcher
from event_admission.services.registration_store import RegistrationStore

logger = logging.getLogger(__name__)


class WaitlistManager:
    """
    FIFO waitlist per event.

    Positions come from ``Event.waitlist_sequence`` and are never reused, so
    "next in line" is always the WAITING entry with the smallest position.
    Promotion only offers the seat: the user has ``waitlist_offer_hours`` to
    register, during which the seat counts as held. Methods that mutate must
    run inside ``RegistrationStore.locked`` for the entry's event.
    """

    def __init__(
        self,
        store: RegistrationStore,
        capacity: CapacityTracker,
        dispatcher: NotificationDispatcher,
    ):
        self.store = store
        self.capacity = capacity
        self.dispatcher = dispatcher

    def enqueue(self, event: Event, user_id: int) -> WaitlistEntry:
        existing = self.store.waitlist_entry(event.id, user_id)
        if existing is not None and existing.is_open:
            raise AlreadyWaitlisted()

        position = self.store.next_waitlist_position(event.id)
        if existing is not None:
            entry = self.store.rearm_waitlist_entry(existing, position)
        else:
            entry = self.store.create_waitlist_entry(event_id=event.id, user_id=user_id, position=position)
        logger.info(f"User {user_id} joined waitlist for event {event.id} at position {position}")
        return entry

    def promote_next(self, event: Event, now: datetime | None = None) -> WaitlistEntry | None:
        """Offer the freed seat to the first WAITING user, or return None if nobody waits."""
        entry = self.store.next_waiting_entry(event.id)
        if entry is None:
            return None

        now = now or utcnow()
        expires_at = now + timedelta(hours=settings.waitlist_offer_hours)
        self.store.mark_notified(entry, now=now, expires_at=expires_at)
        logger.info(
            f"Promoted user {entry.user_id} (position {entry.position}) on event {event.id}, "
            f"offer expires at {expires_at.isoformat()}"
        )
        return entry

    def convert(self, entry: WaitlistEntry) -> WaitlistEntry:
        self.store.mark_converted(entry)
        logger.info(f"Waitlist entry {entry.id} converted to a registration")
        return entry

    def free_seats(self, event: Event, now: datetime | None = None) -> int:
        if event.capacity is None:
            return 0
        active = self.capacity.active_count(event.id)
        held = self.capacity.held_seats(event.id, now)
        return max(event.capacity - active - held, 0)

    def fill_free_seats(self, event: Event, now: datetime | None = None) -> list[WaitlistEntry]:
        """Promote WAITING users while the event has unheld free seats."""
        now = now or utcnow()
        promoted = []
        while self.free_seats(event, now) > 0:
            entry = self.promote_next(event, now)
            if entry is None:
                break
            promoted.append(entry)
        return promoted

    def expire_overdue(
        self, event: Event, now: datetime | None = None
    ) -> tuple[list[WaitlistEntry], list[WaitlistEntry]]:
        """
        Expire every overdue offer for ``event`` and offer every unheld free
        seat to the queue, including seats freed earlier whose promotion never
        went through.

        Registrations are not touched: an expired offer never held a
        registration, so only the held seat goes back to the queue.

        Returns:
            (expired entries, newly promoted entries)
        """
        now = now or utcnow()
        expired = []
        for entry in self.store.overdue_offers(now, event_id=event.id):
            self.store.mark_expired(entry)
            expired.append(entry)
        promoted = self.fill_free_seats(event, now)
        return expired, promoted

    def position_of(self, event_id: int, user_id: int) -> dict:
        entry = self.store.waitlist_entry(event_id, user_id)
        if entry is None:
            raise WaitlistEntryNotFound()

        total_waiting = self.store.count_waiting(event_id)
        position_in_line = None
        if entry.status == WaitlistStatus.WAITING.value:
            position_in_line = self.store.count_waiting(event_id, before_position=entry.position) + 1
        return {
            "event_id": event_id,
            "user_id": user_id,
            "status": entry.status,
            "position": entry.position,
            "position_in_line": position_in_line,
            "total_waiting": total_waiting,
            "expires_at": ensure_utc(entry.expires_at),
        }

    # ---------- notifications (call after commit) ----------

    def announce_joined(self, event: Event, entry: WaitlistEntry, total_waiting: int) -> None:
        self.dispatcher.email(
            "waitlist_joined",
            entry.user_id,
            {"event_title": event.title, "start_date": event.starts_at, "position": entry.position},
        )
        self.dispatcher.waitlist_position_update(
            entry.user_id,
            event.id,
            {"event_id": event.id, "position": entry.position, "total_waiting": total_waiting},
        )

    def announce_promotion(self, event: Event, entry: WaitlistEntry) -> None:
        payload = {
            "event_id": event.id,
            "event_title": event.title,
            "event_start_date": event.starts_at,
            "position": entry.position,
            "expires_at": ensure_utc(entry.expires_at),
        }
        self.dispatcher.waitlist_promotion(entry.user_id, event.id, payload)
        self.dispatcher.email(
            "waitlist_promotion",
            entry.user_id,
            {"event_title": event.title, "start_date": event.starts_at, "expires_at": payload["expires_at"]},
        )

    def announce_expired(self, event: Event, entry: WaitlistEntry) -> None:
        self.dispatcher.email(
            "waitlist_offer_expired",
            entry.user_id,
            {"event_title": event.title, "expired_at": ensure_utc(entry.expires_at)},
        )
