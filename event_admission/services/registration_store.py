"""
Persistence boundary for registrations and waitlist entries.

Every mutation goes through this class so the locking discipline lives in one
place: ``locked(event_id)`` takes the per-event Redis lock, opens a unit of
work and row-locks the event before handing it to the caller. Unique
constraint violations come back as ``ConflictRace``.
"""
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

import redis
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from event_admission.core.clock import utcnow
from event_admission.core.redis_config import get_redis_client
from event_admission.core.settings import settings
from event_admission.models.events import Event
from event_admission.models.registrations import ACTIVE_STATUSES, Registration, RegistrationStatus
from event_admission.models.waitlist import WaitlistEntry, WaitlistStatus
from event_admission.services.errors import AlreadyCancelled, ConflictRace, EventNotFound, InvalidTransition

logger = logging.getLogger(__name__)

REGISTRATION_TRANSITIONS = {
    RegistrationStatus.PENDING.value: {RegistrationStatus.CONFIRMED.value, RegistrationStatus.CANCELLED.value},
    RegistrationStatus.CONFIRMED.value: {RegistrationStatus.CANCELLED.value},
    RegistrationStatus.CANCELLED.value: set(),
}

WAITLIST_TRANSITIONS = {
    WaitlistStatus.WAITING.value: {WaitlistStatus.NOTIFIED.value, WaitlistStatus.CONVERTED.value},
    WaitlistStatus.NOTIFIED.value: {WaitlistStatus.CONVERTED.value, WaitlistStatus.EXPIRED.value},
    # Terminal entries are re-armed when the same user queues again.
    WaitlistStatus.EXPIRED.value: {WaitlistStatus.WAITING.value},
    WaitlistStatus.CONVERTED.value: {WaitlistStatus.WAITING.value},
}


def _check_transition(table: dict[str, set[str]], current: str, target: str) -> None:
    if target not in table.get(current, set()):
        raise InvalidTransition(f"Cannot move from {current} to {target}")


class RegistrationStore:
    def __init__(self, db: Session, redis_client: redis.Redis | None = None):
        self.db = db
        self.redis = redis_client if redis_client is not None else get_redis_client()

    # ---------- locking / transactions ----------

    @contextmanager
    def locked(self, event_id: int) -> Iterator[Event]:
        """
        Serialise writers for one event.

        Holds the Redis lock ``event_lock:{event_id}`` for the whole unit of
        work and row-locks the event inside the transaction. The transaction
        is committed before the lock is released.
        """
        with self.event_lock(event_id):
            with self.locked_transaction(event_id) as event:
                yield event

    @contextmanager
    def locked_transaction(self, event_id: int) -> Iterator[Event]:
        """One unit of work on an event whose ``event_lock`` the caller already holds."""
        with self.unit_of_work():
            yield self.lock_event(event_id)

    @contextmanager
    def event_lock(self, event_id: int) -> Iterator[None]:
        """
        Hold ``event_lock:{event_id}`` without opening a transaction, so that
        several commits can happen before any other writer gets in.
        """
        lock = self.redis.lock(
            f"event_lock:{event_id}",
            timeout=settings.lock_timeout_seconds,
            blocking_timeout=settings.lock_blocking_timeout_seconds,
        )
        try:
            if not lock.acquire(blocking=True, blocking_timeout=settings.lock_blocking_timeout_seconds):
                raise ConflictRace("Could not acquire lock, please try again.")
        except redis.exceptions.LockError:
            raise ConflictRace("Could not acquire lock, please try again.")

        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError:
                logger.warning(f"Lock for event {event_id} expired before release")

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        try:
            yield self.db
        except Exception:
            self.db.rollback()
            raise
        else:
            self.db.commit()

    # ---------- events ----------

    def get_event(self, event_id: int) -> Event | None:
        return self.db.get(Event, event_id, populate_existing=True)

    def lock_event(self, event_id: int) -> Event:
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        event = self.db.scalar(stmt)
        if event is None:
            raise EventNotFound()
        return event

    def next_waitlist_position(self, event_id: int) -> int:
        """Bump the event's waitlist counter and return the new value."""
        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .values(waitlist_sequence=Event.waitlist_sequence + 1)
            .returning(Event.waitlist_sequence)
        )
        position = self.db.execute(stmt).scalar_one()
        return int(position)

    # ---------- registrations ----------

    def get_registration(self, registration_id: int) -> Registration | None:
        return self.db.get(Registration, registration_id, populate_existing=True)

    def active_registration(self, event_id: int, user_id: int) -> Registration | None:
        stmt = (
            select(Registration)
            .where(
                Registration.event_id == event_id,
                Registration.user_id == user_id,
                Registration.status.in_(ACTIVE_STATUSES),
            )
            .execution_options(populate_existing=True)
        )
        return self.db.scalar(stmt)

    def latest_registration(self, event_id: int, user_id: int) -> Registration | None:
        stmt = (
            select(Registration)
            .where(Registration.event_id == event_id, Registration.user_id == user_id)
            .order_by(Registration.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.db.scalar(stmt)

    def registrations_for_event(self, event_id: int) -> list[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.event_id == event_id)
            .order_by(Registration.registered_at.desc(), Registration.id.desc())
        )
        return list(self.db.scalars(stmt))

    def registrations_for_user(self, user_id: int) -> list[Registration]:
        stmt = (
            select(Registration)
            .where(Registration.user_id == user_id)
            .order_by(Registration.registered_at.desc(), Registration.id.desc())
        )
        return list(self.db.scalars(stmt))

    def count_registrations(self, event_id: int, statuses=ACTIVE_STATUSES) -> int:
        count = self.db.scalar(
            select(func.count(Registration.id)).where(
                Registration.event_id == event_id,
                Registration.status.in_(statuses),
            )
        )
        return int(count or 0)

    def count_checked_in(self, event_id: int) -> int:
        count = self.db.scalar(
            select(func.count(Registration.id)).where(
                Registration.event_id == event_id,
                Registration.checked_in_at.is_not(None),
            )
        )
        return int(count or 0)

    def create_registration(
        self, *, event_id: int, user_id: int, attendee_count: int, notes: str | None
    ) -> Registration:
        registration = Registration(
            event_id=event_id,
            user_id=user_id,
            attendee_count=attendee_count,
            notes=notes,
            status=RegistrationStatus.PENDING.value,
            registered_at=utcnow(),
        )
        self.db.add(registration)
        self._flush_or_conflict(f"registration for user {user_id} on event {event_id}")
        return registration

    def mark_cancelled(self, registration: Registration, now: datetime | None = None) -> Registration:
        if registration.status == RegistrationStatus.CANCELLED.value:
            raise AlreadyCancelled()
        _check_transition(REGISTRATION_TRANSITIONS, registration.status, RegistrationStatus.CANCELLED.value)
        registration.status = RegistrationStatus.CANCELLED.value
        registration.cancelled_at = now or utcnow()
        self.db.flush()
        return registration

    def mark_confirmed(self, registration: Registration, now: datetime | None = None) -> Registration:
        _check_transition(REGISTRATION_TRANSITIONS, registration.status, RegistrationStatus.CONFIRMED.value)
        registration.status = RegistrationStatus.CONFIRMED.value
        registration.confirmed_at = now or utcnow()
        self.db.flush()
        return registration

    def mark_checked_in(self, registration: Registration, now: datetime | None = None) -> Registration:
        if registration.status != RegistrationStatus.CONFIRMED.value:
            raise InvalidTransition("Only confirmed registrations can be checked in")
        if registration.checked_in_at is not None:
            raise InvalidTransition("Registration is already checked in")
        registration.checked_in_at = now or utcnow()
        self.db.flush()
        return registration

    # ---------- waitlist ----------

    def waitlist_entry(self, event_id: int, user_id: int) -> WaitlistEntry | None:
        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.event_id == event_id, WaitlistEntry.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return self.db.scalar(stmt)

    def next_waiting_entry(self, event_id: int) -> WaitlistEntry | None:
        stmt = (
            select(WaitlistEntry)
            .where(
                WaitlistEntry.event_id == event_id,
                WaitlistEntry.status == WaitlistStatus.WAITING.value,
            )
            .order_by(WaitlistEntry.position.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.db.scalar(stmt)

    def count_waiting(self, event_id: int, before_position: int | None = None) -> int:
        stmt = select(func.count(WaitlistEntry.id)).where(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.status == WaitlistStatus.WAITING.value,
        )
        if before_position is not None:
            stmt = stmt.where(WaitlistEntry.position < before_position)
        return int(self.db.scalar(stmt) or 0)

    def count_live_offers(self, event_id: int, now: datetime) -> int:
        count = self.db.scalar(
            select(func.count(WaitlistEntry.id)).where(
                WaitlistEntry.event_id == event_id,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
                WaitlistEntry.expires_at > now,
            )
        )
        return int(count or 0)

    def overdue_offers(self, now: datetime, event_id: int | None = None) -> list[WaitlistEntry]:
        stmt = select(WaitlistEntry).where(
            WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
            WaitlistEntry.expires_at <= now,
        )
        if event_id is not None:
            stmt = stmt.where(WaitlistEntry.event_id == event_id)
        stmt = stmt.order_by(WaitlistEntry.event_id, WaitlistEntry.position).execution_options(
            populate_existing=True
        )
        return list(self.db.scalars(stmt))

    def events_to_sweep(self, now: datetime) -> list[int]:
        """Events with an overdue offer or with users still waiting."""
        overdue = (WaitlistEntry.status == WaitlistStatus.NOTIFIED.value) & (WaitlistEntry.expires_at <= now)
        stmt = (
            select(WaitlistEntry.event_id)
            .where(overdue | (WaitlistEntry.status == WaitlistStatus.WAITING.value))
            .distinct()
            .order_by(WaitlistEntry.event_id)
        )
        return list(self.db.scalars(stmt))

    def create_waitlist_entry(self, *, event_id: int, user_id: int, position: int) -> WaitlistEntry:
        entry = WaitlistEntry(
            event_id=event_id,
            user_id=user_id,
            position=position,
            status=WaitlistStatus.WAITING.value,
            created_at=utcnow(),
        )
        self.db.add(entry)
        self._flush_or_conflict(f"waitlist entry for user {user_id} on event {event_id}")
        return entry

    def rearm_waitlist_entry(self, entry: WaitlistEntry, position: int) -> WaitlistEntry:
        _check_transition(WAITLIST_TRANSITIONS, entry.status, WaitlistStatus.WAITING.value)
        entry.status = WaitlistStatus.WAITING.value
        entry.position = position
        entry.created_at = utcnow()
        entry.notified_at = None
        entry.expires_at = None
        self._flush_or_conflict(f"waitlist entry {entry.id}")
        return entry

    def mark_notified(self, entry: WaitlistEntry, *, now: datetime, expires_at: datetime) -> WaitlistEntry:
        _check_transition(WAITLIST_TRANSITIONS, entry.status, WaitlistStatus.NOTIFIED.value)
        entry.status = WaitlistStatus.NOTIFIED.value
        entry.notified_at = now
        entry.expires_at = expires_at
        self.db.flush()
        return entry

    def mark_converted(self, entry: WaitlistEntry) -> WaitlistEntry:
        _check_transition(WAITLIST_TRANSITIONS, entry.status, WaitlistStatus.CONVERTED.value)
        entry.status = WaitlistStatus.CONVERTED.value
        self.db.flush()
        return entry

    def mark_expired(self, entry: WaitlistEntry) -> WaitlistEntry:
        _check_transition(WAITLIST_TRANSITIONS, entry.status, WaitlistStatus.EXPIRED.value)
        entry.status = WaitlistStatus.EXPIRED.value
        self.db.flush()
        return entry

    def _flush_or_conflict(self, what: str) -> None:
        try:
            self.db.flush()
        except IntegrityError as exc:
            logger.info(f"Unique constraint hit while writing {what}: {exc.orig}")
            raise ConflictRace() from exc
