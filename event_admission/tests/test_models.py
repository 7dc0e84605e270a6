"""
Test database models (Event, Registration and WaitlistEntry).
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from event_admission.models import (
    Event,
    EventStatus,
    Registration,
    RegistrationStatus,
    WaitlistEntry,
    WaitlistStatus,
)


class TestEventModel:
    """Test the Event model."""

    def test_create_event_defaults(self, db_session: Session):
        """Test creating an event fills in status and waitlist counter."""
        event = Event(title="Test Event", owner_id=7, capacity=100)
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)

        assert event.id is not None
        assert event.status == EventStatus.SCHEDULED.value
        assert event.waitlist_sequence == 0
        assert event.is_open_for_registration

    def test_unlimited_capacity(self, db_session: Session):
        """Test that capacity may be left unset."""
        event = Event(title="Open Air", owner_id=7, capacity=None)
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)

        assert event.capacity is None

    @pytest.mark.parametrize("status", [EventStatus.COMPLETED.value, EventStatus.CANCELLED.value])
    def test_closed_statuses(self, status: str):
        """Test that finished events do not accept registrations."""
        assert Event(title="Done", owner_id=1, status=status).is_open_for_registration is False

    def test_capacity_must_be_positive(self, db_session: Session):
        """Test the capacity check constraint."""
        db_session.add(Event(title="Broken", owner_id=7, capacity=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_delete_event_cascades(self, db_session: Session):
        """Test that deleting an event removes its registrations and waitlist."""
        event = Event(title="Short Lived", owner_id=7, capacity=1)
        db_session.add(event)
        db_session.commit()

        db_session.add(Registration(event_id=event.id, user_id=1, attendee_count=1))
        db_session.add(WaitlistEntry(event_id=event.id, user_id=2, position=1))
        db_session.commit()

        db_session.delete(event)
        db_session.commit()

        assert db_session.scalar(select(func.count(Registration.id))) == 0
        assert db_session.scalar(select(func.count(WaitlistEntry.id))) == 0


class TestRegistrationModel:
    """Test the Registration model."""

    def test_create_registration(self, db_session: Session, make_event):
        """Test creating a registration."""
        event = make_event(capacity=5)

        registration = Registration(event_id=event.id, user_id=42, attendee_count=2, notes="vegan")
        db_session.add(registration)
        db_session.commit()
        db_session.refresh(registration)

        assert registration.id is not None
        assert registration.status == RegistrationStatus.PENDING.value
        assert registration.registered_at is not None
        assert registration.cancelled_at is None
        assert registration.event.title == "Test Event"

    def test_one_active_registration_per_user(self, db_session: Session, make_event):
        """Test the partial unique index rejects a second active registration."""
        event = make_event(capacity=5)
        db_session.add(Registration(event_id=event.id, user_id=1, attendee_count=1))
        db_session.commit()

        db_session.add(
            Registration(
                event_id=event.id,
                user_id=1,
                attendee_count=1,
                status=RegistrationStatus.CONFIRMED.value,
            )
        )
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_cancelled_rows_do_not_block_new_registration(self, db_session: Session, make_event):
        """Test that a cancelled registration stays as history next to a new one."""
        event = make_event(capacity=5)
        db_session.add(
            Registration(
                event_id=event.id,
                user_id=1,
                attendee_count=1,
                status=RegistrationStatus.CANCELLED.value,
            )
        )
        db_session.add(Registration(event_id=event.id, user_id=1, attendee_count=1))
        db_session.commit()

        rows = db_session.scalars(select(Registration).where(Registration.user_id == 1)).all()
        assert sorted(r.status for r in rows) == ["CANCELLED", "PENDING"]

    def test_attendee_count_must_be_positive(self, db_session: Session, make_event):
        """Test the attendee count check constraint."""
        event = make_event(capacity=5)
        db_session.add(Registration(event_id=event.id, user_id=1, attendee_count=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


class TestWaitlistEntryModel:
    """Test the WaitlistEntry model."""

    def test_create_entry(self, db_session: Session, make_event):
        """Test creating a waitlist entry."""
        event = make_event(capacity=1)
        entry = WaitlistEntry(event_id=event.id, user_id=3, position=1)
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)

        assert entry.status == WaitlistStatus.WAITING.value
        assert entry.is_open
        assert entry.expires_at is None

    def test_one_entry_per_user(self, db_session: Session, make_event):
        """Test that a user can only hold one entry per event."""
        event = make_event(capacity=1)
        db_session.add(WaitlistEntry(event_id=event.id, user_id=3, position=1))
        db_session.commit()

        db_session.add(WaitlistEntry(event_id=event.id, user_id=3, position=2))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_positions_unique_per_event(self, db_session: Session, make_event):
        """Test that two entries cannot share a position on the same event."""
        event = make_event(capacity=1)
        other = make_event(capacity=1, title="Other")
        db_session.add(WaitlistEntry(event_id=event.id, user_id=3, position=1))
        db_session.add(WaitlistEntry(event_id=other.id, user_id=4, position=1))
        db_session.commit()

        db_session.add(WaitlistEntry(event_id=event.id, user_id=5, position=1))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()
