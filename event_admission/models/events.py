import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from event_admission.database.db import Base

if TYPE_CHECKING:
    from event_admission.models.registrations import Registration
    from event_admission.models.waitlist import WaitlistEntry


class EventStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


CLOSED_STATUSES = frozenset({EventStatus.COMPLETED.value, EventStatus.CANCELLED.value})


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity >= 1", name="ck_events_capacity_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # None means unlimited.
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EventStatus.SCHEDULED.value)
    # Last waitlist position handed out; only ever incremented.
    waitlist_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    registrations: Mapped[list["Registration"]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )
    waitlist_entries: Mapped[list["WaitlistEntry"]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )

    @property
    def is_open_for_registration(self) -> bool:
        return self.status not in CLOSED_STATUSES
