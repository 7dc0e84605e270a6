import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from event_admission.database.db import Base

if TYPE_CHECKING:
    from event_admission.models.events import Event


class WaitlistStatus(str, enum.Enum):
    WAITING = "WAITING"
    NOTIFIED = "NOTIFIED"
    EXPIRED = "EXPIRED"
    CONVERTED = "CONVERTED"


OPEN_WAITLIST_STATUSES = (WaitlistStatus.WAITING.value, WaitlistStatus.NOTIFIED.value)


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_waitlist_event_user"),
        UniqueConstraint("event_id", "position", name="uq_waitlist_event_position"),
        CheckConstraint("position > 0", name="ck_waitlist_position_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=WaitlistStatus.WAITING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    event: Mapped["Event"] = relationship(back_populates="waitlist_entries")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_WAITLIST_STATUSES
