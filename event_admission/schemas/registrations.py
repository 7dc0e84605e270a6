from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    user_id: int = Field(ge=1)
    attendee_count: int = Field(default=1, ge=1)
    notes: str | None = Field(default=None, max_length=1000)


class OrganizerRequest(BaseModel):
    organizer_id: int = Field(ge=1)


class RegistrationOut(BaseModel):
    id: int
    event_id: int
    user_id: int
    attendee_count: int
    notes: str | None = None
    status: str
    registered_at: datetime
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    checked_in_at: datetime | None = None

    class Config:
        from_attributes = True


class WaitlistEntryOut(BaseModel):
    id: int
    event_id: int
    user_id: int
    position: int
    status: str
    notified_at: datetime | None = None
    expires_at: datetime | None = None

    class Config:
        from_attributes = True


class RegisteredOut(BaseModel):
    kind: Literal["registered"] = "registered"
    registration: RegistrationOut


class WaitlistedOut(BaseModel):
    kind: Literal["waitlisted"] = "waitlisted"
    entry: WaitlistEntryOut


class CancellationOut(BaseModel):
    registration: RegistrationOut
    total_registrations: int
    available_seats: int | None = None
    promoted: WaitlistEntryOut | None = None


class WaitlistPositionOut(BaseModel):
    event_id: int
    user_id: int
    status: str
    position: int
    position_in_line: int | None = None
    total_waiting: int
    expires_at: datetime | None = None
