from pydantic import BaseModel


class EventStatsOut(BaseModel):
    event_id: int
    capacity: int | None = None
    total_registrations: int
    confirmed_attendees: int
    waitlist_count: int
    check_ins_count: int
    available_seats: int | None = None
    is_full: bool


class ExpiredOffersOut(BaseModel):
    expired: int
