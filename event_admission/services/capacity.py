import json
import logging
from datetime import datetime

import redis

from event_admission.core.clock import utcnow
from event_admission.core.settings import settings
from event_admission.models.registrations import RegistrationStatus
from event_admission.services.errors import EventNotFound
from event_admission.services.registration_store import RegistrationStore

logger = logging.getLogger(__name__)


def stats_cache_key(event_id: int) -> str:
    return f"event:stats:{event_id}"


class CapacityTracker:
    """
    Seat accounting for a single event.

    ``active_count`` and ``held_seats`` always hit the database and are what
    admission decisions use. ``stats`` is informational and may be served from
    Redis for a few seconds.
    """

    def __init__(self, store: RegistrationStore):
        self.store = store

    @property
    def redis(self) -> redis.Redis:
        return self.store.redis

    def active_count(self, event_id: int) -> int:
        return self.store.count_registrations(event_id)

    def held_seats(self, event_id: int, now: datetime | None = None) -> int:
        """Seats reserved for promoted users whose offer has not expired yet."""
        return self.store.count_live_offers(event_id, now or utcnow())

    def available_seats(self, capacity: int | None, active: int, held: int = 0) -> int | None:
        if capacity is None:
            return None
        return max(capacity - active - held, 0)

    def stats(self, event_id: int) -> dict:
        cached = self._read_cache(event_id)
        if cached is not None:
            return cached

        event = self.store.get_event(event_id)
        if event is None:
            raise EventNotFound()

        total = self.active_count(event_id)
        held = self.held_seats(event_id)
        available = self.available_seats(event.capacity, total, held)
        stats = {
            "event_id": event.id,
            "capacity": event.capacity,
            "total_registrations": total,
            "confirmed_attendees": self.store.count_registrations(
                event_id, (RegistrationStatus.CONFIRMED.value,)
            ),
            "waitlist_count": self.store.count_waiting(event_id),
            "check_ins_count": self.store.count_checked_in(event_id),
            "available_seats": available,
            "is_full": available == 0 if available is not None else False,
        }
        self._write_cache(event_id, stats)
        return stats

    def invalidate_stats(self, event_id: int) -> None:
        try:
            self.redis.delete(stats_cache_key(event_id))
        except redis.RedisError as e:
            logger.warning(f"Could not invalidate stats cache for event {event_id}: {e}")

    def _read_cache(self, event_id: int) -> dict | None:
        try:
            raw = self.redis.get(stats_cache_key(event_id))
        except redis.RedisError as e:
            logger.warning(f"Stats cache unavailable for event {event_id}, reading from DB: {e}")
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def _write_cache(self, event_id: int, stats: dict) -> None:
        try:
            self.redis.set(stats_cache_key(event_id), json.dumps(stats), ex=settings.stats_cache_ttl_seconds)
        except redis.RedisError as e:
            logger.warning(f"Could not cache stats for event {event_id}: {e}")
