"""
Outbound notification boundary.

Nothing here talks to the WebSocket gateway or the mail service directly:
every call enqueues a Celery task and returns. A failure to enqueue is logged
and dropped so it can never change the outcome of a registration.
"""
import logging
from typing import Any

from fastapi.encoders import jsonable_encoder

from event_admission.tasks import deliver_realtime, send_email

logger = logging.getLogger(__name__)


def event_channel(event_id: int) -> str:
    return f"event:{event_id}"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


class NotificationDispatcher:
    # ---------- real-time, all viewers of an event ----------

    def new_registration(self, event_id: int, payload: dict[str, Any]) -> None:
        self._broadcast(event_channel(event_id), "new_registration", event_id, payload)

    def registration_cancelled(self, event_id: int, payload: dict[str, Any]) -> None:
        self._broadcast(event_channel(event_id), "registration_cancelled", event_id, payload)

    def attendees_count_update(self, event_id: int, payload: dict[str, Any]) -> None:
        self._broadcast(event_channel(event_id), "attendees_count_update", event_id, payload)

    def availability_changed(self, event_id: int, payload: dict[str, Any]) -> None:
        self._broadcast(event_channel(event_id), "availability_changed", event_id, payload)

    def event_stats_update(self, event_id: int, payload: dict[str, Any]) -> None:
        self._broadcast(event_channel(event_id), "event_stats_update", event_id, payload)

    # ---------- real-time, a single user ----------

    def waitlist_promotion(self, user_id: int, event_id: int, payload: dict[str, Any]) -> None:
        self._broadcast(user_channel(user_id), "waitlist_promotion", event_id, payload)

    def waitlist_position_update(self, user_id: int, event_id: int, payload: dict[str, Any]) -> None:
        self._broadcast(user_channel(user_id), "waitlist_position_update", event_id, payload)

    # ---------- email ----------

    def email(self, template: str, user_id: int, context: dict[str, Any]) -> None:
        self._enqueue(send_email, template, user_id, context)

    def _broadcast(self, channel: str, message_type: str, event_id: int, payload: dict[str, Any]) -> None:
        self._enqueue(deliver_realtime, channel, message_type, event_id, payload)

    def _enqueue(self, task, *args) -> None:
        try:
            task.delay(*jsonable_encoder(list(args)))
        except Exception as e:
            logger.warning(f"Failed to enqueue {task.name} {args[:2]}: {e}", exc_info=True)
