import json
import logging

from event_admission.core.celery_config import celery_app
from event_admission.core.clock import utcnow
from event_admission.core.redis_config import get_redis_client
from event_admission.core.settings import settings
from event_admission.database.db import SessionLocal

logger = logging.getLogger(__name__)


@celery_app.task(name="event_admission.tasks.deliver_realtime")
def deliver_realtime(channel: str, message_type: str, event_id: int, data: dict) -> int:
    """Publish a real-time message for the WebSocket gateway to fan out."""
    envelope = {
        "type": message_type,
        "event_id": event_id,
        "data": data,
        "sent_at": utcnow().isoformat(),
    }
    receivers = get_redis_client().publish(channel, json.dumps(envelope))
    logger.debug(f"Published {message_type} to {channel} ({receivers} subscribers)")
    return receivers


@celery_app.task(name="event_admission.tasks.send_email")
def send_email(template: str, user_id: int, context: dict) -> None:
    """Hand an email job to the mail service through its Redis queue."""
    job = {
        "template": template,
        "user_id": user_id,
        "context": context,
        "queued_at": utcnow().isoformat(),
    }
    get_redis_client().rpush(settings.email_queue_key, json.dumps(job))
    logger.info(f"Queued {template} email for user {user_id}")


@celery_app.task(bind=True, name="event_admission.tasks.expire_waitlist_offers")
def expire_waitlist_offers(self, event_id: int | None = None) -> int:
    """Expire overdue waitlist offers and pass their seats to the next in line."""
    from event_admission.services.facade import EventsFacade

    db = SessionLocal()
    try:
        expired = EventsFacade(db).expire_waitlist_offers(event_id=event_id)
    finally:
        db.close()

    if expired:
        logger.info(f"Expired {len(expired)} waitlist offers")
    return len(expired)
