from celery import Celery

from event_admission.core.redis_config import get_redis_url
from event_admission.core.settings import settings


def make_celery(app_name: str = "event_admission") -> Celery:
    redis_url = get_redis_url()
    celery = Celery(app_name, broker=redis_url, backend=redis_url, include=["event_admission.tasks"])
    celery.conf.task_serializer = "json"
    celery.conf.result_serializer = "json"
    celery.conf.accept_content = ["json"]
    celery.conf.result_persistent = False
    celery.conf.task_track_started = True
    celery.conf.task_ignore_result = True
    celery.conf.beat_schedule = {
        "expire-waitlist-offers": {
            "task": "event_admission.tasks.expire_waitlist_offers",
            "schedule": float(settings.waitlist_sweep_interval_seconds),
        },
    }
    return celery


celery_app = make_celery()
