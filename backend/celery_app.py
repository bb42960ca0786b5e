from celery import Celery
from celery.signals import setup_logging

from callsync.core.config import settings
from callsync.core.logging import configure_logging

celery_app = Celery(
    "callsync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["callsync.tasks"],
)

celery_app.conf.beat_schedule = {
    "sync-retell-calls": {
        "task": "callsync.tasks.sync_retell_calls",
        "schedule": float(settings.sync_interval_seconds),
        "kwargs": {"mode": settings.default_sync_mode},
    }
}


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(settings.log_level)
