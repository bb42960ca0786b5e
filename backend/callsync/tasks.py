from celery import shared_task
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from callsync.core.config import settings
from callsync.core.database import SessionLocal
from callsync.services.audit import log_sync_result
from callsync.services.sync import run_sync


@shared_task(
    name="callsync.tasks.sync_retell_calls",
    bind=True,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 5},
)
def sync_retell_calls(self, mode: str | None = None) -> dict:
    result = run_sync(mode or settings.default_sync_mode, session_factory=SessionLocal)
    db: Session = SessionLocal()
    try:
        log_sync_result(db, result, source="celery")
    finally:
        db.close()
    return result.model_dump(mode="json")
