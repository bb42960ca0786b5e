import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from sqlalchemy import String, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from callsync.models import CallRecord
from callsync.schemas import NormalizedCallRecord

logger = logging.getLogger(__name__)


class WriteOutcome(enum.Enum):
    WRITTEN = "written"
    ALREADY_EXISTS = "already_exists"
    ERROR = "error"


@dataclass(frozen=True)
class WriteResult:
    outcome: WriteOutcome
    error: Optional[str] = None


class CallStore(Protocol):
    def exists(self, call_id: str) -> bool:
        ...

    def upsert(self, record: NormalizedCallRecord) -> WriteResult:
        ...

    def count(self) -> int:
        ...


def _fit_columns(row: Dict[str, Any]) -> Dict[str, Any]:
    """Clip free-text values to their column width. Unique keys are left alone."""
    for column in CallRecord.__table__.columns:
        value = row.get(column.key)
        length = getattr(column.type, "length", None)
        if column.unique or not isinstance(column.type, String) or not length:
            continue
        if isinstance(value, str) and len(value) > length:
            logger.debug("Clipping %s from %s to %s characters", column.key, len(value), length)
            row[column.key] = value[:length]
    return row


class SqlCallStore:
    """``call_records`` table access, one session per operation.

    The unique constraint on ``call_id`` is the only guard against two workers
    writing the same call; a violation comes back as ``ALREADY_EXISTS``.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def exists(self, call_id: str) -> bool:
        db = self.session_factory()
        try:
            return db.query(CallRecord.id).filter(CallRecord.call_id == call_id).first() is not None
        finally:
            db.close()

    def upsert(self, record: NormalizedCallRecord) -> WriteResult:
        db = self.session_factory()
        try:
            db.add(CallRecord(**_fit_columns(record.to_row())))
            db.commit()
            return WriteResult(WriteOutcome.WRITTEN)
        except IntegrityError as exc:
            db.rollback()
            if not self.exists(record.call_id):
                logger.error("Integrity error storing call %s: %s", record.call_id, exc)
                return WriteResult(WriteOutcome.ERROR, f"IntegrityError: {exc.orig}")
            logger.info("Call %s already stored, treating as synced", record.call_id)
            return WriteResult(WriteOutcome.ALREADY_EXISTS)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to store call %s: %s", record.call_id, exc)
            return WriteResult(WriteOutcome.ERROR, f"{type(exc).__name__}: {exc}")
        finally:
            db.close()

    def count(self) -> int:
        db = self.session_factory()
        try:
            return db.query(func.count(CallRecord.id)).scalar() or 0
        finally:
            db.close()


class DedupGate:
    def __init__(self, store: CallStore) -> None:
        self.store = store

    def exists(self, call_id: str) -> bool:
        return self.store.exists(call_id)
