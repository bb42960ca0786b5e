from typing import Union

from sqlalchemy.orm import Session

from callsync.models import AuditLog
from callsync.schemas import ConnectivityResult, RunSummary


def log_event(db: Session, action: str, status: str, message: str = "", metadata: dict | None = None) -> None:
    entry = AuditLog(
        action=action,
        status=status,
        message=message[:255],
        details=metadata or {},
    )
    db.add(entry)
    db.commit()


def log_sync_result(db: Session, result: Union[RunSummary, ConnectivityResult], source: str) -> None:
    if isinstance(result, ConnectivityResult):
        status = "success" if result.reachable else "failure"
        log_event(
            db,
            "retell_connectivity_test",
            status,
            message=result.error or f"{result.sample_count} sample call(s)",
            metadata={"source": source, **result.model_dump()},
        )
        return
    message = (
        f"synced={result.synced} skipped={result.skipped} failed={result.failed} "
        f"errors={len(result.errors)}"
    )
    log_event(
        db,
        f"sync_calls_{result.mode.value}",
        result.status.value,
        message=message,
        metadata={"source": source, **result.model_dump(mode="json", exclude={"per_scope"})},
    )
