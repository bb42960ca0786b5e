from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool

from callsync.core.database import SessionLocal
from callsync.schemas import ConnectivityResult, RunSummary, SyncMode
from callsync.services.retell_client import CallSource, RetellAuthError, RetellConfigurationError
from callsync.services.sync import run_sync

router = APIRouter(prefix="/sync", tags=["sync"])


def get_session_factory():
    return SessionLocal


def get_call_source() -> Optional[CallSource]:
    """``None`` lets ``run_sync`` build a Retell client from settings."""
    return None


@router.post("", response_model=Union[RunSummary, ConnectivityResult])
async def trigger_sync(
    mode: SyncMode = Query(SyncMode.SCOPED),
    session_factory=Depends(get_session_factory),
    source: Optional[CallSource] = Depends(get_call_source),
):
    try:
        return await run_in_threadpool(run_sync, mode, session_factory=session_factory, source=source)
    except RetellConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RetellAuthError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
