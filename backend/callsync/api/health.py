import logging

import redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from callsync.core.config import settings
from callsync.core.database import get_db

router = APIRouter(tags=["health"])

logger = logging.getLogger(__name__)


def get_redis() -> redis.Redis:
    return redis.Redis.from_url(settings.redis_url, socket_timeout=settings.request_timeout_seconds)


@router.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name}


@router.get("/ready")
def ready(db: Session = Depends(get_db), redis_client: redis.Redis = Depends(get_redis)):
    checks = {"database": "ok", "broker": "ok"}
    checks["retell_api_key"] = "configured" if settings.retell_api_key else "missing"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness check: database unavailable: %s", exc)
        checks["database"] = "unavailable"
    try:
        redis_client.ping()
    except redis.RedisError as exc:
        logger.warning("Readiness check: broker unavailable: %s", exc)
        checks["broker"] = "unavailable"
    is_ready = checks["database"] == "ok" and checks["broker"] == "ok"
    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={"status": "ready" if is_ready else "not_ready", "checks": checks},
    )
