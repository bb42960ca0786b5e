import logging

from fastapi import FastAPI

from callsync.api import health, sync
from callsync.core.config import settings
from callsync.core.database import init_db

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.include_router(health.router)
app.include_router(sync.router)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    if not settings.retell_api_key:
        logger.warning("RETELL_API_KEY is not set; /sync will return 503")
