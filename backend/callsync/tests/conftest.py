import os
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RETELL_API_KEY", "test-key")

import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from callsync.api import health
from callsync.api import sync as sync_api
from callsync.core import database
from callsync.core.database import init_db
from callsync.main import app
from callsync.models import Agent, UserAgent
from callsync.tests.fakes import RecordingSleep


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'callsync.db'}", connect_args={"check_same_thread": False, "timeout": 30}
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def roster(session_factory):
    """Two active agents (one mapped, one not), plus an inactive one."""
    db = session_factory()
    mapped = Agent(retell_agent_id="ag_mapped", name="Sales", rate_per_minute=Decimal("0.20"))
    orphan = Agent(retell_agent_id="ag_orphan", name="Support")
    inactive = Agent(retell_agent_id="ag_inactive", name="Old", status="inactive")
    db.add_all([mapped, orphan, inactive])
    db.flush()
    db.add_all(
        [
            UserAgent(user_id="user-2", company_id="company-2", agent_id=mapped.id),
            UserAgent(user_id="user-1", company_id="company-1", agent_id=mapped.id, is_primary=True),
        ]
    )
    db.commit()
    ids = {"mapped": mapped.id, "orphan": orphan.id, "inactive": inactive.id}
    db.close()
    return ids


@pytest.fixture()
def sleep():
    return RecordingSleep()


class _Broker:
    def __init__(self, up=True):
        self.up = up

    def ping(self):
        if not self.up:
            raise redis.ConnectionError("connection refused")
        return True


@pytest.fixture()
def broker():
    return _Broker()


@pytest.fixture()
def client(session_factory, broker):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[health.get_redis] = lambda: broker
    app.dependency_overrides[sync_api.get_session_factory] = lambda: session_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
