from datetime import datetime, timezone
from decimal import Decimal

from callsync.models import Agent, CallRecord
from callsync.schemas import NormalizedCallRecord
from callsync.services.scope import ScopeResolver
from callsync.services.store import SqlCallStore, WriteOutcome


def _record(call_id, **fields):
    return NormalizedCallRecord(
        call_id=call_id, start_time=datetime(2024, 1, 1, tzinfo=timezone.utc), **fields
    )


def test_store_writes_once(session_factory):
    store = SqlCallStore(session_factory)

    first = store.upsert(_record("c1", cost_usd=Decimal("0.1234"), raw_payload={"call_id": "c1"}))
    second = store.upsert(_record("c1"))

    assert first.outcome is WriteOutcome.WRITTEN
    assert second.outcome is WriteOutcome.ALREADY_EXISTS
    assert store.exists("c1")
    assert not store.exists("c2")
    assert store.count() == 1


def test_scopes_are_active_agents_with_primary_owner(session_factory, roster):
    scopes = ScopeResolver(session_factory).resolve_scopes()

    assert [scope.external_agent_id for scope in scopes] == ["ag_mapped", "ag_orphan"]
    mapped, orphan = scopes
    assert (mapped.local_agent_id, mapped.owner_user_id, mapped.organization_id) == (
        roster["mapped"],
        "user-1",
        "company-1",
    )
    assert mapped.rate_per_minute == Decimal("0.20")
    assert (orphan.owner_user_id, orphan.organization_id) == (None, None)


def test_agent_without_external_id_is_not_a_scope(session_factory, roster):
    db = session_factory()
    db.add(Agent(name="Draft"))
    db.commit()
    db.close()

    scopes = ScopeResolver(session_factory).resolve_scopes()

    assert len(scopes) == 2


def test_ownership_lookup(session_factory, roster):
    resolver = ScopeResolver(session_factory)

    mapped = resolver.resolve_ownership("ag_mapped")
    unknown = resolver.resolve_ownership("ag_nobody")

    assert mapped.is_resolved
    assert (mapped.local_agent_id, mapped.owner_user_id) == (roster["mapped"], "user-1")
    assert not unknown.is_resolved
    assert not resolver.resolve_ownership(None).is_resolved


def test_ownership_lookup_is_cached_per_resolver(session_factory, roster):
    resolver = ScopeResolver(session_factory)
    resolver.resolve_ownership("ag_mapped")

    db = session_factory()
    db.query(Agent).filter_by(retell_agent_id="ag_mapped").update({"rate_per_minute": Decimal("0.50")})
    db.commit()
    db.close()

    assert resolver.resolve_ownership("ag_mapped").rate_per_minute == Decimal("0.20")
    assert ScopeResolver(session_factory).resolve_ownership("ag_mapped").rate_per_minute == Decimal("0.50")


def test_long_text_is_clipped_to_column_width(session_factory):
    store = SqlCallStore(session_factory)

    result = store.upsert(
        _record("c1", call_status="x" * 200, sentiment="very " * 20, transcript="word " * 5000)
    )

    assert result.outcome is WriteOutcome.WRITTEN
    db = session_factory()
    try:
        row = db.query(CallRecord).filter_by(call_id="c1").one()
    finally:
        db.close()
    assert len(row.call_status) == CallRecord.__table__.c.call_status.type.length
    assert len(row.sentiment) == CallRecord.__table__.c.sentiment.type.length
    assert row.transcript == ("word " * 5000).strip()
