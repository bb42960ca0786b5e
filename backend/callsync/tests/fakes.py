import threading

from callsync.schemas import CallPage, ConnectivityResult, ResolvedOwnership, Scope, UNRESOLVED
from callsync.services.retell_client import RetellTransientError
from callsync.services.store import WriteOutcome, WriteResult


def make_call(call_id, agent_id="ag_mapped", **fields):
    call = {
        "call_id": call_id,
        "agent_id": agent_id,
        "start_timestamp": 1700000000,
        "duration_sec": 60,
        "call_status": "ended",
    }
    call.update(fields)
    return call


class FakeCallSource:
    """Serves pre-built calls per agent id (``None`` is the global listing)."""

    def __init__(self, calls=None, page_size=None, always_more=False, errors=None, details=None):
        self.calls = calls or {}
        self.forced_page_size = page_size
        self.always_more = always_more
        self.errors = errors or {}
        self.details = details or {}
        self.requests = []
        self.detail_requests = []
        self._lock = threading.Lock()

    def fetch_page(self, scope_filter=None, continuation_token=None, page_size=100):
        with self._lock:
            self.requests.append((scope_filter, continuation_token, page_size))
        error = self.errors.get(scope_filter)
        if error is not None:
            raise error
        size = self.forced_page_size or page_size
        offset = int(continuation_token or 0)
        records = self.calls.get(scope_filter, [])[offset : offset + size]
        next_offset = offset + size
        has_more = self.always_more or next_offset < len(self.calls.get(scope_filter, []))
        return CallPage(records=records, has_more=has_more, next_token=str(next_offset) if has_more else None)

    def fetch_details(self, external_call_id):
        with self._lock:
            self.detail_requests.append(external_call_id)
        detail = self.details.get(external_call_id)
        if isinstance(detail, Exception):
            raise detail
        if detail is None:
            raise RetellTransientError(404, "call not found")
        return detail

    def test_connectivity(self):
        return ConnectivityResult(reachable=True, sample_count=min(1, len(self.calls.get(None, []))))


class InMemoryCallStore:
    def __init__(self, fail_on=()):
        self.records = {}
        self.fail_on = set(fail_on)
        self.write_attempts = []
        self._lock = threading.Lock()

    def exists(self, call_id):
        with self._lock:
            return call_id in self.records

    def upsert(self, record):
        with self._lock:
            self.write_attempts.append(record.call_id)
            if record.call_id in self.fail_on:
                return WriteResult(WriteOutcome.ERROR, "disk full")
            if record.call_id in self.records:
                return WriteResult(WriteOutcome.ALREADY_EXISTS)
            self.records[record.call_id] = record
            return WriteResult(WriteOutcome.WRITTEN)

    def count(self):
        with self._lock:
            return len(self.records)


class StaticScopeResolver:
    def __init__(self, scopes=(), ownership=None):
        self.scopes = list(scopes)
        self.ownership = ownership or {}

    def resolve_scopes(self):
        return list(self.scopes)

    def resolve_ownership(self, external_agent_id):
        return self.ownership.get(external_agent_id, UNRESOLVED)


def make_scope(external_agent_id, local_agent_id=1, owner="user-1", org="company-1", rate=None):
    return Scope(
        local_agent_id=local_agent_id,
        external_agent_id=external_agent_id,
        owner_user_id=owner,
        organization_id=org,
        rate_per_minute=rate,
    )


def make_ownership(local_agent_id=1, owner="user-1", org="company-1", rate=None):
    return ResolvedOwnership(
        local_agent_id=local_agent_id, owner_user_id=owner, organization_id=org, rate_per_minute=rate
    )


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)
