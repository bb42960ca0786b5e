import enum
import threading
from datetime import datetime, timezone
from typing import Dict, List

from callsync.schemas import RunStatus, RunSummary, ScopeError, ScopeSummary, SyncMode


class Outcome(enum.Enum):
    FETCHED = "fetched"
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


_PROCESSED = {Outcome.SYNCED, Outcome.SKIPPED, Outcome.FAILED}


class RunReporter:
    """Per-scope tallies for one run, safe to share between scope workers."""

    def __init__(self, mode: SyncMode) -> None:
        self.mode = mode
        self.started_at = datetime.now(timezone.utc)
        self.scopes_found = 0
        self._scopes: Dict[str, ScopeSummary] = {}
        self._errors: List[ScopeError] = []
        self._lock = threading.Lock()
        self._finalized = False

    def _scope(self, scope: str) -> ScopeSummary:
        tally = self._scopes.get(scope)
        if tally is None:
            tally = self._scopes[scope] = ScopeSummary(scope=scope)
        return tally

    def record(self, outcome: Outcome, scope: str) -> None:
        with self._lock:
            tally = self._scope(scope)
            setattr(tally, outcome.value, getattr(tally, outcome.value) + 1)
            if outcome in _PROCESSED:
                tally.processed += 1

    def mark_page(self, scope: str) -> None:
        with self._lock:
            self._scope(scope).pages += 1

    def mark_page_limit(self, scope: str) -> None:
        with self._lock:
            self._scope(scope).page_limit_reached = True

    def mark_scope_done(self, scope: str) -> None:
        with self._lock:
            self._scope(scope).completed = True

    def add_error(self, scope: str, error: BaseException) -> None:
        with self._lock:
            self._scope(scope)
            self._errors.append(
                ScopeError(scope=scope, error_type=type(error).__name__, message=str(error))
            )

    @property
    def processed(self) -> int:
        with self._lock:
            return sum(tally.processed for tally in self._scopes.values())

    @property
    def has_progress(self) -> bool:
        """True once any scope has fetched a page or recorded an error."""
        with self._lock:
            return bool(self._scopes)

    @property
    def has_errors(self) -> bool:
        with self._lock:
            return bool(self._errors) or any(tally.failed for tally in self._scopes.values())

    @property
    def hit_page_limit(self) -> bool:
        with self._lock:
            return any(tally.page_limit_reached for tally in self._scopes.values())

    def finalize(self, status: RunStatus) -> RunSummary:
        with self._lock:
            if self._finalized:
                raise RuntimeError("run summary already finalized")
            self._finalized = True
            scopes = [tally.model_copy() for tally in self._scopes.values()]
            errors = list(self._errors)
        return RunSummary(
            mode=self.mode,
            status=status,
            fetched=sum(s.fetched for s in scopes),
            processed=sum(s.processed for s in scopes),
            synced=sum(s.synced for s in scopes),
            skipped=sum(s.skipped for s in scopes),
            failed=sum(s.failed for s in scopes),
            scopes_found=self.scopes_found,
            scopes_processed=sum(1 for s in scopes if s.completed),
            pages_fetched=sum(s.pages for s in scopes),
            errors=errors,
            page_limit_reached=[s.scope for s in scopes if s.page_limit_reached],
            per_scope=scopes,
            started_at=self.started_at,
            finished_at=datetime.now(timezone.utc),
        )
