from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncMode(str, Enum):
    SCOPED = "scoped"
    GLOBAL = "global"
    CONNECTIVITY_TEST = "connectivity-test"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    TRUNCATED = "truncated"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


class CallPage(BaseModel):
    """One page of the upstream call listing. Records stay untrusted raw values."""

    records: List[Any] = Field(default_factory=list)
    has_more: bool = False
    next_token: Optional[str] = None


class Scope(BaseModel):
    """A roster entry selected for a scoped sync run."""

    local_agent_id: Optional[int] = None
    external_agent_id: Optional[str] = None
    owner_user_id: Optional[str] = None
    organization_id: Optional[str] = None
    rate_per_minute: Optional[Decimal] = None
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.external_agent_id or "global"


class ResolvedOwnership(BaseModel):
    local_agent_id: Optional[int] = None
    owner_user_id: Optional[str] = None
    organization_id: Optional[str] = None
    rate_per_minute: Optional[Decimal] = None

    model_config = {"frozen": True}

    @property
    def is_resolved(self) -> bool:
        return self.local_agent_id is not None

    @classmethod
    def from_scope(cls, scope: Scope) -> "ResolvedOwnership":
        return cls(
            local_agent_id=scope.local_agent_id,
            owner_user_id=scope.owner_user_id,
            organization_id=scope.organization_id,
            rate_per_minute=scope.rate_per_minute,
        )


UNRESOLVED = ResolvedOwnership()


class NormalizedCallRecord(BaseModel):
    call_id: str
    user_id: Optional[str] = None
    company_id: Optional[str] = None
    agent_id: Optional[int] = None
    retell_agent_id: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_sec: int = Field(default=0, ge=0)
    cost_usd: Decimal = Decimal("0")
    revenue_amount: Decimal = Decimal("0")
    call_status: str = "unknown"
    call_type: str = "phone_call"
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    disconnection_reason: Optional[str] = None
    disposition: Optional[str] = None
    recording_url: Optional[str] = None
    transcript: Optional[str] = None
    transcript_url: Optional[str] = None
    sentiment: Optional[str] = None
    sentiment_score: Optional[float] = None
    call_summary: Optional[str] = None
    latency_ms: Optional[int] = None
    is_degraded: bool = False
    defaulted_fields: List[str] = Field(default_factory=list)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        """Column values for the ``call_records`` table."""
        return self.model_dump(exclude={"defaulted_fields"})


class ScopeError(BaseModel):
    scope: str
    error_type: str
    message: str


class ScopeSummary(BaseModel):
    scope: str
    fetched: int = 0
    processed: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    pages: int = 0
    page_limit_reached: bool = False
    completed: bool = False


class RunSummary(BaseModel):
    mode: SyncMode
    status: RunStatus
    fetched: int = 0
    processed: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    scopes_found: int = 0
    scopes_processed: int = 0
    pages_fetched: int = 0
    errors: List[ScopeError] = Field(default_factory=list)
    page_limit_reached: List[str] = Field(default_factory=list)
    per_scope: List[ScopeSummary] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime


class ConnectivityResult(BaseModel):
    reachable: bool
    sample_count: int = 0
    has_more: bool = False
    error: Optional[str] = None
