import logging
import threading
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from callsync.models import Agent, UserAgent
from callsync.schemas import ResolvedOwnership, Scope, UNRESOLVED

logger = logging.getLogger(__name__)


def _pick_mapping(agent: Agent) -> Optional[UserAgent]:
    mappings = list(agent.user_agents or [])
    for mapping in mappings:
        if mapping.is_primary:
            return mapping
    return mappings[0] if mappings else None


def _scope_for(agent: Agent) -> Scope:
    mapping = _pick_mapping(agent)
    return Scope(
        local_agent_id=agent.id,
        external_agent_id=agent.retell_agent_id,
        owner_user_id=mapping.user_id if mapping else None,
        organization_id=mapping.company_id if mapping else None,
        rate_per_minute=agent.rate_per_minute,
        name=agent.name,
    )


class ScopeResolver:
    """Reads the agent roster. Lookups are cached for the lifetime of the instance,
    so build one per sync run."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory
        self._ownership: Dict[str, ResolvedOwnership] = {}
        self._lock = threading.Lock()

    def resolve_scopes(self) -> List[Scope]:
        db = self.session_factory()
        try:
            agents = (
                db.query(Agent)
                .options(selectinload(Agent.user_agents))
                .filter(Agent.retell_agent_id.isnot(None), Agent.status == "active")
                .order_by(Agent.id)
                .all()
            )
            scopes = [_scope_for(agent) for agent in agents]
        finally:
            db.close()
        for scope in scopes:
            if scope.owner_user_id is None:
                logger.warning(
                    "No user mapping for agent %s (%s); calls will sync without an owner",
                    scope.local_agent_id,
                    scope.external_agent_id,
                )
        logger.info("Found %s agents with Retell integration", len(scopes))
        return scopes

    def resolve_ownership(self, external_agent_id: Optional[str]) -> ResolvedOwnership:
        if not external_agent_id:
            return UNRESOLVED
        with self._lock:
            cached = self._ownership.get(external_agent_id)
        if cached is not None:
            return cached

        db = self.session_factory()
        try:
            agent = (
                db.query(Agent)
                .options(selectinload(Agent.user_agents))
                .filter(Agent.retell_agent_id == external_agent_id)
                .first()
            )
            ownership = ResolvedOwnership.from_scope(_scope_for(agent)) if agent else UNRESOLVED
        finally:
            db.close()
        if not ownership.is_resolved:
            logger.debug("No local agent for Retell agent %s", external_agent_id)
        with self._lock:
            self._ownership[external_agent_id] = ownership
        return ownership
