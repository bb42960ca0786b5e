"""Retell call synchronization.

A run resolves its scopes (one per roster agent, or a single unfiltered scope
in global mode), pages each scope's calls to exhaustion and reconciles every
record against the store. Records are committed one by one; a bad record is
counted as failed and never stops its page.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from callsync.core.config import Settings, settings as default_settings
from callsync.core.database import SessionLocal
from callsync.schemas import (
    ConnectivityResult,
    ResolvedOwnership,
    RunStatus,
    RunSummary,
    Scope,
    SyncMode,
)
from callsync.services.mapper import MappingError, extract_call_id, map_call
from callsync.services.pricing import RatePolicy
from callsync.services.reporter import Outcome, RunReporter
from callsync.services.retell_client import (
    CallSource,
    RetellAuthError,
    RetellClient,
    RetellError,
    RetellRejectedError,
    RetellTransientError,
)
from callsync.services.scope import ScopeResolver
from callsync.services.store import CallStore, DedupGate, SqlCallStore, WriteOutcome

logger = logging.getLogger(__name__)

ENRICHMENT_FIELDS = ("transcript", "recording_url")


class PaginationError(RuntimeError):
    """Upstream said there are more pages but gave no token to fetch them."""


def _needs_enrichment(raw: Dict[str, Any]) -> bool:
    return any(not raw.get(field) for field in ENRICHMENT_FIELDS)


def _call_label(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("call_id") or "<missing call_id>")
    return "<invalid record>"


class SyncOrchestrator:
    def __init__(
        self,
        source: CallSource,
        store: CallStore,
        scope_resolver: ScopeResolver,
        rate_policy: Optional[RatePolicy] = None,
        global_page_size: int = 100,
        scoped_page_size: int = 50,
        max_pages_per_scope: int = 20,
        page_delay_seconds: float = 0.2,
        workers: int = 1,
        enrich_missing_details: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.source = source
        self.store = store
        self.dedup = DedupGate(store)
        self.scope_resolver = scope_resolver
        self.rate_policy = rate_policy or RatePolicy()
        self.global_page_size = global_page_size
        self.scoped_page_size = scoped_page_size
        self.max_pages_per_scope = max(1, max_pages_per_scope)
        self.page_delay_seconds = page_delay_seconds
        self.workers = max(1, workers)
        self.enrich_missing_details = enrich_missing_details
        self.sleep = sleep
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(
        cls,
        source: CallSource,
        session_factory: Callable[[], Session],
        config: Settings = default_settings,
        **overrides,
    ) -> "SyncOrchestrator":
        options = dict(
            rate_policy=RatePolicy(config.fallback_rate_per_minute),
            global_page_size=config.global_page_size,
            scoped_page_size=config.scoped_page_size,
            max_pages_per_scope=config.max_pages_per_scope,
            page_delay_seconds=config.page_delay_seconds,
            workers=config.sync_workers,
            enrich_missing_details=config.enrich_missing_details,
        )
        options.update(overrides)
        return cls(source, SqlCallStore(session_factory), ScopeResolver(session_factory), **options)

    def run(
        self, mode: Union[SyncMode, str] = SyncMode.SCOPED, cancel_event: Optional[threading.Event] = None
    ) -> RunSummary:
        mode = SyncMode(mode)
        if mode is SyncMode.CONNECTIVITY_TEST:
            raise ValueError("connectivity-test is not an ingestion mode; use run_sync")
        cancel_event = cancel_event or threading.Event()
        reporter = RunReporter(mode)

        logger.info("Sync %s: resolving scopes", mode.value)
        if mode is SyncMode.SCOPED:
            scopes = self.scope_resolver.resolve_scopes()
            page_size = self.scoped_page_size
        else:
            scopes = [Scope()]
            page_size = self.global_page_size
        reporter.scopes_found = len(scopes)

        abort_event = threading.Event()

        def should_stop() -> bool:
            return cancel_event.is_set() or abort_event.is_set()

        fatal: Optional[RetellAuthError] = None
        fatal_scope = ""
        if self.workers == 1 or len(scopes) <= 1:
            for scope in scopes:
                if should_stop():
                    break
                try:
                    self._sync_scope(scope, mode, page_size, reporter, should_stop)
                except RetellAuthError as exc:
                    fatal, fatal_scope = exc, scope.label
                    break
        else:
            workers = min(self.workers, len(scopes))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="callsync-scope") as pool:
                futures = {
                    pool.submit(self._sync_scope, scope, mode, page_size, reporter, should_stop): scope
                    for scope in scopes
                }
                for future in as_completed(futures):
                    try:
                        future.result()
                    except RetellAuthError as exc:
                        abort_event.set()
                        if fatal is None:
                            fatal, fatal_scope = exc, futures[future].label

        if fatal is not None:
            logger.error("Sync %s aborted by upstream: %s", mode.value, fatal)
            if not reporter.has_progress:
                raise fatal
            reporter.add_error(fatal_scope, fatal)
            status = RunStatus.ABORTED
        elif cancel_event.is_set():
            status = RunStatus.CANCELLED
        elif reporter.has_errors:
            status = RunStatus.COMPLETED_WITH_ERRORS
        elif reporter.hit_page_limit:
            status = RunStatus.TRUNCATED
        else:
            status = RunStatus.COMPLETED

        summary = reporter.finalize(status)
        logger.info(
            "Sync %s %s: fetched=%s processed=%s synced=%s skipped=%s failed=%s scopes=%s/%s",
            mode.value,
            summary.status.value,
            summary.fetched,
            summary.processed,
            summary.synced,
            summary.skipped,
            summary.failed,
            summary.scopes_processed,
            summary.scopes_found,
        )
        return summary

    def _sync_scope(
        self,
        scope: Scope,
        mode: SyncMode,
        page_size: int,
        reporter: RunReporter,
        should_stop: Callable[[], bool],
    ) -> None:
        label = scope.label
        ownership = ResolvedOwnership.from_scope(scope) if mode is SyncMode.SCOPED else None
        token: Optional[str] = None
        pages = 0
        logger.info("Processing scope %s (%s)", label, scope.name or "unnamed")

        while True:
            if should_stop():
                logger.info("Scope %s stopped after %s pages", label, pages)
                return
            try:
                page = self.source.fetch_page(scope.external_agent_id, token, page_size)
            except (RetellTransientError, RetellRejectedError) as exc:
                logger.warning("Scope %s failed on page %s: %s", label, pages + 1, exc)
                reporter.add_error(label, exc)
                return
            pages += 1
            reporter.mark_page(label)
            self._reconcile_page(page.records, ownership, scope.external_agent_id, label, reporter)

            if not page.has_more:
                break
            if not page.next_token:
                logger.warning("Scope %s: has_more without a page token, stopping", label)
                reporter.add_error(label, PaginationError("has_more=true without next_page_token"))
                break
            if pages >= self.max_pages_per_scope:
                logger.warning("Scope %s reached the page limit (%s)", label, self.max_pages_per_scope)
                reporter.mark_page_limit(label)
                break
            token = page.next_token
            self.sleep(self.page_delay_seconds)

        reporter.mark_scope_done(label)
        logger.info("Completed scope %s after %s pages", label, pages)

    def _reconcile_page(
        self,
        records: List[Any],
        ownership: Optional[ResolvedOwnership],
        scope_agent_id: Optional[str],
        label: str,
        reporter: RunReporter,
    ) -> None:
        for raw in records:
            reporter.record(Outcome.FETCHED, label)
            try:
                outcome = self._process_record(raw, ownership, scope_agent_id)
            except MappingError as exc:
                logger.warning("Dropping call record in scope %s: %s", label, exc)
                outcome = Outcome.FAILED
            except Exception:
                logger.exception("Error processing call %s", _call_label(raw))
                outcome = Outcome.FAILED
            reporter.record(outcome, label)

    def _process_record(
        self, raw: Any, ownership: Optional[ResolvedOwnership], scope_agent_id: Optional[str] = None
    ) -> Outcome:
        call_id = extract_call_id(raw)
        if self.dedup.exists(call_id):
            logger.debug("Call %s already exists, skipping", call_id)
            return Outcome.SKIPPED

        if self.enrich_missing_details and _needs_enrichment(raw):
            raw = self._enrich(call_id, raw)
        if ownership is None:
            agent_id = raw.get("agent_id")
            ownership = self.scope_resolver.resolve_ownership(
                agent_id if isinstance(agent_id, str) else None
            )

        record = map_call(
            raw, ownership, self.rate_policy, now=self.clock(), fallback_agent_id=scope_agent_id
        )
        result = self.store.upsert(record)
        if result.outcome is WriteOutcome.WRITTEN:
            return Outcome.SYNCED
        if result.outcome is WriteOutcome.ALREADY_EXISTS:
            return Outcome.SKIPPED
        logger.warning("Call %s not stored: %s", call_id, result.error)
        return Outcome.FAILED

    def _enrich(self, call_id: str, raw: Dict[str, Any]) -> Dict[str, Any]:
        try:
            details = self.source.fetch_details(call_id)
        except RetellError as exc:
            logger.warning("Could not fetch details for call %s: %s", call_id, exc)
            return raw
        merged = dict(raw)
        for key, value in details.items():
            if merged.get(key) in (None, ""):
                merged[key] = value
        return merged


def run_sync(
    mode: Union[SyncMode, str] = SyncMode.SCOPED,
    session_factory: Optional[Callable[[], Session]] = None,
    source: Optional[CallSource] = None,
    config: Settings = default_settings,
    cancel_event: Optional[threading.Event] = None,
    **overrides,
) -> Union[RunSummary, ConnectivityResult]:
    """Entry point for every caller: CLI, scheduled task and HTTP."""
    mode = SyncMode(mode)
    owned_client: Optional[RetellClient] = None
    if source is None:
        source = owned_client = RetellClient.from_settings(config)
    try:
        if mode is SyncMode.CONNECTIVITY_TEST:
            return source.test_connectivity()
        orchestrator = SyncOrchestrator.from_settings(
            source, session_factory or SessionLocal, config, **overrides
        )
        return orchestrator.run(mode, cancel_event)
    finally:
        if owned_client is not None:
            owned_client.close()
