"""
Recall Engine

Per-user orchestrator that wires the identity components to the transcript
stream and the oracles:
- Final transcript fragments are attributed, buffered and debounced into
  extraction and reconciliation calls
- Oracle calls run as scheduler tasks with bounded timeouts; results are
  re-validated against the store under a per-engine lock
- Suggest-tier proposals wait in a queue for confirmation
- Record changes are re-published on engine.events, debounced per record
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

import structlog

from recall.core.config import RecallConfig, get_config
from recall.identity.aggregator import (
    AggregationResult,
    CandidateAggregator,
    Transition,
    append_action_items,
)
from recall.identity.attribution import classify
from recall.identity.dedup import BatchResult, DuplicateDetector
from recall.identity.events import RecordEvents
from recall.identity.merge import MergeEngine
from recall.identity.query import QueryResolution, QueryResolver, detect_voice_query, is_query_continuation
from recall.identity.router import ConfidenceRouter
from recall.identity.scheduler import Scheduler
from recall.identity.store import RecordStore
from recall.identity.grouping import RecordGroup, group_records
from recall.identity.text import build_contact_url, matches_all_prefixes, tail
from recall.identity.types import (
    Candidate,
    MergeProposal,
    PersonCategory,
    Proposal,
    RecallError,
    Record,
    RoutingAction,
    StoreSnapshot,
    Suggestion,
    TranscriptSegment,
    UpdateProposal,
)
from recall.oracles.base import ExtractionOracle, IdentityOracle, IdentityVerdict
from recall.oracles.caller import LLMCaller
from recall.oracles.extraction import LLMExtractionOracle
from recall.oracles.identity import LLMIdentityOracle
from recall.oracles.llm.base import LLMClient
from recall.oracles.usage import UsageLog

logger = structlog.get_logger(__name__)

EXTRACTION_WINDOW_CHARS = 4000

JOB_EXTRACT = "extract"
JOB_RECONCILE = "reconcile"
JOB_ORACLE_DEDUP = "oracle_dedup"
PERSIST_PREFIX = "persist:"


@dataclass
class IngestOutcome:
    """What one transcript fragment did."""
    segment: Optional[TranscriptSegment] = None
    query: Optional[QueryResolution] = None
    interim: bool = False


@dataclass
class DedupReport:
    local: BatchResult = field(default_factory=BatchResult)
    oracle: BatchResult = field(default_factory=BatchResult)

    @property
    def merged_count(self) -> int:
        return self.local.merged_count + self.oracle.merged_count

    def to_dict(self) -> dict[str, Any]:
        return {"local": self.local.to_dict(), "oracle": self.oracle.to_dict()}


class RecallEngine:
    """
    Identity reconciliation for one user.

    All store mutation happens on the event loop: store methods are
    synchronous, and multi-step applies hold self._lock. Readers use
    snapshot() and never wait.
    """

    def __init__(
        self,
        config: Optional[RecallConfig] = None,
        extraction_oracle: Optional[ExtractionOracle] = None,
        identity_oracle: Optional[IdentityOracle] = None,
        user_id: str = "default",
        usage: Optional[UsageLog] = None,
    ):
        self.config = config or get_config()
        self.user_id = user_id
        self.extraction_oracle = extraction_oracle
        self.identity_oracle = identity_oracle
        self.usage = usage

        self.store = RecordStore()
        self.router = ConfidenceRouter(self.config.router)
        self.merge_engine = MergeEngine(self.store)
        self.detector = DuplicateDetector(self.store, self.router, self.merge_engine, self.config.dedup)
        self.aggregator = CandidateAggregator(self.store, self.config.aggregator)
        self.resolver = QueryResolver(self.config.query)
        self.scheduler = Scheduler(name=f"engine:{user_id}")
        self.events = RecordEvents()

        self._lock = asyncio.Lock()
        self._unsubscribe = [
            self.store.events.on_record_changed(self._on_store_changed),
            self.store.events.on_record_tombstoned(self._on_store_tombstoned),
        ]

        self.session_id: Optional[str] = None
        self.session_started_at: Optional[datetime] = None
        self.transcript = ""
        self.segments: list[TranscriptSegment] = []
        self.event_context: Optional[str] = None
        self.suggestions: dict[str, Suggestion] = {}
        self.last_query: Optional[QueryResolution] = None

        self._window_start = 0
        self._extracted_upto = 0
        self._reconciled_upto = 0
        self._query_open = False
        self._last_oracle_dedup = time.monotonic()
        self._closed = False

    # ==================== Session lifecycle ====================

    @property
    def in_session(self) -> bool:
        return self.session_id is not None

    def start_session(self, session_id: Optional[str] = None) -> str:
        if self._closed:
            raise RecallError("Engine is shut down")
        if self.session_id is not None:
            raise RecallError(f"Session {self.session_id} is already active")

        self.session_id = session_id or str(uuid.uuid4())
        self.session_started_at = datetime.now()
        self.aggregator.session_id = self.session_id
        self.transcript = ""
        self.event_context = None
        self._window_start = 0
        self._extracted_upto = 0
        self._reconciled_upto = 0
        self._close_query()
        self.scheduler.reopen()

        logger.info("Session started", user_id=self.user_id, session_id=self.session_id)
        return self.session_id

    async def end_session(self) -> Optional[str]:
        """
        Finish the current session.

        Pending extraction and reconciliation run first, then the active
        record moves to history, then a dedup pass runs, then pending
        persistence notifications are delivered.
        """
        if self.session_id is None:
            return None
        session_id = self.session_id

        await self.scheduler.flush()

        async with self._lock:
            self.store.release_active()

        await self.run_dedup()
        await self.scheduler.flush()
        await self.events.drain()

        self.session_id = None
        self.aggregator.session_id = None
        self._close_query()

        logger.info(
            "Session ended",
            user_id=self.user_id,
            session_id=session_id,
            records=len(self.store),
            segments=sum(1 for s in self.segments if s.session_id == session_id),
        )
        return session_id

    async def shutdown(self) -> None:
        if self._closed:
            return
        if self.session_id is not None:
            await self.end_session()
        await self.scheduler.shutdown(flush=True)
        await self.events.drain()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._closed = True
        logger.info("Engine shutdown", user_id=self.user_id)

    # ==================== Transcript ingestion ====================

    async def ingest_transcript(self, text: str, is_final: bool = True) -> IngestOutcome:
        """
        Consume one transcript fragment.

        Interim text only refreshes the active record's snippet. Final text is
        attributed, stored and fed to the debounced oracle jobs, unless it is
        a spoken recall query.
        """
        if self.session_id is None:
            raise RecallError("No active session; call start_session() first")

        text = (text or "").strip()
        if not text:
            return IngestOutcome(interim=not is_final)

        if not is_final:
            live = f"{self.transcript} {text}".strip()
            self._refresh_snippet(live)
            return IngestOutcome(interim=True)

        query = self._route_query_speech(text)
        if query is not None:
            return IngestOutcome(query=query)

        active = self.store.get_active()
        segment = TranscriptSegment(
            session_id=self.session_id,
            text=text,
            speaker_label=classify(text),
            record_id=active.id if active else None,
        )
        self.segments.append(segment)
        overflow = len(self.segments) - self.config.ingestion.max_segments
        if overflow > 0:
            del self.segments[:overflow]
        self.transcript = f"{self.transcript} {text}".strip()
        self._refresh_snippet(self.transcript)

        self._schedule_oracle_jobs()
        return IngestOutcome(segment=segment)

    def _route_query_speech(self, text: str) -> Optional[QueryResolution]:
        detected = detect_voice_query(text)
        if detected.is_query:
            self.resolver.reset()
            self.resolver.append(detected.query_text)
            self._query_open = True
            return self.resolve_query()

        if self._query_open:
            if is_query_continuation(text):
                self.resolver.append(text)
                return self.resolve_query()
            self._close_query()
        return None

    def _refresh_snippet(self, text: str) -> None:
        if self.store.get_active() is None:
            return
        snippet = tail(text, self.config.aggregator.snippet_chars)

        def set_snippet(record: Record) -> Record:
            record.transcript_snippet = snippet
            return record

        self.store.update_active(set_snippet)

    def _schedule_oracle_jobs(self) -> None:
        ingestion = self.config.ingestion
        length = len(self.transcript)

        if self.extraction_oracle is not None and length >= ingestion.min_transcript_chars:
            if length - self._extracted_upto >= ingestion.extraction_min_new_chars:
                self.scheduler.schedule(JOB_EXTRACT, ingestion.extraction_debounce_seconds, self._run_extraction)

        if self.identity_oracle is not None:
            new_chars = length - self._reconciled_upto
            if new_chars >= ingestion.reconcile_min_new_chars:
                self.scheduler.schedule(JOB_RECONCILE, 0, self.run_reconciliation)
            elif new_chars > 0:
                self.scheduler.schedule(
                    JOB_RECONCILE,
                    ingestion.reconcile_interval_seconds,
                    self.run_reconciliation,
                    restart=False,
                )

            elapsed = time.monotonic() - self._last_oracle_dedup
            if elapsed >= self.config.dedup.oracle_interval_seconds:
                self.scheduler.schedule(JOB_ORACLE_DEDUP, 0, self.run_dedup, restart=False)

    # ==================== Extraction ====================

    async def _run_extraction(self) -> Optional[AggregationResult]:
        if self.extraction_oracle is None or self.session_id is None:
            return None

        session_id = self.session_id
        upto = len(self.transcript)
        window_start = max(self._window_start, upto - EXTRACTION_WINDOW_CHARS)
        window = self.transcript[window_start:upto]
        previous_upto = self._extracted_upto

        candidate = await self.extraction_oracle.extract(
            window,
            known=self.store.get_active(),
            event_context=self.event_context,
        )
        self._extracted_upto = max(self._extracted_upto, upto)
        if candidate is None or self.session_id != session_id:
            return None

        async with self._lock:
            return self._apply_candidate(candidate, previous_upto)

    async def apply_candidate(self, candidate: Candidate) -> AggregationResult:
        """Feed a candidate straight into the aggregator."""
        if self.session_id is None:
            raise RecallError("No active session; call start_session() first")
        async with self._lock:
            return self._apply_candidate(candidate, len(self.transcript))

    def _apply_candidate(self, candidate: Candidate, window_start: int) -> AggregationResult:
        if candidate.detected_event and not self.event_context:
            self.event_context = candidate.detected_event
            logger.info("Event detected", session_id=self.session_id, detected_event=self.event_context)

        result = self.aggregator.ingest(candidate)

        if result.transition in (Transition.SWITCH, Transition.REENGAGE, Transition.RELEASE):
            # Later extraction calls should describe the new partner only
            self._window_start = window_start

        if result.transition != Transition.IGNORE:
            self._refresh_snippet(self.transcript[self._window_start:])

        if result.transition in (Transition.SWITCH, Transition.REENGAGE):
            self.detector.run_local(on_suggest=self._queue_suggestion)
        return result

    # ==================== Reconciliation ====================

    def _reconcile_scope(self) -> list[Record]:
        """Active record, same-session history and today's history."""
        today = datetime.now().date()
        snapshot = self.store.snapshot()
        records = [snapshot.active] if snapshot.active else []
        for record in snapshot.history:
            if not record.name:
                continue
            if record.session_id == self.session_id or record.created_at.date() == today:
                records.append(record)
        return records

    async def run_reconciliation(self) -> Optional[IdentityVerdict]:
        if self.identity_oracle is None or self.session_id is None:
            return None
        transcript = self.transcript
        if len(transcript.strip()) < self.config.ingestion.min_reconcile_chars:
            return None
        records = self._reconcile_scope()
        if not records:
            return None

        upto = len(transcript)
        verdict = await self.identity_oracle.reconcile(records, transcript=transcript)
        self._reconciled_upto = max(self._reconciled_upto, upto)

        await self.apply_verdict(verdict, source="reconcile")
        return verdict

    async def apply_verdict(self, verdict: IdentityVerdict, source: str = "oracle") -> BatchResult:
        """Route an identity verdict's updates and merges against the live store."""
        async with self._lock:
            for update in verdict.updates:
                self._apply_update_proposal(update)
            return self.detector.apply(verdict.merges, on_suggest=self._queue_suggestion, source=source)

    def _apply_update_proposal(self, update: UpdateProposal, confirmed: bool = False) -> bool:
        action = RoutingAction.AUTO_APPLY if confirmed else self.router.route(update.confidence)
        if action == RoutingAction.DISCARD:
            return False

        if self.store.is_tombstoned(update.record_id) or not self.store.exists(update.record_id):
            logger.info("Skipping update for unavailable record", record_id=update.record_id)
            return False

        if action == RoutingAction.SUGGEST:
            self._queue_suggestion(update)
            return False

        changes = dict(update.changes)
        if self.aggregator.is_self_name(changes.get("name")):
            changes.pop("name")
        if not changes:
            return False

        updated = self.store.update(update.record_id, lambda r: self._apply_changes(r, changes))
        if updated is not None:
            logger.info(
                "Record updated",
                record_id=update.record_id,
                fields=sorted(changes),
                confidence=update.confidence,
                reason=update.reason,
            )
        return updated is not None

    def _apply_changes(self, record: Record, changes: dict[str, Any]) -> Record:
        for field_name in ("name", "company", "role"):
            value = changes.get(field_name)
            if value:
                setattr(record, field_name, value)

        category = PersonCategory.parse(changes.get("category"))
        if category and category != PersonCategory.OTHER and record.category == PersonCategory.OTHER:
            record.category = category

        if changes.get("summary"):
            record.summary = changes["summary"]

        if changes.get("action_items"):
            aggregator_config = self.config.aggregator
            record.action_items = append_action_items(
                record.action_items,
                changes["action_items"],
                aggregator_config.action_item_overlap,
                aggregator_config.max_action_items,
            )

        record.contact_url = build_contact_url(record.name, record.company)
        return record

    # ==================== Deduplication ====================

    async def run_dedup(self, use_oracle: bool = True, whole_set: bool = False) -> DedupReport:
        """
        Local heuristic pass, then (optionally) an identity oracle pass.

        The oracle judges ambiguous pairs, or every named record when
        whole_set is set.
        """
        report = DedupReport()
        async with self._lock:
            report.local = self.detector.run_local(on_suggest=self._queue_suggestion)

        if not use_oracle or self.identity_oracle is None:
            return report

        self._last_oracle_dedup = time.monotonic()
        snapshot = self.store.snapshot()
        records = [r for r in snapshot.all_records() if r.name]
        if len(records) < 2:
            return report

        if whole_set:
            verdict = await self.identity_oracle.reconcile(records)
        else:
            pairs = self.detector.ambiguous_pairs(snapshot)
            if not pairs:
                return report
            verdict = await self.identity_oracle.reconcile(
                records,
                candidate_pairs=[(a.id, b.id) for a, b in pairs],
            )

        if verdict.merges:
            async with self._lock:
                report.oracle = self.detector.apply(
                    verdict.merges,
                    on_suggest=self._queue_suggestion,
                    source="oracle",
                )
        return report

    # ==================== Suggestions ====================

    def _queue_suggestion(self, proposal: Proposal) -> Optional[Suggestion]:
        for pending in self.suggestions.values():
            if _same_subject(pending.proposal, proposal):
                return None
        suggestion = Suggestion(proposal)
        self.suggestions[suggestion.id] = suggestion
        logger.info("Suggestion queued", suggestion_id=suggestion.id, kind=suggestion.kind, **proposal.to_dict())
        return suggestion

    def list_suggestions(self) -> list[Suggestion]:
        return list(self.suggestions.values())

    async def confirm_suggestion(self, suggestion_id: str) -> bool:
        """
        Apply a queued suggestion.

        The proposal is re-validated first; hard-negative merges and proposals
        for tombstoned records are refused. Returns whether anything changed.
        """
        suggestion = self.suggestions.pop(suggestion_id, None)
        if suggestion is None:
            raise RecallError(f"Unknown suggestion: {suggestion_id}")

        async with self._lock:
            proposal = suggestion.proposal
            if isinstance(proposal, UpdateProposal):
                return self._apply_update_proposal(proposal, confirmed=True)

            veto = self.detector.veto(proposal)
            if veto:
                logger.info("Refused hard-negative suggestion", suggestion_id=suggestion_id, veto=veto)
                return False
            return self.merge_engine.apply(proposal).applied

    def dismiss_suggestion(self, suggestion_id: str) -> None:
        if self.suggestions.pop(suggestion_id, None) is None:
            raise RecallError(f"Unknown suggestion: {suggestion_id}")

    # ==================== Queries ====================

    def query(self, description: str) -> QueryResolution:
        """Resolve a typed description from scratch."""
        self.resolver.reset()
        self.resolver.append(description)
        return self.resolve_query()

    def resolve_query(self) -> QueryResolution:
        self.last_query = self.resolver.resolve(self.store.snapshot().all_records())
        return self.last_query

    def _close_query(self) -> None:
        self._query_open = False
        self.resolver.reset()

    def search_transcripts(self, query: str) -> list[str]:
        """
        Record ids whose linked segments mention every query word.

        Ranked by matching segment count, most first; ties keep the order of
        first appearance. Unlinked segments and retired ids are skipped.
        """
        counts: dict[str, int] = {}
        for segment in self.segments:
            record_id = segment.record_id
            if not record_id or self.store.is_tombstoned(record_id):
                continue
            if matches_all_prefixes(segment.text, query):
                counts[record_id] = counts.get(record_id, 0) + 1
        return sorted(counts, key=lambda record_id: -counts[record_id])

    def group_records(self) -> list[RecordGroup]:
        return group_records(self.store.snapshot())

    # ==================== Records ====================

    def snapshot(self) -> StoreSnapshot:
        return self.store.snapshot()

    async def load_history(self, records: Iterable[Record], dedup: bool = True) -> int:
        """Load previously persisted records, then run a dedup pass."""
        async with self._lock:
            loaded = self.store.load_history(records)
        logger.info("History loaded", user_id=self.user_id, records=loaded)
        if dedup and loaded:
            await self.run_dedup()
        return loaded

    # ==================== Persistence events ====================

    def _on_store_changed(self, record: Record) -> None:
        key = f"{PERSIST_PREFIX}{record.id}"
        self.scheduler.schedule(
            key,
            self.config.ingestion.persist_debounce_seconds,
            lambda: self._publish_changed(record.id),
        )

    def _publish_changed(self, record_id: str) -> None:
        record = self.store.get(record_id)
        if record is not None:
            self.events.emit_changed(record)

    def _on_store_tombstoned(self, record_id: str) -> None:
        self.scheduler.cancel(f"{PERSIST_PREFIX}{record_id}")

        # Speech about a merged-away record now belongs to the survivor
        entry = self.store.tombstones.get(record_id)
        if entry is not None and entry.merged_into:
            for segment in self.segments:
                if segment.record_id == record_id:
                    segment.record_id = entry.merged_into

        self.events.emit_tombstoned(record_id)


def _same_subject(a: Proposal, b: Proposal) -> bool:
    if isinstance(a, MergeProposal) and isinstance(b, MergeProposal):
        return {a.source_id, a.target_id} == {b.source_id, b.target_id}
    if isinstance(a, UpdateProposal) and isinstance(b, UpdateProposal):
        return a.record_id == b.record_id and a.changes == b.changes
    return False


def create_engine(
    config: Optional[RecallConfig] = None,
    client: Optional[LLMClient] = None,
    user_id: str = "default",
) -> RecallEngine:
    """Build an engine with LLM-backed oracles over client, or none without one."""
    config = config or get_config()
    if client is None:
        return RecallEngine(config, user_id=user_id)

    usage = UsageLog(config.oracle.usage_log_size)
    caller = LLMCaller(client, config.oracle, usage)
    self_names = config.aggregator.self_names
    return RecallEngine(
        config,
        extraction_oracle=LLMExtractionOracle(caller, self_names),
        identity_oracle=LLMIdentityOracle(caller, self_names, config.ingestion.min_reconcile_chars),
        user_id=user_id,
        usage=usage,
    )
