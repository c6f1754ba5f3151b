"""
Duplicate Detector

Finds records that describe the same person and feeds merge proposals through
the confidence router.

- Local heuristic: exact-name and first-name/full-name rules, no external call
- Oracle pass: ambiguous pairs or whole record sets judged by the identity oracle
- Hard negatives: absolute vetoes checked before any merge from any source
- Anti-chain-merge: an id touched by an applied merge sits out the rest of the batch
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import Callable, Iterable, Optional

import structlog

from recall.core.config import DedupConfig
from recall.identity.merge import MergeEngine, MergeOutcome
from recall.identity.router import ConfidenceRouter
from recall.identity.store import RecordStore
from recall.identity.text import (
    absent_or_equal,
    is_name_prefix,
    last_name,
    name_tokens,
    normalize,
    same_value,
)
from recall.identity.types import MergeProposal, Record, RoutingAction, StoreSnapshot

logger = structlog.get_logger(__name__)

SuggestHandler = Callable[[MergeProposal], None]


def hard_negative_reason(a: Record, b: Record) -> Optional[str]:
    """
    Why a and b can never be the same person, or None.

    These vetoes are not confidence-adjustable.
    """
    last_a, last_b = last_name(a.name), last_name(b.name)
    if last_a and last_b and last_a != last_b:
        return "different last names"

    company_a, company_b = normalize(a.company), normalize(b.company)
    if company_a and company_b and company_a != company_b:
        return "different companies"

    role_a, role_b = normalize(a.role), normalize(b.role)
    if company_a and company_a == company_b and role_a and role_b and role_a != role_b:
        return "different roles at the same company"

    return None


def choose_target(a: Record, b: Record) -> tuple[Record, Record]:
    """
    Order a pair as (target, source).

    The more complete record survives; ties go to the longer name, then to
    the older record.
    """
    key_a = (a.completeness(), len((a.name or "").strip()), -a.created_at.timestamp())
    key_b = (b.completeness(), len((b.name or "").strip()), -b.created_at.timestamp())
    return (a, b) if key_a >= key_b else (b, a)


@dataclass
class BatchResult:
    """Outcome of applying one batch of merge proposals."""
    applied: list[MergeOutcome] = field(default_factory=list)
    suggested: list[MergeProposal] = field(default_factory=list)
    skipped: list[MergeProposal] = field(default_factory=list)
    blocked: list[MergeProposal] = field(default_factory=list)

    @property
    def merged_count(self) -> int:
        return len(self.applied)

    def to_dict(self) -> dict:
        return {
            "applied": [o.proposal.to_dict() for o in self.applied],
            "suggested": [p.to_dict() for p in self.suggested],
            "skipped": [p.to_dict() for p in self.skipped],
            "blocked": [p.to_dict() for p in self.blocked],
        }


class DuplicateDetector:
    """Proposes and applies merges between records in one store."""

    def __init__(
        self,
        store: RecordStore,
        router: Optional[ConfidenceRouter] = None,
        merge_engine: Optional[MergeEngine] = None,
        config: Optional[DedupConfig] = None,
    ):
        self.store = store
        self.router = router or ConfidenceRouter()
        self.merge_engine = merge_engine or MergeEngine(store)
        self.config = config or DedupConfig()

    # ==================== Local heuristic ====================

    def compare(self, a: Record, b: Record) -> Optional[MergeProposal]:
        """Local heuristic verdict for one pair."""
        if a.id == b.id or not a.name or not b.name:
            return None
        if hard_negative_reason(a, b):
            return None

        name_a, name_b = normalize(a.name), normalize(b.name)
        confidence: Optional[float] = None
        reason = ""

        if name_a == name_b:
            if absent_or_equal(a.company, b.company) and absent_or_equal(a.role, b.role):
                if same_value(a.company, b.company):
                    confidence = self.config.exact_with_company_confidence
                    reason = f"same name '{a.name}' at {a.company}"
                elif same_value(a.role, b.role):
                    confidence = self.config.exact_with_role_confidence
                    reason = f"same name '{a.name}' with role {a.role}"
                else:
                    confidence = self.config.exact_name_only_confidence
                    reason = f"same name '{a.name}', no conflicting details"
        elif is_name_prefix(a.name, b.name) or is_name_prefix(b.name, a.name):
            if same_value(a.company, b.company):
                confidence = self.config.prefix_with_company_confidence
                reason = f"'{a.name}' / '{b.name}' at {a.company}"
            elif same_value(a.role, b.role):
                confidence = self.config.prefix_with_role_confidence
                reason = f"'{a.name}' / '{b.name}' with role {a.role}"

        if confidence is None:
            return None

        target, source = choose_target(a, b)
        return MergeProposal(
            source_id=source.id,
            target_id=target.id,
            confidence=confidence,
            reason=reason,
        )

    def propose_local(self, snapshot: Optional[StoreSnapshot] = None) -> list[MergeProposal]:
        """All local proposals over the snapshot, highest confidence first."""
        snapshot = snapshot or self.store.snapshot()
        records = [r for r in snapshot.all_records() if r.name]

        proposals = []
        for a, b in combinations(records, 2):
            proposal = self.compare(a, b)
            if proposal is not None:
                proposals.append(proposal)

        proposals.sort(key=lambda p: p.confidence, reverse=True)
        return proposals

    def ambiguous_pairs(
        self,
        snapshot: Optional[StoreSnapshot] = None,
        exclude: Iterable[MergeProposal] = (),
    ) -> list[tuple[Record, Record]]:
        """
        Pairs worth asking the identity oracle about.

        Same first name or same last name, not a hard negative, and not
        already settled by a local auto-apply proposal.
        """
        snapshot = snapshot or self.store.snapshot()
        records = [r for r in snapshot.all_records() if r.name]
        settled = {
            frozenset((p.source_id, p.target_id))
            for p in exclude
            if self.router.route(p.confidence) == RoutingAction.AUTO_APPLY
        }

        pairs = []
        for a, b in combinations(records, 2):
            if frozenset((a.id, b.id)) in settled:
                continue
            tokens_a, tokens_b = name_tokens(a.name), name_tokens(b.name)
            shares_first = tokens_a[0] == tokens_b[0]
            shares_last = last_name(a.name) is not None and last_name(a.name) == last_name(b.name)
            if not (shares_first or shares_last):
                continue
            if hard_negative_reason(a, b):
                continue
            pairs.append((a, b))
            if len(pairs) >= self.config.oracle_max_pairs:
                break
        return pairs

    # ==================== Batch application ====================

    def apply(
        self,
        proposals: Iterable[MergeProposal],
        on_suggest: Optional[SuggestHandler] = None,
        source: str = "local",
    ) -> BatchResult:
        """
        Route and apply one batch of merge proposals.

        Every proposal is re-validated against the live store first. Discard
        tier is dropped silently; suggest tier goes to on_suggest.
        """
        result = BatchResult()
        touched: set[str] = set()

        for proposal in proposals:
            action = self.router.route(proposal.confidence)
            if action == RoutingAction.DISCARD:
                continue

            if proposal.source_id in touched or proposal.target_id in touched:
                logger.info(
                    "Skipping merge, record already merged this batch",
                    source_id=proposal.source_id,
                    target_id=proposal.target_id,
                    proposal_source=source,
                )
                result.skipped.append(proposal)
                continue

            if not self._is_live_pair(proposal):
                result.skipped.append(proposal)
                continue

            veto = self.veto(proposal)
            if veto:
                logger.info(
                    "Blocked hard-negative merge",
                    source_id=proposal.source_id,
                    target_id=proposal.target_id,
                    veto=veto,
                    confidence=proposal.confidence,
                    proposal_source=source,
                )
                result.blocked.append(proposal)
                continue

            if action == RoutingAction.SUGGEST:
                result.suggested.append(proposal)
                if on_suggest is not None:
                    on_suggest(proposal)
                continue

            outcome = self.merge_engine.apply(proposal)
            if outcome.applied:
                touched.update((proposal.source_id, proposal.target_id))
                result.applied.append(outcome)
            else:
                result.skipped.append(proposal)

        if result.applied or result.suggested or result.blocked:
            logger.info(
                "Merge batch processed",
                proposal_source=source,
                applied=len(result.applied),
                suggested=len(result.suggested),
                skipped=len(result.skipped),
                blocked=len(result.blocked),
            )
        return result

    def veto(self, proposal: MergeProposal) -> Optional[str]:
        """Hard-negative reason for a proposal against live records."""
        source = self.store.get(proposal.source_id)
        target = self.store.get(proposal.target_id)
        if source is None or target is None:
            return None
        return hard_negative_reason(source, target)

    def run_local(self, on_suggest: Optional[SuggestHandler] = None) -> BatchResult:
        """Propose and apply the local heuristic over the current store."""
        return self.apply(self.propose_local(), on_suggest=on_suggest, source="local")

    def _is_live_pair(self, proposal: MergeProposal) -> bool:
        if proposal.source_id == proposal.target_id:
            return False
        for record_id in (proposal.source_id, proposal.target_id):
            if self.store.is_tombstoned(record_id):
                logger.info("Skipping merge with tombstoned record", record_id=record_id)
                return False
            if not self.store.exists(record_id):
                logger.info("Skipping merge with missing record", record_id=record_id)
                return False
        return True
