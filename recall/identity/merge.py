"""
Merge Engine

Deterministic field-level combination of two records that describe the same
person. The pure merge() produces the combined record; MergeEngine.apply()
commits it to the store and tombstones the source in the same step.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import structlog

from recall.identity.store import RecordStore
from recall.identity.text import build_contact_url, normalize
from recall.identity.types import ActionItem, MergeProposal, PersonCategory, Record

logger = structlog.get_logger(__name__)


class MergeStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED_MISSING = "skipped_missing"
    SKIPPED_TOMBSTONED = "skipped_tombstoned"
    SKIPPED_SAME_RECORD = "skipped_same_record"


@dataclass(frozen=True)
class MergeOutcome:
    status: MergeStatus
    proposal: MergeProposal
    merged: Optional[Record] = None

    @property
    def applied(self) -> bool:
        return self.status == MergeStatus.APPLIED


def _present(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value if value.strip() else None


def merge_names(target: Optional[str], source: Optional[str]) -> Optional[str]:
    """The longer name wins; ties keep the target's."""
    target, source = _present(target), _present(source)
    if not target:
        return source
    if not source:
        return target
    return source if len(source.strip()) > len(target.strip()) else target


def merge_summaries(target: Optional[str], source: Optional[str]) -> Optional[str]:
    target, source = _present(target), _present(source)
    if target and source:
        return f"{target}. {source}"
    return target or source


def merge_action_items(target: Iterable[ActionItem], source: Iterable[ActionItem]) -> list[ActionItem]:
    """Target items, then source items whose normalised text is new."""
    merged: list[ActionItem] = []
    seen: set[str] = set()
    for item in list(target) + list(source):
        key = normalize(item.text)
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(ActionItem(text=item.text, id=item.id, created_at=item.created_at))
    return merged


def merge(target: Record, source: Record) -> Record:
    """Combine source into target. Neither input is modified."""
    name = merge_names(target.name, source.name)
    company = _present(target.company) or _present(source.company)

    category = target.category
    if category == PersonCategory.OTHER:
        category = source.category

    return Record(
        id=target.id,
        session_id=target.session_id or source.session_id,
        name=name,
        company=company,
        role=_present(target.role) or _present(source.role),
        category=category,
        summary=merge_summaries(target.summary, source.summary),
        contact_url=build_contact_url(name, company),
        action_items=merge_action_items(target.action_items, source.action_items),
        transcript_snippet=target.transcript_snippet or source.transcript_snippet,
        created_at=target.created_at,
        active=target.active,
    )


class MergeEngine:
    """Applies merge proposals to a record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    def apply(self, proposal: MergeProposal) -> MergeOutcome:
        """
        Merge proposal.source_id into proposal.target_id.

        Proposals naming a tombstoned or missing id are skipped, never retried.
        """
        if proposal.source_id == proposal.target_id:
            return MergeOutcome(MergeStatus.SKIPPED_SAME_RECORD, proposal)

        if self.store.is_tombstoned(proposal.source_id) or self.store.is_tombstoned(proposal.target_id):
            logger.info(
                "Skipping merge with tombstoned record",
                source_id=proposal.source_id,
                target_id=proposal.target_id,
            )
            return MergeOutcome(MergeStatus.SKIPPED_TOMBSTONED, proposal)

        target = self.store.get(proposal.target_id)
        source = self.store.get(proposal.source_id)
        if target is None or source is None:
            logger.info(
                "Skipping merge with missing record",
                source_id=proposal.source_id,
                target_id=proposal.target_id,
            )
            return MergeOutcome(MergeStatus.SKIPPED_MISSING, proposal)

        merged = merge(target, source)
        if not self.store.commit_merge(merged, source.id, reason=proposal.reason):
            return MergeOutcome(MergeStatus.SKIPPED_MISSING, proposal)

        logger.info(
            "Records merged",
            source_id=source.id,
            target_id=target.id,
            name=merged.name,
            confidence=proposal.confidence,
            reason=proposal.reason,
        )
        return MergeOutcome(MergeStatus.APPLIED, proposal, merged)
