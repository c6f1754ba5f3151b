"""
Candidate Aggregator

Turns the extraction oracle's candidates into record creations, updates and
person switches. The aggregator is a two-state machine:

    NO_ACTIVE  --CREATE-->   HAS_ACTIVE
    HAS_ACTIVE --UPDATE-->   HAS_ACTIVE
    HAS_ACTIVE --SWITCH-->   HAS_ACTIVE   (old active moves to history)
    HAS_ACTIVE --REENGAGE--> HAS_ACTIVE   (same-session history record resumes)
    HAS_ACTIVE --RELEASE-->  NO_ACTIVE    (new person announced without a name)
    any        --IGNORE-->   unchanged

The operator's own names are stripped from every candidate first, so no
record is ever created or updated for the operator.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional

import structlog

from recall.core.config import AggregatorConfig
from recall.identity.store import RecordStore
from recall.identity.text import (
    build_contact_url,
    is_name_prefix,
    name_tokens,
    normalize,
    term_overlap,
)
from recall.identity.types import ActionItem, Candidate, PersonCategory, Record

logger = structlog.get_logger(__name__)


class AggregatorState(str, Enum):
    NO_ACTIVE = "no_active"
    HAS_ACTIVE = "has_active"


class Transition(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SWITCH = "switch"
    REENGAGE = "reengage"
    RELEASE = "release"
    IGNORE = "ignore"


@dataclass(frozen=True)
class AggregationResult:
    """What one candidate did to the store."""
    transition: Transition
    state: AggregatorState
    record_id: Optional[str] = None
    released_id: Optional[str] = None


def append_action_items(
    existing: list[ActionItem],
    new_texts: Iterable[str],
    overlap_threshold: float = 0.5,
    limit: Optional[int] = None,
) -> list[ActionItem]:
    """
    Append action items that are not fuzzy duplicates of existing ones.

    A new item is a duplicate when it shares at least overlap_threshold of its
    significant terms with any item already present, including items appended
    earlier in the same call.
    """
    items = list(existing)
    for text in new_texts:
        text = (text or "").strip()
        if not text:
            continue
        if limit is not None and len(items) >= limit:
            break
        if any(term_overlap(text, item.text) >= overlap_threshold for item in items):
            continue
        items.append(ActionItem(text=text))
    return items


class CandidateAggregator:
    """Drives record creation and updates from extraction candidates."""

    def __init__(
        self,
        store: RecordStore,
        config: Optional[AggregatorConfig] = None,
        session_id: Optional[str] = None,
    ):
        self.store = store
        self.config = config or AggregatorConfig()
        self.session_id = session_id
        self._self_names = self._build_self_names(self.config.self_names)

    @property
    def state(self) -> AggregatorState:
        if self.store.get_active() is None:
            return AggregatorState.NO_ACTIVE
        return AggregatorState.HAS_ACTIVE

    # ==================== Self filtering ====================

    @staticmethod
    def _build_self_names(names: Iterable[str]) -> set[str]:
        forms: set[str] = set()
        for name in names:
            tokens = name_tokens(name)
            if not tokens:
                continue
            forms.add(" ".join(tokens))
            forms.add(tokens[0])
        return forms

    def is_self_name(self, name: Optional[str]) -> bool:
        return bool(name) and normalize(name) in self._self_names

    def filter_self(self, candidate: Candidate) -> Candidate:
        """
        Strip the operator's identity from a candidate.

        When the name is the operator's, company, role and category most
        likely describe the operator too and are dropped with it.
        """
        if not self.is_self_name(candidate.name):
            return candidate
        logger.debug("Filtered operator name from candidate", name=candidate.name)
        return replace(candidate, name=None, company=None, role=None, category=None)

    # ==================== State machine ====================

    def ingest(self, candidate: Candidate) -> AggregationResult:
        candidate = self.filter_self(candidate)
        active = self.store.get_active()

        if active is None:
            return self._from_no_active(candidate)
        return self._from_has_active(active, candidate)

    def _from_no_active(self, candidate: Candidate) -> AggregationResult:
        if not candidate.name:
            return AggregationResult(Transition.IGNORE, AggregatorState.NO_ACTIVE)
        record = self._create(candidate)
        return AggregationResult(Transition.CREATE, AggregatorState.HAS_ACTIVE, record.id)

    def _from_has_active(self, active: Record, candidate: Candidate) -> AggregationResult:
        if self._is_person_switch(active, candidate):
            if not candidate.name:
                released = self.store.release_active()
                logger.info("Active record released for unnamed new person", record_id=active.id)
                return AggregationResult(
                    Transition.RELEASE,
                    AggregatorState.NO_ACTIVE,
                    released_id=released.id if released else None,
                )

            previous = self._same_session_match(candidate.name, exclude_id=active.id)
            if previous is not None:
                return self._reengage(active, previous, candidate)
            return self._switch(active, candidate)

        if candidate.is_empty():
            return AggregationResult(Transition.IGNORE, AggregatorState.HAS_ACTIVE, active.id)

        updated = self.store.update_active(lambda r: self.apply_candidate(r, candidate))
        record_id = updated.id if updated else active.id
        return AggregationResult(Transition.UPDATE, AggregatorState.HAS_ACTIVE, record_id)

    def _is_person_switch(self, active: Record, candidate: Candidate) -> bool:
        if not candidate.is_new_person or not active.name:
            return False
        if not candidate.name:
            return True
        # The same person announced again, by a fuller or shorter form of the name, is not a switch
        if normalize(candidate.name) == normalize(active.name):
            return False
        if is_name_prefix(active.name, candidate.name) or is_name_prefix(candidate.name, active.name):
            return False
        return True

    # ==================== Transitions ====================

    def _create(self, candidate: Candidate) -> Record:
        record = Record(
            session_id=self.session_id,
            name=candidate.name,
            company=candidate.company or None,
            role=candidate.role or None,
            category=candidate.category or PersonCategory.OTHER,
            summary=candidate.summary or None,
            action_items=append_action_items(
                [],
                candidate.action_items,
                self.config.action_item_overlap,
                self.config.max_action_items,
            ),
            active=True,
        )
        record.contact_url = build_contact_url(record.name, record.company)
        self.store.set_active(record)
        logger.info("Record created", record_id=record.id, name=record.name, session_id=self.session_id)
        return record

    def _switch(self, active: Record, candidate: Candidate) -> AggregationResult:
        self.store.release_active()
        record = self._create(candidate)
        logger.info("Person switch", previous_id=active.id, record_id=record.id, name=record.name)
        return AggregationResult(
            Transition.SWITCH,
            AggregatorState.HAS_ACTIVE,
            record.id,
            released_id=active.id,
        )

    def _reengage(self, active: Record, previous: Record, candidate: Candidate) -> AggregationResult:
        self.store.release_active()
        self.store.update_history_record(previous.id, lambda r: self.apply_candidate(r, candidate))
        self.store.promote_from_history(previous.id)
        logger.info(
            "Re-engaged same-session record",
            record_id=previous.id,
            released_id=active.id,
            name=previous.name,
        )
        return AggregationResult(
            Transition.REENGAGE,
            AggregatorState.HAS_ACTIVE,
            previous.id,
            released_id=active.id,
        )

    def _same_session_match(self, name: str, exclude_id: str) -> Optional[Record]:
        if self.session_id is None:
            return None
        key = normalize(name)
        for record in self.store.snapshot().history:
            if record.id == exclude_id or record.session_id != self.session_id:
                continue
            if normalize(record.name) == key:
                return record
        return None

    # ==================== Field rules ====================

    def apply_candidate(self, record: Record, candidate: Candidate) -> Record:
        """
        Fold a candidate into an existing record.

        name / company / role only fill empty fields; a first-name placeholder
        may be refined into the full name it prefixes. category only replaces
        OTHER. summary is always replaced.
        """
        if candidate.name:
            if not record.name:
                record.name = candidate.name
            elif is_name_prefix(record.name, candidate.name):
                record.name = candidate.name

        if candidate.company and not record.company:
            record.company = candidate.company
        if candidate.role and not record.role:
            record.role = candidate.role

        if (
            candidate.category
            and candidate.category != PersonCategory.OTHER
            and record.category == PersonCategory.OTHER
        ):
            record.category = candidate.category

        if candidate.summary:
            record.summary = candidate.summary

        if candidate.action_items:
            record.action_items = append_action_items(
                record.action_items,
                candidate.action_items,
                self.config.action_item_overlap,
                self.config.max_action_items,
            )

        record.contact_url = build_contact_url(record.name, record.company)
        return record
