"""
Recall Identity Types

Core dataclasses for the reconciliation engine: person records, candidates
reported by the extraction oracle, and the proposals that flow back through
the confidence router.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class RecallError(Exception):
    """Base exception for misuse of the Recall API."""


class PersonCategory(str, Enum):
    """Coarse category of a contact."""
    FOUNDER = "founder"
    INVESTOR = "investor"
    DEVELOPER = "developer"
    DESIGNER = "designer"
    STUDENT = "student"
    EXECUTIVE = "executive"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> Optional["PersonCategory"]:
        """Parse a loosely formatted category, returning None when unknown."""
        if isinstance(value, PersonCategory):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        key = _CATEGORY_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None


_CATEGORY_ALIASES = {
    "vc": "investor",
    "angel": "investor",
    "engineer": "developer",
    "exec": "executive",
}


class SpeakerLabel(str, Enum):
    """
    Attribution of a transcript fragment.

    SELF means the speaker talks about themselves ("I work at..."), which in a
    networking conversation is usually the contact. OTHER means speech directed
    at the other party ("you should check out..."), usually the operator.
    """
    SELF = "self"
    OTHER = "other"
    UNKNOWN = "unknown"


class RoutingAction(str, Enum):
    """What to do with a confidence-scored proposal."""
    AUTO_APPLY = "auto_apply"
    SUGGEST = "suggest"
    DISCARD = "discard"


@dataclass
class ActionItem:
    """A follow-up the operator committed to."""
    text: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Union[dict[str, Any], str]) -> "ActionItem":
        if isinstance(data, str):
            return cls(text=data)
        created_at = data.get("created_at") or data.get("createdAt")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            text=data.get("text", ""),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(),
        )


@dataclass
class Record:
    """
    A person card, the unit of identity the engine maintains.

    Records are only mutated inside the RecordStore; everything handed out by
    the store is a copy.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    session_id: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    category: PersonCategory = PersonCategory.OTHER
    summary: Optional[str] = None
    contact_url: Optional[str] = None
    action_items: list[ActionItem] = field(default_factory=list)
    transcript_snippet: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    active: bool = False

    def copy(self) -> "Record":
        """Copy the record; action items are copied too."""
        return Record(
            id=self.id,
            session_id=self.session_id,
            name=self.name,
            company=self.company,
            role=self.role,
            category=self.category,
            summary=self.summary,
            contact_url=self.contact_url,
            action_items=[
                ActionItem(text=a.text, id=a.id, created_at=a.created_at)
                for a in self.action_items
            ],
            transcript_snippet=self.transcript_snippet,
            created_at=self.created_at,
            active=self.active,
        )

    def completeness(self) -> int:
        """Number of populated identity fields, used to pick merge targets."""
        populated = [self.name, self.company, self.role, self.summary]
        score = sum(1 for value in populated if value)
        if self.category != PersonCategory.OTHER:
            score += 1
        return score + min(len(self.action_items), 3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "company": self.company,
            "role": self.role,
            "category": self.category.value,
            "summary": self.summary,
            "contact_url": self.contact_url,
            "action_items": [a.to_dict() for a in self.action_items],
            "transcript_snippet": self.transcript_snippet,
            "created_at": self.created_at.isoformat(),
            "active": self.active,
        }

    def to_snapshot(self) -> dict[str, Any]:
        """Compact form sent to the identity oracle."""
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "name": self.name,
            "company": self.company,
            "role": self.role,
            "category": self.category.value,
            "summary": self.summary,
            "actionItems": [a.text for a in self.action_items],
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Record":
        created_at = data.get("created_at") or data.get("createdAt")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            session_id=data.get("session_id", data.get("sessionId")),
            name=data.get("name"),
            company=data.get("company"),
            role=data.get("role"),
            category=PersonCategory.parse(data.get("category")) or PersonCategory.OTHER,
            summary=data.get("summary"),
            contact_url=data.get("contact_url", data.get("linkedInUrl")),
            action_items=[
                ActionItem.from_dict(a)
                for a in data.get("action_items", data.get("actionItems", []))
            ],
            transcript_snippet=data.get("transcript_snippet", "") or "",
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(),
            active=bool(data.get("active", False)),
        )


@dataclass
class Candidate:
    """Partial attribute set proposed by the extraction oracle."""
    name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    category: Optional[PersonCategory] = None
    summary: Optional[str] = None
    action_items: list[str] = field(default_factory=list)
    is_new_person: bool = False
    detected_event: Optional[str] = None

    def is_empty(self) -> bool:
        return not any([
            self.name,
            self.company,
            self.role,
            self.category,
            self.summary,
            self.action_items,
        ])


@dataclass
class MergeProposal:
    """Suggestion that source and target are the same person."""
    source_id: str
    target_id: str
    confidence: float
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass
class UpdateProposal:
    """Suggested field changes to one record."""
    record_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "changes": dict(self.changes),
            "confidence": self.confidence,
            "reason": self.reason,
        }


Proposal = Union[MergeProposal, UpdateProposal]


@dataclass
class Suggestion:
    """A suggest-tier proposal waiting for confirmation."""
    proposal: Proposal
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def kind(self) -> str:
        return "merge" if isinstance(self.proposal, MergeProposal) else "update"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "proposal": self.proposal.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TranscriptSegment:
    """A finalized fragment of speech with its speaker attribution."""
    session_id: str
    text: str
    speaker_label: SpeakerLabel
    record_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "record_id": self.record_id,
            "speaker_label": self.speaker_label.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StoreSnapshot:
    """Point-in-time copy of the record store."""
    active: Optional[Record]
    history: tuple[Record, ...]

    def all_records(self) -> list[Record]:
        """Active record first, then history (most recent first)."""
        records = [self.active] if self.active else []
        records.extend(self.history)
        return records

    def find(self, record_id: str) -> Optional[Record]:
        for record in self.all_records():
            if record.id == record_id:
                return record
        return None
