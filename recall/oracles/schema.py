"""
Oracle response schemas.

Model output is validated into typed values with pydantic. Parsing never
raises: a response that cannot be read at all is a ParseFailure, and
malformed items inside an otherwise valid response are dropped one by one.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar, Union

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from recall.identity.types import Candidate, MergeProposal, PersonCategory, UpdateProposal
from recall.oracles.base import IdentityVerdict

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

# Field names an update may touch, keyed by every spelling the model uses
UPDATE_FIELDS = {
    "name": "name",
    "company": "company",
    "role": "role",
    "category": "category",
    "summary": "summary",
    "actionItems": "action_items",
    "action_items": "action_items",
}


@dataclass(frozen=True)
class ParseSuccess(Generic[T]):
    value: T
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ParseFailure:
    error: str
    raw: str = field(default="", repr=False)

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[ParseSuccess[T], ParseFailure]


def strip_fences(content: str) -> str:
    """Remove a surrounding markdown code fence."""
    return _FENCE_RE.sub("", content.strip()).strip()


def load_json_object(content: Optional[str]) -> Union[dict[str, Any], ParseFailure]:
    """Decode the JSON object in a model reply."""
    if not content or not content.strip():
        return ParseFailure("empty response")

    text = strip_fences(content)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Some replies wrap the object in prose
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return ParseFailure("no JSON object in response", content)
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            return ParseFailure(f"invalid JSON: {e.msg}", content)

    if not isinstance(data, dict):
        return ParseFailure("response is not a JSON object", content)
    return data


# ===== Payload models =====


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in ("null", "none", "unknown", "n/a"):
            return None
    return value


class CandidatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    category: Optional[str] = None
    summary: Optional[str] = None
    action_items: list[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices("actionItems", "action_items"),
    )
    is_new_person: bool = Field(
        default=False,
        validation_alias=AliasChoices("isNewPerson", "is_new_person"),
    )
    detected_event: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("detectedEvent", "detected_event"),
    )

    @field_validator("name", "company", "role", "category", "summary", "detected_event", mode="before")
    @classmethod
    def blank_strings(cls, v):
        return _blank_to_none(v)

    @field_validator("action_items", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return [] if v is None else v

    @field_validator("is_new_person", mode="before")
    @classmethod
    def none_is_false(cls, v):
        return False if v is None else v

    def to_candidate(self) -> Candidate:
        items = [
            item.strip() for item in self.action_items
            if isinstance(item, str) and item.strip()
        ]
        return Candidate(
            name=self.name,
            company=self.company,
            role=self.role,
            category=PersonCategory.parse(self.category),
            summary=self.summary,
            action_items=items,
            is_new_person=self.is_new_person,
            detected_event=self.detected_event,
        )


class MergePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_id: str = Field(validation_alias=AliasChoices("sourceCardId", "sourceId", "source_id"))
    target_id: str = Field(validation_alias=AliasChoices("targetCardId", "targetId", "target_id"))
    confidence: float = Field(ge=0, le=100)
    reason: str = ""

    @field_validator("reason", mode="before")
    @classmethod
    def reason_text(cls, v):
        return "" if v is None else str(v)

    def to_proposal(self) -> MergeProposal:
        return MergeProposal(self.source_id, self.target_id, self.confidence, self.reason)


class UpdatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    record_id: str = Field(validation_alias=AliasChoices("cardId", "recordId", "record_id"))
    changes: dict[str, Any]
    confidence: float = Field(ge=0, le=100)
    reason: str = ""

    @field_validator("reason", mode="before")
    @classmethod
    def reason_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("changes")
    @classmethod
    def known_fields(cls, v: dict[str, Any]) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        for key, value in v.items():
            field_name = UPDATE_FIELDS.get(key)
            if field_name is None:
                continue
            if field_name == "action_items":
                if isinstance(value, str):
                    value = [value]
                if not isinstance(value, list):
                    continue
                value = [i.strip() for i in value if isinstance(i, str) and i.strip()]
                if not value:
                    continue
            else:
                value = _blank_to_none(value)
                if value is None or not isinstance(value, str):
                    continue
            changes[field_name] = value
        if not changes:
            raise ValueError("no applicable changes")
        return changes

    def to_proposal(self) -> UpdateProposal:
        return UpdateProposal(self.record_id, dict(self.changes), self.confidence, self.reason)


# ===== Parsers =====


def parse_candidate(content: Optional[str]) -> ParseResult[Candidate]:
    data = load_json_object(content)
    if isinstance(data, ParseFailure):
        return data

    # Some prompts get answered as {"entities": {...}}
    if isinstance(data.get("entities"), dict):
        data = data["entities"]

    try:
        payload = CandidatePayload.model_validate(data)
    except ValidationError as e:
        return ParseFailure(f"invalid candidate: {e.error_count()} errors", content or "")
    return ParseSuccess(payload.to_candidate())


def parse_identity_verdict(content: Optional[str]) -> ParseResult[IdentityVerdict]:
    data = load_json_object(content)
    if isinstance(data, ParseFailure):
        return data

    verdict = IdentityVerdict()
    dropped = 0

    for item in _as_list(data.get("updates")):
        try:
            verdict.updates.append(UpdatePayload.model_validate(item).to_proposal())
        except ValidationError:
            dropped += 1

    for item in _as_list(data.get("merges")):
        try:
            verdict.merges.append(MergePayload.model_validate(item).to_proposal())
        except ValidationError:
            dropped += 1

    if dropped:
        logger.debug("Dropped malformed oracle items", dropped=dropped)
    return ParseSuccess(verdict, dropped)


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []
