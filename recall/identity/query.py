"""
Query Resolver

Resolves a spoken "who was that person" description to a record. Clues add up:
a name, a company, a role, a category keyword, words from the summary or the
action items. The resolver keeps the committed match stable while the
description streams in word by word.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

from recall.core.config import QueryConfig
from recall.identity.text import meaningful_words, normalize, words
from recall.identity.types import PersonCategory, Record

logger = structlog.get_logger(__name__)

NAME_FULL_POINTS = 100
NAME_TOKEN_POINTS = 50
COMPANY_FULL_POINTS = 40
COMPANY_PARTIAL_POINTS = 25
ROLE_FULL_POINTS = 30
ROLE_KEYWORD_POINTS = 20
CATEGORY_POINTS = 15
SUMMARY_POINTS, SUMMARY_CAP = 5, 25
ACTION_POINTS, ACTION_CAP = 8, 16

CATEGORY_KEYWORDS: dict[PersonCategory, frozenset[str]] = {
    PersonCategory.FOUNDER: frozenset({
        "founder", "founded", "started", "startup", "ceo", "entrepreneur", "cofounder",
    }),
    PersonCategory.INVESTOR: frozenset({
        "investor", "vc", "venture", "fund", "capital", "angel", "invest",
        "invests", "investing", "partner",
    }),
    PersonCategory.DEVELOPER: frozenset({
        "developer", "engineer", "programmer", "coder", "tech", "software",
        "backend", "frontend", "fullstack",
    }),
    PersonCategory.DESIGNER: frozenset({
        "designer", "design", "creative", "ux", "ui", "figma", "visual", "graphic",
    }),
    PersonCategory.STUDENT: frozenset({
        "student", "intern", "university", "college", "school", "grad", "phd", "masters",
    }),
    PersonCategory.EXECUTIVE: frozenset({
        "executive", "director", "vp", "chief", "head", "president", "officer",
        "cto", "cfo", "coo",
    }),
}

TRIGGER_PATTERNS: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"recall[,.]?\s+who\s+was",
    r"recall[,.]?\s+find",
    r"recall[,.]?\s+search",
    r"recall[,.]?\s+show\s+me",
    r"recall[,.]?\s+what\s+did",
    r"recall[,.]?\s+where\s+does",
    r"i\s+can'?t\s+remember",
    r"i\s+can'?t\s+recall",
    r"who\s+was\s+that\s+person",
    r"who\s+was\s+the\s+(?:guy|person|woman|man|lady|girl|dude)",
    r"do\s+you\s+remember",
    r"which\s+(?:company|person|name)",
    r"trying\s+to\s+(?:recall|remember|find|think)",
    r"what\s+was\s+(?:his|her|their)\s+name",
))

CONTINUATION_PATTERNS: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"^(?:and|also|or|but|who|the one|that|they|he|she|with|at|from|works?|worked)\b",
    r"^(?:something|someone|somebody|like|maybe|i think|probably|possibly)\b",
    r"^(?:no not|not that|the other|different|another)\b",
    r"company|role|job|title|position|team|department",
    r"design|engineer|develop|found|invest|build|manage|lead|direct",
    r"\b(?:microsoft|google|apple|meta|amazon|stripe|figma|openai|anthropic)\b",
))


# ===== Voice query detection =====


@dataclass(frozen=True)
class VoiceQuery:
    is_query: bool
    query_text: str = ""


def detect_voice_query(text: str) -> VoiceQuery:
    """
    Detect a recall trigger phrase.

    query_text is whatever follows the trigger, or the whole utterance when
    nothing does.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return VoiceQuery(False)

    for pattern in TRIGGER_PATTERNS:
        match = pattern.search(trimmed)
        if match:
            after = trimmed[match.end():].strip()
            after = re.sub(r"[?.!]+$", "", after).strip()
            return VoiceQuery(True, after or trimmed)
    return VoiceQuery(False)


def is_query_continuation(text: str) -> bool:
    """Whether speech looks like more description for an open query."""
    trimmed = (text or "").strip().lower()
    if len(trimmed) < 3:
        return False
    return any(p.search(trimmed) for p in CONTINUATION_PATTERNS)


# ===== Scoring =====


@dataclass
class ScoredMatch:
    record: Record
    score: int
    reasons: list[str] = field(default_factory=list)

    @property
    def record_id(self) -> str:
        return self.record.id

    def to_dict(self) -> dict:
        return {
            "record_id": self.record.id,
            "name": self.record.name,
            "score": self.score,
            "reasons": list(self.reasons),
        }


def score_record(description: str, record: Record) -> ScoredMatch:
    desc = normalize(description)
    desc_words = meaningful_words(description)
    desc_word_set = set(desc_words)
    score = 0
    reasons: list[str] = []

    name = normalize(record.name)
    if name and _contains_phrase(desc, name):
        score += NAME_FULL_POINTS
        reasons.append("full name")
    elif name:
        for part in name.split():
            if len(part) > 2 and part in desc_word_set:
                score += NAME_TOKEN_POINTS
                reasons.append(f"name part '{part}'")

    company = normalize(record.company)
    if company:
        if _contains_phrase(desc, company):
            score += COMPANY_FULL_POINTS
            reasons.append(f"company '{record.company}'")
        else:
            for company_word in (w for w in company.split() if len(w) > 3):
                hit = next(
                    (w for w in desc_words if company_word.startswith(w) or w.startswith(company_word)),
                    None,
                )
                if hit:
                    score += COMPANY_PARTIAL_POINTS
                    reasons.append(f"company partial '{hit}'")

    role = normalize(record.role)
    if role:
        if _contains_phrase(desc, role):
            score += ROLE_FULL_POINTS
            reasons.append(f"role '{record.role}'")
        else:
            for role_word in (w for w in role.split() if len(w) > 3):
                hit = next((w for w in desc_words if role_word in w or w in role_word), None)
                if hit:
                    score += ROLE_KEYWORD_POINTS
                    reasons.append(f"role keyword '{hit}'")

    keywords = CATEGORY_KEYWORDS.get(record.category)
    if keywords and any(w in keywords for w in words(description)):
        score += CATEGORY_POINTS
        reasons.append(f"category '{record.category.value}'")

    summary = normalize(record.summary)
    if summary:
        points = _capped_overlap(desc_words, summary, SUMMARY_POINTS, SUMMARY_CAP)
        if points:
            score += points
            reasons.append("summary keywords")

    if record.action_items:
        actions = " ".join(normalize(a.text) for a in record.action_items)
        points = _capped_overlap(desc_words, actions, ACTION_POINTS, ACTION_CAP)
        if points:
            score += points
            reasons.append("action items")

    return ScoredMatch(record, score, reasons)


def score_records(description: str, records: Iterable[Record]) -> list[ScoredMatch]:
    """Score every named record; only positive scores, best first."""
    if not description or not description.strip():
        return []
    scored = [score_record(description, r) for r in records if r.name]
    scored = [s for s in scored if s.score > 0]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored


def _contains_phrase(haystack: str, phrase: str) -> bool:
    return f" {phrase} " in f" {haystack} "


def _capped_overlap(desc_words: list[str], text: str, points: int, cap: int) -> int:
    total = 0
    for word in dict.fromkeys(desc_words):
        if len(word) > 3 and word in text:
            total += points
            if total >= cap:
                return cap
    return total


# ===== Resolution =====


@dataclass
class QueryState:
    description: str = ""
    previous_match_id: Optional[str] = None
    last_scores: list[ScoredMatch] = field(default_factory=list)


@dataclass(frozen=True)
class QueryResolution:
    match: Optional[ScoredMatch]
    scores: tuple[ScoredMatch, ...]
    changed: bool

    @property
    def record_id(self) -> Optional[str]:
        return self.match.record.id if self.match else None


class QueryResolver:
    """Accumulates a spoken description and resolves it with hysteresis."""

    def __init__(self, config: Optional[QueryConfig] = None):
        self.config = config or QueryConfig()
        self.state = QueryState()

    @property
    def active(self) -> bool:
        return bool(self.state.description)

    def append(self, text: str) -> str:
        text = (text or "").strip()
        if text:
            self.state.description = f"{self.state.description} {text}".strip()
        return self.state.description

    def reset(self) -> None:
        self.state = QueryState()

    def resolve(self, records: Iterable[Record]) -> QueryResolution:
        """Resolve the accumulated description against records."""
        records = list(records)
        scored = score_records(self.state.description, records)
        self.state.last_scores = scored
        previous_id = self.state.previous_match_id

        match = self._choose(scored, previous_id)
        new_id = match.record.id if match else None
        changed = new_id != previous_id
        self.state.previous_match_id = new_id

        if changed and match:
            runner_up = scored[1] if len(scored) > 1 else None
            logger.info(
                "Query match",
                record_id=match.record.id,
                name=match.record.name,
                score=match.score,
                reasons=match.reasons,
                runner_up=runner_up.record.name if runner_up else None,
                runner_up_score=runner_up.score if runner_up else None,
            )
        return QueryResolution(match, tuple(scored), changed)

    def _choose(self, scored: list[ScoredMatch], previous_id: Optional[str]) -> Optional[ScoredMatch]:
        if not scored:
            return None
        best = scored[0]
        if best.score < self.config.min_score:
            return None
        if not previous_id or best.record.id == previous_id:
            return best

        previous = next((s for s in scored if s.record.id == previous_id), None)
        if previous is not None and best.score <= previous.score * self.config.switch_ratio:
            return previous

        if len(scored) > 1:
            second = scored[1]
            gap = (best.score - second.score) / best.score
            if gap < self.config.clear_gap and second.record.id == previous_id:
                return second

        return best
