"""
Speaker Attribution

Pattern-based classification of a transcript fragment as self-referential
speech ("I work at...", "my company...") or other-directed speech ("you
should check out...", "nice to meet you"). Used to tag stored segments for
display and search; it never gates a record mutation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from recall.identity.types import SpeakerLabel

SELF_PATTERNS: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\bI work (?:at|for)\b",
    r"\bI'm (?:a |an |the )?(?:founder|ceo|cto|developer|designer|engineer|student|"
    r"investor|partner|director|manager|vp|head of)\b",
    r"\bmy name is\b",
    r"\bI (?:founded|started|co-founded|built|created|run|lead|manage)\b",
    r"\bI'm (?:from|based in|working on|building|currently at)\b",
    r"\bI've been (?:working|doing|building|running)\b",
    r"\bI (?:studied|graduated|went to)\b",
    r"\bmy company\b",
    r"\bmy startup\b",
    r"\bmy team\b",
    r"\bwe're (?:building|working on|launching|raising|hiring)\b",
    r"\bour product\b",
    r"\bour company\b",
))

OTHER_PATTERNS: tuple[re.Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\byou should (?:check out|look at|try|talk to|meet|connect with)\b",
    r"\blet me (?:send|share|introduce|connect|give)\b",
    r"\bI'll (?:send|share|introduce|connect|forward|email)\b",
    r"\bhave you (?:tried|heard|seen|met|checked)\b",
    r"\byou might (?:like|want|enjoy|find)\b",
    r"\bI can (?:introduce|connect|send|share)\b",
    r"\bI know (?:someone|a guy|a person|somebody)\b",
    r"\bwhat do you (?:think|do|work on)\b",
    r"\btell me (?:about|more)\b",
    r"\bwhat's your\b",
    r"\bwhere are you\b",
    r"\bnice to meet you\b",
))


@dataclass(frozen=True)
class AttributionScore:
    self_score: int
    other_score: int
    label: SpeakerLabel


def score(text: str) -> AttributionScore:
    """Count matching patterns in each set and pick the strict winner."""
    self_score = sum(1 for p in SELF_PATTERNS if p.search(text))
    other_score = sum(1 for p in OTHER_PATTERNS if p.search(text))

    if self_score > other_score:
        label = SpeakerLabel.SELF
    elif other_score > self_score:
        label = SpeakerLabel.OTHER
    else:
        label = SpeakerLabel.UNKNOWN
    return AttributionScore(self_score, other_score, label)


def classify(text: str) -> SpeakerLabel:
    """Classify a fragment; ties and empty text are UNKNOWN."""
    if not text or not text.strip():
        return SpeakerLabel.UNKNOWN
    return score(text).label
