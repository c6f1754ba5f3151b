"""
Text helpers for identity matching.

Normalisation, tokenising and stop-word filtering used by the aggregator, the
duplicate detector and the query resolver, plus the derived contact URL.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlencode

CONTACT_SEARCH_URL = "https://www.linkedin.com/search/results/people/"

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9'\-]*")
_SPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s'\-]")

# Words that carry no identifying signal in a spoken description
QUERY_STOP_WORDS = frozenset({
    "the", "that", "this", "from", "who", "was", "were", "with", "about",
    "person", "guy", "woman", "man", "lady", "one", "they", "their", "them",
    "does", "did", "had", "has", "have", "been", "being",
    "works", "working", "worked", "like", "said", "told", "met",
    "talked", "spoke", "know", "think", "remember", "recall",
    "somebody", "someone", "something", "some", "any",
    "and", "but", "also", "not", "what", "which", "where", "when",
    "can", "could", "would", "should", "will", "shall",
    "his", "her", "its", "our", "your", "name", "company",
})

# Filler for comparing action items ("send the deck" vs "send deck tonight")
ACTION_STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from",
    "has", "have", "her", "him", "his", "i", "if", "in", "is", "it", "me",
    "my", "of", "on", "or", "our", "she", "that", "the", "their", "them",
    "they", "this", "to", "up", "we", "will", "with", "you", "your",
    "about", "some", "over", "out", "off", "into", "just", "also",
})


def normalize(text: Optional[str]) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    if not text:
        return ""
    cleaned = _PUNCT_RE.sub(" ", text.lower())
    return _SPACE_RE.sub(" ", cleaned).strip()


def name_tokens(name: Optional[str]) -> list[str]:
    return normalize(name).split()


def last_name(name: Optional[str]) -> Optional[str]:
    """Last token of a multi-token name, None for single names."""
    tokens = name_tokens(name)
    return tokens[-1] if len(tokens) >= 2 else None


def is_name_prefix(shorter: Optional[str], longer: Optional[str]) -> bool:
    """
    True when shorter is a whitespace prefix of longer.

    "Kwame" is a prefix of "Kwame Asante"; "Kwa" is not, and neither is an
    equal name.
    """
    short_tokens = name_tokens(shorter)
    long_tokens = name_tokens(longer)
    if not short_tokens or len(short_tokens) >= len(long_tokens):
        return False
    return long_tokens[: len(short_tokens)] == short_tokens


def same_value(a: Optional[str], b: Optional[str]) -> bool:
    """Both present and equal after normalisation."""
    na, nb = normalize(a), normalize(b)
    return bool(na) and na == nb


def absent_or_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Either side missing, or both equal after normalisation."""
    na, nb = normalize(a), normalize(b)
    return not na or not nb or na == nb


def words(text: Optional[str]) -> list[str]:
    if not text:
        return []
    return _WORD_RE.findall(text.lower())


def meaningful_words(text: Optional[str]) -> list[str]:
    """Description words used for query scoring."""
    return [w for w in words(text) if len(w) > 2 and w not in QUERY_STOP_WORDS]


def significant_terms(text: Optional[str]) -> set[str]:
    """Stop-word-filtered terms of an action item."""
    return {w for w in words(text) if len(w) > 1 and w not in ACTION_STOP_WORDS}


def term_overlap(new_text: str, existing_text: str) -> float:
    """
    Fraction of new_text's significant terms that also appear in existing_text.

    Falls back to an exact normalised comparison when new_text has no
    significant terms at all.
    """
    new_terms = significant_terms(new_text)
    if not new_terms:
        return 1.0 if normalize(new_text) == normalize(existing_text) else 0.0
    existing_terms = significant_terms(existing_text)
    return len(new_terms & existing_terms) / len(new_terms)


def matches_all_prefixes(text: Optional[str], query: Optional[str]) -> bool:
    """
    True when every query word starts some word of text.

    "pay infra" matches "working on payments infrastructure".
    """
    query_words = words(query)
    if not query_words:
        return False
    text_words = words(text)
    return all(any(w.startswith(q) for w in text_words) for q in query_words)


def tail(text: str, limit: int) -> str:
    """Bounded tail of a transcript."""
    if limit <= 0:
        return ""
    return text[-limit:]


def build_contact_url(name: Optional[str], company: Optional[str] = None) -> Optional[str]:
    """Derived contact search URL; a pure function of name and company."""
    if not name:
        return None
    params = {"keywords": name, "origin": "FACETED_SEARCH"}
    if company:
        params["company"] = f'"{company}"'
    return f"{CONTACT_SEARCH_URL}?{urlencode(params)}"


