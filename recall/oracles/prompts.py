"""
Oracle prompt templates.

System prompts for extraction, transcript reconciliation and deduplication,
with the operator's own names injected so the model never describes the
operator as a contact.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from recall.identity.types import Record

CATEGORY_CHOICES = "founder, investor, developer, designer, student, executive, other"


def operator_label(self_names: Sequence[str]) -> str:
    names = [n for n in self_names if n and n.strip()]
    if not names:
        return "the operator"
    quoted = ", ".join(f'"{n}"' for n in names)
    return f"the operator (who may introduce themselves as {quoted})"


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


# ===== Extraction =====

EXTRACTION_SYSTEM = """You extract contact information from networking conversation transcripts.

The transcript is captured on a device worn by {operator}. Never extract the operator's own details; the operator is not a contact. Only describe the OTHER person the operator is talking to.

Return a JSON object with these fields about the other person:
- name: their full name, never the operator's
- company: their company or organization
- role: their job title or role
- category: one of {categories}
- summary: one or two sentences on who they are and what was discussed
- actionItems: follow-ups the operator committed to, each a non-empty string; merge near-identical items, at most 3
- isNewPerson: true only if a different person, with a different name than the current one, introduces themselves
- detectedEvent: the event, conference or meetup being attended, or null

Rules:
1. Treat previously extracted data as established. Do not clear a field the transcript does not mention.
2. Only fill name, company or role from the contact's own direct statements, not hearsay.
3. In multi-person conversations, attribute details to the person they belong to.
4. Never downgrade specificity ("Senior Designer" stays over "designer").
5. When uncertain, return null. An incomplete record is better than a wrong one.

Respond ONLY with valid JSON."""


def extraction_system(self_names: Sequence[str]) -> str:
    return EXTRACTION_SYSTEM.format(operator=operator_label(self_names), categories=CATEGORY_CHOICES)


def extraction_prompt(
    transcript: str,
    known: Optional[Record] = None,
    event_context: Optional[str] = None,
) -> str:
    parts = [f'Transcript:\n"""\n{transcript}\n"""']
    if event_context:
        parts.append(f'Event context: this conversation is happening at "{event_context}".')
    if known is not None:
        known_fields = {
            "name": known.name,
            "company": known.company,
            "role": known.role,
            "category": known.category.value,
            "summary": known.summary,
            "actionItems": [a.text for a in known.action_items],
        }
        parts.append(f"Previously extracted data (update if new info found):\n{_dump(known_fields)}")
    parts.append("Extract entities as JSON:")
    return "\n\n".join(parts)


# ===== Reconciliation =====

RECONCILE_SYSTEM = """You review a full conversation transcript against existing contact records to find corrections, additions and duplicates.

For each record, check whether the transcript reveals a more complete name, a missed company, a more specific role, a better category ({categories}), a more accurate summary, or missed action items. Also check whether two records describe the same person.

Return a JSON object:
{{
  "updates": [
    {{"cardId": "<record id>", "changes": {{"<field>": "<new value>"}}, "confidence": <0-100>, "reason": "<one sentence>"}}
  ],
  "merges": [
    {{"sourceCardId": "<id to merge from>", "targetCardId": "<id to merge into>", "confidence": <0-100>, "reason": "<one sentence>"}}
  ]
}}

Rules:
- Only propose what the transcript clearly supports; never invent information
- Records from different days with the same name may be different people
- confidence 90-100: explicit evidence; 60-89: likely; below 60: weak
- The operator, {operator}, is never a contact
- Return empty arrays when nothing needs to change

Respond ONLY with valid JSON."""


def reconcile_system(self_names: Sequence[str]) -> str:
    return RECONCILE_SYSTEM.format(operator=operator_label(self_names), categories=CATEGORY_CHOICES)


def reconcile_prompt(transcript: str, records: Sequence[Record]) -> str:
    snapshots = [r.to_snapshot() for r in records]
    return (
        f'Full transcript:\n"""\n{transcript}\n"""\n\n'
        f"Existing records:\n{_dump(snapshots)}\n\n"
        "Analyze and return reconciliation JSON:"
    )


# ===== Deduplication =====

DEDUP_RULES = """Hard rules, never violate:
1. Trust each record's own fields. A mention of a person in another record's summary is not a correction.
2. Different companies on their own records means different people.
3. Different last names means different people.
4. Same name and company but different roles means different people.

Merge only when:
- Same name, same company and same role (or one role missing)
- A first-name-only record and a full-name record with the same company
- Same name with one company missing, when roles align"""

DEDUP_OUTPUT = """Return a JSON object:
{
  "merges": [
    {"sourceCardId": "<less complete record>", "targetCardId": "<more complete record>", "confidence": <0-100>, "reason": "<brief explanation>"}
  ]
}
Do not chain merges. When in doubt, do not merge. Respond ONLY with valid JSON."""

DEDUP_SYSTEM = (
    "You find contact records that refer to the same real person, possibly "
    "captured across different listening sessions.\n\n"
    f"{DEDUP_RULES}\n\n{DEDUP_OUTPUT}"
)

PAIR_DEDUP_SYSTEM = (
    "You receive pairs of contact records that might refer to the same person. "
    "Decide for each pair whether they should be merged. Records from the same "
    "event with matching names are likely the same person; records from "
    "unrelated events may be different people with the same name.\n\n"
    f"{DEDUP_RULES}\n\n{DEDUP_OUTPUT}"
)


def dedup_prompt(records: Sequence[Record]) -> str:
    snapshots = [r.to_snapshot() for r in records]
    return f"Contact records to check for duplicates:\n{_dump(snapshots)}\n\nReturn deduplication JSON:"


def pair_dedup_prompt(records: Sequence[Record], pairs: Sequence[tuple[str, str]]) -> str:
    by_id = {r.id: r for r in records}
    described = []
    for a_id, b_id in pairs:
        a, b = by_id.get(a_id), by_id.get(b_id)
        if a is None or b is None:
            continue
        described.append({
            "pair": [a_id, b_id],
            "recordA": a.to_snapshot(),
            "recordB": b.to_snapshot(),
        })
    return f"Candidate pairs to evaluate:\n{_dump(described)}\n\nEvaluate each pair and return merge decisions:"
