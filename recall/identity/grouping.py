"""
Record Grouping

Deterministic groupings of the record set, no oracle involved:
- by company, for two or more records sharing a normalised company
- by category, for two or more records in the same category (OTHER skipped)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from recall.identity.text import normalize
from recall.identity.types import PersonCategory, Record, StoreSnapshot

MIN_GROUP_SIZE = 2

CATEGORY_LABELS = {
    PersonCategory.FOUNDER: "Founders",
    PersonCategory.INVESTOR: "Investors",
    PersonCategory.DEVELOPER: "Developers",
    PersonCategory.DESIGNER: "Designers",
    PersonCategory.STUDENT: "Students",
    PersonCategory.EXECUTIVE: "Executives",
}


class GroupType(str, Enum):
    COMPANY = "company"
    CATEGORY = "category"


@dataclass
class RecordGroup:
    label: str
    type: GroupType
    record_ids: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.record_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "type": self.type.value,
            "record_ids": list(self.record_ids),
            "count": self.count,
        }


def group_records(records: StoreSnapshot | Iterable[Record]) -> list[RecordGroup]:
    """
    Company groups first, then category groups, each in first-seen order.

    A company group is labelled with the company as the first member wrote it.
    """
    if isinstance(records, StoreSnapshot):
        records = records.all_records()

    by_company: dict[str, list[Record]] = {}
    by_category: dict[PersonCategory, list[Record]] = {}
    for record in records:
        key = normalize(record.company)
        if key:
            by_company.setdefault(key, []).append(record)
        if record.category and record.category != PersonCategory.OTHER:
            by_category.setdefault(record.category, []).append(record)

    groups = [
        RecordGroup(members[0].company.strip(), GroupType.COMPANY, [r.id for r in members])
        for members in by_company.values()
        if len(members) >= MIN_GROUP_SIZE
    ]
    groups.extend(
        RecordGroup(CATEGORY_LABELS.get(category, category.value), GroupType.CATEGORY, [r.id for r in members])
        for category, members in by_category.items()
        if len(members) >= MIN_GROUP_SIZE
    )
    return groups
