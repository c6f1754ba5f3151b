"""
Oracle contracts.

The extraction oracle turns a transcript window into a Candidate; the identity
oracle judges record snapshots and returns update and merge proposals. Both
are opaque, slow and fallible: implementations fail open to "no result".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence

from recall.identity.types import Candidate, MergeProposal, Record, UpdateProposal


@dataclass
class IdentityVerdict:
    """Proposals returned by the identity oracle."""
    updates: list[UpdateProposal] = field(default_factory=list)
    merges: list[MergeProposal] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.updates and not self.merges

    def to_dict(self) -> dict:
        return {
            "updates": [u.to_dict() for u in self.updates],
            "merges": [m.to_dict() for m in self.merges],
        }


class ExtractionOracle(ABC):
    """Extracts a candidate about the current conversational partner."""

    @abstractmethod
    async def extract(
        self,
        transcript: str,
        known: Optional[Record] = None,
        event_context: Optional[str] = None,
    ) -> Optional[Candidate]:
        """Return a candidate, or None for malformed, empty or failed calls."""
        pass


class IdentityOracle(ABC):
    """Judges records for corrections and duplicates."""

    @abstractmethod
    async def reconcile(
        self,
        records: Sequence[Record],
        transcript: Optional[str] = None,
        candidate_pairs: Optional[Sequence[tuple[str, str]]] = None,
    ) -> IdentityVerdict:
        """
        Review records and return proposals.

        With candidate_pairs, judge only those pairs. With a transcript,
        review the records against it. With neither, look for duplicates
        across the whole set.
        """
        pass
