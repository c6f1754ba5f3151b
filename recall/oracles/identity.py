"""
LLM identity oracle.

Three modes over the same verdict format:
- reconcile: review a session transcript against records
- reconcile/dedup: judge specific candidate pairs
- dedup: look for duplicates across a whole record set
"""

from __future__ import annotations

from typing import Optional, Sequence

import structlog

from recall.identity.types import Record
from recall.oracles.base import IdentityOracle, IdentityVerdict
from recall.oracles.caller import LLMCaller
from recall.oracles.prompts import (
    DEDUP_SYSTEM,
    PAIR_DEDUP_SYSTEM,
    dedup_prompt,
    pair_dedup_prompt,
    reconcile_prompt,
    reconcile_system,
)
from recall.oracles.schema import ParseFailure, parse_identity_verdict

logger = structlog.get_logger(__name__)

ROUTE_MAX_TOKENS = {
    "reconcile": 1000,
    "reconcile/dedup": 500,
    "dedup": 800,
}


class LLMIdentityOracle(IdentityOracle):
    """Prompt-driven identity judgements over an LLM client."""

    def __init__(
        self,
        caller: LLMCaller,
        self_names: Sequence[str] = (),
        min_transcript_chars: int = 20,
    ):
        self.caller = caller
        self.self_names = list(self_names)
        self.min_transcript_chars = min_transcript_chars

    async def reconcile(
        self,
        records: Sequence[Record],
        transcript: Optional[str] = None,
        candidate_pairs: Optional[Sequence[tuple[str, str]]] = None,
    ) -> IdentityVerdict:
        records = list(records)
        if not records:
            return IdentityVerdict()

        if candidate_pairs:
            route = "reconcile/dedup"
            system, prompt = PAIR_DEDUP_SYSTEM, pair_dedup_prompt(records, candidate_pairs)
        elif transcript is not None:
            if len(transcript.strip()) < self.min_transcript_chars:
                return IdentityVerdict()
            route = "reconcile"
            system, prompt = reconcile_system(self.self_names), reconcile_prompt(transcript, records)
        else:
            if len(records) < 2:
                return IdentityVerdict()
            route = "dedup"
            system, prompt = DEDUP_SYSTEM, dedup_prompt(records)

        response = await self.caller.call(route, system, prompt, max_tokens=ROUTE_MAX_TOKENS[route])
        if response is None:
            return IdentityVerdict()

        result = parse_identity_verdict(response.content)
        if isinstance(result, ParseFailure):
            logger.warning("Identity response rejected", route=route, error=result.error)
            return IdentityVerdict()

        verdict = result.value
        if route == "reconcile/dedup":
            # Pair judgements never carry field updates
            verdict.updates = []
        return self._known_ids_only(verdict, {r.id for r in records}, route)

    @staticmethod
    def _known_ids_only(verdict: IdentityVerdict, ids: set[str], route: str) -> IdentityVerdict:
        updates = [u for u in verdict.updates if u.record_id in ids]
        merges = [
            m for m in verdict.merges
            if m.source_id in ids and m.target_id in ids and m.source_id != m.target_id
        ]
        dropped = len(verdict.updates) - len(updates) + len(verdict.merges) - len(merges)
        if dropped:
            logger.debug("Dropped proposals for unknown records", route=route, dropped=dropped)
        return IdentityVerdict(updates=updates, merges=merges)
