"""
LLM extraction oracle.

Asks the model who the operator is talking to, given the transcript window,
the active record's known fields and the detected event.
"""

from __future__ import annotations

from typing import Optional, Sequence

import structlog

from recall.identity.types import Candidate, Record
from recall.oracles.base import ExtractionOracle
from recall.oracles.caller import LLMCaller
from recall.oracles.prompts import extraction_prompt, extraction_system
from recall.oracles.schema import ParseFailure, parse_candidate

logger = structlog.get_logger(__name__)

EXTRACT_MAX_TOKENS = 500
MIN_TRANSCRIPT_CHARS = 10


class LLMExtractionOracle(ExtractionOracle):
    """Prompt-driven extraction over an LLM client."""

    route = "extract"

    def __init__(self, caller: LLMCaller, self_names: Sequence[str] = ()):
        self.caller = caller
        self.self_names = list(self_names)

    async def extract(
        self,
        transcript: str,
        known: Optional[Record] = None,
        event_context: Optional[str] = None,
    ) -> Optional[Candidate]:
        if not transcript or len(transcript.strip()) < MIN_TRANSCRIPT_CHARS:
            return None

        response = await self.caller.call(
            self.route,
            extraction_system(self.self_names),
            extraction_prompt(transcript, known, event_context),
            max_tokens=EXTRACT_MAX_TOKENS,
        )
        if response is None:
            return None

        result = parse_candidate(response.content)
        if isinstance(result, ParseFailure):
            logger.warning("Extraction response rejected", error=result.error)
            return None

        candidate = result.value
        if candidate.is_empty() and not candidate.is_new_person and not candidate.detected_event:
            return None
        return candidate
