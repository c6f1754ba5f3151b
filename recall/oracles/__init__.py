"""
Recall Oracles

Extraction and identity oracles backed by a language model, with strict
response parsing and a bounded usage log.
"""

from recall.oracles.base import ExtractionOracle, IdentityOracle, IdentityVerdict
from recall.oracles.caller import LLMCaller
from recall.oracles.extraction import LLMExtractionOracle
from recall.oracles.identity import LLMIdentityOracle
from recall.oracles.llm import (
    ClaudeClient,
    LLMClient,
    LLMResponse,
    MockLLMClient,
    create_llm_client,
)
from recall.oracles.schema import (
    ParseFailure,
    ParseSuccess,
    parse_candidate,
    parse_identity_verdict,
    strip_fences,
)
from recall.oracles.usage import UsageEntry, UsageLog

__all__ = [
    "ExtractionOracle",
    "IdentityOracle",
    "IdentityVerdict",
    "LLMCaller",
    "LLMExtractionOracle",
    "LLMIdentityOracle",
    "ClaudeClient",
    "LLMClient",
    "LLMResponse",
    "MockLLMClient",
    "create_llm_client",
    "ParseFailure",
    "ParseSuccess",
    "parse_candidate",
    "parse_identity_verdict",
    "strip_fences",
    "UsageEntry",
    "UsageLog",
]
