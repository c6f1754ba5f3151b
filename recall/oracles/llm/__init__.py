"""
Recall LLM Clients

Language model clients used by the oracles.
"""

from __future__ import annotations

from typing import Optional

from recall.core.config import OracleConfig
from recall.oracles.llm.base import LLMClient, LLMResponse, MockLLMClient
from recall.oracles.llm.claude import ClaudeClient


def create_llm_client(config: OracleConfig, api_key: Optional[str] = None) -> LLMClient:
    """Create the client selected by config.provider."""
    if config.provider == "mock":
        return MockLLMClient()

    return ClaudeClient(
        api_key=api_key or config.api_key,
        base_url=config.base_url,
        default_model=config.model,
        default_max_tokens=config.max_tokens,
        default_temperature=config.temperature,
    )


__all__ = [
    "LLMClient",
    "LLMResponse",
    "MockLLMClient",
    "ClaudeClient",
    "create_llm_client",
]
