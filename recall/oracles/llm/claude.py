"""
Recall Claude LLM Client

Integration with Anthropic's Claude API for the extraction and identity
oracles.
"""

from __future__ import annotations

import os
import time
from typing import Any, Optional

import anthropic
import structlog

from recall.oracles.llm.base import LLMClient, LLMResponse

logger = structlog.get_logger(__name__)


class ClaudeClient(LLMClient):
    """Claude API client for Recall's oracles."""

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_model: str = "claude-sonnet-4-20250514",
        default_max_tokens: int = 800,
        default_temperature: float = 0.1,
    ):
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.base_url = base_url
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

        self._client: Optional[anthropic.AsyncAnthropic] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the Claude client."""
        if self._initialized:
            return

        client_kwargs: dict[str, Any] = {}
        if self.api_key:
            client_kwargs["api_key"] = self.api_key
        if self.base_url:
            client_kwargs["base_url"] = self.base_url

        self._client = anthropic.AsyncAnthropic(**client_kwargs)
        self._initialized = True
        logger.info("Claude client initialized", model=self.default_model)

    async def shutdown(self) -> None:
        """Shutdown the client."""
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._initialized = False
        logger.info("Claude client shutdown")

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """Generate a completion."""
        if not self._client:
            raise RuntimeError("Client not initialized")

        request_kwargs = self._build_request(prompt, system, max_tokens, temperature)
        started = time.perf_counter()

        try:
            response = await self._client.messages.create(**request_kwargs)
        except anthropic.APIError as e:
            logger.error("Claude API error", error=str(e))
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        return self._convert_response(response, latency_ms)

    def _build_request(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> dict[str, Any]:
        """Build the API request kwargs."""
        request_kwargs: dict[str, Any] = {
            "model": self.default_model,
            "max_tokens": max_tokens or self.default_max_tokens,
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": prompt}]},
            ],
        }

        if system:
            request_kwargs["system"] = system

        temperature = self.default_temperature if temperature is None else temperature
        if temperature is not None:
            request_kwargs["temperature"] = temperature

        return request_kwargs

    def _convert_response(self, response: Any, latency_ms: float) -> LLMResponse:
        """Convert a Claude response to LLMResponse, keeping text blocks only."""
        text = "".join(block.text for block in response.content if block.type == "text")

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=text,
            model=getattr(response, "model", None) or self.default_model,
            input_tokens=usage.input_tokens if usage else None,
            output_tokens=usage.output_tokens if usage else None,
            latency_ms=latency_ms,
        )

    def get_model_name(self) -> str:
        return self.default_model
