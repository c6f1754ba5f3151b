"""
Recall LLM Client Base

Abstract base class for the language model clients behind the oracles.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union


@dataclass
class LLMResponse:
    """Text completion plus usage metadata."""
    content: str
    model: str = "unknown"
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    latency_ms: Optional[float] = None

    @property
    def total_tokens(self) -> Optional[int]:
        if self.input_tokens is None or self.output_tokens is None:
            return None
        return self.input_tokens + self.output_tokens


class LLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Oracles only need single-turn text completions.
    """

    name: str = "unknown"

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the client."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Shutdown the client."""
        pass

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            prompt: The user prompt
            system: Optional system prompt
            max_tokens: Output token limit, client default when None
            temperature: Sampling temperature, client default when None

        Returns:
            The completion text with usage metadata
        """
        pass

    def get_model_name(self) -> str:
        """Get the name of the current model."""
        return "unknown"


MockReply = Union[str, Callable[[str, Optional[str]], str]]


class MockLLMClient(LLMClient):
    """
    Mock LLM client for testing and offline runs.

    Replies cycle through the canned responses. A reply may be a callable
    taking (prompt, system). delay simulates a slow model; error makes every
    call raise.
    """

    name = "mock"

    def __init__(
        self,
        responses: Optional[list[MockReply]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self._responses: list[MockReply] = responses or ["{}"]
        self._response_index = 0
        self._initialized = False
        self.delay = delay
        self.error = error
        self.calls: list[tuple[Optional[str], str]] = []

    async def initialize(self) -> None:
        self._initialized = True

    async def shutdown(self) -> None:
        self._initialized = False

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        self.calls.append((system, prompt))

        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        reply = self._responses[self._response_index % len(self._responses)]
        self._response_index += 1
        text = reply(prompt, system) if callable(reply) else reply

        return LLMResponse(
            content=text,
            model=self.get_model_name(),
            input_tokens=100,
            output_tokens=50,
            latency_ms=self.delay * 1000,
        )

    def get_model_name(self) -> str:
        return "mock-model"
