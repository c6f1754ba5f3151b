"""
Bounded oracle calls.

Every model call goes through LLMCaller: it applies the configured timeout,
records usage, and turns timeouts and transport errors into None so the
live pipeline never blocks or breaks on an oracle.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from recall.core.config import OracleConfig
from recall.oracles.llm.base import LLMClient, LLMResponse
from recall.oracles.usage import UsageLog

logger = structlog.get_logger(__name__)


class LLMCaller:
    """Timeout, usage accounting and fail-open handling for one client."""

    def __init__(
        self,
        client: LLMClient,
        config: Optional[OracleConfig] = None,
        usage: Optional[UsageLog] = None,
    ):
        self.client = client
        self.config = config or OracleConfig()
        self.usage = usage if usage is not None else UsageLog(self.config.usage_log_size)

    async def call(
        self,
        route: str,
        system: str,
        prompt: str,
        max_tokens: Optional[int] = None,
    ) -> Optional[LLMResponse]:
        """Run one completion; None on timeout or failure."""
        model = self.client.get_model_name()
        try:
            response = await asyncio.wait_for(
                self.client.complete(
                    prompt,
                    system=system,
                    max_tokens=max_tokens or self.config.max_tokens,
                    temperature=self.config.temperature,
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            self.usage.record_failure(route, self.client.name, model, f"timeout after {self.config.timeout}s")
            return None
        except Exception as e:
            self.usage.record_failure(route, self.client.name, model, str(e) or type(e).__name__)
            return None

        self.usage.record_success(route, self.client.name, response)
        return response
