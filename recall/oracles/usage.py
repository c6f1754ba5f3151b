"""
Oracle usage log.

Bounded in-memory record of every oracle call (route, model, tokens, latency,
success) with one structured log line per call.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from recall.oracles.llm.base import LLMResponse

logger = structlog.get_logger(__name__)

ROUTE_DESCRIPTIONS = {
    "extract": "Entity extraction from the live transcript",
    "reconcile": "Transcript review against existing records",
    "reconcile/dedup": "Pairwise duplicate judgement for candidate record pairs",
    "dedup": "Duplicate detection across a whole record set",
}


@dataclass
class UsageEntry:
    route: str
    provider: str
    model: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    latency_ms: Optional[float] = None
    success: bool = True
    error: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def total_tokens(self) -> Optional[int]:
        if self.tokens_in is None or self.tokens_out is None:
            return None
        return self.tokens_in + self.tokens_out

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "route": self.route,
            "provider": self.provider,
            "model": self.model,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "total_tokens": self.total_tokens,
            "latency_ms": self.latency_ms,
            "success": self.success,
            "error": self.error,
        }


class UsageLog:
    """Ring buffer of oracle calls, oldest dropped first."""

    def __init__(self, max_entries: int = 500):
        self._entries: deque[UsageEntry] = deque(maxlen=max_entries)

    def record_success(self, route: str, provider: str, response: LLMResponse) -> UsageEntry:
        entry = UsageEntry(
            route=route,
            provider=provider,
            model=response.model,
            tokens_in=response.input_tokens,
            tokens_out=response.output_tokens,
            latency_ms=response.latency_ms,
        )
        self._entries.append(entry)
        logger.info(
            "Oracle call",
            route=route,
            provider=provider,
            model=entry.model,
            tokens_in=entry.tokens_in,
            tokens_out=entry.tokens_out,
            latency_ms=round(entry.latency_ms) if entry.latency_ms is not None else None,
        )
        return entry

    def record_failure(self, route: str, provider: str, model: str, error: str) -> UsageEntry:
        entry = UsageEntry(route=route, provider=provider, model=model, success=False, error=error)
        self._entries.append(entry)
        logger.warning("Oracle call failed", route=route, provider=provider, model=model, error=error)
        return entry

    def entries(self) -> list[UsageEntry]:
        """All entries, newest first."""
        return list(reversed(self._entries))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def summary(self) -> dict[str, dict[str, Any]]:
        """Per-route call, failure and token totals."""
        totals: dict[str, dict[str, Any]] = {}
        for entry in self._entries:
            route = totals.setdefault(entry.route, {
                "calls": 0,
                "failures": 0,
                "tokens": 0,
                "description": ROUTE_DESCRIPTIONS.get(entry.route, ""),
            })
            route["calls"] += 1
            if not entry.success:
                route["failures"] += 1
            route["tokens"] += entry.total_tokens or 0
        return totals
