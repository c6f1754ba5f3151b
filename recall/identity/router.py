"""
Confidence Router

The single gate between a confidence-scored proposal and a mutation:
- confidence > 90: auto-apply
- 60 <= confidence <= 90: suggest (never mutates on its own)
- confidence < 60: discard (dropped silently)

Update and merge proposals go through the same thresholds so tuning happens
in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from recall.core.config import RouterConfig
from recall.identity.types import MergeProposal, RoutingAction, UpdateProposal

P = TypeVar("P", MergeProposal, UpdateProposal)


@dataclass(frozen=True)
class Routed(Generic[P]):
    """A proposal paired with its routing decision."""
    proposal: P
    action: RoutingAction


class ConfidenceRouter:
    """Maps confidence scores to routing actions."""

    def __init__(self, config: Optional[RouterConfig] = None):
        self.config = config or RouterConfig()

    def route(self, confidence: float) -> RoutingAction:
        if confidence > self.config.auto_apply_above:
            return RoutingAction.AUTO_APPLY
        if confidence >= self.config.suggest_at_or_above:
            return RoutingAction.SUGGEST
        return RoutingAction.DISCARD

    def route_update(self, update: UpdateProposal) -> Routed[UpdateProposal]:
        return Routed(update, self.route(update.confidence))

    def route_merge(self, merge: MergeProposal) -> Routed[MergeProposal]:
        return Routed(merge, self.route(merge.confidence))


_default_router = ConfidenceRouter()


def route(confidence: float) -> RoutingAction:
    """Route with the default thresholds."""
    return _default_router.route(confidence)
