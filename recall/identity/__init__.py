"""
Recall Identity

The reconciliation core: record store, speaker attribution, merge engine,
confidence router, candidate aggregator, duplicate detector and query
resolver.
"""

from recall.identity.aggregator import (
    AggregationResult,
    AggregatorState,
    CandidateAggregator,
    Transition,
)
from recall.identity.attribution import classify
from recall.identity.dedup import BatchResult, DuplicateDetector, hard_negative_reason
from recall.identity.events import RecordEvents
from recall.identity.grouping import GroupType, RecordGroup, group_records
from recall.identity.merge import MergeEngine, MergeOutcome, MergeStatus, merge
from recall.identity.query import (
    QueryResolution,
    QueryResolver,
    QueryState,
    ScoredMatch,
    detect_voice_query,
    is_query_continuation,
    score_records,
)
from recall.identity.router import ConfidenceRouter, route
from recall.identity.scheduler import CancellationToken, Scheduler
from recall.identity.store import RecordStore, TombstoneLog
from recall.identity.types import (
    ActionItem,
    Candidate,
    MergeProposal,
    PersonCategory,
    RecallError,
    Record,
    RoutingAction,
    SpeakerLabel,
    StoreSnapshot,
    Suggestion,
    TranscriptSegment,
    UpdateProposal,
)

__all__ = [
    "AggregationResult",
    "AggregatorState",
    "CandidateAggregator",
    "Transition",
    "classify",
    "BatchResult",
    "DuplicateDetector",
    "hard_negative_reason",
    "RecordEvents",
    "GroupType",
    "RecordGroup",
    "group_records",
    "MergeEngine",
    "MergeOutcome",
    "MergeStatus",
    "merge",
    "QueryResolution",
    "QueryResolver",
    "QueryState",
    "ScoredMatch",
    "detect_voice_query",
    "is_query_continuation",
    "score_records",
    "ConfidenceRouter",
    "route",
    "CancellationToken",
    "Scheduler",
    "RecordStore",
    "TombstoneLog",
    "ActionItem",
    "Candidate",
    "MergeProposal",
    "PersonCategory",
    "RecallError",
    "Record",
    "RoutingAction",
    "SpeakerLabel",
    "StoreSnapshot",
    "Suggestion",
    "TranscriptSegment",
    "UpdateProposal",
]
