"""
Recall - Identity Reconciliation & Query Resolution

Converges noisy, partial extractions from live conversation into a stable set
of person records:
- Record Store with a permanent tombstone log
- Candidate Aggregator state machine (create / update / switch / re-engage)
- Duplicate Detector with absolute hard negatives
- Confidence Router as the single gate for mutation
- Query Resolver with stability hysteresis
"""

__version__ = "1.0.0"
__author__ = "Recall Team"

from recall.core.config import RecallConfig
from recall.engine import RecallEngine, create_engine
from recall.session import SessionManager

__all__ = ["RecallConfig", "RecallEngine", "SessionManager", "create_engine", "__version__"]
