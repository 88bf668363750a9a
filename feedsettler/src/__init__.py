"""
Feed Settler - Settlement Reconciliation for Oracle Data Feeds

This module settles oracle feeds once their outcome is known:
- Feed: Feed records and per-module configuration variants
- EligibilityClassifier: Which feeds may be settled now
- ValueResolver: Off-chain value from the simulation endpoint
- ChainSettler: Signed on-chain settlement (runs in the settler service)
- SettlerClient: Orchestrator-side client for the settler service
- SettlementOrchestrator: Per-feed state machine and batch sweeps
- MatchStatusPoller: Event-outcome match status refresh
- FeedStore: Persistent store interface (PostgREST and in-memory backends)
- RetryPolicy: Bounded retry across redundant endpoints
"""

from .EligibilityClassifier import EligibilityClassifier, is_eligible
from .Feed import (
    EventOutcomeConfig,
    Feed,
    FeedStatus,
    MatchStatus,
    TimeBasedConfig,
    derive_outcome_value,
)
from .RetryPolicy import RetryPolicy
from .SettlementOrchestrator import (
    ErrorKind,
    SettlementOrchestrator,
    SettlementResult,
    SweepSummary,
)
from .ValueResolver import ValueResolver

__all__ = [
    "EligibilityClassifier",
    "ErrorKind",
    "EventOutcomeConfig",
    "Feed",
    "FeedStatus",
    "MatchStatus",
    "RetryPolicy",
    "SettlementOrchestrator",
    "SettlementResult",
    "SweepSummary",
    "TimeBasedConfig",
    "ValueResolver",
    "derive_outcome_value",
    "is_eligible",
]
