"""
Purchase Intent Tracking.

Per-conversation buyer intent engine:
- Signal normalization against a configurable taxonomy
- Intent scoring (0-100 scale) with time decay
- Funnel stage classification with hysteresis
- Next-action recommendation
- Bounded score/stage audit history
"""

from .errors import (
    IntentTrackingError,
    InvalidSignal,
    PersistenceFailure,
    ConcurrencyViolation,
    ConfigurationError,
)
from .models import (
    ConversationIntent,
    Stage,
    RecommendedAction,
    Signal,
    Objection,
    ProductInterest,
    IntentTransition,
)
from .taxonomy import IntentConfig, SignalCategory, StageBand
from .signal_normalizer import SignalNormalizer, RawSignalEvent, NormalizedTurn
from .intent_scorer import IntentScorer, ScoreBreakdown
from .stage_classifier import StageClassifier
from .action_recommender import ActionRecommender
from .history_tracker import HistoryTracker
from .intent_repository import IntentRepository, InMemoryIntentRepository
from .action_notifier import (
    ActionChangedEvent,
    ActionNotifier,
    LoggingActionNotifier,
    WebhookActionNotifier,
)
from .intent_store import ConversationIntentStore

__all__ = [
    "IntentTrackingError",
    "InvalidSignal",
    "PersistenceFailure",
    "ConcurrencyViolation",
    "ConfigurationError",
    "ConversationIntent",
    "Stage",
    "RecommendedAction",
    "Signal",
    "Objection",
    "ProductInterest",
    "IntentTransition",
    "IntentConfig",
    "SignalCategory",
    "StageBand",
    "SignalNormalizer",
    "RawSignalEvent",
    "NormalizedTurn",
    "IntentScorer",
    "ScoreBreakdown",
    "StageClassifier",
    "ActionRecommender",
    "HistoryTracker",
    "IntentRepository",
    "InMemoryIntentRepository",
    "ActionChangedEvent",
    "ActionNotifier",
    "LoggingActionNotifier",
    "WebhookActionNotifier",
    "ConversationIntentStore",
]
