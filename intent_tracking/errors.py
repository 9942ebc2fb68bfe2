"""
Error taxonomy for the purchase intent engine.

Per-turn problems (InvalidSignal) are recovered inside the engine.
Persistence, concurrency and configuration problems reach the caller.
"""

from typing import Optional


class IntentTrackingError(Exception):
    """Base class for all intent engine errors."""


class InvalidSignal(IntentTrackingError):
    """A raw event could not be normalized (unknown kind, missing product id)."""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid signal '{kind}': {reason}")


class PersistenceFailure(IntentTrackingError):
    """Durable read or write failed. No mutation was applied."""

    def __init__(self, conversation_id: str, operation: str, cause: Optional[BaseException] = None):
        self.conversation_id = conversation_id
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Persistence {operation} failed for conversation {conversation_id}{detail}")


class ConcurrencyViolation(IntentTrackingError):
    """Two writers touched the same conversation at once."""

    def __init__(self, conversation_id: str, detail: str = ""):
        self.conversation_id = conversation_id
        super().__init__(
            f"Concurrent update detected for conversation {conversation_id}"
            + (f" ({detail})" if detail else "")
        )


class ConfigurationError(IntentTrackingError):
    """Invalid engine configuration. Raised at startup, never per turn."""
