"""
IntentRepository protocol for purchase intent tracking.

Abstracts intent persistence so the store can work with either an
in-memory dict or the ChatSettings table.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .errors import ConcurrencyViolation
from .models import ConversationIntent, Stage

logger = logging.getLogger(__name__)


@runtime_checkable
class IntentRepository(Protocol):
    """Protocol for durable ConversationIntent storage."""

    async def load(self, conversation_id: str) -> Optional[ConversationIntent]:
        """Load the record for a conversation, or None if there is none yet."""
        ...

    async def save(
        self,
        intent: ConversationIntent,
        expected_updated_at: Optional[datetime],
    ) -> None:
        """
        Durably write the record.

        expected_updated_at is the updated_at value the caller loaded. If the
        stored row no longer carries it, another writer got in first and
        ConcurrencyViolation is raised.
        """
        ...

    async def list_by_stage(self, stage: Stage, limit: int = 50) -> List[ConversationIntent]:
        """Records in one stage, highest score first."""
        ...

    async def top_by_score(self, limit: int = 50) -> List[ConversationIntent]:
        """Records with the highest scores."""
        ...


class InMemoryIntentRepository:
    """Dict-backed repository. Stores serialized rows, like the DB would."""

    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}

    async def load(self, conversation_id: str) -> Optional[ConversationIntent]:
        row = self._rows.get(conversation_id)
        return ConversationIntent.from_dict(row) if row else None

    async def save(
        self,
        intent: ConversationIntent,
        expected_updated_at: Optional[datetime],
    ) -> None:
        existing = self._rows.get(intent.conversation_id)
        stored_updated_at = existing.get("updatedAt") if existing else None
        expected = expected_updated_at.isoformat() if expected_updated_at else None
        if stored_updated_at != expected:
            raise ConcurrencyViolation(
                intent.conversation_id,
                f"stored updatedAt {stored_updated_at} != expected {expected}",
            )
        self._rows[intent.conversation_id] = intent.to_dict()

    async def list_by_stage(self, stage: Stage, limit: int = 50) -> List[ConversationIntent]:
        rows = [r for r in self._rows.values() if r["stage"] == stage.value]
        rows.sort(key=lambda r: r["score"], reverse=True)
        return [ConversationIntent.from_dict(r) for r in rows[:limit]]

    async def top_by_score(self, limit: int = 50) -> List[ConversationIntent]:
        rows = sorted(self._rows.values(), key=lambda r: r["score"], reverse=True)
        return [ConversationIntent.from_dict(r) for r in rows[:limit]]

    def __len__(self) -> int:
        return len(self._rows)
