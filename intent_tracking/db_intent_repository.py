"""
Database-backed IntentRepository.

Implements the IntentRepository protocol on the host's ChatSettings table
through the repository layer. Each call runs in its own session and
transaction.

The host keeps one ChatSettings row per chat per device, so a conversation
is addressed as "<deviceId>:<chatId>" (e.g. "7:62811@s.whatsapp.net"). Rows
are created by the host when a chat first appears; this adapter only
updates the purchase intent columns and never inserts.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import ChatSettings
from database.repositories import ChatSettingsRepository

from .errors import ConcurrencyViolation, PersistenceFailure
from .models import ConversationIntent, Stage

logger = logging.getLogger(__name__)


def conversation_key(device_id: int, chat_id: str) -> str:
    """Conversation id for a chat on a device."""
    return f"{device_id}:{chat_id}"


def parse_conversation_key(conversation_id: str) -> Tuple[int, str]:
    """
    Split a conversation id into (device_id, chat_id).

    Raises:
        ValueError: not of the form "<int deviceId>:<chatId>"
    """
    device, sep, chat_id = conversation_id.partition(":")
    if not sep or not chat_id:
        raise ValueError(f"conversation id {conversation_id!r} is not '<deviceId>:<chatId>'")
    return int(device), chat_id


def row_to_intent(row: ChatSettings) -> ConversationIntent:
    """Decode a ChatSettings row into a ConversationIntent."""
    return ConversationIntent.from_dict({
        "conversationId": conversation_key(row.device_id, row.chat_id),
        "score": row.purchase_intent_score or 0,
        "stage": row.purchase_intent_stage,
        "signals": row.intent_signals,
        "objections": row.intent_objections,
        "productsOfInterest": row.products_of_interest,
        "recommendedAction": row.ai_recommended_action,
        "updatedAt": row.intent_updated_at,
        "history": row.intent_history,
        "peakScore": row.peak_intent_score or 0,
    })


def intent_to_values(intent: ConversationIntent) -> Dict[str, Any]:
    """Encode a ConversationIntent as ChatSettings column values."""
    data = intent.to_dict()
    return {
        "purchase_intent_score": intent.score,
        "purchase_intent_stage": intent.stage.value,
        "intent_signals": data["signals"],
        "intent_objections": data["objections"],
        "products_of_interest": data["productsOfInterest"],
        "ai_recommended_action": data["recommendedAction"],
        "intent_updated_at": intent.updated_at,
        "intent_history": data["history"],
        "peak_intent_score": intent.peak_score,
    }


class DbIntentRepository:
    """Persistent intent repository backed by PostgreSQL or SQLite."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, conversation_id: str) -> Optional[ConversationIntent]:
        """The tracked record, or None if the chat has no intent data yet."""
        device_id, chat_id = self._key(conversation_id, "load")
        async with self._session_factory() as session:
            row = await ChatSettingsRepository(session).get_by_device_and_chat(device_id, chat_id)
            if row is None or row.intent_updated_at is None:
                return None
            return row_to_intent(row)

    async def save(
        self,
        intent: ConversationIntent,
        expected_updated_at: Optional[datetime],
    ) -> None:
        device_id, chat_id = self._key(intent.conversation_id, "save")
        values = intent_to_values(intent)
        async with self._session_factory() as session:
            try:
                repo = ChatSettingsRepository(session)
                row = await repo.get_by_device_and_chat(device_id, chat_id)
                if row is None:
                    raise PersistenceFailure(
                        intent.conversation_id,
                        "save",
                        LookupError(f"no ChatSettings row for device {device_id} chat {chat_id}"),
                    )
                if not await repo.update_if_unchanged(row.id, expected_updated_at, values):
                    raise ConcurrencyViolation(
                        intent.conversation_id, "intentUpdatedAt changed since load"
                    )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        logger.debug(f"Saved intent for {intent.conversation_id} (score={intent.score})")

    async def list_by_stage(self, stage: Stage, limit: int = 50) -> List[ConversationIntent]:
        async with self._session_factory() as session:
            rows = await ChatSettingsRepository(session).list_by_stage(stage.value, limit)
            return [row_to_intent(r) for r in rows]

    async def top_by_score(self, limit: int = 50) -> List[ConversationIntent]:
        async with self._session_factory() as session:
            rows = await ChatSettingsRepository(session).top_by_score(limit)
            return [row_to_intent(r) for r in rows]

    @staticmethod
    def _key(conversation_id: str, operation: str) -> Tuple[int, str]:
        try:
            return parse_conversation_key(conversation_id)
        except ValueError as e:
            raise PersistenceFailure(conversation_id, operation, e) from e
