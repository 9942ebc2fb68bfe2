"""
Repository classes for the purchase intent data access layer.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ChatSettings

logger = logging.getLogger(__name__)


class ChatSettingsRepository:
    """Data access for the purchase intent columns of ChatSettings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_device_and_chat(self, device_id: int, chat_id: str) -> Optional[ChatSettings]:
        """
        The host row for a chat on one device.

        The host looks chats up by (deviceId, chatId) and takes the first
        match, so the lowest id wins here too.
        """
        result = await self.session.execute(
            select(ChatSettings)
            .where(ChatSettings.device_id == device_id, ChatSettings.chat_id == chat_id)
            .order_by(ChatSettings.id)
            .limit(1)
        )
        return result.scalars().first()

    async def update_if_unchanged(
        self,
        row_id: int,
        expected_updated_at: Optional[datetime],
        values: Dict[str, Any],
    ) -> bool:
        """
        Compare-and-set update keyed on intentUpdatedAt.

        Returns:
            True if exactly one row was updated
        """
        q = update(ChatSettings).where(ChatSettings.id == row_id)
        if expected_updated_at is None:
            q = q.where(ChatSettings.intent_updated_at.is_(None))
        else:
            q = q.where(ChatSettings.intent_updated_at == expected_updated_at)
        result = await self.session.execute(
            q.values(**values).execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1

    async def list_by_stage(self, stage: str, limit: int = 50) -> List[ChatSettings]:
        """Tracked chats in one stage, highest score first."""
        result = await self.session.execute(
            select(ChatSettings)
            .where(
                ChatSettings.intent_updated_at.is_not(None),
                ChatSettings.purchase_intent_stage == stage,
            )
            .order_by(ChatSettings.purchase_intent_score.desc(), ChatSettings.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def top_by_score(self, limit: int = 50) -> List[ChatSettings]:
        result = await self.session.execute(
            select(ChatSettings)
            .where(ChatSettings.intent_updated_at.is_not(None))
            .order_by(ChatSettings.purchase_intent_score.desc(), ChatSettings.id)
            .limit(limit)
        )
        return list(result.scalars().all())
