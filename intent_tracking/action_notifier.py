"""
Action-change notifications for purchase intent tracking.

When a turn changes a conversation's recommended action, an
ActionChangedEvent is handed to the configured notifiers (agent alerting,
CRM routing). Notifiers run after the record is durable; their failures are
logged and never undo the turn.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from .models import RecommendedAction, Stage, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ActionChangedEvent:
    """Emitted when recommended_action changes."""
    conversation_id: str
    previous_action: Optional[RecommendedAction]
    new_action: Optional[RecommendedAction]
    score: int
    stage: Stage
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "intent.action_changed",
            "conversationId": self.conversation_id,
            "previousAction": self.previous_action.value if self.previous_action else None,
            "newAction": self.new_action.value if self.new_action else None,
            "score": self.score,
            "stage": self.stage.value,
            "occurredAt": self.occurred_at.isoformat(),
        }


@runtime_checkable
class ActionNotifier(Protocol):
    """Receives action-change events."""

    async def notify(self, event: ActionChangedEvent) -> None:
        ...


class LoggingActionNotifier:
    """Writes events to the log; handovers at WARNING so operators see them."""

    async def notify(self, event: ActionChangedEvent) -> None:
        message = (
            f"Action changed for {event.conversation_id}: "
            f"{event.previous_action.value if event.previous_action else None} -> "
            f"{event.new_action.value if event.new_action else None} "
            f"(score={event.score}, stage={event.stage.value})"
        )
        if event.new_action == RecommendedAction.HANDOVER:
            logger.warning(message)
        else:
            logger.info(message)


class WebhookActionNotifier:
    """
    Posts events to a webhook.

    Delivery is best-effort: non-2xx responses and transport errors are
    logged and the event is kept in a small failed queue for inspection.
    """

    def __init__(
        self,
        webhook_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_failed: int = 100,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self.api_key = api_key
        self.timeout = timeout
        self.max_failed = max_failed
        self._client = client
        self._failed: List[ActionChangedEvent] = []

    async def notify(self, event: ActionChangedEvent) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.webhook_url, json=event.to_dict(), headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.webhook_url, json=event.to_dict(), headers=headers, timeout=self.timeout
                    )
        except httpx.HTTPError as e:
            logger.error(f"Action webhook error for {event.conversation_id}: {e}")
            self._remember(event)
            return

        if response.status_code in (200, 201, 202, 204):
            logger.info(f"Action webhook delivered for {event.conversation_id}")
        else:
            logger.error(
                f"Action webhook failed for {event.conversation_id}: "
                f"{response.status_code} {response.text[:200]}"
            )
            self._remember(event)

    def _remember(self, event: ActionChangedEvent):
        self._failed.append(event)
        if len(self._failed) > self.max_failed:
            del self._failed[0]

    def get_failed_events(self) -> List[ActionChangedEvent]:
        return self._failed.copy()
