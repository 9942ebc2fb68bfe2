"""
History Tracker for purchase intent tracking.

Keeps the bounded audit trail of score/stage transitions.
"""

import logging
from datetime import datetime
from typing import List, Optional

from .models import IntentTransition, Stage

logger = logging.getLogger(__name__)


class HistoryTracker:
    """Appends transitions, evicting the oldest beyond capacity."""

    def __init__(self, capacity: int):
        self.capacity = capacity

    def record(
        self,
        history: List[IntentTransition],
        timestamp: datetime,
        previous_score: int,
        new_score: int,
        previous_stage: Stage,
        new_stage: Stage,
        cause: str,
    ) -> Optional[IntentTransition]:
        """
        Append a transition if score or stage changed.

        Returns:
            The appended transition, or None when nothing changed
        """
        if previous_score == new_score and previous_stage == new_stage:
            return None

        transition = IntentTransition(
            timestamp=timestamp,
            previous_score=previous_score,
            new_score=new_score,
            previous_stage=previous_stage,
            new_stage=new_stage,
            cause=cause,
        )
        history.append(transition)
        overflow = len(history) - self.capacity
        if overflow > 0:
            del history[:overflow]
        return transition
