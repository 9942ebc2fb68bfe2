"""
Action Recommender for purchase intent tracking.
"""

import logging
from typing import Optional, Sequence

from .models import Objection, RecommendedAction, Stage

logger = logging.getLogger(__name__)


class ActionRecommender:
    """
    Picks the single next sales action.

    Priority (first match wins):
    1. handover requested this turn  -> handover
    2. any unresolved objection      -> handle_objection
    3. closing                       -> close_sale
    4. hot                           -> present_offer
    5. interested                    -> educate
    6. curious                       -> nurture
    7. cold                          -> no action
    """

    STAGE_ACTIONS = {
        Stage.CLOSING: RecommendedAction.CLOSE_SALE,
        Stage.HOT: RecommendedAction.PRESENT_OFFER,
        Stage.INTERESTED: RecommendedAction.EDUCATE,
        Stage.CURIOUS: RecommendedAction.NURTURE,
        Stage.COLD: None,
    }

    def recommend(
        self,
        score: int,
        stage: Stage,
        objections: Sequence[Objection],
        handover_requested: bool = False,
    ) -> Optional[RecommendedAction]:
        if handover_requested:
            return RecommendedAction.HANDOVER
        if any(not o.resolved for o in objections):
            return RecommendedAction.HANDLE_OBJECTION
        return self.STAGE_ACTIONS[stage]
