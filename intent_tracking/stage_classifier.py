"""
Stage Classifier for purchase intent tracking.

Maps a score to a funnel stage. Upgrades are immediate; downgrades need the
score to drop hysteresis_margin points below the current stage's lower
bound, so a score jittering around a boundary does not flap the stage.
"""

import logging

from .models import Stage
from .taxonomy import IntentConfig

logger = logging.getLogger(__name__)


class StageClassifier:
    """Score -> Stage with asymmetric hysteresis."""

    def __init__(self, config: IntentConfig):
        self.config = config

    def classify(self, score: int, current_stage: Stage) -> Stage:
        candidate = self.config.band_for(score)
        if candidate >= current_stage:
            return candidate

        threshold = self.config.lower_bound(current_stage) - self.config.hysteresis_margin
        if score < threshold:
            logger.debug(f"Downgrade {current_stage.value} -> {candidate.value} (score {score} < {threshold})")
            return candidate
        return current_stage
