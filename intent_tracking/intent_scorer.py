"""
Intent Scorer for purchase intent tracking.

Computes the next 0-100 score from the previous score and one normalized
turn. All arithmetic is exact (fractions), so replaying the same inputs
always yields the same integer.
"""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from fractions import Fraction

from .signal_normalizer import NormalizedTurn
from .taxonomy import IntentConfig

logger = logging.getLogger(__name__)

RESOLVED_PENALTY_FACTOR = Fraction(3, 10)
_MICROSECONDS_PER_HOUR = 3_600_000_000


@dataclass
class ScoreBreakdown:
    """How a score was reached."""
    previous: int
    decay: int
    signal_delta: Fraction
    objection_delta: Fraction
    score: int


def _exact(value: float) -> Fraction:
    # Decimal text of the float, so 0.7 means 7/10
    return Fraction(str(value))


def _hours(elapsed: timedelta) -> Fraction:
    micros = (elapsed.days * 86_400 + elapsed.seconds) * 1_000_000 + elapsed.microseconds
    return Fraction(max(micros, 0), _MICROSECONDS_PER_HOUR)


def round_half_up(value: Fraction) -> int:
    return math.floor(value + Fraction(1, 2))


class IntentScorer:
    """
    Scores buyer intent.

    Algorithm:
    1. decayed = max(0, previous - floor(decay_rate_per_hour * elapsed_hours))
    2. + weight(kind) * strength for each signal
    3. - penalty(kind) * (0.3 if resolved else 1.0) for each objection
    4. clamp to [0, 100], round half up
    """

    def __init__(self, config: IntentConfig):
        self.config = config
        # 1/6 stays 1/6 rather than 0.1666...
        self._decay_rate = Fraction(config.decay_rate_per_hour).limit_denominator(1_000_000)

    def decay_points(self, elapsed: timedelta) -> int:
        """Whole points of decay for a silent period."""
        return math.floor(self._decay_rate * _hours(elapsed))

    def unit_decay(self, elapsed: timedelta) -> Fraction:
        """Decay on the 0-1 scale used for product interest weights."""
        return self._decay_rate * _hours(elapsed) / 100

    def score(self, previous: int, turn: NormalizedTurn, elapsed: timedelta) -> int:
        return self.breakdown(previous, turn, elapsed).score

    def breakdown(self, previous: int, turn: NormalizedTurn, elapsed: timedelta) -> ScoreBreakdown:
        decay = self.decay_points(elapsed)
        decayed = max(0, previous - decay)

        signal_delta = Fraction(0)
        for signal in turn.signals:
            weight = self.config.signal_weights.get(signal.kind, 0)
            signal_delta += weight * _exact(signal.strength)

        objection_delta = Fraction(0)
        for objection in turn.objections:
            penalty = self.config.objection_penalties.get(objection.kind, 0)
            factor = RESOLVED_PENALTY_FACTOR if objection.resolved else Fraction(1)
            objection_delta -= penalty * factor

        total = decayed + signal_delta + objection_delta
        total = max(Fraction(0), min(Fraction(100), total))
        result = round_half_up(total)

        logger.debug(
            f"Score {previous} -> {result} (decay={decay}, signals={float(signal_delta):+.2f}, "
            f"objections={float(objection_delta):+.2f})"
        )

        return ScoreBreakdown(
            previous=previous,
            decay=decay,
            signal_delta=signal_delta,
            objection_delta=objection_delta,
            score=result,
        )
