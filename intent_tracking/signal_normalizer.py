"""
Signal Normalizer for purchase intent tracking.

Validates and deduplicates the raw classifier output of one message turn.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .errors import InvalidSignal
from .models import Objection, ProductInterest, Signal, as_naive_utc, utcnow
from .taxonomy import IntentConfig, SignalCategory

logger = logging.getLogger(__name__)

DEFAULT_STRENGTH = 0.5


@dataclass
class RawSignalEvent:
    """One observation from the external classifier."""
    kind: str
    strength: Optional[float] = None
    product_id: Optional[str] = None
    observed_at: datetime = field(default_factory=utcnow)


@dataclass
class NormalizedTurn:
    """Validated, deduplicated content of one turn."""
    signals: List[Signal] = field(default_factory=list)
    objections: List[Objection] = field(default_factory=list)
    controls: List[Signal] = field(default_factory=list)
    product_observations: Dict[str, ProductInterest] = field(default_factory=dict)
    resolved_kinds: List[str] = field(default_factory=list)
    handover_requested: bool = False
    rejected: List[InvalidSignal] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.signals or self.objections or self.controls or self.product_observations)


def _clamp_strength(value: Optional[float]) -> float:
    if value is None:
        return DEFAULT_STRENGTH
    return max(0.0, min(1.0, float(value)))


class SignalNormalizer:
    """
    Turns raw events into a NormalizedTurn.

    Rules:
    - unknown kinds are rejected (reported, not raised)
    - strength defaults to 0.5 and is clamped to [0, 1]
    - same-kind signals in one turn collapse to the strongest
    - a signal carrying a product_id also counts as product interest
    """

    def __init__(self, config: IntentConfig):
        self.config = config

    def normalize(self, raw_events: Sequence[RawSignalEvent]) -> NormalizedTurn:
        signals: Dict[str, Signal] = {}
        controls: Dict[str, Signal] = {}
        objections: Dict[str, Objection] = {}
        products: Dict[str, ProductInterest] = {}
        rejected: List[InvalidSignal] = []

        for event in raw_events:
            try:
                self._accept(event, signals, controls, objections, products)
            except InvalidSignal as e:
                rejected.append(e)

        resolved_kinds = []
        for kind in controls:
            target = self.config.resolved_objection_kind(kind)
            if target is not None:
                resolved_kinds.append(target)

        for kind, objection in objections.items():
            if kind in resolved_kinds:
                objection.resolved = True
                objection.resolved_at = objection.observed_at

        return NormalizedTurn(
            signals=list(signals.values()),
            objections=list(objections.values()),
            controls=list(controls.values()),
            product_observations=products,
            resolved_kinds=resolved_kinds,
            handover_requested=any(self.config.is_handover(k) for k in controls),
            rejected=rejected,
        )

    def _accept(
        self,
        event: RawSignalEvent,
        signals: Dict[str, Signal],
        controls: Dict[str, Signal],
        objections: Dict[str, Objection],
        products: Dict[str, ProductInterest],
    ):
        category = self.config.category_of(event.kind)
        if category is None:
            raise InvalidSignal(event.kind, "kind is not in the configured taxonomy")
        raw_strength = None
        if event.strength is not None:
            try:
                raw_strength = float(event.strength)
            except (TypeError, ValueError):
                raise InvalidSignal(event.kind, f"strength {event.strength!r} is not a number") from None
            if math.isnan(raw_strength):
                raise InvalidSignal(event.kind, "strength is not a number")

        strength = _clamp_strength(raw_strength)
        observed_at = as_naive_utc(event.observed_at)

        if category == SignalCategory.OBJECTION:
            # First observation of an objection kind wins
            objections.setdefault(event.kind, Objection(kind=event.kind, observed_at=observed_at))
            return

        if category == SignalCategory.PRODUCT_INTEREST:
            if not event.product_id:
                raise InvalidSignal(event.kind, "product interest event without product_id")
            self._observe_product(products, str(event.product_id), strength, observed_at)
            return

        target = signals if category == SignalCategory.SIGNAL else controls
        existing = target.get(event.kind)
        if existing is None:
            target[event.kind] = Signal(kind=event.kind, strength=strength, observed_at=observed_at)
        elif strength > existing.strength:
            existing.strength = strength
            existing.observed_at = observed_at

        if category == SignalCategory.SIGNAL and event.product_id:
            self._observe_product(products, str(event.product_id), strength, observed_at)

    @staticmethod
    def _observe_product(
        products: Dict[str, ProductInterest],
        product_id: str,
        weight: float,
        observed_at: datetime,
    ):
        existing = products.get(product_id)
        if existing is None:
            products[product_id] = ProductInterest(
                product_id=product_id, weight=weight, last_observed_at=observed_at
            )
            return
        existing.weight = max(existing.weight, weight)
        existing.last_observed_at = max(existing.last_observed_at, observed_at)
