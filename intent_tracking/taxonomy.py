"""
Signal taxonomy and engine configuration.

The set of valid signal/objection kinds is configuration, not code: new
kinds are added through the taxonomy file. Every problem with the
configuration raises ConfigurationError when IntentConfig is built, so a bad
taxonomy stops the service at startup instead of failing a live turn.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError
from .models import Stage

logger = logging.getLogger(__name__)

# Control kind family that resolves an earlier objection: "objection_resolved:<kind>"
RESOLUTION_PREFIX = "objection_resolved:"


class SignalCategory(Enum):
    """What a kind means to the engine."""
    SIGNAL = "signal"                      # buying signal, adds weight
    OBJECTION = "objection"                # hesitation, subtracts penalty
    PRODUCT_INTEREST = "product_interest"  # product observation only
    CONTROL = "control"                    # handover / resolution markers


@dataclass(frozen=True)
class StageBand:
    """Lower score bound of a funnel stage."""
    stage: Stage
    lower_bound: int


DEFAULT_SIGNAL_WEIGHTS: Dict[str, int] = {
    "price_inquiry": 8,
    "asked_for_link": 10,
    "asked_availability": 6,
    "product_inquiry": 5,
    "requested_catalog": 4,
    "asked_shipping": 7,
    "asked_payment_method": 12,
    "requested_quote": 15,
    "positive_feedback": 3,
    "confirmed_purchase": 25,
}

DEFAULT_OBJECTION_PENALTIES: Dict[str, int] = {
    "too_expensive": 8,
    "needs_approval": 6,
    "not_now": 5,
    "comparing_competitor": 4,
    "trust_concern": 7,
    "shipping_concern": 3,
}

DEFAULT_PRODUCT_INTEREST_KINDS: List[str] = ["product_viewed", "product_mentioned"]

DEFAULT_CONTROL_KINDS: List[str] = ["requested_human"]

DEFAULT_HANDOVER_KINDS: List[str] = ["requested_human"]

DEFAULT_STAGE_BANDS: List[StageBand] = [
    StageBand(Stage.COLD, 0),
    StageBand(Stage.CURIOUS, 20),
    StageBand(Stage.INTERESTED, 45),
    StageBand(Stage.HOT, 65),
    StageBand(Stage.CLOSING, 85),
]


@dataclass
class IntentConfig:
    """
    Configuration surface of the intent engine.

    decay_rate_per_hour: score points lost per silent hour (default 1 per 6h)
    history_capacity: max retained IntentTransition entries
    product_interest_capacity: max tracked products per conversation
    signal_capacity: max retained Signal entries per conversation
    stage_bands: ordered (stage, lower bound) list covering 0..100
    hysteresis_margin: points below a stage's lower bound needed to downgrade
    """
    decay_rate_per_hour: float = 1 / 6
    history_capacity: int = 50
    product_interest_capacity: int = 20
    signal_capacity: int = 100
    signal_weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SIGNAL_WEIGHTS))
    objection_penalties: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_OBJECTION_PENALTIES))
    product_interest_kinds: List[str] = field(default_factory=lambda: list(DEFAULT_PRODUCT_INTEREST_KINDS))
    control_kinds: List[str] = field(default_factory=lambda: list(DEFAULT_CONTROL_KINDS))
    handover_kinds: List[str] = field(default_factory=lambda: list(DEFAULT_HANDOVER_KINDS))
    stage_bands: List[StageBand] = field(default_factory=lambda: list(DEFAULT_STAGE_BANDS))
    hysteresis_margin: int = 5

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Fail fast on anything a turn could trip over later."""
        if self.decay_rate_per_hour < 0:
            raise ConfigurationError("decay_rate_per_hour must be >= 0")
        for name in ("history_capacity", "product_interest_capacity", "signal_capacity"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        if self.hysteresis_margin < 0:
            raise ConfigurationError("hysteresis_margin must be >= 0")

        seen: Dict[str, str] = {}
        groups = [
            ("signal", self.signal_weights.keys()),
            ("objection", self.objection_penalties.keys()),
            ("product_interest", self.product_interest_kinds),
            ("control", self.control_kinds),
        ]
        for category, kinds in groups:
            for kind in kinds:
                if not kind:
                    raise ConfigurationError(f"Empty kind in {category} taxonomy")
                if kind.startswith(RESOLUTION_PREFIX):
                    raise ConfigurationError(
                        f"Kind '{kind}' uses the reserved prefix '{RESOLUTION_PREFIX}'"
                    )
                if kind in seen:
                    raise ConfigurationError(
                        f"Kind '{kind}' declared as both {seen[kind]} and {category}"
                    )
                seen[kind] = category

        for kind, weight in self.signal_weights.items():
            if not isinstance(weight, int) or isinstance(weight, bool):
                raise ConfigurationError(f"Signal weight for '{kind}' must be an integer")
        for kind, penalty in self.objection_penalties.items():
            if not isinstance(penalty, int) or isinstance(penalty, bool) or penalty < 0:
                raise ConfigurationError(f"Objection penalty for '{kind}' must be a non-negative integer")

        for kind in self.handover_kinds:
            if kind not in self.control_kinds:
                raise ConfigurationError(f"Handover kind '{kind}' is not a configured control kind")

        self._validate_bands()

    def _validate_bands(self):
        stages = [band.stage for band in self.stage_bands]
        if stages != list(Stage):
            raise ConfigurationError(
                "stage_bands must list every stage exactly once, in funnel order: "
                + ", ".join(s.value for s in Stage)
            )
        if self.stage_bands[0].lower_bound != 0:
            raise ConfigurationError("The first stage band must start at 0")
        previous = -1
        for band in self.stage_bands:
            if band.lower_bound <= previous or band.lower_bound > 100:
                raise ConfigurationError(
                    f"Stage band lower bounds must strictly increase within 0..100 "
                    f"(got {band.lower_bound} for {band.stage.value})"
                )
            previous = band.lower_bound

    # ── Lookups ──────────────────────────────────────────

    def category_of(self, kind: str) -> Optional[SignalCategory]:
        """Category of a kind, or None if it is not in the taxonomy."""
        if kind in self.signal_weights:
            return SignalCategory.SIGNAL
        if kind in self.objection_penalties:
            return SignalCategory.OBJECTION
        if kind in self.product_interest_kinds:
            return SignalCategory.PRODUCT_INTEREST
        if kind in self.control_kinds:
            return SignalCategory.CONTROL
        if self.resolved_objection_kind(kind) is not None:
            return SignalCategory.CONTROL
        return None

    def resolved_objection_kind(self, kind: str) -> Optional[str]:
        """For 'objection_resolved:<k>' with a configured objection k, return k."""
        if not kind.startswith(RESOLUTION_PREFIX):
            return None
        target = kind[len(RESOLUTION_PREFIX):]
        return target if target in self.objection_penalties else None

    def is_handover(self, kind: str) -> bool:
        return kind in self.handover_kinds

    def lower_bound(self, stage: Stage) -> int:
        for band in self.stage_bands:
            if band.stage == stage:
                return band.lower_bound
        raise ConfigurationError(f"No stage band for {stage.value}")

    def band_for(self, score: int) -> Stage:
        """Stage whose band contains score, without hysteresis."""
        current = self.stage_bands[0].stage
        for band in self.stage_bands:
            if score >= band.lower_bound:
                current = band.stage
        return current

    # ── Taxonomy import/export ───────────────────────────

    def taxonomy(self) -> Dict[str, Dict[str, Any]]:
        """Export the taxonomy in the {kind: {category, weight|penalty}} format."""
        result: Dict[str, Dict[str, Any]] = {}
        for kind, weight in self.signal_weights.items():
            result[kind] = {"category": SignalCategory.SIGNAL.value, "weight": weight}
        for kind, penalty in self.objection_penalties.items():
            result[kind] = {"category": SignalCategory.OBJECTION.value, "penalty": penalty}
        for kind in self.product_interest_kinds:
            result[kind] = {"category": SignalCategory.PRODUCT_INTEREST.value}
        for kind in self.control_kinds:
            result[kind] = {
                "category": SignalCategory.CONTROL.value,
                "handover": kind in self.handover_kinds,
            }
        return result

    @classmethod
    def from_taxonomy(cls, taxonomy: Dict[str, Dict[str, Any]], **overrides) -> "IntentConfig":
        """
        Build a config from a taxonomy mapping.

        Args:
            taxonomy: {kind: {"category": ..., "weight"|"penalty": int, "handover": bool}}
            **overrides: any other IntentConfig field

        Raises:
            ConfigurationError: unknown category, or a signal/objection without
                its weight/penalty
        """
        signal_weights: Dict[str, int] = {}
        objection_penalties: Dict[str, int] = {}
        product_kinds: List[str] = []
        control_kinds: List[str] = []
        handover_kinds: List[str] = []

        for kind, entry in taxonomy.items():
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Taxonomy entry for '{kind}' must be an object")
            try:
                category = SignalCategory(entry.get("category"))
            except ValueError:
                raise ConfigurationError(
                    f"Unknown category {entry.get('category')!r} for kind '{kind}'"
                ) from None

            if category == SignalCategory.SIGNAL:
                if "weight" not in entry:
                    raise ConfigurationError(f"Signal kind '{kind}' has no weight")
                signal_weights[kind] = entry["weight"]
            elif category == SignalCategory.OBJECTION:
                if "penalty" not in entry:
                    raise ConfigurationError(f"Objection kind '{kind}' has no penalty")
                objection_penalties[kind] = entry["penalty"]
            elif category == SignalCategory.PRODUCT_INTEREST:
                product_kinds.append(kind)
            else:
                control_kinds.append(kind)
                if entry.get("handover"):
                    handover_kinds.append(kind)

        return cls(
            signal_weights=signal_weights,
            objection_penalties=objection_penalties,
            product_interest_kinds=product_kinds,
            control_kinds=control_kinds,
            handover_kinds=handover_kinds,
            **overrides,
        )

    @classmethod
    def from_json_file(cls, path: str, **overrides) -> "IntentConfig":
        """Load a taxonomy JSON file. Optional top-level "stageBands" overrides the bands."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot read taxonomy file {path}: {e}") from e

        if "kinds" in data:
            taxonomy = data["kinds"]
            if "stageBands" in data:
                overrides.setdefault("stage_bands", _parse_bands(data["stageBands"]))
        else:
            taxonomy = data

        config = cls.from_taxonomy(taxonomy, **overrides)
        logger.info(f"Loaded intent taxonomy from {path}: {len(taxonomy)} kinds")
        return config


def _parse_bands(raw: List[Dict[str, Any]]) -> List[StageBand]:
    bands = []
    for item in raw:
        try:
            bands.append(StageBand(Stage(item["stage"]), int(item["lowerBound"])))
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid stage band {item!r}: {e}") from e
    return bands
