"""
Domain types for purchase intent tracking.

ConversationIntent is the per-conversation aggregate. The to_dict/from_dict
methods produce the camelCase JSON blobs stored in the ChatSettings table.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns of the host schema."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_naive_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_naive_utc(datetime.fromisoformat(text))


class Stage(Enum):
    """Sales funnel stages, lowest to highest."""
    COLD = "cold"
    CURIOUS = "curious"
    INTERESTED = "interested"
    HOT = "hot"
    CLOSING = "closing"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    def __lt__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "Stage") -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank >= other.rank


_STAGE_ORDER = [Stage.COLD, Stage.CURIOUS, Stage.INTERESTED, Stage.HOT, Stage.CLOSING]


class RecommendedAction(Enum):
    """Next sales action suggested to the agent."""
    NURTURE = "nurture"
    EDUCATE = "educate"
    PRESENT_OFFER = "present_offer"
    HANDLE_OBJECTION = "handle_objection"
    CLOSE_SALE = "close_sale"
    HANDOVER = "handover"


@dataclass
class Signal:
    """A detected buying signal."""
    kind: str
    strength: float
    observed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "strength": self.strength,
            "observedAt": _iso(self.observed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signal":
        return cls(
            kind=data["kind"],
            strength=float(data.get("strength", 0.5)),
            observed_at=_parse_ts(data.get("observedAt")),
        )


@dataclass
class Objection:
    """A customer hesitation. Stays in the list after it is resolved."""
    kind: str
    observed_at: datetime
    resolved: bool = False
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "observedAt": _iso(self.observed_at),
            "resolved": self.resolved,
            "resolvedAt": _iso(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Objection":
        return cls(
            kind=data["kind"],
            observed_at=_parse_ts(data.get("observedAt")),
            resolved=bool(data.get("resolved", False)),
            resolved_at=_parse_ts(data.get("resolvedAt")),
        )


@dataclass
class ProductInterest:
    """Interest weight (0-1) for one catalog product."""
    product_id: str
    weight: float
    last_observed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "weight": self.weight,
            "lastObservedAt": _iso(self.last_observed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductInterest":
        return cls(
            product_id=str(data["productId"]),
            weight=float(data.get("weight", 0.0)),
            last_observed_at=_parse_ts(data.get("lastObservedAt")),
        )


@dataclass
class IntentTransition:
    """One audit entry: how the score and stage moved and why."""
    timestamp: datetime
    previous_score: int
    new_score: int
    previous_stage: Stage
    new_stage: Stage
    cause: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "previousScore": self.previous_score,
            "newScore": self.new_score,
            "previousStage": self.previous_stage.value,
            "newStage": self.new_stage.value,
            "cause": self.cause,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntentTransition":
        return cls(
            timestamp=_parse_ts(data.get("timestamp")),
            previous_score=int(data["previousScore"]),
            new_score=int(data["newScore"]),
            previous_stage=Stage(data["previousStage"]),
            new_stage=Stage(data["newStage"]),
            cause=data.get("cause", ""),
        )


@dataclass
class ConversationIntent:
    """Purchase intent state for one conversation."""
    conversation_id: str
    score: int = 0
    stage: Stage = Stage.COLD
    signals: List[Signal] = field(default_factory=list)
    objections: List[Objection] = field(default_factory=list)
    products_of_interest: Dict[str, ProductInterest] = field(default_factory=dict)
    recommended_action: Optional[RecommendedAction] = None
    updated_at: Optional[datetime] = None
    history: List[IntentTransition] = field(default_factory=list)
    peak_score: int = 0

    @property
    def unresolved_objections(self) -> List[Objection]:
        return [o for o in self.objections if not o.resolved]

    def copy(self) -> "ConversationIntent":
        """Deep copy, so a turn can be computed without touching cached state."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "score": self.score,
            "stage": self.stage.value,
            "signals": [s.to_dict() for s in self.signals],
            "objections": [o.to_dict() for o in self.objections],
            "productsOfInterest": [p.to_dict() for p in self.products_of_interest.values()],
            "recommendedAction": self.recommended_action.value if self.recommended_action else None,
            "updatedAt": _iso(self.updated_at),
            "history": [h.to_dict() for h in self.history],
            "peakScore": self.peak_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationIntent":
        action = data.get("recommendedAction")
        products = [ProductInterest.from_dict(p) for p in data.get("productsOfInterest") or []]
        return cls(
            conversation_id=data["conversationId"],
            score=int(data.get("score", 0)),
            stage=Stage(data.get("stage") or Stage.COLD.value),
            signals=[Signal.from_dict(s) for s in data.get("signals") or []],
            objections=[Objection.from_dict(o) for o in data.get("objections") or []],
            products_of_interest={p.product_id: p for p in products},
            recommended_action=RecommendedAction(action) if action else None,
            updated_at=_parse_ts(data.get("updatedAt")),
            history=[IntentTransition.from_dict(h) for h in data.get("history") or []],
            peak_score=int(data.get("peakScore", 0)),
        )
