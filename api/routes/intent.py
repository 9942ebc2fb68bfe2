"""
Purchase Intent API Routes.
"""

import logging
from datetime import datetime
from typing import List, Dict, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..middleware.metrics import record_turn, record_persistence_failure
from ..services import get_intent_store
from intent_tracking.errors import ConcurrencyViolation, PersistenceFailure
from intent_tracking.intent_store import ConversationIntentStore
from intent_tracking.models import ConversationIntent, Stage, utcnow
from intent_tracking.signal_normalizer import RawSignalEvent

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request / Response Models ─────────────────────────────────────

class SignalEventIn(BaseModel):
    kind: str = Field(..., min_length=1, max_length=100)
    strength: Optional[float] = None
    product_id: Optional[str] = Field(default=None, max_length=255)
    observed_at: Optional[datetime] = None


class TurnRequest(BaseModel):
    events: List[SignalEventIn] = Field(default_factory=list, max_length=200)


class SignalOut(BaseModel):
    kind: str
    strength: float
    observed_at: Optional[str]


class ObjectionOut(BaseModel):
    kind: str
    observed_at: Optional[str]
    resolved: bool
    resolved_at: Optional[str] = None


class ProductInterestOut(BaseModel):
    product_id: str
    weight: float
    last_observed_at: Optional[str]


class TransitionOut(BaseModel):
    timestamp: Optional[str]
    previous_score: int
    new_score: int
    previous_stage: str
    new_stage: str
    cause: str


class IntentResponse(BaseModel):
    conversation_id: str
    score: int
    stage: str
    peak_score: int
    recommended_action: Optional[str]
    updated_at: Optional[str]
    signals: List[SignalOut] = []
    objections: List[ObjectionOut] = []
    products_of_interest: List[ProductInterestOut] = []
    history: List[TransitionOut] = []


class IntentList(BaseModel):
    intents: List[IntentResponse]
    total: int
    stage: Optional[str] = None


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/conversations/{conversation_id}/turns", response_model=IntentResponse)
async def apply_turn(
    conversation_id: str,
    request: TurnRequest,
    store: ConversationIntentStore = Depends(get_intent_store),
):
    """
    Apply one message turn's classified signals to a conversation.

    Unknown kinds are dropped and logged; they do not fail the request.
    """
    events = [
        RawSignalEvent(
            kind=e.kind,
            strength=e.strength,
            product_id=e.product_id,
            observed_at=e.observed_at or utcnow(),
        )
        for e in request.events
    ]

    try:
        intent = await store.apply_turn(conversation_id, events)
    except PersistenceFailure as e:
        record_persistence_failure(e.operation)
        raise HTTPException(status_code=503, detail=str(e))
    except ConcurrencyViolation as e:
        raise HTTPException(status_code=409, detail=str(e))

    record_turn(intent.score, intent.stage.value)
    return _to_response(intent)


@router.get("/conversations/{conversation_id}/intent", response_model=IntentResponse)
async def get_intent(
    conversation_id: str,
    store: ConversationIntentStore = Depends(get_intent_store),
):
    """Get the current purchase intent of a conversation."""
    try:
        intent = await store.get(conversation_id)
    except PersistenceFailure as e:
        record_persistence_failure(e.operation)
        raise HTTPException(status_code=503, detail=str(e))
    if intent is None:
        raise HTTPException(status_code=404, detail="Conversation intent not found")
    return _to_response(intent)


@router.delete("/conversations/{conversation_id}/reconciliation")
async def clear_reconciliation(
    conversation_id: str,
    store: ConversationIntentStore = Depends(get_intent_store),
):
    """Mark a conversation flagged by a concurrent update as reconciled."""
    if not store.clear_reconciliation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation is not awaiting reconciliation")
    return {"conversation_id": conversation_id, "reconciled": True}


@router.get("/intents", response_model=IntentList)
async def list_intents(
    stage: Optional[Stage] = Query(None, description="Filter by funnel stage"),
    limit: int = Query(20, ge=1, le=200),
    store: ConversationIntentStore = Depends(get_intent_store),
):
    """List conversations by intent, highest score first."""
    try:
        if stage is not None:
            intents = await store.list_by_stage(stage, limit)
        else:
            intents = await store.top_by_score(limit)
    except PersistenceFailure as e:
        record_persistence_failure(e.operation)
        raise HTTPException(status_code=503, detail=str(e))

    return IntentList(
        intents=[_to_response(i) for i in intents],
        total=len(intents),
        stage=stage.value if stage else None,
    )


@router.get("/intents/taxonomy")
async def get_taxonomy(store: ConversationIntentStore = Depends(get_intent_store)) -> Dict[str, Any]:
    """Configured signal kinds and stage bands."""
    config = store.config
    return {
        "kinds": config.taxonomy(),
        "stage_bands": [
            {"stage": b.stage.value, "lower_bound": b.lower_bound} for b in config.stage_bands
        ],
        "hysteresis_margin": config.hysteresis_margin,
        "decay_rate_per_hour": config.decay_rate_per_hour,
    }


@router.get("/intents/stats")
async def get_intent_stats(store: ConversationIntentStore = Depends(get_intent_store)) -> Dict[str, Any]:
    """Engine counters."""
    return store.get_stats()


# ── Helpers ───────────────────────────────────────────────────────

def _to_response(intent: ConversationIntent) -> IntentResponse:
    data = intent.to_dict()
    return IntentResponse(
        conversation_id=intent.conversation_id,
        score=intent.score,
        stage=intent.stage.value,
        peak_score=intent.peak_score,
        recommended_action=data["recommendedAction"],
        updated_at=data["updatedAt"],
        signals=[
            SignalOut(kind=s["kind"], strength=s["strength"], observed_at=s["observedAt"])
            for s in data["signals"]
        ],
        objections=[
            ObjectionOut(
                kind=o["kind"],
                observed_at=o["observedAt"],
                resolved=o["resolved"],
                resolved_at=o["resolvedAt"],
            )
            for o in data["objections"]
        ],
        products_of_interest=[
            ProductInterestOut(
                product_id=p["productId"], weight=p["weight"], last_observed_at=p["lastObservedAt"]
            )
            for p in data["productsOfInterest"]
        ],
        history=[
            TransitionOut(
                timestamp=h["timestamp"],
                previous_score=h["previousScore"],
                new_score=h["newScore"],
                previous_stage=h["previousStage"],
                new_stage=h["newStage"],
                cause=h["cause"],
            )
            for h in data["history"]
        ],
    )
