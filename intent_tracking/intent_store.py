"""
Conversation Intent Store.

Owns every ConversationIntent and is the only place one is mutated.
apply_turn runs the full pipeline for one inbound turn:

    normalize -> score -> classify -> merge products -> merge objections
    -> recommend action -> record history -> persist -> notify

Turns for the same conversation are serialized with a per-conversation
asyncio.Lock; turns for different conversations run independently. The
computed record only replaces the cached one after the repository confirms
the write.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Set

from .action_notifier import ActionChangedEvent, ActionNotifier
from .action_recommender import ActionRecommender
from .errors import ConcurrencyViolation, PersistenceFailure
from .history_tracker import HistoryTracker
from .intent_repository import IntentRepository
from .intent_scorer import IntentScorer, ScoreBreakdown
from .models import ConversationIntent, Stage, as_naive_utc, utcnow
from .signal_normalizer import NormalizedTurn, RawSignalEvent, SignalNormalizer
from .stage_classifier import StageClassifier
from .taxonomy import IntentConfig

logger = logging.getLogger(__name__)


class ConversationIntentStore:
    """
    Per-conversation purchase intent aggregate store.

    Args:
        config: validated IntentConfig
        repository: durable IntentRepository
        notifiers: receivers of ActionChangedEvent
        persistence_timeout: default seconds allowed for each repository call
        cache_enabled: keep confirmed records in memory between turns
    """

    def __init__(
        self,
        config: IntentConfig,
        repository: IntentRepository,
        notifiers: Optional[List[ActionNotifier]] = None,
        persistence_timeout: Optional[float] = 5.0,
        cache_enabled: bool = True,
    ):
        self.config = config
        self.repository = repository
        self.notifiers = list(notifiers or [])
        self.persistence_timeout = persistence_timeout
        self.cache_enabled = cache_enabled

        self.normalizer = SignalNormalizer(config)
        self.scorer = IntentScorer(config)
        self.classifier = StageClassifier(config)
        self.recommender = ActionRecommender()
        self.history = HistoryTracker(config.history_capacity)

        self._cache: Dict[str, ConversationIntent] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._in_flight: Set[str] = set()
        self.needs_reconciliation: Set[str] = set()
        self._stats = {
            "turns_applied": 0,
            "records_created": 0,
            "invalid_signals": 0,
            "persistence_failures": 0,
            "concurrency_violations": 0,
            "actions_changed": 0,
        }

    # ── Update entry point ───────────────────────────────

    async def apply_turn(
        self,
        conversation_id: str,
        raw_events: Sequence[RawSignalEvent],
        now: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> ConversationIntent:
        """
        Apply one inbound turn to a conversation.

        Args:
            conversation_id: Conversation identifier
            raw_events: Classifier output for the turn
            now: Turn timestamp (defaults to current UTC time)
            timeout: Seconds allowed per repository call (defaults to store setting)

        Returns:
            A copy of the updated ConversationIntent

        Raises:
            PersistenceFailure: load or save failed or timed out; nothing applied
            ConcurrencyViolation: another writer updated the record concurrently
        """
        timeout = self.persistence_timeout if timeout is None else timeout
        now = as_naive_utc(now) if now else utcnow()

        async with self._conversation_lock(conversation_id):
            stored = await self._load(conversation_id, timeout)
            if stored is None:
                record = ConversationIntent(conversation_id=conversation_id)
                expected_updated_at = None
            else:
                record = stored
                expected_updated_at = stored.updated_at

            previous_action = record.recommended_action
            self._apply(record, raw_events, now)

            await self._save(record, expected_updated_at, timeout)
            if self.cache_enabled:
                self._cache[conversation_id] = record

            self._stats["turns_applied"] += 1
            if stored is None:
                self._stats["records_created"] += 1
            result = record.copy()

        if record.recommended_action != previous_action:
            self._stats["actions_changed"] += 1
            await self._notify(ActionChangedEvent(
                conversation_id=conversation_id,
                previous_action=previous_action,
                new_action=record.recommended_action,
                score=record.score,
                stage=record.stage,
                occurred_at=now,
            ))

        return result

    def _apply(self, record: ConversationIntent, raw_events: Sequence[RawSignalEvent], now: datetime):
        """Run the pipeline on a private copy of the record."""
        turn = self.normalizer.normalize(raw_events)
        for rejected in turn.rejected:
            self._stats["invalid_signals"] += 1
            logger.warning(f"Dropped signal for conversation {record.conversation_id}: {rejected}")

        elapsed = now - record.updated_at if record.updated_at else timedelta(0)
        breakdown = self.scorer.breakdown(record.score, turn, elapsed)
        new_score = breakdown.score
        new_stage = self.classifier.classify(new_score, record.stage)

        self._merge_products(record, turn, elapsed)
        self._merge_objections(record, turn, now)
        self._merge_signals(record, turn)

        action = self.recommender.recommend(
            new_score, new_stage, record.objections, turn.handover_requested
        )

        self.history.record(
            record.history,
            timestamp=now,
            previous_score=record.score,
            new_score=new_score,
            previous_stage=record.stage,
            new_stage=new_stage,
            cause=self._describe_cause(turn, breakdown),
        )

        if new_stage != record.stage:
            logger.info(
                f"Conversation {record.conversation_id} stage {record.stage.value} -> "
                f"{new_stage.value} (score {record.score} -> {new_score})"
            )

        record.score = new_score
        record.stage = new_stage
        record.peak_score = max(record.peak_score, new_score)
        record.recommended_action = action
        record.updated_at = max(now, record.updated_at) if record.updated_at else now

    def _merge_products(self, record: ConversationIntent, turn: NormalizedTurn, elapsed: timedelta):
        decay = self.scorer.unit_decay(elapsed)
        if decay > 0:
            for product_id, interest in record.products_of_interest.items():
                if product_id not in turn.product_observations:
                    remaining = max(Fraction(str(interest.weight)) - decay, Fraction(0))
                    interest.weight = round(float(remaining), 4)

        for product_id, observed in turn.product_observations.items():
            existing = record.products_of_interest.get(product_id)
            if existing is None:
                record.products_of_interest[product_id] = observed
            else:
                existing.weight = max(existing.weight, observed.weight)
                existing.last_observed_at = max(existing.last_observed_at, observed.last_observed_at)

        overflow = len(record.products_of_interest) - self.config.product_interest_capacity
        if overflow > 0:
            # Products observed this turn are the most recent, whatever their timestamps say
            stale = sorted(
                record.products_of_interest.values(),
                key=lambda p: (p.product_id in turn.product_observations, p.last_observed_at),
            )[:overflow]
            for interest in stale:
                del record.products_of_interest[interest.product_id]
            logger.debug(f"Evicted {overflow} products from conversation {record.conversation_id}")

    def _merge_objections(self, record: ConversationIntent, turn: NormalizedTurn, now: datetime):
        for kind in turn.resolved_kinds:
            matched = False
            for objection in record.objections:
                if objection.kind == kind and not objection.resolved:
                    objection.resolved = True
                    objection.resolved_at = now
                    matched = True
            if not matched:
                logger.debug(f"No open '{kind}' objection to resolve in {record.conversation_id}")
        record.objections.extend(turn.objections)

    def _merge_signals(self, record: ConversationIntent, turn: NormalizedTurn):
        record.signals.extend(turn.signals)
        record.signals.extend(turn.controls)
        overflow = len(record.signals) - self.config.signal_capacity
        if overflow > 0:
            del record.signals[:overflow]

    @staticmethod
    def _describe_cause(turn: NormalizedTurn, breakdown: ScoreBreakdown) -> str:
        parts = []
        applied_decay = min(breakdown.decay, breakdown.previous)
        if applied_decay:
            parts.append(f"decay:-{applied_decay}")
        if turn.signals:
            parts.append("signals:" + ",".join(s.kind for s in turn.signals))
        if turn.objections:
            parts.append("objections:" + ",".join(o.kind for o in turn.objections))
        if turn.resolved_kinds:
            parts.append("resolved:" + ",".join(turn.resolved_kinds))
        return "; ".join(parts) or "reclassified"

    # ── Read operations ──────────────────────────────────

    async def get(self, conversation_id: str, timeout: Optional[float] = None) -> Optional[ConversationIntent]:
        """Current record for a conversation, or None."""
        timeout = self.persistence_timeout if timeout is None else timeout
        record = await self._load(conversation_id, timeout)
        return record

    async def list_by_stage(self, stage: Stage, limit: int = 50) -> List[ConversationIntent]:
        return await self._guard(
            "list", f"stage:{stage.value}", self.repository.list_by_stage(stage, limit), self.persistence_timeout
        )

    async def top_by_score(self, limit: int = 50) -> List[ConversationIntent]:
        return await self._guard(
            "list", "top", self.repository.top_by_score(limit), self.persistence_timeout
        )

    def get_stats(self) -> Dict[str, int]:
        stats = dict(self._stats)
        stats["cached_conversations"] = len(self._cache)
        stats["active_locks"] = len(self._locks)
        stats["needs_reconciliation"] = len(self.needs_reconciliation)
        return stats

    def invalidate(self, conversation_id: str):
        """Drop a cached record so the next turn reloads it from the repository."""
        self._cache.pop(conversation_id, None)

    def clear_reconciliation(self, conversation_id: str) -> bool:
        """
        Mark a conversation as reconciled by an operator.

        Returns:
            True if the conversation was waiting for reconciliation
        """
        if conversation_id not in self.needs_reconciliation:
            return False
        self.needs_reconciliation.discard(conversation_id)
        self.invalidate(conversation_id)
        logger.info(f"Conversation {conversation_id} reconciled")
        return True

    # ── Persistence ──────────────────────────────────────

    async def _load(self, conversation_id: str, timeout: Optional[float]) -> Optional[ConversationIntent]:
        cached = self._cache.get(conversation_id)
        if cached is not None:
            return cached.copy()
        return await self._guard("load", conversation_id, self.repository.load(conversation_id), timeout)

    async def _save(
        self,
        record: ConversationIntent,
        expected_updated_at: Optional[datetime],
        timeout: Optional[float],
    ):
        try:
            await self._guard(
                "save", record.conversation_id, self.repository.save(record, expected_updated_at), timeout
            )
        except ConcurrencyViolation as e:
            self._flag_violation(record.conversation_id, str(e))
            raise
        except PersistenceFailure:
            # The write may or may not have landed; reload next time
            self.invalidate(record.conversation_id)
            raise

    async def _guard(self, operation: str, conversation_id: str, call, timeout: Optional[float]):
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except ConcurrencyViolation:
            raise
        except PersistenceFailure as e:
            self._stats["persistence_failures"] += 1
            logger.error(f"Persistence {operation} failed for {conversation_id}: {e}")
            raise
        except asyncio.TimeoutError as e:
            self._stats["persistence_failures"] += 1
            logger.error(f"Persistence {operation} timed out for {conversation_id} after {timeout}s")
            raise PersistenceFailure(conversation_id, operation, e) from e
        except Exception as e:
            self._stats["persistence_failures"] += 1
            logger.error(f"Persistence {operation} failed for {conversation_id}: {e}")
            raise PersistenceFailure(conversation_id, operation, e) from e

    # ── Notification ─────────────────────────────────────

    async def _notify(self, event: ActionChangedEvent):
        for notifier in self.notifiers:
            try:
                await notifier.notify(event)
            except Exception as e:
                logger.error(
                    f"Notifier {type(notifier).__name__} failed for {event.conversation_id}: {e}"
                )

    # ── Concurrency ──────────────────────────────────────

    @asynccontextmanager
    async def _conversation_lock(self, conversation_id: str):
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                if conversation_id in self._in_flight:
                    self._flag_violation(conversation_id, "second turn entered the critical section")
                    raise ConcurrencyViolation(conversation_id, "turn already in flight")
                self._in_flight.add(conversation_id)
                try:
                    yield
                finally:
                    self._in_flight.discard(conversation_id)
        finally:
            self._lock_users[conversation_id] -= 1
            if self._lock_users[conversation_id] == 0:
                del self._lock_users[conversation_id]
                del self._locks[conversation_id]

    def _flag_violation(self, conversation_id: str, detail: str):
        self._stats["concurrency_violations"] += 1
        self.needs_reconciliation.add(conversation_id)
        self.invalidate(conversation_id)
        logger.critical(
            f"Concurrency violation on conversation {conversation_id}: {detail}. "
            f"Marked for manual reconciliation."
        )
