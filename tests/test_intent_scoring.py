"""Tests for the intent scoring pipeline components."""

import json
from datetime import timedelta

import pytest

from intent_tracking.action_recommender import ActionRecommender
from intent_tracking.errors import ConfigurationError
from intent_tracking.history_tracker import HistoryTracker
from intent_tracking.intent_scorer import IntentScorer
from intent_tracking.models import Objection, RecommendedAction, Stage
from intent_tracking.signal_normalizer import RawSignalEvent, SignalNormalizer
from intent_tracking.stage_classifier import StageClassifier
from intent_tracking.taxonomy import IntentConfig, SignalCategory, StageBand


@pytest.fixture
def normalizer(config):
    return SignalNormalizer(config)


@pytest.fixture
def scorer(config):
    return IntentScorer(config)


@pytest.fixture
def classifier(config):
    return StageClassifier(config)


def _turn(normalizer, *events):
    return normalizer.normalize([RawSignalEvent(**e) for e in events])


# ── Configuration ─────────────────────────────────────

class TestIntentConfig:
    def test_defaults_are_valid(self, config):
        assert config.category_of("asked_for_link") == SignalCategory.SIGNAL
        assert config.category_of("too_expensive") == SignalCategory.OBJECTION
        assert config.category_of("product_viewed") == SignalCategory.PRODUCT_INTEREST
        assert config.category_of("requested_human") == SignalCategory.CONTROL
        assert config.category_of("objection_resolved:too_expensive") == SignalCategory.CONTROL
        assert config.category_of("objection_resolved:nonsense") is None
        assert config.category_of("nonsense") is None

    def test_band_table(self, config):
        expected = {
            0: Stage.COLD, 19: Stage.COLD,
            20: Stage.CURIOUS, 44: Stage.CURIOUS,
            45: Stage.INTERESTED, 64: Stage.INTERESTED,
            65: Stage.HOT, 84: Stage.HOT,
            85: Stage.CLOSING, 100: Stage.CLOSING,
        }
        for score, stage in expected.items():
            assert config.band_for(score) == stage

    def test_signal_without_weight_fails(self):
        with pytest.raises(ConfigurationError):
            IntentConfig.from_taxonomy({"asked_for_link": {"category": "signal"}})

    def test_objection_without_penalty_fails(self):
        with pytest.raises(ConfigurationError):
            IntentConfig.from_taxonomy({"too_expensive": {"category": "objection"}})

    def test_unknown_category_fails(self):
        with pytest.raises(ConfigurationError):
            IntentConfig.from_taxonomy({"x": {"category": "mood", "weight": 1}})

    def test_kind_in_two_categories_fails(self):
        with pytest.raises(ConfigurationError):
            IntentConfig(
                signal_weights={"price_inquiry": 5},
                objection_penalties={"price_inquiry": 5},
            )

    def test_reserved_prefix_fails(self):
        with pytest.raises(ConfigurationError):
            IntentConfig(signal_weights={"objection_resolved:x": 1})

    def test_handover_must_be_control_kind(self):
        with pytest.raises(ConfigurationError):
            IntentConfig(control_kinds=[], handover_kinds=["requested_human"])

    def test_bands_out_of_order_fail(self):
        bands = [
            StageBand(Stage.COLD, 0),
            StageBand(Stage.CURIOUS, 50),
            StageBand(Stage.INTERESTED, 40),
            StageBand(Stage.HOT, 65),
            StageBand(Stage.CLOSING, 85),
        ]
        with pytest.raises(ConfigurationError):
            IntentConfig(stage_bands=bands)

    def test_bands_missing_stage_fail(self):
        with pytest.raises(ConfigurationError):
            IntentConfig(stage_bands=[StageBand(Stage.COLD, 0), StageBand(Stage.HOT, 65)])

    def test_negative_penalty_fails(self):
        with pytest.raises(ConfigurationError):
            IntentConfig(objection_penalties={"too_expensive": -3})

    def test_taxonomy_round_trip_through_file(self, config, tmp_path):
        path = tmp_path / "taxonomy.json"
        path.write_text(json.dumps({
            "kinds": config.taxonomy(),
            "stageBands": [
                {"stage": "cold", "lowerBound": 0},
                {"stage": "curious", "lowerBound": 10},
                {"stage": "interested", "lowerBound": 30},
                {"stage": "hot", "lowerBound": 60},
                {"stage": "closing", "lowerBound": 90},
            ],
        }))
        loaded = IntentConfig.from_json_file(str(path), hysteresis_margin=3)
        assert loaded.signal_weights == config.signal_weights
        assert loaded.objection_penalties == config.objection_penalties
        assert loaded.handover_kinds == ["requested_human"]
        assert loaded.lower_bound(Stage.HOT) == 60
        assert loaded.hysteresis_margin == 3

    def test_unreadable_file_fails(self, tmp_path):
        with pytest.raises(ConfigurationError):
            IntentConfig.from_json_file(str(tmp_path / "missing.json"))


# ── Signal Normalizer ─────────────────────────────────

class TestSignalNormalizer:
    def test_unknown_kind_rejected_others_kept(self, normalizer):
        turn = _turn(normalizer, {"kind": "teleport_request"}, {"kind": "price_inquiry"})
        assert [s.kind for s in turn.signals] == ["price_inquiry"]
        assert len(turn.rejected) == 1
        assert turn.rejected[0].kind == "teleport_request"

    def test_duplicate_kind_keeps_max_strength(self, normalizer):
        turn = _turn(
            normalizer,
            {"kind": "price_inquiry", "strength": 0.3},
            {"kind": "asked_for_link", "strength": 0.6},
            {"kind": "price_inquiry", "strength": 0.9},
        )
        assert [s.kind for s in turn.signals] == ["price_inquiry", "asked_for_link"]
        assert turn.signals[0].strength == 0.9

    def test_strength_default_and_clamp(self, normalizer):
        turn = _turn(
            normalizer,
            {"kind": "price_inquiry"},
            {"kind": "asked_for_link", "strength": 1.7},
            {"kind": "asked_shipping", "strength": -0.2},
        )
        strengths = {s.kind: s.strength for s in turn.signals}
        assert strengths == {"price_inquiry": 0.5, "asked_for_link": 1.0, "asked_shipping": 0.0}

    def test_non_numeric_strength_rejected(self, normalizer):
        turn = _turn(
            normalizer,
            {"kind": "asked_for_link", "strength": "very"},
            {"kind": "asked_shipping", "strength": float("nan")},
            {"kind": "price_inquiry", "strength": "0.8"},
        )
        assert [s.kind for s in turn.signals] == ["price_inquiry"]
        assert turn.signals[0].strength == 0.8
        assert sorted(r.kind for r in turn.rejected) == ["asked_for_link", "asked_shipping"]

    def test_product_interest_requires_product_id(self, normalizer):
        turn = _turn(normalizer, {"kind": "product_viewed"})
        assert not turn.product_observations
        assert turn.rejected[0].kind == "product_viewed"

    def test_product_observations_dedupe_by_product(self, normalizer):
        turn = _turn(
            normalizer,
            {"kind": "product_viewed", "product_id": "sku-1", "strength": 0.4},
            {"kind": "product_mentioned", "product_id": "sku-1", "strength": 0.8},
            {"kind": "price_inquiry", "product_id": "sku-2", "strength": 0.6},
        )
        assert turn.product_observations["sku-1"].weight == 0.8
        assert turn.product_observations["sku-2"].weight == 0.6
        assert [s.kind for s in turn.signals] == ["price_inquiry"]

    def test_objection_resolved_in_same_turn(self, normalizer):
        turn = _turn(
            normalizer,
            {"kind": "too_expensive"},
            {"kind": "objection_resolved:too_expensive"},
        )
        assert turn.objections[0].resolved is True
        assert turn.resolved_kinds == ["too_expensive"]

    def test_resolution_of_unconfigured_objection_rejected(self, normalizer):
        turn = _turn(normalizer, {"kind": "objection_resolved:alien_invasion"})
        assert turn.resolved_kinds == []
        assert len(turn.rejected) == 1

    def test_handover_control(self, normalizer):
        turn = _turn(normalizer, {"kind": "requested_human"})
        assert turn.handover_requested is True
        assert turn.signals == []

    def test_empty_turn(self, normalizer):
        turn = normalizer.normalize([])
        assert turn.is_empty
        assert turn.rejected == []


# ── Intent Scorer ─────────────────────────────────────

class TestIntentScorer:
    def test_asked_for_link_full_strength(self, normalizer, scorer):
        turn = _turn(normalizer, {"kind": "asked_for_link", "strength": 1.0})
        assert scorer.score(0, turn, timedelta(0)) == 10

    def test_deterministic(self, normalizer, scorer):
        turn = _turn(
            normalizer,
            {"kind": "price_inquiry", "strength": 0.7},
            {"kind": "too_expensive"},
        )
        results = {scorer.score(42, turn, timedelta(hours=7, minutes=13)) for _ in range(20)}
        assert len(results) == 1

    def test_decay_floors_whole_points(self, normalizer, scorer):
        empty = normalizer.normalize([])
        assert scorer.score(30, empty, timedelta(hours=5)) == 30
        assert scorer.score(30, empty, timedelta(hours=6)) == 29
        assert scorer.score(30, empty, timedelta(hours=12)) == 28

    def test_decay_never_below_zero(self, normalizer, scorer):
        assert scorer.score(1, normalizer.normalize([]), timedelta(days=10)) == 0

    def test_negative_elapsed_is_no_decay(self, normalizer, scorer):
        assert scorer.score(30, normalizer.normalize([]), timedelta(hours=-12)) == 30

    def test_round_half_up(self, normalizer, scorer):
        turn = _turn(normalizer, {"kind": "product_inquiry", "strength": 0.5})
        assert scorer.score(0, turn, timedelta(0)) == 3  # 5 * 0.5 = 2.5

    def test_resolved_objection_costs_less(self, normalizer, scorer):
        open_turn = _turn(normalizer, {"kind": "too_expensive"})
        resolved_turn = _turn(
            normalizer, {"kind": "too_expensive"}, {"kind": "objection_resolved:too_expensive"}
        )
        assert scorer.score(50, open_turn, timedelta(0)) == 42
        assert scorer.score(50, resolved_turn, timedelta(0)) == 48  # 50 - 2.4 = 47.6

    def test_clamped_to_range(self, normalizer, scorer):
        assert scorer.score(95, _turn(normalizer, {"kind": "confirmed_purchase", "strength": 1.0}), timedelta(0)) == 100
        assert scorer.score(3, _turn(normalizer, {"kind": "too_expensive"}), timedelta(0)) == 0

    def test_positive_signal_never_decreases(self, normalizer, scorer):
        base = [{"kind": "too_expensive"}, {"kind": "price_inquiry", "strength": 0.4}]
        for previous in (0, 17, 50, 88, 100):
            without = scorer.score(previous, _turn(normalizer, *base), timedelta(hours=3))
            with_signal = scorer.score(
                previous,
                _turn(normalizer, *base, {"kind": "asked_for_link", "strength": 0.8}),
                timedelta(hours=3),
            )
            assert with_signal >= without

    def test_unresolved_objection_never_increases(self, normalizer, scorer):
        base = [{"kind": "asked_payment_method", "strength": 0.9}]
        for previous in (0, 17, 50, 88, 100):
            without = scorer.score(previous, _turn(normalizer, *base), timedelta(0))
            with_objection = scorer.score(
                previous, _turn(normalizer, *base, {"kind": "needs_approval"}), timedelta(0)
            )
            assert with_objection <= without

    def test_breakdown(self, normalizer, scorer):
        turn = _turn(normalizer, {"kind": "asked_for_link", "strength": 1.0}, {"kind": "not_now"})
        breakdown = scorer.breakdown(40, turn, timedelta(hours=18))
        assert breakdown.decay == 3
        assert breakdown.signal_delta == 10
        assert breakdown.objection_delta == -5
        assert breakdown.score == 42


# ── Stage Classifier ──────────────────────────────────

class TestStageClassifier:
    def test_upgrade_is_immediate(self, classifier):
        assert classifier.classify(46, Stage.COLD) == Stage.INTERESTED
        assert classifier.classify(85, Stage.HOT) == Stage.CLOSING

    def test_hot_holds_within_margin(self, classifier):
        assert classifier.classify(62, Stage.HOT) == Stage.HOT
        assert classifier.classify(61, Stage.HOT) == Stage.HOT
        assert classifier.classify(60, Stage.HOT) == Stage.HOT

    def test_hot_drops_below_margin(self, classifier):
        assert classifier.classify(59, Stage.HOT) == Stage.INTERESTED
        assert classifier.classify(58, Stage.HOT) == Stage.INTERESTED

    def test_large_drop_lands_in_score_band(self, classifier):
        assert classifier.classify(30, Stage.CLOSING) == Stage.CURIOUS
        assert classifier.classify(78, Stage.CLOSING) == Stage.HOT

    def test_same_band_is_stable(self, classifier):
        assert classifier.classify(70, Stage.HOT) == Stage.HOT

    def test_custom_margin(self):
        classifier = StageClassifier(IntentConfig(hysteresis_margin=0))
        assert classifier.classify(64, Stage.HOT) == Stage.INTERESTED


# ── Action Recommender ────────────────────────────────

class TestActionRecommender:
    @pytest.fixture
    def recommender(self):
        return ActionRecommender()

    def test_stage_table(self, recommender):
        assert recommender.recommend(90, Stage.CLOSING, []) == RecommendedAction.CLOSE_SALE
        assert recommender.recommend(70, Stage.HOT, []) == RecommendedAction.PRESENT_OFFER
        assert recommender.recommend(50, Stage.INTERESTED, []) == RecommendedAction.EDUCATE
        assert recommender.recommend(25, Stage.CURIOUS, []) == RecommendedAction.NURTURE
        assert recommender.recommend(5, Stage.COLD, []) is None

    def test_unresolved_objection_outranks_stage(self, recommender, t0):
        objections = [Objection(kind="too_expensive", observed_at=t0)]
        assert recommender.recommend(90, Stage.CLOSING, objections) == RecommendedAction.HANDLE_OBJECTION
        assert recommender.recommend(5, Stage.COLD, objections) == RecommendedAction.HANDLE_OBJECTION

    def test_resolved_objection_ignored(self, recommender, t0):
        objections = [Objection(kind="too_expensive", observed_at=t0, resolved=True)]
        assert recommender.recommend(70, Stage.HOT, objections) == RecommendedAction.PRESENT_OFFER

    def test_handover_overrides_everything(self, recommender, t0):
        objections = [Objection(kind="too_expensive", observed_at=t0)]
        assert recommender.recommend(
            90, Stage.CLOSING, objections, handover_requested=True
        ) == RecommendedAction.HANDOVER
        assert recommender.recommend(0, Stage.COLD, [], handover_requested=True) == RecommendedAction.HANDOVER


# ── History Tracker ───────────────────────────────────

class TestHistoryTracker:
    def test_no_entry_without_change(self, t0):
        history = []
        result = HistoryTracker(5).record(history, t0, 10, 10, Stage.COLD, Stage.COLD, "noop")
        assert result is None
        assert history == []

    def test_fifo_eviction(self, t0):
        tracker = HistoryTracker(3)
        history = []
        for i in range(1, 6):
            tracker.record(
                history, t0 + timedelta(minutes=i), (i - 1) * 10, i * 10,
                Stage.COLD, Stage.COLD, f"turn {i}",
            )
        assert len(history) == 3
        assert [h.new_score for h in history] == [30, 40, 50]
        assert [h.cause for h in history] == ["turn 3", "turn 4", "turn 5"]
