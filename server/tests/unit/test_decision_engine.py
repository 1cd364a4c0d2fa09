"""
Unit Tests for ResponseDecisionEngine

Strategy thresholds (including the balanced accept boundary), the
multiple-source veto, adaptive learning and the end-to-end comparative case.
"""

import math

import pytest

from websearch.decision_engine import (
    DEFAULT_TYPE_THRESHOLDS,
    HISTORY_LIMIT,
    DecisionStrategy,
    QueryContext,
    ResponseDecision,
    ResponseDecisionEngine,
)
from websearch.models import QueryType
from websearch.quality_classifier import QualityAssessment, QualityClassifier


def _assessment(
    query_type=QueryType.GENERAL,
    confidence=0.7,
    satisfactory=False,
    authority=0.8,
    diversity=1,
    issues=(),
) -> QualityAssessment:
    return QualityAssessment(
        is_satisfactory=satisfactory,
        confidence=confidence,
        coverage=0.8,
        authority=authority,
        content_depth=0.8,
        source_diversity=diversity,
        issues=tuple(issues),
        strengths=(),
        recommendation="",
        query_type=query_type,
    )


def _context(query_type=QueryType.GENERAL, **kwargs) -> QueryContext:
    return QueryContext(original_query="q", query_type=query_type, **kwargs)


def _engine(strategy=DecisionStrategy.BALANCED) -> ResponseDecisionEngine:
    return ResponseDecisionEngine(strategy, QualityClassifier())


# =============================================================================
# BALANCED STRATEGY TESTS
# =============================================================================

class TestBalancedStrategy:
    """Tests for the default strategy."""

    def test_boundary_is_inclusive(self):
        """Confidence exactly at the threshold answers."""
        decision = _engine().decide(_assessment(confidence=0.6), _context())
        assert decision.should_respond
        assert decision.confidence == 0.6
        assert decision.metadata["threshold_used"] == 0.6

    def test_one_ulp_below_declines(self):
        """The next float below the threshold declines."""
        below = math.nextafter(0.6, 0.0)
        decision = _engine().decide(_assessment(confidence=below), _context())
        assert not decision.should_respond
        assert decision.confidence == 0.0
        assert decision.selected_results == ()

    def test_satisfactory_clause(self):
        """Satisfactory with confidence 0.6 answers even under a higher threshold."""
        assessment = _assessment(QueryType.FACTUAL, confidence=0.6, satisfactory=True, diversity=2)
        decision = _engine().decide(assessment, _context(QueryType.FACTUAL))
        assert decision.should_respond

    def test_urgency_lowers_threshold(self):
        """Urgent questions get a 0.1 discount."""
        assessment = _assessment(QueryType.FACTUAL, confidence=0.72, diversity=2)
        engine = _engine()
        assert not engine.decide(assessment, _context(QueryType.FACTUAL)).should_respond
        assert engine.decide(assessment, _context(QueryType.FACTUAL, is_urgent=True)).should_respond

    def test_expertise_lowers_threshold(self):
        """Experts (expertise > 0.7) get a 0.05 discount."""
        assessment = _assessment(QueryType.FACTUAL, confidence=0.76, diversity=2)
        engine = _engine()
        assert not engine.decide(assessment, _context(QueryType.FACTUAL)).should_respond
        assert engine.decide(assessment, _context(QueryType.FACTUAL, user_expertise=0.9)).should_respond

    def test_threshold_floor(self):
        """Discounts never push the threshold below 0.5."""
        context = _context(is_urgent=True, user_expertise=0.9)
        engine = _engine()
        assert engine.decide(_assessment(confidence=0.5), context).should_respond
        assert not engine.decide(_assessment(confidence=0.49), context).should_respond

    def test_multiple_sources_veto(self):
        """A type needing several sources declines below its domain floor."""
        assessment = _assessment(QueryType.COMPARATIVE, confidence=0.8, diversity=1)
        decision = _engine().decide(assessment, _context(QueryType.COMPARATIVE))
        assert not decision.should_respond
        assert decision.metadata["source_floor_met"] is False
        assert "3 distinct sources" in decision.reasoning

    def test_caveat_recommendations(self):
        """Low-ish confidence and a single source add caveats."""
        decision = _engine().decide(_assessment(confidence=0.65, diversity=1), _context())
        assert decision.should_respond
        assert len(decision.recommendations) == 2


# =============================================================================
# OTHER STRATEGY TESTS
# =============================================================================

class TestConservativeStrategy:
    """Tests for the conservative strategy."""

    def test_requires_satisfactory_confidence_and_authority(self):
        """Needs satisfactory, threshold + 0.1 and authority 0.7."""
        engine = _engine(DecisionStrategy.CONSERVATIVE)
        ok = _assessment(QueryType.GENERAL, confidence=0.75, satisfactory=True, authority=0.7)
        assert engine.decide(ok, _context()).should_respond

        weak_authority = _assessment(QueryType.GENERAL, confidence=0.9, satisfactory=True, authority=0.69)
        assert not engine.decide(weak_authority, _context()).should_respond

        unsatisfactory = _assessment(QueryType.GENERAL, confidence=0.95, satisfactory=False)
        assert not engine.decide(unsatisfactory, _context()).should_respond

    def test_selects_top_three_by_score(self, result_factory):
        """Selected results are the three best, best first."""
        results = [result_factory(url=f"https://s{i}.example.com", overall=o)
                   for i, o in enumerate([0.5, 0.9, 0.7, 0.6, 0.8])]
        engine = _engine(DecisionStrategy.CONSERVATIVE)
        decision = engine.decide(
            _assessment(confidence=0.9, satisfactory=True), _context(), results
        )
        assert [r.overall_relevance for r in decision.selected_results] == [0.9, 0.8, 0.7]


class TestAggressiveStrategy:
    """Tests for the aggressive strategy."""

    def test_any_decent_source_answers(self, result_factory):
        """One result with relevance 0.5 is enough."""
        engine = _engine(DecisionStrategy.AGGRESSIVE)
        results = [result_factory(overall=0.5)]
        decision = engine.decide(_assessment(confidence=0.1), _context(), results)
        assert decision.should_respond
        assert decision.metadata["has_decent_source"]

    def test_threshold_floor(self, result_factory):
        """Threshold is max(0.4, t - 0.2)."""
        engine = _engine(DecisionStrategy.AGGRESSIVE)
        weak = [result_factory(overall=0.2)]
        assert engine.decide(_assessment(confidence=0.4), _context(), weak).should_respond
        assert not engine.decide(_assessment(confidence=0.39), _context(), weak).should_respond

    def test_selects_up_to_seven(self, result_factory):
        """At most seven results are selected."""
        results = [result_factory(url=f"https://s{i}.example.com", overall=0.6) for i in range(10)]
        decision = _engine(DecisionStrategy.AGGRESSIVE).decide(_assessment(confidence=0.9), _context(), results)
        assert len(decision.selected_results) == 7


class TestAdaptiveStrategy:
    """Tests for adaptive thresholds."""

    def test_attempt_lowers_threshold(self):
        """Later attempts lower the bar by 0.02 each, at most 0.1."""
        engine = _engine(DecisionStrategy.ADAPTIVE)
        decision = engine.decide(_assessment(confidence=0.55), _context(attempt_number=10))
        assert decision.metadata["threshold_used"] == pytest.approx(0.5)
        assert decision.should_respond

    def test_learns_on_accept(self):
        """An accepted decision nudges the type threshold toward its confidence."""
        engine = _engine(DecisionStrategy.ADAPTIVE)
        engine.decide(_assessment(confidence=0.59), _context())
        assert engine.thresholds[QueryType.GENERAL] == pytest.approx(0.6 + (0.59 - 0.6) * 0.1)

    def test_history_adjustment_after_three(self):
        """Three high-confidence answers tighten the threshold by 0.05."""
        engine = _engine(DecisionStrategy.ADAPTIVE)
        for _ in range(3):
            engine.decide(_assessment(confidence=0.9), _context())
        decision = engine.decide(_assessment(confidence=0.9), _context())
        assert decision.metadata["history_adjustment"] == -0.05

    def test_threshold_clamped(self):
        """Learned thresholds stay within [0.3, 0.9]."""
        engine = _engine(DecisionStrategy.ADAPTIVE)
        for _ in range(200):
            engine.decide(_assessment(confidence=1.0), _context())
        assert engine.thresholds[QueryType.GENERAL] <= 0.9

    def test_reset_restores_defaults(self):
        """reset_adaptive_learning restores thresholds and clears history."""
        engine = _engine(DecisionStrategy.ADAPTIVE)
        engine.decide(_assessment(confidence=0.9), _context())
        engine.reset_adaptive_learning()
        assert engine.thresholds == dict(DEFAULT_TYPE_THRESHOLDS)
        assert engine.get_stats()["total_decisions"] == 0


# =============================================================================
# END-TO-END TESTS
# =============================================================================

class TestEndToEnd:
    """Classify then decide."""

    def test_comparative_single_domain_declines(self, result_factory):
        """A comparative question answered by one domain is declined."""
        query = "Flutter vs React Native performance"
        content = ("Flutter and React Native performance compared. " * 50) + "\n\n"
        results = [
            result_factory(
                title=f"Flutter vs React Native performance {i}",
                url=f"https://docs.flutter.dev/perf/{i}",
                snippet="Flutter and React Native performance benchmarks.",
                content=content,
                overall=0.9,
                authority=0.9,
            )
            for i in range(3)
        ]
        engine = _engine()
        assessment = engine.classifier.classify_quality(query, results)
        assert assessment.query_type == QueryType.COMPARATIVE
        assert not assessment.is_satisfactory
        assert any("diversity" in issue for issue in assessment.issues)

        decision = engine.make_decision(query, results)
        assert not decision.should_respond
        assert decision.metadata["query_type"] == "comparative"

    def test_comparative_confidence_point_eight_declines(self):
        """Confidence 0.8 with one domain still declines under balanced."""
        assessment = _assessment(QueryType.COMPARATIVE, confidence=0.8, diversity=1)
        decision = _engine().decide(assessment, _context(QueryType.COMPARATIVE))
        assert not decision.should_respond


# =============================================================================
# BOOKKEEPING TESTS
# =============================================================================

class TestBookkeeping:
    """Tests for history, stats and overrides."""

    def test_metadata_recorded(self):
        """Every decision carries its context in metadata."""
        decision = _engine().decide(_assessment(), _context(attempt_number=2, is_urgent=True))
        for key in ("query_type", "attempt_number", "user_expertise", "is_urgent", "timestamp"):
            assert key in decision.metadata
        assert decision.metadata["attempt_number"] == 2

    def test_history_bounded(self):
        """The history keeps at most 100 decisions."""
        engine = _engine()
        for _ in range(HISTORY_LIMIT + 20):
            engine.decide(_assessment(), _context())
        assert engine.get_stats()["total_decisions"] == HISTORY_LIMIT

    def test_stats_rates(self):
        """Stats report response and high-confidence rates."""
        engine = _engine()
        engine.decide(_assessment(confidence=0.9), _context())
        engine.decide(_assessment(confidence=0.1), _context())
        stats = engine.get_stats()
        assert stats["response_rate"] == 0.5
        assert stats["high_confidence_rate"] == 0.5
        assert stats["strategy"] == "balanced"

    def test_force_decision_not_recorded(self, result_factory):
        """Forced decisions carry confidence 1.0 or 0.0 and skip the history."""
        engine = _engine()
        forced = engine.force_decision(True, "operator override", [result_factory()], _assessment())
        assert forced.confidence == 1.0
        assert forced.metadata["strategy"] == "forced"
        assert engine.get_stats()["total_decisions"] == 0

        refused = engine.force_decision(False, "no", [result_factory()], _assessment())
        assert refused.confidence == 0.0
        assert refused.selected_results == ()

    def test_thresholds_are_a_copy(self):
        """Mutating the returned thresholds does not affect the engine."""
        engine = _engine()
        engine.thresholds[QueryType.GENERAL] = 0.0
        assert engine.thresholds[QueryType.GENERAL] == 0.6

    def test_confidence_flags(self):
        """High and low confidence flags use 0.8 and 0.5."""
        decision = ResponseDecision(True, 0.8, "", (), (), _assessment())
        assert decision.is_high_confidence
        assert not decision.is_low_confidence
        low = ResponseDecision(False, 0.49, "", (), (), _assessment())
        assert low.is_low_confidence
