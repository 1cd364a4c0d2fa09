"""
Response Decision Engine - answer, or decline?

Turns a QualityAssessment into a ResponseDecision using one of four
strategies:

- conservative: satisfactory, confidence >= threshold + 0.1, authority >= 0.7
- balanced: confidence >= adjusted threshold, or satisfactory with
  confidence >= 0.6; never when a type needing several sources has fewer
  distinct domains than its profile requires
- aggressive: confidence >= max(0.4, threshold - 0.2), or any result with
  relevance >= 0.5
- adaptive: threshold learned per query type from past decisions

A decline is a normal outcome, not an error. All learning state (thresholds
and the bounded decision history) lives on the instance.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from .models import QueryType, RelevanceScore, SearchResult
from .quality_classifier import QualityAssessment, QualityClassifier

logger = logging.getLogger("websearch.decision_engine")

HISTORY_LIMIT = 100
HIGH_CONFIDENCE = 0.8
LOW_CONFIDENCE = 0.5

# Adaptive learning
LEARNING_RATE = 0.1
MIN_ADAPTIVE_THRESHOLD = 0.3
MAX_ADAPTIVE_THRESHOLD = 0.9
MIN_HISTORY_FOR_ADJUSTMENT = 3

# Askers above this expertise get a slightly lower balanced threshold
EXPERT_THRESHOLD = 0.7

DEFAULT_TYPE_THRESHOLDS: Mapping[QueryType, float] = MappingProxyType({
    QueryType.FACTUAL: 0.8,
    QueryType.TECHNICAL: 0.85,
    QueryType.EXPLANATORY: 0.7,
    QueryType.PROCEDURAL: 0.75,
    QueryType.COMPARATIVE: 0.7,
    QueryType.GENERAL: 0.6,
})


class DecisionStrategy(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"
    ADAPTIVE = "adaptive"


@dataclass
class QueryContext:
    """What the engine knows about the asker and the attempt."""
    original_query: str
    query_type: QueryType
    attempt_number: int = 1
    previous_queries: List[str] = field(default_factory=list)
    user_expertise: float = 0.5
    is_urgent: bool = False
    preferred_sources: List[str] = field(default_factory=list)


def is_expert(context: QueryContext) -> bool:
    return context.user_expertise > EXPERT_THRESHOLD


@dataclass(frozen=True)
class ResponseDecision:
    should_respond: bool
    confidence: float
    reasoning: str
    recommendations: Tuple[str, ...]
    selected_results: Tuple[SearchResult, ...]
    assessment: QualityAssessment
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_high_confidence(self) -> bool:
        return self.confidence >= HIGH_CONFIDENCE

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence < LOW_CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_respond": self.should_respond,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "recommendations": list(self.recommendations),
            "selected_results": [r.url for r in self.selected_results],
            "assessment": self.assessment.to_dict(),
            "metadata": dict(self.metadata),
        }


def _select_best(
    results: Sequence[SearchResult],
    scores: Sequence[Optional[RelevanceScore]],
    limit: int,
) -> Tuple[SearchResult, ...]:
    """Top `limit` results by relevance; input order when scores are unusable."""
    if len(results) != len(scores):
        return tuple(results[:limit])
    pairs = list(zip(results, scores))
    pairs.sort(key=lambda p: p[1].overall if p[1] is not None else 0.0, reverse=True)
    return tuple(r for r, _ in pairs[:limit])


class ResponseDecisionEngine:
    """
    Decides whether collected results justify answering.

    Args:
        strategy: Decision strategy
        classifier: Quality classifier (also supplies per-type profiles)
        thresholds: Base confidence threshold per query type, copied into
            this instance
    """

    def __init__(
        self,
        strategy: DecisionStrategy = DecisionStrategy.BALANCED,
        classifier: Optional[QualityClassifier] = None,
        thresholds: Mapping[QueryType, float] = DEFAULT_TYPE_THRESHOLDS,
    ):
        self.strategy = DecisionStrategy(strategy)
        self.classifier = classifier or QualityClassifier()
        self._base_thresholds = MappingProxyType(dict(thresholds))
        self._thresholds: Dict[QueryType, float] = dict(thresholds)
        self._history: Deque[ResponseDecision] = deque(maxlen=HISTORY_LIMIT)
        self._lock = threading.Lock()

    @property
    def thresholds(self) -> Dict[QueryType, float]:
        """Copy of the current per-type thresholds."""
        with self._lock:
            return dict(self._thresholds)

    def _threshold(self, query_type: QueryType) -> float:
        return self._thresholds.get(query_type, 0.6)

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    def make_decision(
        self,
        query: str,
        results: Sequence[SearchResult],
        scores: Optional[Sequence[RelevanceScore]] = None,
        context: Optional[QueryContext] = None,
    ) -> ResponseDecision:
        """Classify the results, then decide."""
        if context is None:
            context = QueryContext(
                original_query=query,
                query_type=self.classifier.identify_query_type(query),
            )
        assessment = self.classifier.classify_quality(query, results, scores, context.query_type)
        return self.decide(assessment, context, results, scores)

    def decide(
        self,
        assessment: QualityAssessment,
        context: QueryContext,
        results: Sequence[SearchResult] = (),
        scores: Optional[Sequence[Optional[RelevanceScore]]] = None,
    ) -> ResponseDecision:
        """Apply the configured strategy to an existing assessment."""
        if scores is None:
            scores = [r.relevance for r in results]

        with self._lock:
            if self.strategy == DecisionStrategy.CONSERVATIVE:
                decision = self._conservative(assessment, context, results, scores)
            elif self.strategy == DecisionStrategy.BALANCED:
                decision = self._balanced(assessment, context, results, scores)
            elif self.strategy == DecisionStrategy.AGGRESSIVE:
                decision = self._aggressive(assessment, context, results, scores)
            else:
                decision = self._adaptive(assessment, context, results, scores)
            decision = self._record(decision, context)

        logger.info(
            f"Decision [{self.strategy.value}/{context.query_type.value}] "
            f"respond={decision.should_respond} confidence={decision.confidence:.3f} "
            f"attempt={context.attempt_number}"
        )
        return decision

    # ------------------------------------------------------------------
    # strategies (caller holds the lock)
    # ------------------------------------------------------------------

    def _conservative(self, assessment, context, results, scores) -> ResponseDecision:
        threshold = self._threshold(context.query_type) + 0.1
        respond = (
            assessment.is_satisfactory
            and assessment.confidence >= threshold
            and assessment.authority >= 0.7
        )
        return ResponseDecision(
            should_respond=respond,
            confidence=assessment.confidence if respond else 0.0,
            reasoning=(
                "High quality information from reliable sources found."
                if respond else
                f"Conservative standard not met: {', '.join(assessment.issues) or 'confidence below threshold'}"
            ),
            recommendations=(
                ("Answer recommended with high confidence",)
                if respond else
                ("Look for more authoritative sources", "Wait for better quality information")
            ),
            selected_results=_select_best(results, scores, 3) if respond else (),
            assessment=assessment,
            metadata={
                "strategy": DecisionStrategy.CONSERVATIVE.value,
                "threshold_used": threshold,
                "decision_factors": ["quality", "authority", "confidence"],
            },
        )

    def _balanced(self, assessment, context, results, scores) -> ResponseDecision:
        threshold = self._threshold(context.query_type)
        urgency_bonus = 0.1 if context.is_urgent else 0.0
        expertise_adjustment = -0.05 if is_expert(context) else 0.0
        adjusted = max(0.5, threshold - urgency_bonus + expertise_adjustment)

        profile = self.classifier.profile_for(context.query_type)
        sources_ok = (
            not profile.require_multiple_sources
            or assessment.source_diversity >= profile.min_diversity
        )
        meets_confidence = (
            assessment.confidence >= adjusted
            or (assessment.is_satisfactory and assessment.confidence >= 0.6)
        )
        respond = sources_ok and meets_confidence

        recommendations: List[str] = []
        if respond:
            if assessment.confidence < 0.7:
                recommendations.append("Answer with caveats about its limitations")
            if assessment.source_diversity < 2:
                recommendations.append("Mention the limited number of sources")
            reasoning = "Enough information for a useful answer was found."
        else:
            recommendations.extend([
                "Refine the query for better precision",
                "Consider searching specialized sources",
            ])
            if not sources_ok:
                reasoning = (
                    f"{context.query_type.value.capitalize()} questions need at least "
                    f"{profile.min_diversity} distinct sources, found {assessment.source_diversity}."
                )
            else:
                reasoning = f"Insufficient quality: {', '.join(assessment.issues) or 'confidence below threshold'}"

        return ResponseDecision(
            should_respond=respond,
            confidence=assessment.confidence if respond else 0.0,
            reasoning=reasoning,
            recommendations=tuple(recommendations),
            selected_results=_select_best(results, scores, 5) if respond else (),
            assessment=assessment,
            metadata={
                "strategy": DecisionStrategy.BALANCED.value,
                "threshold_used": adjusted,
                "urgency_bonus": urgency_bonus,
                "expertise_adjustment": expertise_adjustment,
                "source_floor_met": sources_ok,
            },
        )

    def _aggressive(self, assessment, context, results, scores) -> ResponseDecision:
        threshold = max(0.4, self._threshold(context.query_type) - 0.2)
        has_decent_source = any(s is not None and s.overall >= 0.5 for s in scores)
        respond = assessment.confidence >= threshold or has_decent_source

        recommendations: List[str] = []
        if respond:
            if assessment.confidence < 0.6:
                recommendations.append("Answer is based on limited information")
            if assessment.issues:
                recommendations.append(f"Mention limitations: {assessment.issues[0]}")
            recommendations.append("Suggest the user verify independently")
        else:
            recommendations.append("Broaden the search criteria")

        return ResponseDecision(
            should_respond=respond,
            confidence=assessment.confidence if respond else 0.0,
            reasoning=(
                "Attempting a useful answer with the available information."
                if respond else
                "No minimally useful information found."
            ),
            recommendations=tuple(recommendations),
            selected_results=_select_best(results, scores, 7) if respond else (),
            assessment=assessment,
            metadata={
                "strategy": DecisionStrategy.AGGRESSIVE.value,
                "threshold_used": threshold,
                "has_decent_source": has_decent_source,
            },
        )

    def _adaptive(self, assessment, context, results, scores) -> ResponseDecision:
        base = self._threshold(context.query_type)
        history_adjustment = self._history_adjustment(context.query_type)
        attempt_adjustment = min(0.1, context.attempt_number * 0.02)
        threshold = max(MIN_ADAPTIVE_THRESHOLD, base + history_adjustment - attempt_adjustment)

        respond = assessment.confidence >= threshold
        if respond:
            learned = base + (assessment.confidence - base) * LEARNING_RATE
            self._thresholds[context.query_type] = max(
                MIN_ADAPTIVE_THRESHOLD, min(MAX_ADAPTIVE_THRESHOLD, learned)
            )

        return ResponseDecision(
            should_respond=respond,
            confidence=assessment.confidence if respond else 0.0,
            reasoning=(
                "Adaptive decision based on learned patterns."
                if respond else
                f"Adaptive threshold not reached: {threshold:.3f}"
            ),
            recommendations=(
                ("Answer with adaptive confidence",)
                if respond else
                ("Adjust the strategy based on what was learned",)
            ),
            selected_results=_select_best(results, scores, 4) if respond else (),
            assessment=assessment,
            metadata={
                "strategy": DecisionStrategy.ADAPTIVE.value,
                "threshold_used": threshold,
                "history_adjustment": history_adjustment,
                "attempt_adjustment": attempt_adjustment,
            },
        )

    def _history_adjustment(self, query_type: QueryType) -> float:
        relevant = [d for d in self._history if d.metadata.get("query_type") == query_type.value]
        if len(relevant) < MIN_HISTORY_FOR_ADJUSTMENT:
            return 0.0
        success_rate = sum(1 for d in relevant if d.should_respond and d.is_high_confidence) / len(relevant)
        if success_rate > 0.8:
            return -0.05
        if success_rate < 0.3:
            return 0.05
        return 0.0

    def _record(self, decision: ResponseDecision, context: QueryContext) -> ResponseDecision:
        enriched = replace(decision, metadata={
            **decision.metadata,
            "query_type": context.query_type.value,
            "attempt_number": context.attempt_number,
            "user_expertise": context.user_expertise,
            "is_urgent": context.is_urgent,
            "timestamp": time.time(),
        })
        self._history.append(enriched)
        return enriched

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._history)
            if total == 0:
                return {"total_decisions": 0, "strategy": self.strategy.value}
            responded = sum(1 for d in self._history if d.should_respond)
            high = sum(1 for d in self._history if d.is_high_confidence)
            return {
                "total_decisions": total,
                "response_rate": responded / total,
                "high_confidence_rate": high / total,
                "adaptive_thresholds": {t.value: v for t, v in self._thresholds.items()},
                "strategy": self.strategy.value,
            }

    def reset_adaptive_learning(self) -> None:
        with self._lock:
            self._history.clear()
            self._thresholds = dict(self._base_thresholds)
        logger.info("Adaptive learning reset")

    def force_decision(
        self,
        should_respond: bool,
        reason: str,
        results: Sequence[SearchResult],
        assessment: QualityAssessment,
    ) -> ResponseDecision:
        """Manual override; not recorded in the history."""
        return ResponseDecision(
            should_respond=should_respond,
            confidence=1.0 if should_respond else 0.0,
            reasoning=f"Forced decision: {reason}",
            recommendations=(
                ("Manual decision - proceed with the answer",)
                if should_respond else
                ("Manual decision - do not answer",)
            ),
            selected_results=tuple(results) if should_respond else (),
            assessment=assessment,
            metadata={
                "strategy": "forced",
                "forced_reason": reason,
                "timestamp": time.time(),
            },
        )
