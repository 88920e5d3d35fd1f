"""
True Mastery Gate.

Consulted only after a correct step-5 answer. Four independent signals:
  1. Accuracy: correct rate over the last ``window`` responses >= 0.85
  2. Speed: latest response within the grade threshold and 1.5x personal best
  3. Retention: cold-recall correctness across sittings >= 0.7
  4. Consistency: low variance of block accuracies and correct answers on
     3+ distinct activity types

Decision:
  - All pass -> Advance
  - Accuracy + retention pass, speed fails -> FluencyDrill
  - Accuracy passes, retention fails -> RetentionReview
  - Otherwise -> Practice

The gate fails closed: missing evidence or an internal error yields
Practice, never Advance.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import pvariance

from loguru import logger

from mastery_engine.core.errors import GateEvaluationError
from mastery_engine.core.models import KnowledgeNode, MasteryScore, QuestionResponse, utcnow

GRADE_SPEED_THRESHOLDS_MS: dict[str, int] = {
    "K": 10_000,
    "G1": 8_000,
    "G2": 6_000,
    "G3": 8_000,
    "G4": 10_000,
    "G5": 15_000,
}
DEFAULT_SPEED_THRESHOLD_MS = 12_000


def speed_threshold_ms(grade_level: str) -> int:
    return GRADE_SPEED_THRESHOLDS_MS.get(grade_level, DEFAULT_SPEED_THRESHOLD_MS)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SignalResult:
    score: float | None
    passed: bool
    detail: str = ""


@dataclass(frozen=True)
class GateSignals:
    accuracy: SignalResult
    speed: SignalResult
    retention: SignalResult
    consistency: SignalResult

    @property
    def all_passed(self) -> bool:
        return all(s.passed for s in (self.accuracy, self.speed, self.retention, self.consistency))


@dataclass(frozen=True)
class Advance:
    """All signals pass: true mastery."""

    signals: GateSignals | None = None


@dataclass(frozen=True)
class FluencyDrill:
    """Accurate and retained but slow: route into the fluency drill."""

    signals: GateSignals | None = None


@dataclass(frozen=True)
class RetentionReview:
    """Accurate now but not retained across sittings: back to step 2."""

    signals: GateSignals | None = None


@dataclass(frozen=True)
class Practice:
    """Catch-all: more practice (also used for missing evidence and errors)."""

    reason: str = "signals_not_met"
    signals: GateSignals | None = None


GateOutcome = Advance | FluencyDrill | RetentionReview | Practice


@dataclass(frozen=True)
class GateConfig:
    window: int = 10
    accuracy_threshold: float = 0.85
    retention_threshold: float = 0.7
    retention_gap_hours: float = 20.0
    require_retention_evidence: bool = False
    consistency_types: int = 3
    consistency_max_variance: float = 0.05
    speed_personal_best_ratio: float = 1.5

    @classmethod
    def from_settings(cls) -> GateConfig:
        from config import get_settings

        s = get_settings()
        return cls(
            window=s.gate_window,
            accuracy_threshold=s.gate_accuracy_threshold,
            retention_threshold=s.gate_retention_threshold,
            retention_gap_hours=s.gate_retention_gap_hours,
            require_retention_evidence=s.gate_require_retention_evidence,
            consistency_types=s.gate_consistency_types,
            consistency_max_variance=s.gate_consistency_max_variance,
            speed_personal_best_ratio=s.gate_speed_personal_best_ratio,
        )


# =============================================================================
# Gate
# =============================================================================


class MasteryGate:
    """Multi-signal mastery check over the response log."""

    def __init__(self, config: GateConfig | None = None):
        self.config = config or GateConfig.from_settings()

    def evaluate(
        self,
        score: MasteryScore,
        responses: Sequence[QuestionResponse],
        node: KnowledgeNode,
        now: datetime | None = None,
    ) -> GateOutcome:
        """
        Evaluate true mastery for one (student, node) pair.

        Args:
            score: Current mastery record (after the step-5 update)
            responses: Full response history for the pair, oldest first
            node: The node being mastered (grade level drives the speed threshold)
            now: Evaluation time

        Returns:
            One of Advance, FluencyDrill, RetentionReview, Practice
        """
        try:
            return self._evaluate(score, responses, node, now or utcnow())
        except Exception as e:
            logger.warning(
                f"Mastery gate failed for {score.student_id}/{score.node_code}, failing closed: {e}"
            )
            return Practice(reason="evaluation_error")

    def _evaluate(
        self,
        score: MasteryScore,
        responses: Sequence[QuestionResponse],
        node: KnowledgeNode,
        now: datetime,
    ) -> GateOutcome:
        history = sorted(responses, key=lambda r: r.created_at)
        if len(history) < self.config.window:
            return Practice(reason="insufficient_evidence")

        window = history[-self.config.window :]
        signals = GateSignals(
            accuracy=self.accuracy(window),
            speed=self.speed(window, score, node),
            retention=self.retention(history),
            consistency=self.consistency(window),
        )
        outcome = self.decide(signals)
        logger.debug(
            f"Gate {score.student_id}/{score.node_code}: {type(outcome).__name__} "
            f"(acc={signals.accuracy.passed}, speed={signals.speed.passed}, "
            f"ret={signals.retention.passed}, cons={signals.consistency.passed})"
        )
        return outcome

    @staticmethod
    def decide(signals: GateSignals) -> GateOutcome:
        if signals.all_passed:
            return Advance(signals)
        if signals.accuracy.passed and signals.retention.passed and not signals.speed.passed:
            return FluencyDrill(signals)
        if signals.accuracy.passed and not signals.retention.passed:
            return RetentionReview(signals)
        return Practice(reason="signals_not_met", signals=signals)

    # ========================================
    # Signals
    # ========================================

    def accuracy(self, window: Sequence[QuestionResponse]) -> SignalResult:
        if not window:
            raise GateEvaluationError("accuracy requires at least one response")
        rate = sum(1 for r in window if r.is_correct) / len(window)
        return SignalResult(rate, rate >= self.config.accuracy_threshold, f"{rate:.0%} correct")

    def speed(
        self, window: Sequence[QuestionResponse], score: MasteryScore, node: KnowledgeNode
    ) -> SignalResult:
        latest = window[-1].response_time_ms
        if latest is None or latest < 0:
            raise GateEvaluationError(f"invalid response time: {latest}")
        threshold = speed_threshold_ms(node.grade_level)
        within_grade = latest <= threshold
        within_best = True
        if score.personal_best_ms:
            within_best = latest <= score.personal_best_ms * self.config.speed_personal_best_ratio
        passed = within_grade and within_best
        return SignalResult(
            threshold / latest if latest else 1.0,
            passed,
            f"{latest}ms vs {threshold}ms grade threshold, best={score.personal_best_ms}",
        )

    def cold_recalls(self, history: Sequence[QuestionResponse]) -> list[QuestionResponse]:
        """First answer of each sitting that starts at least the gap after the previous one."""
        gap = timedelta(hours=self.config.retention_gap_hours)
        recalls = []
        for previous, current in zip(history, history[1:]):
            if current.created_at - previous.created_at >= gap:
                recalls.append(current)
        return recalls

    def retention(self, history: Sequence[QuestionResponse]) -> SignalResult:
        recalls = self.cold_recalls(history)
        if not recalls:
            passed = not self.config.require_retention_evidence
            return SignalResult(None, passed, "not yet measured")
        rate = sum(1 for r in recalls if r.is_correct) / len(recalls)
        return SignalResult(
            rate,
            rate >= self.config.retention_threshold,
            f"{rate:.0%} over {len(recalls)} cold recall(s)",
        )

    def consistency(self, window: Sequence[QuestionResponse]) -> SignalResult:
        block_size = max(1, self.config.window // 2)
        blocks = [window[i : i + block_size] for i in range(0, len(window), block_size)]
        block_accuracies = [sum(1 for r in b if r.is_correct) / len(b) for b in blocks if b]
        variance = pvariance(block_accuracies) if len(block_accuracies) > 1 else 0.0

        correct_types = {r.activity for r in window if r.is_correct}
        passed = (
            variance <= self.config.consistency_max_variance
            and len(correct_types) >= self.config.consistency_types
        )
        return SignalResult(
            variance,
            passed,
            f"variance={variance:.3f}, correct on {len(correct_types)} activity type(s)",
        )
