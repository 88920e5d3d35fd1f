"""
Fluency drill mode.

Speed-focused practice for students who are accurate and retain a concept
but answer slowly. True fluency is 10 consecutive correct answers at the
grade benchmark with >= 90% recent accuracy.

Flatline detection: when the coefficient of variation of the last 20
response times drops below 0.15, speed has plateaued and the drill completes.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from statistics import fmean, pstdev

from mastery_engine.core.models import KnowledgeNode, MasteryScore, QuestionResponse
from mastery_engine.session.mastery_gate import speed_threshold_ms

CONSECUTIVE_REQUIRED = 10
FLUENCY_ACCURACY = 0.9
RECENT_WINDOW = 10
FLATLINE_WINDOW = 20
FLATLINE_MAX_CV = 0.15


@dataclass(frozen=True)
class FluencyResult:
    is_correct: bool
    consecutive_correct: int
    personal_best_ms: int | None
    new_personal_best: bool
    speed_trend: list[int]
    benchmark_ms: int
    at_benchmark: bool
    recent_accuracy: float
    flatline_detected: bool
    flatline_cv: float | None
    completed: bool
    score: MasteryScore


def detect_flatline(responses: Sequence[QuestionResponse]) -> tuple[bool, float | None]:
    """Coefficient of variation over the last 20 response times."""
    if len(responses) < FLATLINE_WINDOW:
        return False, None
    times = [r.response_time_ms for r in responses[-FLATLINE_WINDOW:]]
    mean = fmean(times)
    cv = pstdev(times) / mean if mean > 0 else 0.0
    return cv < FLATLINE_MAX_CV, round(cv, 2)


class FluencyEngine:
    """Evaluates fluency drill answers. Pure: returns the updated score."""

    def start(self, score: MasteryScore) -> MasteryScore:
        return score.copy(fluency_drill_active=True, consecutive_correct=0)

    def evaluate(
        self,
        score: MasteryScore,
        responses: Sequence[QuestionResponse],
        response_time_ms: int,
        is_correct: bool,
        node: KnowledgeNode,
    ) -> FluencyResult:
        """
        Evaluate one drill answer.

        Args:
            score: Current mastery record
            responses: Response history for the pair including this answer, oldest first
            response_time_ms: Latency of this answer
            is_correct: Whether this answer was correct
            node: Node being drilled (grade level sets the benchmark)

        Returns:
            FluencyResult carrying the updated MasteryScore
        """
        benchmark = speed_threshold_ms(node.grade_level)
        at_benchmark = response_time_ms <= benchmark
        consecutive = score.consecutive_correct + 1 if is_correct and at_benchmark else 0

        best = score.personal_best_ms
        new_best = is_correct and (best is None or response_time_ms < best)
        if new_best:
            best = response_time_ms

        recent = list(responses[-RECENT_WINDOW:])
        recent_accuracy = sum(1 for r in recent if r.is_correct) / len(recent) if recent else 0.0
        flatline, cv = detect_flatline(responses)

        completed = (consecutive >= CONSECUTIVE_REQUIRED and recent_accuracy >= FLUENCY_ACCURACY) or flatline

        updated = score.copy(consecutive_correct=consecutive, personal_best_ms=best)
        if completed:
            updated = updated.copy(fluency_drill_active=False, truly_mastered=True)

        return FluencyResult(
            is_correct=is_correct,
            consecutive_correct=consecutive,
            personal_best_ms=best,
            new_personal_best=new_best,
            speed_trend=[r.response_time_ms for r in recent],
            benchmark_ms=benchmark,
            at_benchmark=at_benchmark,
            recent_accuracy=recent_accuracy,
            flatline_detected=flatline,
            flatline_cv=cv,
            completed=completed,
            score=updated,
        )
