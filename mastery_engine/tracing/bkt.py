"""
Bayesian Knowledge Tracing.

Tracks P(mastered) for each (student, node) pair:

    correct:  P(K|obs) = P(K)(1-slip) / [P(K)(1-slip) + (1-P(K))guess]
    wrong:    P(K|obs) = P(K)slip     / [P(K)slip     + (1-P(K))(1-guess)]

The learning transition P + (1-P)*learn is applied only after a correct
observation, so a wrong answer never raises the estimate. The posterior
is damped by the current probability: a single lucky guess on a low prior
moves the estimate much less than the same answer on a high prior.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from mastery_engine.core.graph import KnowledgeGraph
from mastery_engine.core.models import (
    KnowledgeNode,
    MasteryLevel,
    MasteryScore,
    clamp_probability,
    utcnow,
)

ADVANCE_THRESHOLD = 0.9
REVIEW_PROBABILITY_THRESHOLD = 0.7
REVIEW_DAYS_THRESHOLD = 3
UNLOCK_LEVEL = MasteryLevel.PROFICIENT


@dataclass(frozen=True)
class BKTParams:
    """Parameters for the knowledge tracing model."""

    p_guess: float = 0.2
    p_slip: float = 0.1
    p_learn: float = 0.1
    prior: float = 0.3
    mastered_min_practice: int = 3

    def __post_init__(self):
        for name in ("p_guess", "p_slip", "p_learn", "prior"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        # guess + slip >= 1 would let a correct answer lower the estimate
        if self.p_guess + self.p_slip >= 1.0:
            raise ValueError(f"p_guess + p_slip must be below 1, got {self.p_guess} + {self.p_slip}")
        if self.mastered_min_practice < 1:
            raise ValueError(f"mastered_min_practice must be at least 1, got {self.mastered_min_practice}")

    @classmethod
    def from_settings(cls) -> BKTParams:
        from config import get_settings

        settings = get_settings()
        return cls(
            p_guess=settings.bkt_p_guess,
            p_slip=settings.bkt_p_slip,
            p_learn=settings.bkt_p_learn,
            prior=settings.bkt_prior,
            mastered_min_practice=settings.bkt_mastered_min_practice,
        )


def level_for(probability: float, practice_count: int, min_practice: int = 3) -> MasteryLevel:
    """Bucket a probability into a level, capping MASTERED until enough practice."""
    return MasteryLevel.from_probability(probability, practice_count, min_practice)


def posterior(probability: float, was_correct: bool, p_guess: float, p_slip: float) -> float:
    """P(known | observation) without the learning transition."""
    if not 0.0 <= probability <= 1.0:
        raise ValueError(f"probability out of range: {probability}")
    if was_correct:
        numerator = probability * (1 - p_slip)
        denominator = numerator + (1 - probability) * p_guess
    else:
        numerator = probability * p_slip
        denominator = numerator + (1 - probability) * (1 - p_guess)
    return numerator / denominator if denominator > 0 else probability


class KnowledgeTracer:
    """
    Pure BKT update and progression helpers.

    Nothing here touches persistence; callers write the returned
    MasteryScore back through the repository's atomic update.
    """

    def __init__(self, params: BKTParams | None = None):
        """
        Initialize the tracer.

        Args:
            params: Model parameters (loaded from settings if None)
        """
        self.params = params or BKTParams.from_settings()

    def initial_score(self, student_id: str, node_code: str) -> MasteryScore:
        return MasteryScore.new(student_id, node_code, prior=self.params.prior)

    def update(
        self,
        previous: MasteryScore,
        was_correct: bool,
        now: datetime | None = None,
        response_time_ms: int | None = None,
    ) -> MasteryScore:
        """
        Apply one observed answer.

        Args:
            previous: Current mastery state (not mutated)
            was_correct: Whether the answer was correct
            now: Observation time (defaults to utcnow)
            response_time_ms: Latency, used for the personal best on correct answers

        Returns:
            New MasteryScore with probability, counters and level recomputed
        """
        now = now or utcnow()
        p = self.params
        p_new = posterior(previous.bkt_probability, was_correct, p.p_guess, p.p_slip)
        if was_correct:
            p_new = p_new + (1 - p_new) * p.p_learn
        p_new = clamp_probability(p_new)

        practice_count = previous.practice_count + 1
        personal_best = previous.personal_best_ms
        if was_correct and response_time_ms is not None and response_time_ms > 0:
            if personal_best is None or response_time_ms < personal_best:
                personal_best = response_time_ms

        updated = previous.copy(
            bkt_probability=p_new,
            level=level_for(p_new, practice_count, p.mastered_min_practice),
            practice_count=practice_count,
            correct_count=previous.correct_count + (1 if was_correct else 0),
            last_practiced=now,
            personal_best_ms=personal_best,
        )
        logger.debug(
            f"BKT {previous.student_id}/{previous.node_code}: "
            f"{previous.bkt_probability:.3f} -> {p_new:.3f} "
            f"({'correct' if was_correct else 'incorrect'}, level={updated.level.value})"
        )
        return updated

    def level_for(self, probability: float, practice_count: int) -> MasteryLevel:
        return level_for(probability, practice_count, self.params.mastered_min_practice)

    @staticmethod
    def should_advance_node(score: MasteryScore) -> bool:
        """Threshold: probability >= 0.9 and level MASTERED."""
        return score.bkt_probability >= ADVANCE_THRESHOLD and score.level is MasteryLevel.MASTERED

    @staticmethod
    def should_review_node(score: MasteryScore, now: datetime | None = None) -> bool:
        """Last practiced more than 3 days ago and probability below 0.7."""
        if score.last_practiced is None:
            return False
        now = now or utcnow()
        stale = now - score.last_practiced > timedelta(days=REVIEW_DAYS_THRESHOLD)
        return stale and score.bkt_probability < REVIEW_PROBABILITY_THRESHOLD

    @staticmethod
    def is_unlocked(node: KnowledgeNode, masteries: Mapping[str, MasteryScore]) -> bool:
        """A node is unlocked once every prerequisite is at least PROFICIENT."""
        for prereq in node.prerequisites:
            score = masteries.get(prereq)
            if score is None or not score.level.at_least(UNLOCK_LEVEL):
                return False
        return True

    def recommend_next_node(
        self,
        graph: KnowledgeGraph,
        current_code: str,
        masteries: Mapping[str, MasteryScore],
    ) -> KnowledgeNode | None:
        """
        Pick the next node after ``current_code``.

        Prefers an unlocked successor the student has not already advanced
        past; otherwise the first unlocked successor; None when nothing is unlocked.
        """
        unlocked = [n for n in graph.successors(current_code) if self.is_unlocked(n, masteries)]
        if not unlocked:
            return None
        for node in unlocked:
            score = masteries.get(node.code)
            if score is None or not self.should_advance_node(score):
                return node
        return unlocked[0]
