"""
Unit tests for the Mastery Gate.

The gate must fail closed: missing evidence and internal errors always
produce Practice.
"""

from datetime import timedelta

import pytest

from mastery_engine.core.models import ActivityTag, KnowledgeNode, MasteryScore, QuestionResponse
from mastery_engine.session.mastery_gate import (
    Advance,
    FluencyDrill,
    GateConfig,
    MasteryGate,
    Practice,
    RetentionReview,
    speed_threshold_ms,
)

NODE = KnowledgeNode(code="ADD.1", title="Add within 5", grade_level="K")
ACTIVITIES = [
    ActivityTag.GUIDED_PRACTICE,
    ActivityTag.INDEPENDENT_PRACTICE,
    ActivityTag.MASTERY_PROOF,
    ActivityTag.CHECK_UNDERSTANDING,
]


def _responses(pattern, start, spacing=timedelta(minutes=1), time_ms=3000, activities=ACTIVITIES):
    return [
        QuestionResponse(
            student_id="s1",
            node_code="ADD.1",
            session_id="sess",
            question_text="q",
            is_correct=correct,
            response_time_ms=time_ms,
            activity=activities[i % len(activities)],
            created_at=start + spacing * i,
        )
        for i, correct in enumerate(pattern)
    ]


@pytest.fixture
def score():
    return MasteryScore("s1", "ADD.1", bkt_probability=0.95, practice_count=10, personal_best_ms=3000)


class TestEvidence:
    def test_insufficient_evidence_is_practice(self, gate, score, now):
        outcome = gate.evaluate(score, _responses([True] * 9, now), NODE, now)
        assert isinstance(outcome, Practice)
        assert outcome.reason == "insufficient_evidence"

    def test_internal_error_fails_closed(self, gate, score, now):
        history = _responses([True] * 10, now, time_ms=-5)
        outcome = gate.evaluate(score, history, NODE, now)
        assert isinstance(outcome, Practice)
        assert outcome.reason == "evaluation_error"


class TestDecisions:
    def test_all_signals_pass(self, gate, score, now):
        outcome = gate.evaluate(score, _responses([True] * 10, now), NODE, now)
        assert isinstance(outcome, Advance)
        assert outcome.signals.all_passed

    def test_slow_but_accurate_routes_to_fluency(self, gate, score, now):
        history = _responses([True] * 10, now, time_ms=15000)
        outcome = gate.evaluate(score, history, NODE, now)
        assert isinstance(outcome, FluencyDrill)
        assert not outcome.signals.speed.passed

    def test_slower_than_personal_best_ratio_fails_speed(self, gate, now):
        fast_best = MasteryScore("s1", "ADD.1", bkt_probability=0.95, practice_count=10, personal_best_ms=2000)
        history = _responses([True] * 10, now, time_ms=3500)
        assert isinstance(gate.evaluate(fast_best, history, NODE, now), FluencyDrill)

    def test_failed_cold_recall_is_retention_review(self, gate, score, now):
        first_sitting = _responses([True] * 6, now)
        second_sitting = _responses([False] + [True] * 5, now + timedelta(days=2))
        outcome = gate.evaluate(score, first_sitting + second_sitting, NODE, now + timedelta(days=2))
        assert isinstance(outcome, RetentionReview)
        assert outcome.signals.accuracy.passed
        assert outcome.signals.retention.score == 0.0

    def test_low_accuracy_is_practice(self, gate, score, now):
        outcome = gate.evaluate(score, _responses([True, False, True] * 3 + [True], now), NODE, now)
        assert isinstance(outcome, Practice)
        assert outcome.reason == "signals_not_met"

    def test_two_activity_types_is_inconsistent(self, gate, score, now):
        history = _responses([True] * 10, now, activities=[ActivityTag.GUIDED_PRACTICE, ActivityTag.MASTERY_PROOF])
        outcome = gate.evaluate(score, history, NODE, now)
        assert isinstance(outcome, Practice)
        assert not outcome.signals.consistency.passed

    def test_lucky_streak_after_failures_is_inconsistent(self, gate, score, now):
        # Block accuracies 0.2 then 1.0
        history = _responses([False, False, False, False, True] + [True] * 5, now)
        outcome = gate.evaluate(score, history, NODE, now)
        assert not isinstance(outcome, Advance)
        assert not outcome.signals.consistency.passed

    def test_required_retention_evidence(self, score, now):
        strict = MasteryGate(GateConfig(require_retention_evidence=True))
        outcome = strict.evaluate(score, _responses([True] * 10, now), NODE, now)
        assert isinstance(outcome, RetentionReview)

    def test_passed_cold_recall(self, gate, score, now):
        history = _responses([True] * 5, now) + _responses([True] * 5, now + timedelta(days=1))
        outcome = gate.evaluate(score, history, NODE, now + timedelta(days=1))
        assert isinstance(outcome, Advance)
        assert outcome.signals.retention.score == 1.0


class TestSpeedThresholds:
    @pytest.mark.parametrize("grade,threshold", [("K", 10000), ("G1", 8000), ("G2", 6000), ("G5", 15000), ("G8", 12000)])
    def test_grade_thresholds(self, grade, threshold):
        assert speed_threshold_ms(grade) == threshold
