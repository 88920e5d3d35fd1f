"""
Nested 5-step practice loop.

    1 instruction           - no questions
    2 check_understanding   - 1 question, any answer advances (no BKT weight)
    3 guided_practice       - 3 questions, >= 2 correct, else back to 2
    4 independent_practice  - 5 questions, >= 4 correct, else back to 2
    5 mastery_proof         - 1 question, correct AND Mastery Gate passes, else back to 2

Tracked independently of the outer SessionStateMachine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from mastery_engine.core.models import ActivityTag
from mastery_engine.session.mastery_gate import (
    Advance,
    FluencyDrill,
    GateOutcome,
)


class LearningStep(IntEnum):
    INSTRUCTION = 1
    CHECK_UNDERSTANDING = 2
    GUIDED_PRACTICE = 3
    INDEPENDENT_PRACTICE = 4
    MASTERY_PROOF = 5

    @property
    def activity(self) -> ActivityTag | None:
        return {
            LearningStep.INSTRUCTION: None,
            LearningStep.CHECK_UNDERSTANDING: ActivityTag.CHECK_UNDERSTANDING,
            LearningStep.GUIDED_PRACTICE: ActivityTag.GUIDED_PRACTICE,
            LearningStep.INDEPENDENT_PRACTICE: ActivityTag.INDEPENDENT_PRACTICE,
            LearningStep.MASTERY_PROOF: ActivityTag.MASTERY_PROOF,
        }[self]


@dataclass(frozen=True)
class StepRequirement:
    questions: int
    pass_threshold: int  # correct answers needed; 0 means any answer advances


STEP_REQUIREMENTS: dict[LearningStep, StepRequirement] = {
    LearningStep.CHECK_UNDERSTANDING: StepRequirement(questions=1, pass_threshold=0),
    LearningStep.GUIDED_PRACTICE: StepRequirement(questions=3, pass_threshold=2),
    LearningStep.INDEPENDENT_PRACTICE: StepRequirement(questions=5, pass_threshold=4),
    LearningStep.MASTERY_PROOF: StepRequirement(questions=1, pass_threshold=1),
}


class StepOutcome(str, Enum):
    CONTINUE = "continue"  # more questions needed in this step
    ADVANCED = "advanced"  # moved to the next step
    RETURNED = "returned"  # failed, back to step 2
    GATE_PENDING = "gate_pending"  # step 5 correct, Mastery Gate must decide
    MASTERED = "mastered"  # gate returned Advance
    FLUENCY_DRILL = "fluency_drill"  # gate routed to the fluency drill


@dataclass(frozen=True)
class StepResult:
    outcome: StepOutcome
    from_step: LearningStep
    to_step: LearningStep
    correct: int
    total: int


@dataclass
class StepLoop:
    """Counter state for the practice loop: current step and its (correct, total)."""

    step: LearningStep = LearningStep.INSTRUCTION
    correct: int = 0
    total: int = 0

    def __post_init__(self):
        self.step = LearningStep(self.step)

    @property
    def updates_mastery(self) -> bool:
        """Step 2 is a readiness check and contributes no BKT weight."""
        return self.step >= LearningStep.GUIDED_PRACTICE

    @property
    def activity(self) -> ActivityTag | None:
        return self.step.activity

    def _move(self, target: LearningStep, outcome: StepOutcome, correct: int, total: int) -> StepResult:
        result = StepResult(outcome, self.step, target, correct, total)
        self.step = target
        self.correct = 0
        self.total = 0
        return result

    def begin_checks(self) -> StepResult:
        """Instruction finished: 1 -> 2."""
        if self.step is not LearningStep.INSTRUCTION:
            raise ValueError(f"begin_checks requires step 1, loop is at step {int(self.step)}")
        return self._move(LearningStep.CHECK_UNDERSTANDING, StepOutcome.ADVANCED, 0, 0)

    def record_answer(self, is_correct: bool) -> StepResult:
        if self.step is LearningStep.INSTRUCTION:
            raise ValueError("No questions are asked during instruction (step 1)")

        correct = self.correct + (1 if is_correct else 0)
        total = self.total + 1
        step = self.step

        if step is LearningStep.CHECK_UNDERSTANDING:
            return self._move(LearningStep.GUIDED_PRACTICE, StepOutcome.ADVANCED, correct, total)

        if step is LearningStep.MASTERY_PROOF:
            if not is_correct:
                return self._move(LearningStep.CHECK_UNDERSTANDING, StepOutcome.RETURNED, correct, total)
            self.correct, self.total = correct, total
            return StepResult(StepOutcome.GATE_PENDING, step, step, correct, total)

        requirement = STEP_REQUIREMENTS[step]
        if total < requirement.questions:
            self.correct, self.total = correct, total
            return StepResult(StepOutcome.CONTINUE, step, step, correct, total)
        if correct >= requirement.pass_threshold:
            return self._move(LearningStep(step + 1), StepOutcome.ADVANCED, correct, total)
        return self._move(LearningStep.CHECK_UNDERSTANDING, StepOutcome.RETURNED, correct, total)

    def apply_gate(self, outcome: GateOutcome | object) -> StepResult:
        """
        Route a Mastery Gate outcome.

        Anything other than Advance or FluencyDrill (including unrecognized
        values) sends the loop back to step 2.
        """
        correct, total = self.correct, self.total
        if isinstance(outcome, Advance):
            return self._move(LearningStep.MASTERY_PROOF, StepOutcome.MASTERED, correct, total)
        if isinstance(outcome, FluencyDrill):
            return self._move(LearningStep.MASTERY_PROOF, StepOutcome.FLUENCY_DRILL, correct, total)
        return self._move(LearningStep.CHECK_UNDERSTANDING, StepOutcome.RETURNED, correct, total)
