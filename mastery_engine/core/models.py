"""
Core domain models for the mastery engine.

Design:
- KnowledgeNode: immutable concept definition (DAG vertex)
- MasteryLevel: discrete bucket derived from BKT probability
- MasteryScore: mutable per (student, node) mastery + scheduler state
- QuestionResponse: write-once answer log record
- LearningSession: one tutoring session and its step-loop counters
- LearningGoal: named set of required nodes (goal-aware diagnostics)

All timestamps are timezone-aware UTC datetimes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum

DEFAULT_EASINESS = 2.5

_GRADE_PATTERN = re.compile(r"^G(\d+)$")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def grade_to_number(grade_level: str) -> int:
    """Map "K", "G1", "G2", ... to 0, 1, 2, ... (unknown labels map to 0)."""
    if grade_level == "K":
        return 0
    match = _GRADE_PATTERN.match(grade_level or "")
    return int(match.group(1)) if match else 0


def clamp_probability(value: float) -> float:
    """Clamp a probability into [0, 1]."""
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class KnowledgeNode:
    """A single concept in the prerequisite graph."""

    code: str
    title: str
    description: str = ""
    domain: str = "Math"
    grade_level: str = "K"
    difficulty: int = 1
    prerequisites: tuple[str, ...] = ()
    successors: tuple[str, ...] = ()

    @property
    def grade_number(self) -> int:
        return grade_to_number(self.grade_level)


class MasteryLevel(str, Enum):
    """
    Mastery level categorization.

    Ordered weakest to strongest; compare with at_least().
    """

    NOVICE = "NOVICE"  # < 0.3
    DEVELOPING = "DEVELOPING"  # 0.3 - 0.5
    PROFICIENT = "PROFICIENT"  # 0.5 - 0.7
    ADVANCED = "ADVANCED"  # 0.7 - 0.9
    MASTERED = "MASTERED"  # >= 0.9

    @classmethod
    def from_probability(
        cls, probability: float, practice_count: int, min_practice_for_mastered: int = 3
    ) -> MasteryLevel:
        """
        Convert a BKT probability to a level.

        Args:
            probability: Mastery probability between 0 and 1
            practice_count: Attempts recorded so far
            min_practice_for_mastered: Attempts required before MASTERED is allowed

        Returns:
            Corresponding MasteryLevel
        """
        if probability < 0.3:
            level = cls.NOVICE
        elif probability < 0.5:
            level = cls.DEVELOPING
        elif probability < 0.7:
            level = cls.PROFICIENT
        elif probability < 0.9:
            level = cls.ADVANCED
        else:
            level = cls.MASTERED

        if level is cls.MASTERED and practice_count < min_practice_for_mastered:
            return cls.ADVANCED
        return level

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def at_least(self, other: MasteryLevel) -> bool:
        """True when this level is the same as or stronger than ``other``."""
        return self.rank >= other.rank

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        return {
            MasteryLevel.NOVICE: "red",
            MasteryLevel.DEVELOPING: "yellow",
            MasteryLevel.PROFICIENT: "cyan",
            MasteryLevel.ADVANCED: "blue",
            MasteryLevel.MASTERED: "green",
        }[self]


_LEVEL_ORDER = list(MasteryLevel)


@dataclass
class MasteryScore:
    """
    Mastery state for one (student, node) pair.

    Probability and level change only through the knowledge tracer;
    review_interval, easiness_factor, review_count and next_review_at
    change only through the scheduler.
    """

    student_id: str
    node_code: str
    bkt_probability: float = 0.3
    level: MasteryLevel = MasteryLevel.DEVELOPING
    practice_count: int = 0
    correct_count: int = 0
    last_practiced: datetime | None = None
    personal_best_ms: int | None = None

    # Scheduler fields
    review_count: int = 0
    review_interval: int = 0  # days
    easiness_factor: float = DEFAULT_EASINESS
    next_review_at: datetime | None = None

    # Flags
    fluency_drill_active: bool = False
    truly_mastered: bool = False
    consecutive_correct: int = 0

    @classmethod
    def new(cls, student_id: str, node_code: str, prior: float = 0.3) -> MasteryScore:
        """Create the lazily-initialized score for a pair with no history."""
        prior = clamp_probability(prior)
        return cls(
            student_id=student_id,
            node_code=node_code,
            bkt_probability=prior,
            level=MasteryLevel.from_probability(prior, 0),
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.student_id, self.node_code)

    @property
    def accuracy(self) -> float:
        if self.practice_count == 0:
            return 0.0
        return self.correct_count / self.practice_count

    def copy(self, **changes) -> MasteryScore:
        return replace(self, **changes)


class ActivityTag(str, Enum):
    """Which step or activity produced a response."""

    CHECK_UNDERSTANDING = "check_understanding"
    GUIDED_PRACTICE = "guided_practice"
    INDEPENDENT_PRACTICE = "independent_practice"
    MASTERY_PROOF = "mastery_proof"
    DIAGNOSTIC = "diagnostic"
    REVIEW = "review"
    FLUENCY_DRILL = "fluency_drill"
    BOSS_CHALLENGE = "boss_challenge"


@dataclass(frozen=True)
class QuestionResponse:
    """Immutable log record of one answer."""

    student_id: str
    node_code: str
    session_id: str
    question_text: str
    is_correct: bool
    response_time_ms: int
    activity: ActivityTag
    created_at: datetime = field(default_factory=utcnow)


class SessionType(str, Enum):
    LEARNING = "LEARNING"
    DIAGNOSTIC = "DIAGNOSTIC"
    REVIEW = "REVIEW"


@dataclass
class LearningSession:
    """
    One tutoring session.

    ``state`` holds a SessionState value; the step-loop counters
    (learning_step, step_correct, step_total) are tracked separately from it.
    """

    id: str
    student_id: str
    session_type: SessionType = SessionType.LEARNING
    state: str = "IDLE"
    current_node_code: str | None = None
    learning_step: int = 1
    step_correct: int = 0
    step_total: int = 0
    questions_answered: int = 0
    correct_answers: int = 0
    consecutive_incorrect: int = 0
    mode: str = "standard"  # "standard" | "fluency"
    review_node_codes: list[str] = field(default_factory=list)
    completed_node_codes: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None
    duration_seconds: int | None = None

    @property
    def is_completed(self) -> bool:
        return self.state == "COMPLETED"

    @property
    def accuracy(self) -> float:
        if self.questions_answered == 0:
            return 0.0
        return self.correct_answers / self.questions_answered


@dataclass(frozen=True)
class LearningGoal:
    """A named learning target and the nodes it requires."""

    id: str
    name: str
    required_node_codes: tuple[str, ...] = ()
