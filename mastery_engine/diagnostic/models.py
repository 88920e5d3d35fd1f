"""
Diagnostic placement models.

DiagnosticState is ephemeral: it lives in the DiagnosticStateStore for the
duration of one diagnostic run and is dropped on completion.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DiagnosticStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


@dataclass(frozen=True)
class OrderedNode:
    """One position in the diagnostic search space, easiest first."""

    node_code: str
    grade: float
    difficulty: int
    title: str | None = None
    domain: str | None = None

    @property
    def grade_level(self) -> str:
        return "K" if self.grade < 1 else f"G{int(self.grade)}"


@dataclass(frozen=True)
class DiagnosticResponse:
    node_code: str
    is_correct: bool
    response_time_ms: int = 0
    question_text: str = ""


@dataclass
class DiagnosticState:
    """Binary-search bracket over ``ordered_nodes`` plus the answers so far."""

    session_id: str
    student_id: str
    ordered_nodes: list[OrderedNode]
    total_questions: int
    search_low: int
    search_high: int
    current_node_code: str | None
    questions_answered: int = 0
    responses: list[DiagnosticResponse] = field(default_factory=list)
    confirmed_mastered: list[str] = field(default_factory=list)
    confirmed_unmastered: list[str] = field(default_factory=list)
    status: DiagnosticStatus = DiagnosticStatus.IN_PROGRESS
    goal_id: str | None = None
    goal_name: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.status is DiagnosticStatus.COMPLETE

    @property
    def is_goal_mode(self) -> bool:
        return self.goal_id is not None

    def index_of(self, node_code: str) -> int:
        """Position of ``node_code`` in the search space, -1 when absent."""
        for i, node in enumerate(self.ordered_nodes):
            if node.node_code == node_code:
                return i
        return -1


@dataclass(frozen=True)
class PlacementResult:
    frontier_node_code: str
    grade_estimate: float
    confidence: float
    mastered_nodes: list[str]
    gap_nodes: list[str]
    recommended_start_node: str
    total_correct: int
    total_questions: int
    summary: str
    frontier_node_title: str = ""


@dataclass(frozen=True)
class SkillMapEntry:
    node_code: str
    title: str
    domain: str
    grade_level: str
    difficulty: int
    status: str  # "mastered" | "gap" | "in_progress" | "untested"
    probability: float
    estimated_hours: float
    was_tested: bool
    was_correct: bool | None = None


@dataclass(frozen=True)
class SkillMap:
    goal_id: str
    goal_name: str
    session_id: str
    student_id: str
    entries: list[SkillMapEntry]
    total_concepts: int
    mastered_count: int
    gap_count: int
    untested_count: int
    total_estimated_hours: float
    remaining_estimated_hours: float
    completion_percentage: int
    narrative: str = ""
