"""
Persistence collaborator contract.

Key-addressed storage for nodes, mastery scores, responses, sessions and
goals. ``get_*`` raises NotFoundError; ``find_*`` returns None.

``update_mastery`` is the only way to write a MasteryScore during engine
operation: the mutator receives the current record (or None) and returns
the new one, and the whole read-modify-write is atomic per (student, node).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol, runtime_checkable

from mastery_engine.core.models import (
    KnowledgeNode,
    LearningGoal,
    LearningSession,
    MasteryScore,
    QuestionResponse,
)

MasteryMutator = Callable[[MasteryScore | None], MasteryScore]


@runtime_checkable
class Repository(Protocol):
    # Knowledge nodes
    def put_node(self, node: KnowledgeNode) -> None: ...

    def find_node(self, code: str) -> KnowledgeNode | None: ...

    def get_node(self, code: str) -> KnowledgeNode: ...

    def list_nodes(self) -> list[KnowledgeNode]: ...

    # Mastery
    def find_mastery(self, student_id: str, node_code: str) -> MasteryScore | None: ...

    def get_mastery(self, student_id: str, node_code: str) -> MasteryScore: ...

    def put_mastery(self, score: MasteryScore) -> None: ...

    def update_mastery(
        self, student_id: str, node_code: str, mutator: MasteryMutator
    ) -> MasteryScore: ...

    def list_masteries(self, student_id: str) -> list[MasteryScore]: ...

    # Responses (append-only)
    def append_response(self, response: QuestionResponse) -> None: ...

    def list_responses(
        self, student_id: str, node_code: str, limit: int | None = None
    ) -> list[QuestionResponse]: ...

    # Sessions
    def put_session(self, session: LearningSession) -> None: ...

    def find_session(self, session_id: str) -> LearningSession | None: ...

    def get_session(self, session_id: str) -> LearningSession: ...

    # Goals
    def put_goal(self, goal: LearningGoal) -> None: ...

    def find_goal(self, goal_id: str) -> LearningGoal | None: ...

    def get_goal(self, goal_id: str) -> LearningGoal: ...


def seed_nodes(repository: Repository, nodes: Iterable[KnowledgeNode]) -> int:
    count = 0
    for node in nodes:
        repository.put_node(node)
        count += 1
    return count
