"""
Thread-safe in-memory repository.

Reference implementation of the Repository contract, used by the CLI and
tests. Mastery updates take a per-(student, node) lock so concurrent
updates for the same pair serialize while different pairs proceed in parallel.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from copy import deepcopy

from mastery_engine.core.errors import NotFoundError
from mastery_engine.core.models import (
    KnowledgeNode,
    LearningGoal,
    LearningSession,
    MasteryScore,
    QuestionResponse,
)
from mastery_engine.persistence.repository import MasteryMutator


class InMemoryRepository:
    """Dictionary-backed repository. Returned objects are copies."""

    def __init__(self):
        self._nodes: dict[str, KnowledgeNode] = {}
        self._masteries: dict[tuple[str, str], MasteryScore] = {}
        self._responses: dict[tuple[str, str], list[QuestionResponse]] = defaultdict(list)
        self._sessions: dict[str, LearningSession] = {}
        self._goals: dict[str, LearningGoal] = {}

        self._lock = threading.RLock()
        self._pair_locks: dict[tuple[str, str], threading.Lock] = {}

    def _pair_lock(self, key: tuple[str, str]) -> threading.Lock:
        with self._lock:
            lock = self._pair_locks.get(key)
            if lock is None:
                lock = self._pair_locks[key] = threading.Lock()
            return lock

    # ========================================
    # Knowledge Nodes
    # ========================================

    def put_node(self, node: KnowledgeNode) -> None:
        with self._lock:
            self._nodes[node.code] = node

    def find_node(self, code: str) -> KnowledgeNode | None:
        with self._lock:
            return self._nodes.get(code)

    def get_node(self, code: str) -> KnowledgeNode:
        node = self.find_node(code)
        if node is None:
            raise NotFoundError("KnowledgeNode", code)
        return node

    def list_nodes(self) -> list[KnowledgeNode]:
        with self._lock:
            return list(self._nodes.values())

    # ========================================
    # Mastery
    # ========================================

    def find_mastery(self, student_id: str, node_code: str) -> MasteryScore | None:
        with self._lock:
            score = self._masteries.get((student_id, node_code))
            return deepcopy(score) if score else None

    def get_mastery(self, student_id: str, node_code: str) -> MasteryScore:
        score = self.find_mastery(student_id, node_code)
        if score is None:
            raise NotFoundError("MasteryScore", f"{student_id}/{node_code}")
        return score

    def put_mastery(self, score: MasteryScore) -> None:
        with self._pair_lock(score.key):
            with self._lock:
                self._masteries[score.key] = deepcopy(score)

    def update_mastery(self, student_id: str, node_code: str, mutator: MasteryMutator) -> MasteryScore:
        key = (student_id, node_code)
        with self._pair_lock(key):
            current = self.find_mastery(student_id, node_code)
            updated = mutator(current)
            if updated.key != key:
                raise ValueError(f"Mutator changed mastery key {key} -> {updated.key}")
            with self._lock:
                self._masteries[key] = deepcopy(updated)
            return deepcopy(updated)

    def list_masteries(self, student_id: str) -> list[MasteryScore]:
        with self._lock:
            return [deepcopy(s) for (sid, _), s in self._masteries.items() if sid == student_id]

    # ========================================
    # Responses
    # ========================================

    def append_response(self, response: QuestionResponse) -> None:
        with self._lock:
            self._responses[(response.student_id, response.node_code)].append(response)

    def list_responses(self, student_id: str, node_code: str, limit: int | None = None) -> list[QuestionResponse]:
        """Responses oldest first; ``limit`` keeps the most recent N."""
        with self._lock:
            responses = list(self._responses.get((student_id, node_code), []))
        responses.sort(key=lambda r: r.created_at)
        return responses[-limit:] if limit else responses

    # ========================================
    # Sessions
    # ========================================

    def put_session(self, session: LearningSession) -> None:
        with self._lock:
            self._sessions[session.id] = deepcopy(session)

    def find_session(self, session_id: str) -> LearningSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return deepcopy(session) if session else None

    def get_session(self, session_id: str) -> LearningSession:
        session = self.find_session(session_id)
        if session is None:
            raise NotFoundError("LearningSession", session_id)
        return session

    # ========================================
    # Goals
    # ========================================

    def put_goal(self, goal: LearningGoal) -> None:
        with self._lock:
            self._goals[goal.id] = goal

    def find_goal(self, goal_id: str) -> LearningGoal | None:
        with self._lock:
            return self._goals.get(goal_id)

    def get_goal(self, goal_id: str) -> LearningGoal:
        goal = self.find_goal(goal_id)
        if goal is None:
            raise NotFoundError("LearningGoal", goal_id)
        return goal
