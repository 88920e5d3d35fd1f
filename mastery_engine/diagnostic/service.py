"""
Diagnostic sessions: ties the pure placement engine to persistence.

Ephemeral search state lives in the DiagnosticStateStore; the
LearningSession record, the response log and the seeded mastery scores
live in the repository.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime

from loguru import logger

from mastery_engine.content.gateway import ContentGateway
from mastery_engine.content.schemas import Question
from mastery_engine.core.models import (
    ActivityTag,
    KnowledgeNode,
    LearningSession,
    MasteryScore,
    QuestionResponse,
    SessionType,
    utcnow,
)
from mastery_engine.diagnostic.engine import (
    GAP_PROBABILITY,
    MASTERED_PROBABILITY,
    calculate_placement,
    create_diagnostic_state,
    create_goal_diagnostic_state,
    generate_skill_map,
    process_answer,
)
from mastery_engine.diagnostic.models import (
    DiagnosticResponse,
    DiagnosticState,
    PlacementResult,
    SkillMap,
)
from mastery_engine.diagnostic.store import DiagnosticStateStore
from mastery_engine.events.bus import EventBus, EventType, get_event_bus
from mastery_engine.persistence.repository import Repository
from mastery_engine.session.state_machine import (
    DiagnosticEvents,
    SessionStateMachine,
    diagnostic_transition,
)
from mastery_engine.tracing.bkt import level_for


@dataclass(frozen=True)
class DiagnosticAnswer:
    state: DiagnosticState
    is_correct: bool
    next_node_code: str | None
    placement: PlacementResult | None = None
    skill_map: SkillMap | None = None

    @property
    def complete(self) -> bool:
        return self.state.is_complete


class DiagnosticService:
    """Runs diagnostic placement sessions."""

    def __init__(
        self,
        repository: Repository,
        store: DiagnosticStateStore | None = None,
        state_machine: SessionStateMachine | None = None,
        event_bus: EventBus | None = None,
        content: ContentGateway | None = None,
        max_questions: int | None = None,
    ):
        if max_questions is None:
            from config import get_settings

            max_questions = get_settings().diagnostic_max_questions

        self.repository = repository
        self.store = store or DiagnosticStateStore()
        self.event_bus = event_bus or get_event_bus()
        self.state_machine = state_machine or SessionStateMachine(self.event_bus)
        self.content = content or ContentGateway()
        self.max_questions = max_questions

    def start(
        self,
        student_id: str,
        grade_level: str,
        goal_id: str | None = None,
        session_id: str | None = None,
    ) -> DiagnosticState:
        """
        Begin a diagnostic run (IDLE -> DIAGNOSTIC).

        Args:
            student_id: Student being placed
            grade_level: Registered grade ("K", "G1", ...), picks the standard-mode start
            goal_id: Search only this goal's required concepts
            session_id: Explicit session id (generated if None)

        Raises:
            NotFoundError: Unknown goal
            ValueError: Goal has no resolvable concepts
        """
        session_id = session_id or uuid.uuid4().hex
        if goal_id is not None:
            goal = self.repository.get_goal(goal_id)
            state = create_goal_diagnostic_state(
                session_id, student_id, goal, self.repository.list_nodes(), self.max_questions
            )
        else:
            state = create_diagnostic_state(session_id, student_id, grade_level, self.max_questions)

        session = LearningSession(
            id=session_id,
            student_id=student_id,
            session_type=SessionType.DIAGNOSTIC,
            current_node_code=state.current_node_code,
        )
        target = diagnostic_transition(session.state, DiagnosticEvents.START_DIAGNOSTIC)
        self.state_machine.transition(session, target, DiagnosticEvents.START_DIAGNOSTIC)
        self.repository.put_session(session)
        self.store.put(state)

        mode = f"goal {goal_id}" if goal_id else f"grade {grade_level}"
        logger.info(
            f"Diagnostic {session_id} started for {student_id} ({mode}, "
            f"{len(state.ordered_nodes)} concepts, budget {state.total_questions})"
        )
        return state

    def state(self, session_id: str) -> DiagnosticState:
        return self.store.get(session_id)

    def _node_for(self, state: DiagnosticState, node_code: str) -> KnowledgeNode:
        node = self.repository.find_node(node_code)
        if node is not None:
            return node
        ordered = state.ordered_nodes[state.index_of(node_code)]
        return KnowledgeNode(
            code=ordered.node_code,
            title=ordered.title or ordered.node_code,
            domain=ordered.domain or "Math",
            grade_level=ordered.grade_level,
            difficulty=ordered.difficulty,
        )

    def next_question(self, session_id: str) -> Question:
        """
        Raises:
            NotFoundError: Unknown or expired diagnostic
            ValueError: The run has no current node (already complete)
        """
        state = self.store.get(session_id)
        if state.current_node_code is None:
            raise ValueError(f"Diagnostic {session_id} has no pending question")
        node = self._node_for(state, state.current_node_code)
        return self.content.question(node, {"student_id": state.student_id, "mode": "diagnostic"})

    def submit_answer(
        self,
        session_id: str,
        node_code: str,
        is_correct: bool,
        response_time_ms: int = 0,
        question_text: str = "",
        now: datetime | None = None,
    ) -> DiagnosticAnswer:
        """
        Record one diagnostic answer and advance the search.

        Completion (budget, converged bracket or exhausted search space)
        computes the placement, seeds mastery scores and closes the session.
        """
        now = now or utcnow()
        session = self.repository.get_session(session_id)
        diagnostic_transition(session.state, DiagnosticEvents.ANSWER_QUESTION)

        response = DiagnosticResponse(
            node_code=node_code,
            is_correct=is_correct,
            response_time_ms=response_time_ms,
            question_text=question_text,
        )
        state = self.store.apply(session_id, lambda s: process_answer(s, response))

        self.repository.append_response(
            QuestionResponse(
                student_id=session.student_id,
                node_code=node_code,
                session_id=session_id,
                question_text=question_text,
                is_correct=is_correct,
                response_time_ms=response_time_ms,
                activity=ActivityTag.DIAGNOSTIC,
                created_at=now,
            )
        )
        session.questions_answered += 1
        if is_correct:
            session.correct_answers += 1
        session.current_node_code = state.current_node_code

        if not state.is_complete:
            self.repository.put_session(session)
            return DiagnosticAnswer(state=state, is_correct=is_correct, next_node_code=state.current_node_code)

        placement, skill_map = self._finish(session, state, now)
        return DiagnosticAnswer(
            state=state,
            is_correct=is_correct,
            next_node_code=None,
            placement=placement,
            skill_map=skill_map,
        )

    def _finish(
        self, session: LearningSession, state: DiagnosticState, now: datetime
    ) -> tuple[PlacementResult, SkillMap | None]:
        placement = calculate_placement(state)
        frontier = self.repository.find_node(placement.frontier_node_code)
        if frontier is not None and not placement.frontier_node_title:
            placement = replace(placement, frontier_node_title=frontier.title)

        skill_map = None
        if state.is_goal_mode:
            existing = {
                s.node_code: s.bkt_probability for s in self.repository.list_masteries(state.student_id)
            }
            skill_map = generate_skill_map(state, existing)

        self._seed_mastery(state.student_id, placement, now)

        target = diagnostic_transition(session.state, DiagnosticEvents.COMPLETE_DIAGNOSTIC)
        self.state_machine.transition(
            session,
            target,
            DiagnosticEvents.COMPLETE_DIAGNOSTIC,
            {"frontier": placement.frontier_node_code},
            now,
        )
        self.repository.put_session(session)
        self.store.discard(session.id)

        self.event_bus.publish(
            EventType.DIAGNOSTIC_COMPLETE,
            state.student_id,
            session_id=session.id,
            frontier_node_code=placement.frontier_node_code,
            grade_estimate=placement.grade_estimate,
            confidence=placement.confidence,
            mastered=len(placement.mastered_nodes),
            gaps=len(placement.gap_nodes),
        )
        logger.info(
            f"Diagnostic {session.id} complete: frontier={placement.frontier_node_code} "
            f"confidence={placement.confidence:.2f} ({placement.total_correct}/{placement.total_questions} correct)"
        )
        return placement, skill_map

    def _seed_mastery(self, student_id: str, placement: PlacementResult, now: datetime) -> None:
        """Seed mastered nodes high and gaps low, levels bucketed from the seed; unknown node codes are skipped."""
        seeds = [(code, True) for code in placement.mastered_nodes] + [(code, False) for code in placement.gap_nodes]
        for code, known in seeds:
            if self.repository.find_node(code) is None:
                logger.debug(f"Skipping mastery seed for unknown node {code}")
                continue

            def seed(current: MasteryScore | None, code: str = code, known: bool = known) -> MasteryScore:
                base = current or MasteryScore.new(student_id, code)
                probability = MASTERED_PROBABILITY if known else GAP_PROBABILITY
                return base.copy(
                    bkt_probability=probability,
                    level=level_for(probability, 1),
                    practice_count=1,
                    correct_count=1 if known else 0,
                    last_practiced=now,
                )

            self.repository.update_mastery(student_id, code, seed)

    def abandon(self, session_id: str) -> bool:
        """Drop the ephemeral state; the session record is left as-is."""
        removed = self.store.discard(session_id)
        if removed:
            logger.info(f"Diagnostic {session_id} abandoned")
        return removed
