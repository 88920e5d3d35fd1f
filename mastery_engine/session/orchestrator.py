"""
Learning session orchestration.

Composes the two independent state structures driven by each answer:
the outer SessionStateMachine and the nested StepLoop. Per answer:

1. Enter PRACTICE (TEACHING/HINT_REQUESTED/CELEBRATING -> PRACTICE)
2. Update mastery atomically (steps 3-5 only; step 2 reads it)
3. Log the QuestionResponse
4. Advance the step loop; consult the Mastery Gate on a correct step-5 answer
5. Celebrate mastery, start a fluency drill, or detect struggling
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from mastery_engine.content.gateway import ContentGateway
from mastery_engine.content.schemas import Explanation, Question
from mastery_engine.core.errors import GraphCycleError, NotFoundError
from mastery_engine.core.graph import KnowledgeGraph
from mastery_engine.core.models import (
    ActivityTag,
    KnowledgeNode,
    LearningSession,
    MasteryScore,
    QuestionResponse,
    SessionType,
    utcnow,
)
from mastery_engine.events.bus import EngineEvent, EventBus, EventType, get_event_bus
from mastery_engine.persistence.repository import Repository
from mastery_engine.scheduling.scheduler import initial_schedule
from mastery_engine.session.fluency import FluencyEngine, FluencyResult
from mastery_engine.session.mastery_gate import GateOutcome, MasteryGate, Practice
from mastery_engine.session.state_machine import (
    SessionState,
    SessionStateMachine,
    TeachingEvents,
    TransitionResult,
    recommended_action,
)
from mastery_engine.session.step_loop import LearningStep, StepLoop, StepOutcome, StepResult
from mastery_engine.tracing.bkt import KnowledgeTracer


@dataclass(frozen=True)
class AnswerOutcome:
    """Everything the request layer needs after one answer."""

    session: LearningSession
    is_correct: bool
    step: StepResult
    mastery: MasteryScore
    state: SessionState
    recommended_action: str
    gate_outcome: GateOutcome | None = None
    mastered: bool = False
    fluency_drill_started: bool = False
    struggling: bool = False
    next_node_code: str | None = None


@dataclass(frozen=True)
class FluencyAnswerOutcome:
    session: LearningSession
    result: FluencyResult
    state: SessionState
    recommended_action: str
    next_node_code: str | None = None


class SessionOrchestrator:
    """Drives learning sessions against a repository."""

    def __init__(
        self,
        repository: Repository,
        tracer: KnowledgeTracer | None = None,
        gate: MasteryGate | None = None,
        state_machine: SessionStateMachine | None = None,
        event_bus: EventBus | None = None,
        content: ContentGateway | None = None,
        fluency: FluencyEngine | None = None,
        graph: KnowledgeGraph | None = None,
        struggle_streak: int | None = None,
    ):
        if struggle_streak is None:
            from config import get_settings

            struggle_streak = get_settings().struggle_streak

        self.repository = repository
        self.tracer = tracer or KnowledgeTracer()
        self.gate = gate or MasteryGate()
        self.event_bus = event_bus or get_event_bus()
        self.state_machine = state_machine or SessionStateMachine(self.event_bus)
        self.content = content or ContentGateway()
        self.fluency = fluency or FluencyEngine()
        self._graph = graph
        self.struggle_streak = struggle_streak

    # ========================================
    # Helpers
    # ========================================

    @property
    def graph(self) -> KnowledgeGraph:
        if self._graph is None:
            self._graph = KnowledgeGraph(self.repository.list_nodes())
        return self._graph

    def _graph_for(self, node_code: str) -> KnowledgeGraph:
        """The cached graph, rebuilt once if it predates ``node_code``."""
        graph = self.graph
        if node_code not in graph:
            self._graph = graph = KnowledgeGraph(self.repository.list_nodes())
        return graph

    def _current_node(self, session: LearningSession) -> KnowledgeNode:
        if session.current_node_code is None:
            raise ValueError(f"Session {session.id} has no current node")
        return self.repository.get_node(session.current_node_code)

    def _emit(self, event_type: str, student_id: str, **payload: Any) -> None:
        self.event_bus.emit(EngineEvent(type=event_type, student_id=student_id, payload=payload))

    def _transition(self, session_id: str, target: SessionState, event: str) -> TransitionResult:
        session = self.repository.get_session(session_id)
        result = self.state_machine.transition(session, target, event)
        self.repository.put_session(session)
        return result

    def _score_or_initial(self, current: MasteryScore | None, student_id: str, node_code: str) -> MasteryScore:
        return current if current is not None else self.tracer.initial_score(student_id, node_code)

    # ========================================
    # Lifecycle
    # ========================================

    def start_session(self, student_id: str, node_code: str, session_id: str | None = None) -> LearningSession:
        """Create a learning session on ``node_code`` and present its concept (IDLE -> TEACHING)."""
        self.repository.get_node(node_code)
        session = LearningSession(
            id=session_id or uuid.uuid4().hex,
            student_id=student_id,
            session_type=SessionType.LEARNING,
            state=SessionState.IDLE,
            current_node_code=node_code,
            learning_step=LearningStep.INSTRUCTION,
        )
        self.state_machine.transition(session, SessionState.TEACHING, TeachingEvents.START_SESSION)
        self.repository.put_session(session)
        logger.info(f"Learning session {session.id} started for {student_id} on {node_code}")
        return session

    def request_hint(self, session_id: str) -> TransitionResult:
        return self._transition(session_id, SessionState.HINT_REQUESTED, TeachingEvents.REQUEST_HINT)

    def resume_practice(self, session_id: str) -> TransitionResult:
        return self._transition(session_id, SessionState.PRACTICE, TeachingEvents.RETURN_TO_PRACTICE)

    def emotional_check(self, session_id: str) -> TransitionResult:
        return self._transition(session_id, SessionState.EMOTIONAL_CHECK, TeachingEvents.EMOTIONAL_SIGNAL)

    def reteach(self, session_id: str) -> TransitionResult:
        """Back to TEACHING; the step loop restarts at instruction."""
        session = self.repository.get_session(session_id)
        result = self.state_machine.transition(session, SessionState.TEACHING, TeachingEvents.PRESENT_CONCEPT)
        session.learning_step = LearningStep.INSTRUCTION
        session.step_correct = 0
        session.step_total = 0
        session.consecutive_incorrect = 0
        self.repository.put_session(session)
        return result

    def end_session(self, session_id: str) -> TransitionResult:
        result = self._transition(session_id, SessionState.COMPLETED, TeachingEvents.END_SESSION)
        logger.info(f"Learning session {session_id} completed")
        return result

    # ========================================
    # Content
    # ========================================

    def next_question(self, session_id: str) -> Question:
        session = self.repository.get_session(session_id)
        node = self._current_node(session)
        context = {"student_id": session.student_id, "step": int(session.learning_step), "mode": session.mode}
        return self.content.question(node, context)

    def explanation(self, session_id: str) -> Explanation:
        session = self.repository.get_session(session_id)
        node = self._current_node(session)
        return self.content.explanation(node, {"student_id": session.student_id})

    # ========================================
    # Answers
    # ========================================

    def _evaluate_gate(self, score: MasteryScore, node: KnowledgeNode, now: datetime) -> GateOutcome:
        try:
            responses = self.repository.list_responses(score.student_id, score.node_code)
            return self.gate.evaluate(score, responses, node, now)
        except Exception as e:
            logger.warning(f"Mastery gate raised for {score.student_id}/{score.node_code}, failing closed: {e}")
            return Practice(reason="evaluation_error")

    def _celebrate_mastery(
        self, session: LearningSession, node: KnowledgeNode, now: datetime
    ) -> str | None:
        """
        Close out a truly mastered node and move the session to the next one.

        Shared by gate Advance and fluency completion. The mastery write must
        already be committed. A catalogue that no longer forms a valid graph
        leaves the session on the mastered node instead of failing the answer.

        Returns:
            Code of the recommended next node, or None if nothing is unlocked
        """
        student_id = session.student_id
        self.state_machine.transition(
            session, SessionState.CELEBRATING, TeachingEvents.MASTERY_ACHIEVED, {"node_code": node.code}, now
        )
        if node.code not in session.completed_node_codes:
            session.completed_node_codes.append(node.code)
        session.learning_step = LearningStep.INSTRUCTION
        session.step_correct = session.step_total = 0
        self._emit(EventType.NODE_MASTERED, student_id, node_code=node.code, session_id=session.id)
        logger.info(f"Node mastered: {student_id}/{node.code}")

        try:
            graph = self._graph_for(node.code)
        except (GraphCycleError, NotFoundError) as e:
            logger.error(f"Cannot pick the node after {node.code}, knowledge graph is invalid: {e}")
            return None
        masteries = {s.node_code: s for s in self.repository.list_masteries(student_id)}
        next_node = self.tracer.recommend_next_node(graph, node.code, masteries)
        if next_node is None:
            return None
        session.current_node_code = next_node.code
        return next_node.code

    def submit_answer(
        self,
        session_id: str,
        is_correct: bool,
        response_time_ms: int = 0,
        question_text: str = "",
        now: datetime | None = None,
    ) -> AnswerOutcome:
        """
        Process one answer in the practice loop.

        Raises:
            NotFoundError: Unknown session or node
            InvalidTransitionError: Session state cannot enter PRACTICE
            ValueError: Session is in fluency drill mode
        """
        now = now or utcnow()
        session = self.repository.get_session(session_id)
        if session.mode == "fluency":
            raise ValueError(f"Session {session_id} is in fluency drill mode; use submit_fluency_answer")
        node = self._current_node(session)
        student_id = session.student_id

        self.state_machine.ensure(session, SessionState.PRACTICE, TeachingEvents.SUBMIT_ANSWER, now=now)

        loop = StepLoop(session.learning_step, session.step_correct, session.step_total)
        if loop.step is LearningStep.INSTRUCTION:
            loop.begin_checks()
        activity = loop.activity

        if loop.updates_mastery:
            score = self.repository.update_mastery(
                student_id,
                node.code,
                lambda current: self.tracer.update(
                    self._score_or_initial(current, student_id, node.code),
                    is_correct,
                    now,
                    response_time_ms,
                ),
            )
        else:
            score = self._score_or_initial(self.repository.find_mastery(student_id, node.code), student_id, node.code)

        self.repository.append_response(
            QuestionResponse(
                student_id=student_id,
                node_code=node.code,
                session_id=session.id,
                question_text=question_text,
                is_correct=is_correct,
                response_time_ms=response_time_ms,
                activity=activity,
                created_at=now,
            )
        )

        session.questions_answered += 1
        if is_correct:
            session.correct_answers += 1
            session.consecutive_incorrect = 0
        else:
            session.consecutive_incorrect += 1

        step_result = loop.record_answer(is_correct)
        gate_outcome: GateOutcome | None = None
        mastered = fluency_started = struggling = False
        next_node_code: str | None = None

        if step_result.outcome is StepOutcome.GATE_PENDING:
            gate_outcome = self._evaluate_gate(score, node, now)
            step_result = loop.apply_gate(gate_outcome)

        if step_result.outcome is StepOutcome.MASTERED:
            mastered = True
            score = self.repository.update_mastery(
                student_id,
                node.code,
                lambda current: initial_schedule(
                    self._score_or_initial(current, student_id, node.code).copy(
                        truly_mastered=True, fluency_drill_active=False
                    ),
                    now,
                ),
            )
            next_node_code = self._celebrate_mastery(session, node, now)
            loop = StepLoop()

        elif step_result.outcome is StepOutcome.FLUENCY_DRILL:
            fluency_started = True
            session.mode = "fluency"
            score = self.repository.update_mastery(
                student_id,
                node.code,
                lambda current: self.fluency.start(self._score_or_initial(current, student_id, node.code)),
            )
            self._emit(EventType.FLUENCY_DRILL_STARTED, student_id, node_code=node.code, session_id=session.id)
            logger.info(f"Fluency drill started: {student_id}/{node.code}")

        elif not is_correct and session.consecutive_incorrect >= self.struggle_streak:
            struggling = True
            self.state_machine.transition(
                session,
                SessionState.STRUGGLING,
                TeachingEvents.STRUGGLE_DETECTED,
                {"node_code": node.code, "streak": session.consecutive_incorrect},
                now,
            )
            self._emit(
                EventType.STRUGGLE_DETECTED,
                student_id,
                node_code=node.code,
                streak=session.consecutive_incorrect,
                probability=score.bkt_probability,
            )
            session.consecutive_incorrect = 0

        session.learning_step = int(loop.step)
        session.step_correct = loop.correct
        session.step_total = loop.total
        self.repository.put_session(session)

        state = SessionState(session.state)
        return AnswerOutcome(
            session=session,
            is_correct=is_correct,
            step=step_result,
            mastery=score,
            state=state,
            recommended_action=recommended_action(state),
            gate_outcome=gate_outcome,
            mastered=mastered,
            fluency_drill_started=fluency_started,
            struggling=struggling,
            next_node_code=next_node_code,
        )

    def submit_fluency_answer(
        self,
        session_id: str,
        is_correct: bool,
        response_time_ms: int,
        question_text: str = "",
        now: datetime | None = None,
    ) -> FluencyAnswerOutcome:
        """Process one fluency drill answer; completion counts as true mastery."""
        now = now or utcnow()
        session = self.repository.get_session(session_id)
        if session.mode != "fluency":
            raise ValueError(f"Session {session_id} is not in fluency drill mode")
        node = self._current_node(session)
        student_id = session.student_id

        self.state_machine.ensure(session, SessionState.PRACTICE, TeachingEvents.SUBMIT_ANSWER, now=now)

        self.repository.append_response(
            QuestionResponse(
                student_id=student_id,
                node_code=node.code,
                session_id=session.id,
                question_text=question_text,
                is_correct=is_correct,
                response_time_ms=response_time_ms,
                activity=ActivityTag.FLUENCY_DRILL,
                created_at=now,
            )
        )
        responses = self.repository.list_responses(student_id, node.code)

        results: list[FluencyResult] = []

        def mutate(current: MasteryScore | None) -> MasteryScore:
            result = self.fluency.evaluate(
                self._score_or_initial(current, student_id, node.code), responses, response_time_ms, is_correct, node
            )
            results.append(result)
            score = result.score
            return initial_schedule(score, now) if result.completed else score

        self.repository.update_mastery(student_id, node.code, mutate)
        result = results[-1]

        session.questions_answered += 1
        if is_correct:
            session.correct_answers += 1

        next_node_code: str | None = None
        if result.completed:
            session.mode = "standard"
            self._emit(EventType.FLUENCY_COMPLETED, student_id, node_code=node.code, flatline=result.flatline_detected)
            logger.info(f"Fluency completed: {student_id}/{node.code}")
            next_node_code = self._celebrate_mastery(session, node, now)

        self.repository.put_session(session)
        state = SessionState(session.state)
        return FluencyAnswerOutcome(
            session=session,
            result=result,
            state=state,
            recommended_action=recommended_action(state),
            next_node_code=next_node_code,
        )
