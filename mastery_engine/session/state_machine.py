"""
Session state machine.

Eleven states with an explicit transition table. Every state change goes
through SessionStateMachine.transition (or transition_pure for logic-only
callers); anything outside the table raises InvalidTransitionError.

The nested 5-step practice loop lives in session.step_loop and is
composed with this machine by the orchestrator.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from mastery_engine.core.errors import InvalidTransitionError
from mastery_engine.core.models import LearningSession, utcnow
from mastery_engine.events.bus import EngineEvent, EventBus, EventType

DEFAULT_MAX_SESSION_SECONDS = 7200


class SessionState(str, Enum):
    IDLE = "IDLE"
    DIAGNOSTIC = "DIAGNOSTIC"
    TEACHING = "TEACHING"
    PRACTICE = "PRACTICE"
    HINT_REQUESTED = "HINT_REQUESTED"
    STRUGGLING = "STRUGGLING"
    CELEBRATING = "CELEBRATING"
    BOSS_CHALLENGE = "BOSS_CHALLENGE"
    EMOTIONAL_CHECK = "EMOTIONAL_CHECK"
    REVIEW = "REVIEW"
    COMPLETED = "COMPLETED"


S = SessionState

VALID_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    S.IDLE: frozenset({S.DIAGNOSTIC, S.TEACHING}),
    S.DIAGNOSTIC: frozenset({S.TEACHING, S.COMPLETED}),
    S.TEACHING: frozenset({S.PRACTICE, S.EMOTIONAL_CHECK, S.COMPLETED}),
    S.PRACTICE: frozenset(
        {S.CELEBRATING, S.STRUGGLING, S.HINT_REQUESTED, S.REVIEW, S.BOSS_CHALLENGE, S.TEACHING, S.COMPLETED}
    ),
    S.HINT_REQUESTED: frozenset({S.PRACTICE, S.STRUGGLING, S.COMPLETED}),
    S.STRUGGLING: frozenset({S.EMOTIONAL_CHECK, S.TEACHING, S.HINT_REQUESTED, S.COMPLETED}),
    S.CELEBRATING: frozenset({S.PRACTICE, S.TEACHING, S.BOSS_CHALLENGE, S.COMPLETED}),
    S.BOSS_CHALLENGE: frozenset({S.CELEBRATING, S.STRUGGLING, S.TEACHING, S.COMPLETED}),
    S.EMOTIONAL_CHECK: frozenset({S.TEACHING, S.STRUGGLING, S.IDLE, S.COMPLETED}),
    S.REVIEW: frozenset({S.PRACTICE, S.TEACHING, S.COMPLETED}),
    S.COMPLETED: frozenset({S.IDLE}),
}

RECOMMENDED_ACTIONS: dict[SessionState, str] = {
    S.IDLE: "show_session_menu",
    S.DIAGNOSTIC: "present_diagnostic_question",
    S.TEACHING: "present_concept_explanation",
    S.PRACTICE: "present_practice_problem",
    S.HINT_REQUESTED: "provide_hint",
    S.STRUGGLING: "offer_simpler_approach",
    S.CELEBRATING: "show_mastery_celebration",
    S.BOSS_CHALLENGE: "present_boss_problem",
    S.EMOTIONAL_CHECK: "run_emotional_checkin",
    S.REVIEW: "present_review_problem",
    S.COMPLETED: "show_session_summary",
}


class DiagnosticEvents:
    START_DIAGNOSTIC = "START_DIAGNOSTIC"
    ANSWER_QUESTION = "DIAGNOSTIC_ANSWER"
    COMPLETE_DIAGNOSTIC = "DIAGNOSTIC_COMPLETE"


class TeachingEvents:
    START_SESSION = "START_SESSION"
    PRESENT_CONCEPT = "PRESENT_CONCEPT"
    SUBMIT_ANSWER = "SUBMIT_ANSWER"
    REQUEST_HINT = "REQUEST_HINT"
    RETURN_TO_PRACTICE = "RETURN_TO_PRACTICE"
    MASTERY_ACHIEVED = "MASTERY_ACHIEVED"
    STRUGGLE_DETECTED = "STRUGGLE_DETECTED"
    EMOTIONAL_SIGNAL = "EMOTIONAL_SIGNAL"
    EMOTIONAL_CHECK_DONE = "EMOTIONAL_CHECK_DONE"
    START_REVIEW = "START_REVIEW"
    START_BOSS = "START_BOSS"
    BOSS_PASSED = "BOSS_PASSED"
    BOSS_FAILED = "BOSS_FAILED"
    ADVANCE_NODE = "ADVANCE_NODE"
    END_SESSION = "END_SESSION"


def _coerce(state: SessionState | str) -> SessionState:
    return state if isinstance(state, SessionState) else SessionState(state)


def is_valid_transition(from_state: SessionState | str, to_state: SessionState | str) -> bool:
    try:
        source, target = _coerce(from_state), _coerce(to_state)
    except ValueError:
        return False
    return target in VALID_TRANSITIONS[source]


def allowed_transitions(state: SessionState | str) -> list[SessionState]:
    return sorted(VALID_TRANSITIONS[_coerce(state)], key=lambda s: list(SessionState).index(s))


def recommended_action(state: SessionState | str) -> str:
    return RECOMMENDED_ACTIONS[_coerce(state)]


def transition_pure(
    from_state: SessionState | str, to_state: SessionState | str, event: str
) -> dict[str, Any]:
    """Validate a transition without touching any session record."""
    if not is_valid_transition(from_state, to_state):
        allowed = allowed_transitions(from_state) if from_state in SessionState._value2member_map_ else []
        raise InvalidTransitionError(from_state, to_state, event, allowed)
    return {"from": _coerce(from_state), "to": _coerce(to_state), "event": event}


def diagnostic_transition(state: SessionState | str, event: str) -> SessionState:
    """Target state for a diagnostic event, or InvalidTransitionError."""
    current = _coerce(state)
    if event == DiagnosticEvents.START_DIAGNOSTIC and current is S.IDLE:
        return S.DIAGNOSTIC
    if event == DiagnosticEvents.ANSWER_QUESTION and current is S.DIAGNOSTIC:
        return S.DIAGNOSTIC
    if event == DiagnosticEvents.COMPLETE_DIAGNOSTIC and current is S.DIAGNOSTIC:
        return S.COMPLETED
    raise InvalidTransitionError(current, None, event)


@dataclass(frozen=True)
class SessionEvent:
    type: str
    from_state: SessionState
    to_state: SessionState
    session_id: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    previous_state: SessionState
    new_state: SessionState
    event: SessionEvent
    recommended_action: str


class SessionStateMachine:
    """
    Central enforcement point for session state changes.

    Mutates the LearningSession passed in; persisting it is the caller's job.
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        max_session_seconds: int | None = None,
        log_size: int = 500,
    ):
        if max_session_seconds is None:
            from config import get_settings

            max_session_seconds = get_settings().max_session_seconds
        self.event_bus = event_bus
        self.max_session_seconds = max_session_seconds
        self._events: deque[SessionEvent] = deque(maxlen=log_size)
        self._lock = threading.Lock()

    def transition(
        self,
        session: LearningSession,
        target: SessionState | str,
        event: str,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """
        Move ``session`` to ``target``.

        Raises:
            InvalidTransitionError: If the table does not allow the move
        """
        current = _coerce(session.state)
        target = _coerce(target)
        transition_pure(current, target, event)

        now = now or utcnow()
        session.state = target
        if target is S.COMPLETED:
            session.ended_at = now
            elapsed = round((now - session.started_at).total_seconds())
            # Anything longer than the cap is an abandoned session
            session.duration_seconds = elapsed if 0 <= elapsed <= self.max_session_seconds else 0

        session_event = SessionEvent(
            type=event,
            from_state=current,
            to_state=target,
            session_id=session.id,
            timestamp=now,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._events.append(session_event)
        logger.debug(f"Session {session.id}: {current.value} -> {target.value} ({event})")

        if self.event_bus is not None:
            self.event_bus.emit(
                EngineEvent(
                    type=EventType.STATE_TRANSITION,
                    student_id=session.student_id,
                    payload={
                        **session_event.metadata,
                        "session_id": session.id,
                        "from": current.value,
                        "to": target.value,
                        "event": event,
                    },
                    timestamp=now,
                )
            )

        return TransitionResult(
            previous_state=current,
            new_state=target,
            event=session_event,
            recommended_action=recommended_action(target),
        )

    def ensure(
        self,
        session: LearningSession,
        target: SessionState | str,
        event: str,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> TransitionResult | None:
        """Transition unless the session is already in ``target``."""
        if _coerce(session.state) is _coerce(target):
            return None
        return self.transition(session, target, event, metadata, now)

    def event_log(self) -> list[SessionEvent]:
        with self._lock:
            return list(self._events)

    def session_events(self, session_id: str) -> list[SessionEvent]:
        with self._lock:
            return [e for e in self._events if e.session_id == session_id]
