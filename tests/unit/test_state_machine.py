"""
Unit tests for the session state machine.

The expected table is written out independently of VALID_TRANSITIONS so
that an accidental edit to either side fails the pairwise check.
"""

from datetime import timedelta

import pytest

from mastery_engine.core.errors import InvalidTransitionError
from mastery_engine.core.models import LearningSession
from mastery_engine.events.bus import EventType
from mastery_engine.session.state_machine import (
    RECOMMENDED_ACTIONS,
    DiagnosticEvents,
    SessionState,
    SessionStateMachine,
    TeachingEvents,
    allowed_transitions,
    diagnostic_transition,
    is_valid_transition,
    transition_pure,
)

EXPECTED = {
    "IDLE": {"DIAGNOSTIC", "TEACHING"},
    "DIAGNOSTIC": {"TEACHING", "COMPLETED"},
    "TEACHING": {"PRACTICE", "EMOTIONAL_CHECK", "COMPLETED"},
    "PRACTICE": {"CELEBRATING", "STRUGGLING", "HINT_REQUESTED", "REVIEW", "BOSS_CHALLENGE", "TEACHING", "COMPLETED"},
    "HINT_REQUESTED": {"PRACTICE", "STRUGGLING", "COMPLETED"},
    "STRUGGLING": {"EMOTIONAL_CHECK", "TEACHING", "HINT_REQUESTED", "COMPLETED"},
    "CELEBRATING": {"PRACTICE", "TEACHING", "BOSS_CHALLENGE", "COMPLETED"},
    "BOSS_CHALLENGE": {"CELEBRATING", "STRUGGLING", "TEACHING", "COMPLETED"},
    "EMOTIONAL_CHECK": {"TEACHING", "STRUGGLING", "IDLE", "COMPLETED"},
    "REVIEW": {"PRACTICE", "TEACHING", "COMPLETED"},
    "COMPLETED": {"IDLE"},
}


class TestTransitionTable:
    def test_eleven_states(self):
        assert {s.value for s in SessionState} == set(EXPECTED)

    @pytest.mark.parametrize("source", list(SessionState))
    @pytest.mark.parametrize("target", list(SessionState))
    def test_pairwise(self, source, target):
        assert is_valid_transition(source, target) is (target.value in EXPECTED[source.value])

    def test_accepts_plain_strings(self):
        assert is_valid_transition("IDLE", "TEACHING")
        assert not is_valid_transition("IDLE", "NOT_A_STATE")

    def test_recommended_action_is_total(self):
        assert set(RECOMMENDED_ACTIONS) == set(SessionState)

    def test_allowed_transitions(self):
        assert allowed_transitions(SessionState.COMPLETED) == [SessionState.IDLE]


class TestTransitionPure:
    def test_valid(self):
        result = transition_pure("IDLE", "TEACHING", TeachingEvents.START_SESSION)
        assert result == {
            "from": SessionState.IDLE,
            "to": SessionState.TEACHING,
            "event": TeachingEvents.START_SESSION,
        }

    def test_invalid_identifies_pair(self):
        with pytest.raises(InvalidTransitionError) as exc:
            transition_pure(SessionState.IDLE, SessionState.COMPLETED, "END")
        assert exc.value.from_state == "IDLE"
        assert exc.value.to_state == "COMPLETED"
        assert "IDLE -> COMPLETED" in str(exc.value)

    def test_diagnostic_events(self):
        assert diagnostic_transition("IDLE", DiagnosticEvents.START_DIAGNOSTIC) is SessionState.DIAGNOSTIC
        assert diagnostic_transition("DIAGNOSTIC", DiagnosticEvents.ANSWER_QUESTION) is SessionState.DIAGNOSTIC
        assert diagnostic_transition("DIAGNOSTIC", DiagnosticEvents.COMPLETE_DIAGNOSTIC) is SessionState.COMPLETED
        with pytest.raises(InvalidTransitionError):
            diagnostic_transition("TEACHING", DiagnosticEvents.ANSWER_QUESTION)


class TestSessionStateMachine:
    def test_transition_mutates_and_emits(self, state_machine, bus):
        session = LearningSession(id="sess-1", student_id="s1")
        seen = []
        bus.on(EventType.STATE_TRANSITION, seen.append)

        result = state_machine.transition(session, SessionState.TEACHING, TeachingEvents.START_SESSION)

        assert session.state == SessionState.TEACHING
        assert result.previous_state is SessionState.IDLE
        assert result.recommended_action == "present_concept_explanation"
        assert seen[0].payload["from"] == "IDLE"
        assert seen[0].payload["to"] == "TEACHING"
        assert state_machine.session_events("sess-1")[0].type == TeachingEvents.START_SESSION

    def test_metadata_cannot_override_transition_keys(self, state_machine, bus):
        session = LearningSession(id="sess-1", student_id="s1")
        seen = []
        bus.on(EventType.STATE_TRANSITION, seen.append)

        state_machine.transition(
            session,
            SessionState.TEACHING,
            TeachingEvents.START_SESSION,
            {"from": "PRACTICE", "to": "COMPLETED", "event": "forged", "session_id": "other", "node_code": "ADD.1"},
        )

        payload = seen[0].payload
        assert payload["from"] == "IDLE"
        assert payload["to"] == "TEACHING"
        assert payload["event"] == TeachingEvents.START_SESSION
        assert payload["session_id"] == "sess-1"
        assert payload["node_code"] == "ADD.1"

    def test_invalid_transition_leaves_state(self, state_machine):
        session = LearningSession(id="sess-1", student_id="s1", state="IDLE")
        with pytest.raises(InvalidTransitionError):
            state_machine.transition(session, SessionState.PRACTICE, TeachingEvents.SUBMIT_ANSWER)
        assert session.state == "IDLE"
        assert state_machine.event_log() == []

    def test_completion_records_duration(self, state_machine, now):
        session = LearningSession(id="s", student_id="s1", state="TEACHING", started_at=now)
        state_machine.transition(session, SessionState.COMPLETED, TeachingEvents.END_SESSION, now=now + timedelta(minutes=25))
        assert session.ended_at == now + timedelta(minutes=25)
        assert session.duration_seconds == 1500

    def test_abandoned_session_duration_is_zero(self, now):
        machine = SessionStateMachine(max_session_seconds=3600)
        session = LearningSession(id="s", student_id="s1", state="PRACTICE", started_at=now)
        machine.transition(session, SessionState.COMPLETED, TeachingEvents.END_SESSION, now=now + timedelta(hours=5))
        assert session.duration_seconds == 0

    def test_ensure_is_noop_in_target(self, state_machine):
        session = LearningSession(id="s", student_id="s1", state="PRACTICE")
        assert state_machine.ensure(session, SessionState.PRACTICE, TeachingEvents.SUBMIT_ANSWER) is None
        assert state_machine.event_log() == []
