"""
Session Module - Learning session flow.

Components:
- state_machine: SessionStateMachine and the 11-state transition table
- step_loop: nested 5-step practice loop
- mastery_gate: multi-signal true mastery check
- fluency: speed drill for accurate but slow students
- orchestrator: composes the above per answer
"""

from mastery_engine.session.fluency import FluencyEngine, FluencyResult
from mastery_engine.session.mastery_gate import (
    Advance,
    FluencyDrill,
    GateConfig,
    GateOutcome,
    MasteryGate,
    Practice,
    RetentionReview,
)
from mastery_engine.session.orchestrator import AnswerOutcome, FluencyAnswerOutcome, SessionOrchestrator
from mastery_engine.session.state_machine import (
    VALID_TRANSITIONS,
    DiagnosticEvents,
    SessionState,
    SessionStateMachine,
    TeachingEvents,
    is_valid_transition,
    transition_pure,
)
from mastery_engine.session.step_loop import LearningStep, StepLoop, StepOutcome, StepResult

__all__ = [
    # State machine
    "VALID_TRANSITIONS",
    "DiagnosticEvents",
    "SessionState",
    "SessionStateMachine",
    "TeachingEvents",
    "is_valid_transition",
    "transition_pure",
    # Step loop
    "LearningStep",
    "StepLoop",
    "StepOutcome",
    "StepResult",
    # Gate
    "Advance",
    "FluencyDrill",
    "GateConfig",
    "GateOutcome",
    "MasteryGate",
    "Practice",
    "RetentionReview",
    # Fluency
    "FluencyEngine",
    "FluencyResult",
    # Orchestration
    "AnswerOutcome",
    "FluencyAnswerOutcome",
    "SessionOrchestrator",
]
