"""
Core Module - Shared domain models and interfaces.

Components:
- models: KnowledgeNode, MasteryScore, QuestionResponse, LearningSession, LearningGoal
- graph: KnowledgeGraph (prerequisite DAG)
- errors: Engine error taxonomy

Design Principle:
Engine modules (tracing/, diagnostic/, session/, scheduling/) import shared
concepts from mastery_engine.core rather than redefining them.
"""

from mastery_engine.core.errors import (
    ContentValidationError,
    EngineError,
    GateEvaluationError,
    GraphCycleError,
    InvalidTransitionError,
    NotFoundError,
)
from mastery_engine.core.graph import KnowledgeGraph
from mastery_engine.core.models import (
    ActivityTag,
    KnowledgeNode,
    LearningGoal,
    LearningSession,
    MasteryLevel,
    MasteryScore,
    QuestionResponse,
    SessionType,
    clamp_probability,
    grade_to_number,
    utcnow,
)

__all__ = [
    # Errors
    "EngineError",
    "InvalidTransitionError",
    "NotFoundError",
    "ContentValidationError",
    "GateEvaluationError",
    "GraphCycleError",
    # Graph
    "KnowledgeGraph",
    # Models
    "ActivityTag",
    "KnowledgeNode",
    "LearningGoal",
    "LearningSession",
    "MasteryLevel",
    "MasteryScore",
    "QuestionResponse",
    "SessionType",
    "clamp_probability",
    "grade_to_number",
    "utcnow",
]
