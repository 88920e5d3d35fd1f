"""
Diagnostic Module - Binary-search placement.

Components:
- models: DiagnosticState, PlacementResult, SkillMap
- engine: pure search, placement and skill map functions
- store: TTL-bounded ephemeral state
- service: DiagnosticService (persistence + state machine + content)
"""

from mastery_engine.diagnostic.engine import (
    DEFAULT_ORDERED_NODES,
    MAX_QUESTIONS,
    build_goal_node_list,
    calculate_placement,
    create_diagnostic_state,
    create_goal_diagnostic_state,
    estimate_hours_for_difficulty,
    force_complete,
    generate_skill_map,
    process_answer,
    select_next_question,
)
from mastery_engine.diagnostic.models import (
    DiagnosticResponse,
    DiagnosticState,
    DiagnosticStatus,
    OrderedNode,
    PlacementResult,
    SkillMap,
    SkillMapEntry,
)
from mastery_engine.diagnostic.service import DiagnosticAnswer, DiagnosticService
from mastery_engine.diagnostic.store import DiagnosticStateStore

__all__ = [
    "DEFAULT_ORDERED_NODES",
    "MAX_QUESTIONS",
    "DiagnosticAnswer",
    "DiagnosticResponse",
    "DiagnosticService",
    "DiagnosticState",
    "DiagnosticStateStore",
    "DiagnosticStatus",
    "OrderedNode",
    "PlacementResult",
    "SkillMap",
    "SkillMapEntry",
    "build_goal_node_list",
    "calculate_placement",
    "create_diagnostic_state",
    "create_goal_diagnostic_state",
    "estimate_hours_for_difficulty",
    "force_complete",
    "generate_skill_map",
    "process_answer",
    "select_next_question",
]
