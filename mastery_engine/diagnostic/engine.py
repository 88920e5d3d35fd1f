"""
Diagnostic placement engine: binary search over an ordered concept space.

Two modes:
    Standard: the built-in K-G1 math sequence, starting at the grade midpoint
    Goal-aware: a goal's required nodes in prerequisite order, then grade + difficulty

A correct answer raises the lower bound of the bracket past the node; an
incorrect answer lowers the upper bound below it. The run completes when the
question budget is spent, the bracket empties or converges to one node, or
no unasked node remains inside it.

Every function here is pure: states are never mutated in place.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace

from mastery_engine.core.graph import KnowledgeGraph
from mastery_engine.core.models import KnowledgeNode, LearningGoal
from mastery_engine.diagnostic.models import (
    DiagnosticResponse,
    DiagnosticState,
    DiagnosticStatus,
    OrderedNode,
    PlacementResult,
    SkillMap,
    SkillMapEntry,
)

MAX_QUESTIONS = 20
MASTERED_PROBABILITY = 0.85
GAP_PROBABILITY = 0.1

DEFAULT_ORDERED_NODES: tuple[OrderedNode, ...] = (
    # Kindergarten counting
    OrderedNode("K.CC.1", 0.0, 1),
    OrderedNode("K.CC.2", 0.1, 2),
    OrderedNode("K.CC.3", 0.2, 2),
    OrderedNode("K.CC.4", 0.3, 3),
    OrderedNode("K.CC.5", 0.4, 3),
    OrderedNode("K.CC.6", 0.5, 4),
    OrderedNode("K.CC.7", 0.6, 4),
    # Grade 1 operations
    OrderedNode("1.OA.1", 1.0, 3),
    OrderedNode("1.OA.5", 1.1, 3),
    OrderedNode("1.OA.7", 1.2, 4),
    OrderedNode("1.OA.2", 1.25, 4),
    OrderedNode("1.OA.3", 1.3, 5),
    OrderedNode("1.OA.4", 1.35, 5),
    OrderedNode("1.OA.6", 1.4, 5),
    OrderedNode("1.OA.8", 1.5, 6),
    # Grade 1 number and base ten
    OrderedNode("1.NBT.1", 1.55, 3),
    OrderedNode("1.NBT.2", 1.6, 5),
    OrderedNode("1.NBT.5", 1.65, 5),
    OrderedNode("1.NBT.3", 1.7, 5),
    OrderedNode("1.NBT.4", 1.8, 6),
    OrderedNode("1.NBT.6", 1.9, 6),
)


def grade_midpoint(grade_level: str, node_count: int = len(DEFAULT_ORDERED_NODES)) -> int:
    """Starting index for standard mode."""
    if grade_level == "K":
        return 3  # K.CC.4
    if grade_level == "G1":
        return 10  # 1.OA.2
    if grade_level in ("G2", "G3", "G4", "G5"):
        return node_count - 3
    return node_count // 2


# =============================================================================
# State creation
# =============================================================================


def create_diagnostic_state(
    session_id: str,
    student_id: str,
    grade_level: str,
    max_questions: int = MAX_QUESTIONS,
) -> DiagnosticState:
    """Fresh standard-mode state over DEFAULT_ORDERED_NODES."""
    nodes = list(DEFAULT_ORDERED_NODES)
    start = grade_midpoint(grade_level, len(nodes))
    return DiagnosticState(
        session_id=session_id,
        student_id=student_id,
        ordered_nodes=nodes,
        total_questions=max_questions,
        search_low=0,
        search_high=len(nodes) - 1,
        current_node_code=nodes[start].node_code,
    )


def build_goal_node_list(goal: LearningGoal, nodes: Iterable[KnowledgeNode]) -> list[OrderedNode]:
    """
    Order a goal's required nodes for binary search.

    Prerequisites always precede the nodes that depend on them: the primary
    key is how many other required nodes sit in a node's prerequisite chain.
    Ties fall back to grade number + difficulty * 0.01, then difficulty.

    Args:
        goal: Learning goal naming the required node codes
        nodes: Candidate knowledge nodes (typically the whole catalogue)

    Returns:
        OrderedNodes in prerequisite-then-grade order

    Raises:
        ValueError: Goal has no required concepts, or none of them exist
        GraphCycleError: The candidate nodes contain a prerequisite cycle
    """
    if not goal.required_node_codes:
        raise ValueError(f'Goal "{goal.name}" has no required concepts')

    nodes = list(nodes)
    required = set(goal.required_node_codes)
    graph = KnowledgeGraph(nodes)
    depth = {
        n.code: sum(1 for p in graph.prerequisite_chain(n.code) if p.code in required and p.code != n.code)
        for n in nodes
        if n.code in required
    }
    ordered = [
        OrderedNode(
            node_code=n.code,
            grade=n.grade_number + n.difficulty * 0.01,
            difficulty=n.difficulty,
            title=n.title,
            domain=n.domain,
        )
        for n in nodes
        if n.code in required
    ]
    if not ordered:
        raise ValueError(
            f'No knowledge nodes found for goal "{goal.name}" ({len(required)} required)'
        )
    return sorted(ordered, key=lambda o: (depth[o.node_code], o.grade, o.difficulty))


def create_goal_diagnostic_state(
    session_id: str,
    student_id: str,
    goal: LearningGoal,
    nodes: Iterable[KnowledgeNode],
    max_questions: int = MAX_QUESTIONS,
) -> DiagnosticState:
    """Goal-aware state; the budget never exceeds the number of concepts."""
    ordered = build_goal_node_list(goal, nodes)
    return DiagnosticState(
        session_id=session_id,
        student_id=student_id,
        ordered_nodes=ordered,
        total_questions=min(max_questions, len(ordered)),
        search_low=0,
        search_high=len(ordered) - 1,
        current_node_code=ordered[len(ordered) // 2].node_code,
        goal_id=goal.id,
        goal_name=goal.name,
    )


# =============================================================================
# Search
# =============================================================================


def select_next_question(state: DiagnosticState) -> tuple[str, int] | None:
    """
    Next (node_code, index) to ask.

    Starts at the bracket midpoint and scans outward, preferring the harder
    side, for a node not yet asked. None when the budget is spent or no
    unasked node remains inside the bracket.
    """
    low, high = state.search_low, state.search_high
    if state.questions_answered >= state.total_questions or low > high:
        return None

    asked = {r.node_code for r in state.responses}
    codes = [n.node_code for n in state.ordered_nodes]
    mid = (low + high) // 2
    offset = 0
    while True:
        up, down = mid + offset, mid - offset
        if up > high and down < low:
            return None
        if up <= high and codes[up] not in asked:
            return codes[up], up
        if down >= low and codes[down] not in asked:
            return codes[down], down
        offset += 1


def process_answer(state: DiagnosticState, response: DiagnosticResponse) -> DiagnosticState:
    """
    Apply one answer and return the new state.

    Raises:
        ValueError: The run is already complete, or the node is outside the search space
    """
    if state.is_complete:
        raise ValueError(f"Diagnostic {state.session_id} is already complete")
    index = state.index_of(response.node_code)
    if index < 0:
        raise ValueError(f"Node {response.node_code} is not in diagnostic {state.session_id}")

    mastered = list(state.confirmed_mastered)
    unmastered = list(state.confirmed_unmastered)
    low, high = state.search_low, state.search_high
    if response.is_correct:
        mastered.append(response.node_code)
        low = max(low, index + 1)
    else:
        unmastered.append(response.node_code)
        high = min(high, index - 1)

    updated = replace(
        state,
        questions_answered=state.questions_answered + 1,
        responses=[*state.responses, response],
        confirmed_mastered=mastered,
        confirmed_unmastered=unmastered,
        search_low=low,
        search_high=high,
    )

    if updated.questions_answered >= updated.total_questions or low >= high:
        return force_complete(updated)

    next_question = select_next_question(updated)
    if next_question is None:
        return force_complete(updated)
    updated.current_node_code = next_question[0]
    return updated


def force_complete(state: DiagnosticState) -> DiagnosticState:
    return replace(state, status=DiagnosticStatus.COMPLETE, current_node_code=None)


# =============================================================================
# Placement
# =============================================================================


def _highest_mastered_index(state: DiagnosticState) -> int:
    return max((state.index_of(code) for code in state.confirmed_mastered), default=-1)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count > 1 else ''}"


def calculate_placement(state: DiagnosticState) -> PlacementResult:
    """Frontier, grade estimate, confidence and gaps from the answers so far."""
    nodes = state.ordered_nodes
    total_correct = sum(1 for r in state.responses if r.is_correct)
    total_questions = len(state.responses)

    highest = _highest_mastered_index(state)
    frontier_index = min(highest + 1, len(nodes) - 1)
    frontier = nodes[max(frontier_index, 0)]
    start = nodes[frontier_index if highest >= 0 else 0]
    grade_estimate = frontier.grade if highest >= 0 else nodes[0].grade

    remaining_fraction = (state.search_high - state.search_low + 1) / len(nodes)
    question_ratio = total_questions / state.total_questions if state.total_questions else 0.0
    confidence = min(0.99, 0.5 + (1 - remaining_fraction) * 0.3 + question_ratio * 0.2)

    gap_nodes = [c for c in state.confirmed_unmastered if state.index_of(c) < frontier_index]
    mastered_nodes = [c for c in state.confirmed_mastered if state.index_of(c) <= highest]

    if state.is_goal_mode:
        goal_name = state.goal_name or "goal"
        pct = round(len(mastered_nodes) / len(nodes) * 100)
        if total_correct == 0:
            summary = f"Let's start at the beginning of your {goal_name} journey. Every expert was once a beginner!"
        elif gap_nodes:
            summary = (
                f'You\'ve already mastered {pct}% of the concepts for "{goal_name}". '
                f"We found {_plural(len(gap_nodes), 'gap')} to strengthen."
            )
        else:
            summary = f'Excellent! You\'ve mastered {pct}% of "{goal_name}" concepts. Let\'s keep building from here!'
    else:
        if grade_estimate < 1:
            label = f"Kindergarten ({round(grade_estimate * 10) * 10}%)"
        else:
            label = f"Grade {int(grade_estimate)} ({round((grade_estimate % 1) * 100)}% through)"
        if total_correct == 0:
            summary = "Let's start from the very beginning. Every expert was once a beginner!"
        elif gap_nodes:
            summary = (
                f"Great work! You're at a {label} math level. "
                f"We found {_plural(len(gap_nodes), 'gap')} we'll help you fill in."
            )
        else:
            summary = f"Awesome! You're at a {label} math level. You have a solid foundation."

    return PlacementResult(
        frontier_node_code=frontier.node_code,
        frontier_node_title=frontier.title or "",
        grade_estimate=grade_estimate,
        confidence=confidence,
        mastered_nodes=mastered_nodes,
        gap_nodes=gap_nodes,
        recommended_start_node=start.node_code,
        total_correct=total_correct,
        total_questions=total_questions,
        summary=summary,
    )


# =============================================================================
# Skill map (goal-aware only)
# =============================================================================


def estimate_hours_for_difficulty(difficulty: int) -> float:
    if difficulty <= 2:
        return 0.5
    if difficulty <= 4:
        return 1.0
    if difficulty <= 6:
        return 1.5
    if difficulty <= 8:
        return 2.0
    return 2.5


def _skill_status(
    node: OrderedNode,
    index: int,
    highest: int,
    mastered: set[str],
    gaps: set[str],
    tested: set[str],
    existing: float,
) -> tuple[str, float]:
    if node.node_code in mastered:
        return "mastered", max(MASTERED_PROBABILITY, existing)
    if node.node_code in gaps:
        return "gap", min(0.3, existing or GAP_PROBABILITY)
    if node.node_code not in tested and index <= highest:
        # Below the frontier: likely known
        if existing >= MASTERED_PROBABILITY:
            return "mastered", existing
        return "in_progress", existing or 0.6
    if existing >= MASTERED_PROBABILITY and node.node_code not in tested:
        return "mastered", existing
    return "untested", existing or 0.2


def _narrative(goal_name: str, total: int, mastered: int, gaps: int, pct: int) -> str:
    if mastered == 0:
        return f'You\'re starting a brand new adventure with "{goal_name}": {total} concepts, one step at a time!'
    if gaps:
        return (
            f'You already know {mastered} out of {total} concepts for "{goal_name}". '
            f"We found {_plural(gaps, 'area')} to strengthen."
        )
    return f'You\'ve already mastered {pct}% of "{goal_name}"! Just {total - mastered} more concepts to go.'


def generate_skill_map(
    state: DiagnosticState,
    existing_probabilities: Mapping[str, float] | None = None,
) -> SkillMap:
    """
    Every goal concept with its status and estimated hours to mastery.

    Args:
        state: A goal-aware diagnostic state
        existing_probabilities: Stored BKT probability per node code for the student

    Raises:
        ValueError: The state is not goal-aware
    """
    if not state.is_goal_mode:
        raise ValueError("Skill map can only be generated for goal-aware diagnostics")

    existing_probabilities = existing_probabilities or {}
    mastered = set(state.confirmed_mastered)
    gaps = set(state.confirmed_unmastered)
    tested = {r.node_code for r in state.responses}
    correct = {r.node_code for r in state.responses if r.is_correct}
    highest = _highest_mastered_index(state)

    entries = []
    for index, node in enumerate(state.ordered_nodes):
        existing = existing_probabilities.get(node.node_code, 0.0)
        status, probability = _skill_status(node, index, highest, mastered, gaps, tested, existing)
        was_tested = node.node_code in tested
        entries.append(
            SkillMapEntry(
                node_code=node.node_code,
                title=node.title or node.node_code,
                domain=node.domain or "Math",
                grade_level=node.grade_level,
                difficulty=node.difficulty,
                status=status,
                probability=probability,
                estimated_hours=0.0 if status == "mastered" else estimate_hours_for_difficulty(node.difficulty),
                was_tested=was_tested,
                was_correct=(node.node_code in correct) if was_tested else None,
            )
        )

    total = len(entries)
    mastered_count = sum(1 for e in entries if e.status == "mastered")
    gap_count = sum(1 for e in entries if e.status == "gap")
    untested_count = sum(1 for e in entries if e.status in ("untested", "in_progress"))
    pct = round(mastered_count / total * 100) if total else 0
    goal_name = state.goal_name or "Unknown Goal"

    return SkillMap(
        goal_id=state.goal_id,
        goal_name=goal_name,
        session_id=state.session_id,
        student_id=state.student_id,
        entries=entries,
        total_concepts=total,
        mastered_count=mastered_count,
        gap_count=gap_count,
        untested_count=untested_count,
        total_estimated_hours=sum(estimate_hours_for_difficulty(e.difficulty) for e in entries),
        remaining_estimated_hours=sum(e.estimated_hours for e in entries),
        completion_percentage=pct,
        narrative=_narrative(goal_name, total, mastered_count, gap_count, pct),
    )
