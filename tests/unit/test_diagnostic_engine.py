"""
Unit tests for the diagnostic placement engine (pure functions).
"""

from dataclasses import replace

import pytest

from mastery_engine.core.models import KnowledgeNode, LearningGoal
from mastery_engine.diagnostic.engine import (
    DEFAULT_ORDERED_NODES,
    build_goal_node_list,
    calculate_placement,
    create_diagnostic_state,
    create_goal_diagnostic_state,
    estimate_hours_for_difficulty,
    generate_skill_map,
    process_answer,
    select_next_question,
)
from mastery_engine.diagnostic.models import DiagnosticResponse, DiagnosticStatus

CODES = [n.node_code for n in DEFAULT_ORDERED_NODES]


def _run(state, knows):
    """Answer until completion; ``knows(index)`` decides correctness."""
    asked = []
    while not state.is_complete:
        code = state.current_node_code
        asked.append(code)
        state = process_answer(state, DiagnosticResponse(code, knows(CODES.index(code))))
    return state, asked


@pytest.fixture
def goal_nodes():
    return [
        KnowledgeNode(code="G1-HARD", title="Two-digit addition", grade_level="G1", difficulty=5),
        KnowledgeNode(code="K-HARD", title="Compare numbers", grade_level="K", difficulty=9),
        KnowledgeNode(code="K-EASY", title="Count to 10", grade_level="K", difficulty=2),
        KnowledgeNode(code="G1-EASY", title="Add within 10", grade_level="G1", difficulty=1),
        KnowledgeNode(code="OTHER", title="Not in goal", grade_level="K", difficulty=1),
    ]


@pytest.fixture
def goal():
    return LearningGoal(id="goal-1", name="First grade math", required_node_codes=("G1-HARD", "K-HARD", "K-EASY", "G1-EASY"))


class TestStandardMode:
    @pytest.mark.parametrize("grade,start", [("K", "K.CC.4"), ("G1", "1.OA.2"), ("G3", "1.NBT.3"), ("PreK", "1.OA.2")])
    def test_grade_midpoint(self, grade, start):
        state = create_diagnostic_state("d1", "s1", grade)
        assert state.current_node_code == start
        assert (state.search_low, state.search_high) == (0, 20)
        assert state.total_questions == 20

    def test_binary_search_converges(self):
        state, asked = _run(create_diagnostic_state("d1", "s1", "K"), lambda i: i < 9)
        assert asked == ["K.CC.4", "1.OA.4", "1.OA.1", "1.OA.7"]
        assert state.status is DiagnosticStatus.COMPLETE
        assert state.current_node_code is None

        placement = calculate_placement(state)
        assert placement.frontier_node_code == "1.OA.5"
        assert placement.recommended_start_node == "1.OA.5"
        assert placement.grade_estimate == 1.1
        assert placement.mastered_nodes == ["K.CC.4", "1.OA.1"]
        assert placement.gap_nodes == []
        assert placement.confidence == pytest.approx(0.5 + (20 / 21) * 0.3 + (4 / 20) * 0.2)
        assert "Grade 1" in placement.summary

    def test_knows_nothing(self):
        state, _ = _run(create_diagnostic_state("d1", "s1", "K"), lambda i: False)
        placement = calculate_placement(state)
        assert placement.frontier_node_code == "K.CC.1"
        assert placement.recommended_start_node == "K.CC.1"
        assert placement.grade_estimate == 0.0
        assert placement.total_correct == 0
        assert "very beginning" in placement.summary

    def test_knows_everything(self):
        state, _ = _run(create_diagnostic_state("d1", "s1", "G3"), lambda i: True)
        placement = calculate_placement(state)
        assert placement.frontier_node_code == "1.NBT.6"

    def test_never_exceeds_budget(self):
        state = create_diagnostic_state("d1", "s1", "K", max_questions=2)
        state, asked = _run(state, lambda i: i < 15)
        assert len(asked) == 2
        assert state.questions_answered == 2

    def test_gap_below_frontier(self):
        state = create_diagnostic_state("d1", "s1", "K")
        state = process_answer(state, DiagnosticResponse("K.CC.6", True))
        state = process_answer(state, DiagnosticResponse("K.CC.3", False))
        placement = calculate_placement(state)
        assert placement.frontier_node_code == "K.CC.7"
        assert placement.gap_nodes == ["K.CC.3"]
        assert "1 gap " in placement.summary

    def test_state_not_mutated(self):
        state = create_diagnostic_state("d1", "s1", "K")
        process_answer(state, DiagnosticResponse("K.CC.4", True))
        assert state.questions_answered == 0
        assert state.responses == []

    def test_unknown_node_rejected(self):
        with pytest.raises(ValueError):
            process_answer(create_diagnostic_state("d1", "s1", "K"), DiagnosticResponse("X.1", True))

    def test_answer_after_completion_rejected(self):
        state, _ = _run(create_diagnostic_state("d1", "s1", "K"), lambda i: False)
        with pytest.raises(ValueError):
            process_answer(state, DiagnosticResponse("K.CC.1", True))


class TestExhaustion:
    def test_exhausted_search_space_forces_completion(self, goal, goal_nodes):
        state = create_goal_diagnostic_state("d1", "s1", goal, goal_nodes)
        # Nodes inside the bracket already answered in an earlier attempt
        earlier = [DiagnosticResponse(o.node_code, True) for o in state.ordered_nodes[1:]]
        state = replace(state, responses=earlier, total_questions=20)

        assert select_next_question(replace(state, search_low=1)) is None

        done = process_answer(state, DiagnosticResponse(state.ordered_nodes[0].node_code, True))
        assert done.status is DiagnosticStatus.COMPLETE
        placement = calculate_placement(done)
        assert placement.frontier_node_code == state.ordered_nodes[1].node_code

    def test_select_prefers_harder_side(self):
        state = create_diagnostic_state("d1", "s1", "K")
        state = replace(state, responses=[DiagnosticResponse("1.OA.2", True)])
        assert select_next_question(state) == ("1.OA.3", 11)


class TestGoalMode:
    def test_goal_node_order(self, goal, goal_nodes):
        ordered = build_goal_node_list(goal, goal_nodes)
        assert [o.node_code for o in ordered] == ["K-EASY", "K-HARD", "G1-EASY", "G1-HARD"]
        assert ordered[0].grade == pytest.approx(0.02)

    def test_goal_order_keeps_prerequisites_first(self):
        nodes = [
            KnowledgeNode(code="SHAPES", title="Name shapes", grade_level="K", difficulty=1, prerequisites=("COUNT",)),
            KnowledgeNode(code="COUNT", title="Count to 20", grade_level="G1", difficulty=3),
            KnowledgeNode(code="ADD", title="Add within 10", grade_level="G1", difficulty=2, prerequisites=("SHAPES",)),
        ]
        goal = LearningGoal(id="g", name="Chain", required_node_codes=("ADD", "SHAPES", "COUNT"))

        ordered = build_goal_node_list(goal, nodes)

        assert [o.node_code for o in ordered] == ["COUNT", "SHAPES", "ADD"]

    def test_goal_without_concepts(self, goal_nodes):
        with pytest.raises(ValueError):
            build_goal_node_list(LearningGoal(id="g", name="Empty"), goal_nodes)
        with pytest.raises(ValueError):
            build_goal_node_list(LearningGoal(id="g", name="Ghost", required_node_codes=("NOPE",)), goal_nodes)

    def test_budget_capped_by_concept_count(self, goal, goal_nodes):
        state = create_goal_diagnostic_state("d1", "s1", goal, goal_nodes)
        assert state.total_questions == 4
        assert state.current_node_code == "G1-EASY"
        assert state.is_goal_mode

    def test_skill_map(self, goal, goal_nodes):
        state = create_goal_diagnostic_state("d1", "s1", goal, goal_nodes)
        state = process_answer(state, DiagnosticResponse("G1-EASY", True))
        assert state.is_complete

        skill_map = generate_skill_map(state, {"K-EASY": 0.9})
        statuses = {e.node_code: e.status for e in skill_map.entries}
        assert statuses == {
            "K-EASY": "mastered",
            "K-HARD": "in_progress",
            "G1-EASY": "mastered",
            "G1-HARD": "untested",
        }
        assert skill_map.mastered_count == 2
        assert skill_map.untested_count == 2
        assert skill_map.gap_count == 0
        assert skill_map.completion_percentage == 50
        assert skill_map.total_estimated_hours == pytest.approx(5.0)
        assert skill_map.remaining_estimated_hours == pytest.approx(4.0)
        assert skill_map.narrative

    def test_skill_map_gap_probability(self, goal, goal_nodes):
        state = create_goal_diagnostic_state("d1", "s1", goal, goal_nodes)
        state = process_answer(state, DiagnosticResponse("G1-EASY", False))
        entry = next(e for e in generate_skill_map(state).entries if e.node_code == "G1-EASY")
        assert entry.status == "gap"
        assert entry.probability == 0.1
        assert entry.was_correct is False

    def test_skill_map_requires_goal(self):
        with pytest.raises(ValueError):
            generate_skill_map(create_diagnostic_state("d1", "s1", "K"))


@pytest.mark.parametrize("difficulty,hours", [(1, 0.5), (2, 0.5), (3, 1.0), (4, 1.0), (6, 1.5), (8, 2.0), (10, 2.5)])
def test_estimate_hours(difficulty, hours):
    assert estimate_hours_for_difficulty(difficulty) == hours
