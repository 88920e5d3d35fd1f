"""
Unit tests for the prerequisite graph and core models.
"""

import pytest

from mastery_engine.core.errors import GraphCycleError, NotFoundError
from mastery_engine.core.graph import KnowledgeGraph
from mastery_engine.core.models import KnowledgeNode, MasteryLevel, MasteryScore, grade_to_number


class TestKnowledgeGraph:
    def test_successors_from_prerequisites(self, chain_nodes):
        graph = KnowledgeGraph(chain_nodes)
        assert [n.code for n in graph.successors("ADD.1")] == ["ADD.2"]
        assert [n.code for n in graph.prerequisites("ADD.3")] == ["ADD.2"]

    def test_topological_order(self, chain_nodes):
        graph = KnowledgeGraph(reversed(chain_nodes))
        assert [n.code for n in graph.topological_order()] == ["ADD.1", "ADD.2", "ADD.3"]

    def test_prerequisite_chain(self, chain_nodes):
        graph = KnowledgeGraph(chain_nodes)
        assert [n.code for n in graph.prerequisite_chain("ADD.3")] == ["ADD.1", "ADD.2", "ADD.3"]

    def test_cycle_rejected(self):
        nodes = [
            KnowledgeNode(code="A", title="A", prerequisites=("B",)),
            KnowledgeNode(code="B", title="B", prerequisites=("A",)),
        ]
        with pytest.raises(GraphCycleError) as exc:
            KnowledgeGraph(nodes)
        assert set(exc.value.cycle_nodes) == {"A", "B"}

    def test_unknown_prerequisite_rejected(self):
        with pytest.raises(NotFoundError):
            KnowledgeGraph([KnowledgeNode(code="A", title="A", prerequisites=("MISSING",))])

    def test_duplicate_code_rejected(self):
        with pytest.raises(ValueError):
            KnowledgeGraph([KnowledgeNode(code="A", title="A"), KnowledgeNode(code="A", title="A again")])

    def test_unknown_node_lookup(self, chain_nodes):
        graph = KnowledgeGraph(chain_nodes)
        assert "ADD.2" in graph
        assert len(graph) == 3
        with pytest.raises(NotFoundError):
            graph.node("NOPE")


class TestModels:
    @pytest.mark.parametrize("label,number", [("K", 0), ("G1", 1), ("G5", 5), ("PreK", 0)])
    def test_grade_to_number(self, label, number):
        assert grade_to_number(label) == number

    def test_new_score_defaults(self):
        score = MasteryScore.new("s1", "ADD.1", prior=0.3)
        assert score.key == ("s1", "ADD.1")
        assert score.level is MasteryLevel.DEVELOPING
        assert score.easiness_factor == 2.5
        assert score.next_review_at is None
        assert score.accuracy == 0.0

    def test_copy_leaves_original(self):
        score = MasteryScore.new("s1", "ADD.1")
        changed = score.copy(practice_count=4)
        assert score.practice_count == 0
        assert changed.practice_count == 4
