"""
Integration tests for diagnostic placement sessions.
"""

import pytest

from mastery_engine.cli.main import default_catalogue
from mastery_engine.core.errors import InvalidTransitionError, NotFoundError
from mastery_engine.core.models import LearningGoal, MasteryLevel, MasteryScore
from mastery_engine.diagnostic.engine import DEFAULT_ORDERED_NODES
from mastery_engine.diagnostic.service import DiagnosticService
from mastery_engine.diagnostic.store import DiagnosticStateStore
from mastery_engine.events.bus import EventType
from mastery_engine.persistence.memory import InMemoryRepository
from mastery_engine.persistence.repository import seed_nodes
from mastery_engine.session.state_machine import SessionState
from mastery_engine.tracing.bkt import level_for

CODES = [n.node_code for n in DEFAULT_ORDERED_NODES]


@pytest.fixture
def catalogue_repo():
    repository = InMemoryRepository()
    seed_nodes(repository, default_catalogue())
    return repository


@pytest.fixture
def store():
    return DiagnosticStateStore(ttl_seconds=600, maxsize=10)


def _service(repository, store, state_machine, bus):
    return DiagnosticService(repository, store=store, state_machine=state_machine, event_bus=bus, max_questions=20)


def _run(service, session_id, knows, now):
    answer = None
    node_code = service.state(session_id).current_node_code
    while node_code is not None:
        answer = service.submit_answer(session_id, node_code, knows(CODES.index(node_code)), 4000, now=now)
        node_code = answer.next_node_code
    return answer


class TestStandardDiagnostic:
    def test_placement_seeds_mastery_and_closes_session(self, catalogue_repo, store, state_machine, bus, now):
        service = _service(catalogue_repo, store, state_machine, bus)
        completions = []
        bus.on(EventType.DIAGNOSTIC_COMPLETE, completions.append)

        state = service.start("s1", "K", session_id="diag-1")
        assert state.current_node_code == "K.CC.4"
        assert catalogue_repo.get_session("diag-1").state == SessionState.DIAGNOSTIC

        answer = _run(service, "diag-1", lambda i: i < 9, now)

        assert answer.complete
        assert answer.skill_map is None
        placement = answer.placement
        assert placement.frontier_node_code == "1.OA.5"
        assert placement.frontier_node_title == "1.OA.5"

        session = catalogue_repo.get_session("diag-1")
        assert session.state == SessionState.COMPLETED
        assert session.questions_answered == 4
        assert session.correct_answers == 2

        seeded = catalogue_repo.get_mastery("s1", "K.CC.4")
        assert seeded.bkt_probability == 0.85
        assert seeded.level is MasteryLevel.ADVANCED
        assert seeded.practice_count == 1
        assert catalogue_repo.find_mastery("s1", "1.OA.7") is None

        assert "diag-1" not in store
        assert completions[0].payload["frontier_node_code"] == "1.OA.5"

    def test_gap_seeded_as_novice(self, catalogue_repo, store, state_machine, bus, now):
        service = _service(catalogue_repo, store, state_machine, bus)
        service.start("s1", "K", session_id="diag-1")
        service.submit_answer("diag-1", "K.CC.6", True, now=now)
        answer = service.submit_answer("diag-1", "K.CC.3", False, now=now)

        assert answer.placement.gap_nodes == ["K.CC.3"]
        gap = catalogue_repo.get_mastery("s1", "K.CC.3")
        assert gap.bkt_probability == 0.1
        assert gap.level is MasteryLevel.NOVICE
        assert gap.correct_count == 0

    def test_answers_logged(self, catalogue_repo, store, state_machine, bus, now):
        service = _service(catalogue_repo, store, state_machine, bus)
        service.start("s1", "K", session_id="diag-1")
        service.submit_answer("diag-1", "K.CC.4", True, 2500, "How many apples?", now=now)

        responses = catalogue_repo.list_responses("s1", "K.CC.4")
        assert len(responses) == 1
        assert responses[0].activity.value == "diagnostic"
        assert responses[0].question_text == "How many apples?"

    def test_answer_after_completion_rejected(self, catalogue_repo, store, state_machine, bus, now):
        service = _service(catalogue_repo, store, state_machine, bus)
        service.start("s1", "K", session_id="diag-1")
        _run(service, "diag-1", lambda i: False, now)

        with pytest.raises(InvalidTransitionError):
            service.submit_answer("diag-1", "K.CC.1", True, now=now)

    def test_next_question_uses_fallback_content(self, catalogue_repo, store, state_machine, bus):
        service = _service(catalogue_repo, store, state_machine, bus)
        service.start("s1", "K", session_id="diag-1")
        question = service.next_question("diag-1")
        assert "apples" in question.question_text
        assert question.node_code == "K.CC.4"

    def test_abandon(self, catalogue_repo, store, state_machine, bus):
        service = _service(catalogue_repo, store, state_machine, bus)
        service.start("s1", "K", session_id="diag-1")

        assert service.abandon("diag-1") is True
        assert service.abandon("diag-1") is False
        with pytest.raises(NotFoundError):
            service.state("diag-1")


class TestGoalDiagnostic:
    def test_skill_map_uses_prior_masteries(self, repo, store, state_machine, bus, now):
        repo.put_goal(LearningGoal(id="goal-1", name="Addition", required_node_codes=("ADD.3", "ADD.1", "ADD.2")))
        repo.put_mastery(MasteryScore("s1", "ADD.1", bkt_probability=0.9, level=MasteryLevel.MASTERED, practice_count=6))
        service = _service(repo, store, state_machine, bus)

        state = service.start("s1", "K", goal_id="goal-1", session_id="diag-1")
        assert [o.node_code for o in state.ordered_nodes] == ["ADD.1", "ADD.2", "ADD.3"]
        assert state.total_questions == 3
        assert state.current_node_code == "ADD.2"

        answer = service.submit_answer("diag-1", "ADD.2", True, now=now)

        assert answer.complete
        assert answer.placement.frontier_node_title == "Add within 20"
        statuses = {e.node_code: e.status for e in answer.skill_map.entries}
        assert statuses == {"ADD.1": "mastered", "ADD.2": "mastered", "ADD.3": "untested"}
        assert answer.skill_map.goal_name == "Addition"
        assert repo.get_mastery("s1", "ADD.1").bkt_probability == 0.9
        assert repo.get_mastery("s1", "ADD.2").bkt_probability == 0.85

    def test_seeded_levels_match_probability_buckets(self, repo, store, state_machine, bus, now):
        repo.put_goal(LearningGoal(id="goal-1", name="Addition", required_node_codes=("ADD.1", "ADD.2", "ADD.3")))
        service = _service(repo, store, state_machine, bus)
        state = service.start("s1", "K", goal_id="goal-1", session_id="diag-1")

        node_code = state.current_node_code
        while node_code is not None:
            node_code = service.submit_answer("diag-1", node_code, True, now=now).next_node_code

        seeded = repo.list_masteries("s1")
        assert seeded
        for score in seeded:
            assert score.level is level_for(score.bkt_probability, score.practice_count)

    def test_unknown_goal(self, repo, store, state_machine, bus):
        service = _service(repo, store, state_machine, bus)
        with pytest.raises(NotFoundError):
            service.start("s1", "K", goal_id="missing")

    def test_goal_without_nodes(self, repo, store, state_machine, bus):
        repo.put_goal(LearningGoal(id="goal-2", name="Empty"))
        service = _service(repo, store, state_machine, bus)
        with pytest.raises(ValueError):
            service.start("s1", "K", goal_id="goal-2")
