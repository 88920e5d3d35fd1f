"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mastery_engine.core.models import KnowledgeNode  # noqa: E402
from mastery_engine.events.bus import EventBus  # noqa: E402
from mastery_engine.persistence.memory import InMemoryRepository  # noqa: E402
from mastery_engine.persistence.repository import seed_nodes  # noqa: E402
from mastery_engine.persistence.sql import SqlRepository  # noqa: E402
from mastery_engine.session.mastery_gate import GateConfig, MasteryGate  # noqa: E402
from mastery_engine.session.state_machine import SessionStateMachine  # noqa: E402
from mastery_engine.tracing.bkt import BKTParams, KnowledgeTracer  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (repository-backed flows)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed evaluation time."""
    return datetime(2025, 3, 10, 15, 0, tzinfo=UTC)


@pytest.fixture
def chain_nodes():
    """Three-node prerequisite chain: ADD.1 -> ADD.2 -> ADD.3."""
    return [
        KnowledgeNode(code="ADD.1", title="Add within 5", grade_level="K", difficulty=1),
        KnowledgeNode(
            code="ADD.2", title="Add within 10", grade_level="K", difficulty=2, prerequisites=("ADD.1",)
        ),
        KnowledgeNode(
            code="ADD.3", title="Add within 20", grade_level="G1", difficulty=3, prerequisites=("ADD.2",)
        ),
    ]


@pytest.fixture
def repo(chain_nodes):
    """In-memory repository seeded with the chain."""
    repository = InMemoryRepository()
    seed_nodes(repository, chain_nodes)
    return repository


@pytest.fixture
def sql_repo(chain_nodes):
    """SQLite in-memory repository seeded with the chain."""
    repository = SqlRepository("sqlite:///:memory:")
    repository.init_db()
    seed_nodes(repository, chain_nodes)
    yield repository
    repository.engine.dispose()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def tracer():
    return KnowledgeTracer(BKTParams())


@pytest.fixture
def gate():
    return MasteryGate(GateConfig())


@pytest.fixture
def state_machine(bus):
    return SessionStateMachine(bus, max_session_seconds=7200)
