"""
Persistence adapters.

- Repository: the key-addressed storage contract
- InMemoryRepository: thread-safe reference implementation
- SqlRepository: SQLAlchemy implementation (tables in persistence.tables)
"""

from mastery_engine.persistence.memory import InMemoryRepository
from mastery_engine.persistence.repository import MasteryMutator, Repository, seed_nodes
from mastery_engine.persistence.sql import SqlRepository, build_engine

__all__ = [
    "InMemoryRepository",
    "MasteryMutator",
    "Repository",
    "SqlRepository",
    "build_engine",
    "seed_nodes",
]
