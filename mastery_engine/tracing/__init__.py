"""Knowledge tracing: per-student, per-node mastery probability."""

from mastery_engine.tracing.bkt import (
    ADVANCE_THRESHOLD,
    BKTParams,
    KnowledgeTracer,
    level_for,
    posterior,
)

__all__ = [
    "ADVANCE_THRESHOLD",
    "BKTParams",
    "KnowledgeTracer",
    "level_for",
    "posterior",
]
