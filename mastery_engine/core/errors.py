"""
Engine error taxonomy.

- EngineError: base for everything the engine raises deliberately
- InvalidTransitionError: state machine asked for a disallowed move
- NotFoundError: node/session/mastery record absent
- ContentValidationError: malformed collaborator content (always replaced by a fallback)
- GateEvaluationError: Mastery Gate internals failed (always resolves to Practice)
- GraphCycleError: prerequisite relation is not a DAG
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for mastery engine errors."""


class InvalidTransitionError(EngineError):
    """Raised when a session is asked to move to a state the table forbids."""

    def __init__(self, from_state: Any, to_state: Any, event: str | None = None, allowed: Any = ()):
        self.from_state = getattr(from_state, "value", from_state)
        self.to_state = getattr(to_state, "value", to_state)
        self.event = event
        self.allowed = [getattr(s, "value", s) for s in allowed]
        allowed_text = ", ".join(self.allowed) or "none"
        super().__init__(
            f"Invalid transition: {self.from_state} -> {self.to_state}"
            f" (event={event!r}, allowed: {allowed_text})"
        )


class NotFoundError(EngineError):
    """Raised when a referenced record does not exist."""

    def __init__(self, kind: str, key: Any):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ContentValidationError(EngineError):
    """Content returned by a provider failed shape validation."""


class GateEvaluationError(EngineError):
    """Mastery Gate could not evaluate its signals."""


class GraphCycleError(EngineError):
    """The prerequisite graph contains a cycle."""

    def __init__(self, cycle_nodes: list[str]):
        self.cycle_nodes = cycle_nodes
        super().__init__(f"Prerequisite cycle detected among: {', '.join(sorted(cycle_nodes))}")

