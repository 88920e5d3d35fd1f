"""
Knowledge graph over KnowledgeNode definitions.

Validates that every prerequisite/successor edge references a known node
and that the prerequisite relation is acyclic.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable

from loguru import logger

from mastery_engine.core.errors import GraphCycleError, NotFoundError
from mastery_engine.core.models import KnowledgeNode


class KnowledgeGraph:
    """Prerequisite DAG with successor lookup and topological ordering."""

    def __init__(self, nodes: Iterable[KnowledgeNode]):
        self._nodes: dict[str, KnowledgeNode] = {}
        for node in nodes:
            if node.code in self._nodes:
                raise ValueError(f"Duplicate node code: {node.code}")
            self._nodes[node.code] = node

        self._successors: dict[str, list[str]] = defaultdict(list)
        for node in self._nodes.values():
            for prereq in node.prerequisites:
                if prereq not in self._nodes:
                    raise NotFoundError("KnowledgeNode", prereq)
                self._add_successor(prereq, node.code)
            for succ in node.successors:
                if succ not in self._nodes:
                    raise NotFoundError("KnowledgeNode", succ)
                self._add_successor(node.code, succ)

        self._order = self._compute_topological_order()
        logger.debug(f"Knowledge graph loaded: {len(self._nodes)} nodes")

    def _add_successor(self, parent: str, child: str) -> None:
        if child not in self._successors[parent]:
            self._successors[parent].append(child)

    def _sort_key(self, code: str) -> tuple[int, int, str]:
        node = self._nodes[code]
        return (node.grade_number, node.difficulty, node.code)

    def _compute_topological_order(self) -> list[str]:
        # Kahn's algorithm over successor edges; ties broken by grade, difficulty, code
        indegree = {code: 0 for code in self._nodes}
        for children in self._successors.values():
            for child in children:
                indegree[child] += 1

        ready = sorted((c for c, d in indegree.items() if d == 0), key=self._sort_key)
        queue = deque(ready)
        order: list[str] = []
        while queue:
            code = queue.popleft()
            order.append(code)
            released = []
            for child in self._successors.get(code, []):
                indegree[child] -= 1
                if indegree[child] == 0:
                    released.append(child)
            if released:
                queue = deque(sorted([*queue, *released], key=self._sort_key))

        if len(order) != len(self._nodes):
            raise GraphCycleError([c for c, d in indegree.items() if d > 0])
        return order

    def __contains__(self, code: object) -> bool:
        return code in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return (self._nodes[code] for code in self._order)

    def node(self, code: str) -> KnowledgeNode:
        try:
            return self._nodes[code]
        except KeyError:
            raise NotFoundError("KnowledgeNode", code) from None

    def prerequisites(self, code: str) -> list[KnowledgeNode]:
        return [self._nodes[p] for p in self.node(code).prerequisites]

    def successors(self, code: str) -> list[KnowledgeNode]:
        """Declared successors plus nodes that list ``code`` as a prerequisite."""
        self.node(code)
        return [self._nodes[c] for c in sorted(self._successors.get(code, []), key=self._sort_key)]

    def topological_order(self) -> list[KnowledgeNode]:
        return [self._nodes[code] for code in self._order]

    def prerequisite_chain(self, code: str) -> list[KnowledgeNode]:
        """All ancestors of ``code`` plus the node itself, in topological order."""
        seen = {code}
        stack = [code]
        while stack:
            current = stack.pop()
            for prereq in self.node(current).prerequisites:
                if prereq not in seen:
                    seen.add(prereq)
                    stack.append(prereq)
        return [self._nodes[c] for c in self._order if c in seen]
