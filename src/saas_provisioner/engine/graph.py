"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from saas_provisioner.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Edges to nodes outside the graph are dropped, so a resource whose
    dependency lives in another scope (or was never recorded) is unconstrained.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes and d != node}

    def _order(self, edges: Mapping[str, set[str]], *, descending: bool) -> list[str]:
        indegree: dict[str, int] = dict.fromkeys(self._nodes, 0)
        dependents: dict[str, set[str]] = {n: set() for n in self._nodes}

        for node, deps in edges.items():
            indegree[node] = len(deps)
            for dep in deps:
                dependents[dep].add(node)

        sign = -1 if descending else 1

        def key(n: str) -> tuple[int, str]:
            return (sign * self._priorities.get(n, 0), n)

        ready = [key(n) for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, key(child))

        if len(order) != len(self._nodes):
            remaining = sorted(self._nodes - set(order))
            raise DependencyCycleError(remaining)

        return order

    def topological_order(self) -> list[str]:
        """Dependencies first; ties broken by lowest priority, then name."""
        return self._order(self._deps, descending=False)

    def teardown_order(self) -> list[str]:
        """Dependents first; ties broken by highest priority, then name.

        With creation sequence as the priority this deletes the most recently
        created resource first wherever dependencies leave a choice.
        """
        inverted: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                inverted[dep].add(node)
        return self._order(inverted, descending=True)
