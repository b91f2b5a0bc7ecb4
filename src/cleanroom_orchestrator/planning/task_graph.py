"""Deterministic dependency graph over backlog task identifiers."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence, Set
from heapq import heapify, heappop, heappush

from cleanroom_orchestrator.domain.errors import DependencyCycleError


class TaskGraph:
    """Directed ``dependency -> dependent`` graph with deterministic traversal."""

    __slots__ = ("_nodes", "_dependents", "_dependencies")

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._nodes: set[str] = set()
        self._dependents: dict[str, set[str]] = {}
        self._dependencies: dict[str, set[str]] = {}

        for task_id in nodes or ():
            self.add_node(task_id)
        for dependency, dependent in edges or ():
            self.add_edge(dependency, dependent)

    @property
    def nodes(self) -> tuple[str, ...]:
        return tuple(sorted(self._nodes))

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._nodes

    def add_node(self, task_id: str) -> None:
        if not task_id:
            raise ValueError("Task ID must be non-empty.")
        if task_id in self._nodes:
            return
        self._nodes.add(task_id)
        self._dependents[task_id] = set()
        self._dependencies[task_id] = set()

    def add_edge(self, dependency: str, dependent: str) -> None:
        """Record that ``dependent`` cannot start before ``dependency`` completes."""
        self.add_node(dependency)
        self.add_node(dependent)
        self._dependents[dependency].add(dependent)
        self._dependencies[dependent].add(dependency)

    def get_dependencies(self, task_id: str) -> tuple[str, ...]:
        self._assert_known(task_id)
        return tuple(sorted(self._dependencies[task_id]))

    def get_dependents(self, task_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        """Direct dependents, or every task reachable downstream of ``task_id``."""
        self._assert_known(task_id)
        if not transitive:
            return tuple(sorted(self._dependents[task_id]))

        reached: set[str] = set()
        pending = list(self._dependents[task_id])
        while pending:
            current = pending.pop()
            if current in reached:
                continue
            reached.add(current)
            pending.extend(self._dependents[current] - reached)
        reached.discard(task_id)
        return tuple(sorted(reached))

    def get_runnable(self, completed: Set[str]) -> tuple[str, ...]:
        """Tasks not yet completed whose dependencies all appear in ``completed``."""
        return tuple(
            task_id
            for task_id in sorted(self._nodes)
            if task_id not in completed and self._dependencies[task_id] <= completed
        )

    def topological_sort(self) -> tuple[str, ...]:
        """Kahn ordering with lexicographic tie-breaks; raises on cycles."""
        indegree = {task_id: len(self._dependencies[task_id]) for task_id in self._nodes}
        ready = [task_id for task_id, degree in indegree.items() if degree == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            task_id = heappop(ready)
            order.append(task_id)
            for dependent in self._dependents[task_id]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heappush(ready, dependent)

        if len(order) != len(self._nodes):
            raise DependencyCycleError(self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Find directed cycles.

        Each cycle is reported once as a closed path rotated to start at its
        smallest identifier, e.g. ``("T01", "T02", "T01")``.
        """
        visiting: set[str] = set()
        finished: set[str] = set()
        path: list[str] = []
        found: dict[tuple[str, ...], None] = {}

        for start in sorted(self._nodes):
            if start in finished:
                continue
            visiting.add(start)
            path.append(start)
            frames: list[tuple[str, Iterator[str]]] = [
                (start, iter(sorted(self._dependents[start])))
            ]

            while frames:
                task_id, children = frames[-1]
                child = next(children, None)
                if child is None:
                    frames.pop()
                    visiting.discard(task_id)
                    finished.add(task_id)
                    path.pop()
                    continue
                if child in visiting:
                    loop = path[path.index(child):] + [child]
                    found[_rotate_cycle(loop)] = None
                elif child not in finished:
                    visiting.add(child)
                    path.append(child)
                    frames.append((child, iter(sorted(self._dependents[child]))))

        return tuple(sorted(found))

    def _assert_known(self, task_id: str) -> None:
        if task_id not in self._nodes:
            raise KeyError(f"Unknown task: {task_id}")


def _rotate_cycle(loop: Sequence[str]) -> tuple[str, ...]:
    core = tuple(loop[:-1])
    pivot = core.index(min(core))
    rotated = core[pivot:] + core[:pivot]
    return rotated + (rotated[0],)


__all__ = ["TaskGraph"]
