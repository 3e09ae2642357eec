"""Directed dependency graph with cycle-aware traversals.

An edge ``u -> v`` means "u depends on v". Nodes are stored in two arenas
keyed by the node value itself (``dependencies`` and ``dependents``); edges
are ordered key sets, so no node object ever references another.

Traversals:
- Dependency-first: every node is yielded after all of its dependencies.
- Dependent-first: every node is yielded before all of its dependencies.

Both skip cycle members and everything hanging off a cycle without notice.
Use ``find_cycles()`` first when those need to be reported.
"""

import logging
from collections import deque
from collections.abc import Hashable, Iterable, Iterator
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


class DependencyGraph(Generic[T]):
    """Directed graph over hashable node values."""

    def __init__(self, nodes: Iterable[T] | None = None):
        self._dependencies: dict[T, dict[T, None]] = {}
        self._dependents: dict[T, dict[T, None]] = {}
        if nodes is not None:
            for node in nodes:
                self.add_node(node)

    def add_node(self, node: T) -> bool:
        """Add a node. Returns False if it was already present."""
        if node in self._dependencies:
            return False
        self._dependencies[node] = {}
        self._dependents[node] = {}
        return True

    def remove_node(self, node: T) -> bool:
        """Remove a node and every edge from or to it."""
        if node not in self._dependencies:
            return False
        for dependency in self._dependencies.pop(node):
            if dependency != node:
                self._dependents[dependency].pop(node, None)
        for dependent in self._dependents.pop(node):
            if dependent != node:
                self._dependencies[dependent].pop(node, None)
        return True

    @property
    def nodes(self) -> list[T]:
        return list(self._dependencies)

    def __len__(self) -> int:
        return len(self._dependencies)

    def __contains__(self, node: object) -> bool:
        return node in self._dependencies

    def __iter__(self) -> Iterator[T]:
        return iter(self.dependency_first())

    def add_edge(self, node: T, dependency: T) -> bool:
        """Declare that ``node`` depends on ``dependency``.

        Returns False if either node is missing or the edge already exists.
        """
        if node not in self._dependencies or dependency not in self._dependencies:
            return False
        if dependency in self._dependencies[node]:
            return False
        self._dependencies[node][dependency] = None
        self._dependents[dependency][node] = None
        return True

    def remove_edge(self, node: T, dependency: T) -> bool:
        if not self.has_edge(node, dependency):
            return False
        del self._dependencies[node][dependency]
        del self._dependents[dependency][node]
        return True

    def has_edge(self, node: T, dependency: T) -> bool:
        return node in self._dependencies and dependency in self._dependencies[node]

    def direct_dependencies(self, node: T) -> list[T]:
        self._require(node)
        return list(self._dependencies[node])

    def direct_dependents(self, node: T) -> list[T]:
        self._require(node)
        return list(self._dependents[node])

    def transitive_dependents(self, node: T) -> set[T]:
        """All nodes that directly or indirectly depend on ``node`` (excluding itself)."""
        return self._reachable(node, self._dependents)

    def transitive_dependencies(self, node: T) -> set[T]:
        """All nodes ``node`` directly or indirectly depends on (excluding itself)."""
        return self._reachable(node, self._dependencies)

    def subgraph(self, nodes: Iterable[T]) -> "DependencyGraph[T]":
        """Return the graph induced by ``nodes``."""
        keep = [node for node in nodes if node in self._dependencies]
        graph: DependencyGraph[T] = DependencyGraph(keep)
        for node in keep:
            for dependency in self._dependencies[node]:
                graph.add_edge(node, dependency)
        return graph

    def copy(self) -> "DependencyGraph[T]":
        return self.subgraph(self._dependencies)

    def dependency_first(self, start: T | None = None) -> "DependencyFirstTraversal[T]":
        """Iterate dependencies before their dependents.

        Args:
            start: Optional node to start from instead of all dependency-free nodes.
        """
        if start is not None:
            self._require(start)
        return DependencyFirstTraversal(self, start)

    def dependent_first(self, start: T | None = None) -> "DependentFirstTraversal[T]":
        """Iterate dependents before their dependencies."""
        if start is not None:
            self._require(start)
        return DependentFirstTraversal(self, start)

    def strongly_connected_components(self) -> list[set[T]]:
        """Compute strongly connected components (Kosaraju).

        The first pass records a depth-first finishing order over dependency
        edges. The second pass walks dependent edges (the transpose) in reverse
        finishing order; every unvisited root collects one component.
        A node without edges forms a singleton component.
        """
        finished: list[T] = []
        visited: set[T] = set()
        for root in self._dependencies:
            if root in visited:
                continue
            visited.add(root)
            stack: list[tuple[T, Iterator[T]]] = [(root, iter(self._dependencies[root]))]
            while stack:
                node, children = stack[-1]
                for child in children:
                    if child not in visited:
                        visited.add(child)
                        stack.append((child, iter(self._dependencies[child])))
                        break
                else:
                    stack.pop()
                    finished.append(node)

        components: list[set[T]] = []
        assigned: set[T] = set()
        for root in reversed(finished):
            if root in assigned:
                continue
            component: set[T] = set()
            pending = [root]
            while pending:
                node = pending.pop()
                if node in assigned:
                    continue
                assigned.add(node)
                component.add(node)
                pending.extend(d for d in self._dependents[node] if d not in assigned)
            components.append(component)
        return components

    def find_cycles(self) -> list[set[T]]:
        """Return components that are genuine cycles.

        A singleton component only counts when its node depends on itself.
        """
        cycles = []
        for component in self.strongly_connected_components():
            if len(component) > 1:
                cycles.append(component)
            else:
                (node,) = component
                if self.has_edge(node, node):
                    cycles.append(component)
        return cycles

    def _reachable(self, node: T, edges: dict[T, dict[T, None]]) -> set[T]:
        self._require(node)
        seen: set[T] = set()
        pending = list(edges[node])
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(n for n in edges[current] if n not in seen)
        seen.discard(node)
        return seen

    def _require(self, node: T) -> None:
        if node not in self._dependencies:
            raise ValueError(f"Node is not part of the graph: {node!r}")


class _Traversal(Generic[T]):
    """Breadth-first-like traversal that waits for all blockers of a node.

    ``_forward`` are the edges followed after yielding a node, ``_blockers``
    the edges that must all have been yielded before a node becomes eligible.
    """

    def __init__(
        self,
        graph: DependencyGraph[T],
        start: T | None,
        forward: dict[T, dict[T, None]],
        blockers: dict[T, dict[T, None]],
        excluded: set[T] | None = None,
    ):
        self._graph = graph
        self._forward = forward
        self._blockers = blockers
        self._excluded = excluded or set()
        self._queue: deque[T] = deque()
        self._queued: set[T] = set()
        self._visited: set[T] = set()
        self._last: T | None = None
        self._has_last = False

        if start is not None:
            if start not in self._excluded:
                self._enqueue(start)
        else:
            for node, blocking in blockers.items():
                if not blocking and node not in self._excluded:
                    self._enqueue(node)

    def __iter__(self) -> "_Traversal[T]":
        return self

    def __next__(self) -> T:
        if not self._queue:
            raise StopIteration
        node = self._queue.popleft()
        self._queued.discard(node)
        self._visited.add(node)

        for candidate in self._forward.get(node, {}):
            if candidate in self._visited or candidate in self._queued or candidate in self._excluded:
                continue
            if all(b in self._visited for b in self._blockers[candidate]):
                self._enqueue(candidate)

        self._last = node
        self._has_last = True
        return node

    def _enqueue(self, node: T) -> None:
        self._queue.append(node)
        self._queued.add(node)

    def _remove_reachable(self) -> list[T] | None:
        """Remove the last yielded node and everything reachable forward from it."""
        if not self._has_last:
            return None
        last = self._last
        self._visited.discard(last)

        # Snapshot reachability before mutating the graph.
        order: list[T] = []
        seen: set[T] = {last}
        pending: deque[T] = deque([last])
        while pending:
            node = pending.popleft()
            order.append(node)
            for nxt in self._forward.get(node, {}):
                if nxt not in seen:
                    seen.add(nxt)
                    pending.append(nxt)

        for node in order:
            self._graph.remove_node(node)
            self._visited.discard(node)
        if self._queued & seen:
            self._queue = deque(n for n in self._queue if n not in seen)
            self._queued -= seen

        self._has_last = False
        self._last = None
        logger.debug(f"Traversal cut off {len(order)} node(s)")
        return order


class DependencyFirstTraversal(_Traversal[T]):
    """Yields every node strictly after all of its dependencies."""

    def __init__(self, graph: DependencyGraph[T], start: T | None = None):
        super().__init__(graph, start, graph._dependents, graph._dependencies)

    def remove_dependents(self) -> list[T] | None:
        """Remove the last yielded node and all its direct and indirect dependents.

        Returns:
            Removed nodes in breadth-first order, the last yielded node first,
            or None if nothing has been yielded since the last removal.
        """
        return self._remove_reachable()


class DependentFirstTraversal(_Traversal[T]):
    """Yields every node strictly before all of its dependencies.

    Nodes depending on a cycle have no dependents in a cycle to wait for, so
    they are excluded up front to keep both traversals skipping the same nodes.
    """

    def __init__(self, graph: DependencyGraph[T], start: T | None = None):
        excluded: set[T] = set()
        for cycle in graph.find_cycles():
            for member in cycle:
                excluded.add(member)
                excluded |= graph.transitive_dependents(member)
        super().__init__(graph, start, graph._dependencies, graph._dependents, excluded)

    def remove_dependencies(self) -> list[T] | None:
        """Remove the last yielded node and all its direct and indirect dependencies."""
        return self._remove_reachable()
