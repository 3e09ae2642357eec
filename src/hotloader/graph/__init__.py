"""Generic dependency graph with cycle-aware traversal."""

from hotloader.graph.dependency_graph import (
    DependencyFirstTraversal,
    DependencyGraph,
    DependentFirstTraversal,
)

__all__ = [
    "DependencyGraph",
    "DependencyFirstTraversal",
    "DependentFirstTraversal",
]
