"""Dependency descriptors and their parser."""

from hotloader.dependency.models import (
    Dependency,
    DependencyScope,
    FileDependency,
    UnitDependency,
)
from hotloader.dependency.parser import DependencyParser

__all__ = [
    "Dependency",
    "DependencyScope",
    "FileDependency",
    "UnitDependency",
    "DependencyParser",
]
