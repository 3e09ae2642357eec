"""Dependency descriptors for units."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class DependencyScope(str, Enum):
    """When a dependency's artifact has to be present.

    PROVIDED: compile time only; the runtime supplies it (e.g. another
    unit's live namespace).
    INCLUDE: compile time and load time; the unit's namespace resolves
    modules from the artifact itself.
    """

    INCLUDE = "include"
    PROVIDED = "provided"


class Dependency(ABC):
    """A single entry of a unit's dependency descriptor."""

    @property
    @abstractmethod
    def scope(self) -> DependencyScope: ...


@dataclass(frozen=True)
class FileDependency(Dependency):
    """A dependency on a zip archive of modules on disk."""

    path: Path
    scope: DependencyScope = DependencyScope.INCLUDE

    def exists(self) -> bool:
        return self.path.is_file()

    def __str__(self) -> str:
        return f"zip -{self.scope.value} {self.path}"


@dataclass(frozen=True)
class UnitDependency(Dependency):
    """A dependency on another unit managed by the same registry.

    Always PROVIDED: satisfied by the target's live namespace, never by
    copying files.
    """

    unit_name: str

    @property
    def scope(self) -> DependencyScope:
        return DependencyScope.PROVIDED

    def __str__(self) -> str:
        return f"project {self.unit_name}"
