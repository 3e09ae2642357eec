"""Result and reporting types returned by registry operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from hotloader.unit.unit import Unit


class DependentsHandling(str, Enum):
    """How ``recompile`` treats loaded units that depend on the target."""

    NONE = "none"  # refuse if any are loaded
    RELOAD = "reload"  # unload and reload them with their current binaries
    RECOMPILE = "recompile"  # recompile them too


@dataclass
class LoadAllResult:
    """Outcome of ``UnitRegistry.load_all``."""

    loaded: set["Unit"] = field(default_factory=set)
    errored: set["Unit"] = field(default_factory=set)


@dataclass
class RecompileAllResult:
    """Outcome of ``UnitRegistry.recompile_all``.

    A unit whose compile failed but whose previous binaries loaded is in
    both ``loaded`` and ``errored``.
    """

    added: set["Unit"] = field(default_factory=set)
    removed: set["Unit"] = field(default_factory=set)
    compiled: set["Unit"] = field(default_factory=set)
    unloaded: set["Unit"] = field(default_factory=set)
    loaded: set["Unit"] = field(default_factory=set)
    errored: set["Unit"] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.errored


class UnitSnapshot(BaseModel):
    """Point-in-time view of one unit, for display and JSON output."""

    name: str
    loaded: bool = False
    disabled: bool = False
    compiled: bool = False
    version: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    descriptor_error: str | None = None
