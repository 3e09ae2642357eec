"""The extension point every unit's main class implements."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hotloader.registry.manager import UnitRegistry
    from hotloader.unit.unit import Unit


class UnitExtension(ABC):
    """Base class for the single main class of a unit.

    Exactly one concrete subclass must be defined in a unit's modules. It is
    instantiated without arguments on every load.

    Example:
        class Greeter(UnitExtension):
            @property
            def version(self) -> str:
                return "1.0.0"

            def on_load(self) -> None:
                print(f"hello from {self.name}")
    """

    _unit: "Unit | None" = None

    def initialize(self, unit: "Unit") -> None:
        """Bind this instance to its unit. Called once by the loader."""
        if self._unit is not None:
            raise RuntimeError("initialize() may not be called more than once")
        self._unit = unit

    @property
    def unit(self) -> "Unit":
        if self._unit is None:
            raise RuntimeError("Extension has not been initialized")
        return self._unit

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def unit_dir(self) -> Path:
        return self.unit.unit_dir

    @property
    def registry(self) -> "UnitRegistry":
        return self.unit.registry

    @property
    def is_loaded(self) -> bool:
        return self.unit.is_loaded

    @property
    @abstractmethod
    def version(self) -> str:
        """Version string reported by the unit."""
        ...

    def on_load(self) -> None:
        """Called after the unit has been loaded."""

    def on_unload(self) -> None:
        """Called when the unit is being unloaded."""
