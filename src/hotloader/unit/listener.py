"""Listener notified around unit loads and unloads."""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hotloader.unit.unit import Unit

logger = logging.getLogger(__name__)


class UnitStateListener(ABC):
    """Host hook wired into every unit it is given to.

    ``on_load`` runs after the extension was instantiated and versioned but
    before its own ``on_load``; raising ``LoadError`` aborts the load.
    ``on_unload`` runs before the extension's ``on_unload``; errors are
    reported to the unload error handler and do not stop the unload.
    """

    @abstractmethod
    def on_load(self, unit: "Unit") -> None: ...

    @abstractmethod
    def on_unload(self, unit: "Unit") -> None: ...


class LoggingStateListener(UnitStateListener):
    """Listener that only logs state changes."""

    def on_load(self, unit: "Unit") -> None:
        logger.info(f"Unit {unit.name} {unit.version} is loading")

    def on_unload(self, unit: "Unit") -> None:
        logger.info(f"Unit {unit.name} is unloading")
