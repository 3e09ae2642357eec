"""Units, their extension point and their module namespaces."""

from hotloader.unit.extension import UnitExtension
from hotloader.unit.listener import LoggingStateListener, UnitStateListener
from hotloader.unit.namespace import (
    IncompatibleBinaryError,
    MappingResolver,
    ModuleResolver,
    UnitNamespace,
)
from hotloader.unit.unit import Unit, UnloadErrorHandler, UnloadMethod

__all__ = [
    "IncompatibleBinaryError",
    "LoggingStateListener",
    "MappingResolver",
    "ModuleResolver",
    "Unit",
    "UnitExtension",
    "UnitNamespace",
    "UnitStateListener",
    "UnloadErrorHandler",
    "UnloadMethod",
]
