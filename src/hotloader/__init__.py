"""Recompile, hot-load and hot-unload independently versioned source units."""

__version__ = "0.1.0"

from hotloader.config import RegistryConfig  # noqa: E402
from hotloader.exceptions import (  # noqa: E402
    CompileError,
    ConfigurationError,
    LoadError,
    LoadFailureKind,
    NamespaceClosedError,
    OrderingViolation,
    StructuralError,
    UnitError,
    UnloadError,
)
from hotloader.registry import (  # noqa: E402
    CollectingFeedback,
    DependentsHandling,
    FeedbackSink,
    UnitRegistry,
)
from hotloader.unit import Unit, UnitExtension, UnitStateListener, UnloadMethod  # noqa: E402

__all__ = [
    "CollectingFeedback",
    "CompileError",
    "ConfigurationError",
    "DependentsHandling",
    "FeedbackSink",
    "LoadError",
    "LoadFailureKind",
    "NamespaceClosedError",
    "OrderingViolation",
    "RegistryConfig",
    "StructuralError",
    "Unit",
    "UnitError",
    "UnitExtension",
    "UnitRegistry",
    "UnitStateListener",
    "UnloadError",
    "UnloadMethod",
    "__version__",
]
