"""Error taxonomy for unit lifecycle operations.

Every reportable error names the offending unit. Bulk registry operations
pass these to a sink instead of raising them.
"""

from enum import Enum


class UnitError(Exception):
    """Base class for all errors that concern a single unit."""

    def __init__(self, unit_name: str | None, message: str):
        self.unit_name = unit_name
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        if self.unit_name is None:
            return self.message
        return f"[{self.unit_name}] {self.message}"


class ConfigurationError(UnitError):
    """Raised when a dependency descriptor is malformed."""


class CompileError(UnitError):
    """Raised when a unit cannot be compiled."""


class LoadFailureKind(str, Enum):
    """Why a load attempt failed."""

    GENERIC = "generic"
    DISABLED = "disabled"
    NOT_COMPILED = "not_compiled"
    DESCRIPTOR = "descriptor"
    DEPENDENCY_NOT_LOADED = "dependency_not_loaded"
    MISSING_FILE_DEPENDENCY = "missing_file_dependency"
    INCOMPATIBLE_BINARY = "incompatible_binary"
    MODULE_INIT_FAILED = "module_init_failed"
    NO_EXTENSION = "no_extension"
    MULTIPLE_EXTENSIONS = "multiple_extensions"
    INSTANTIATION_FAILED = "instantiation_failed"
    LIKELY_STALE_BINARIES = "likely_stale_binaries"
    LIKELY_MISSING_DEPENDENCY = "likely_missing_dependency"
    VERSION_FAILED = "version_failed"
    LISTENER_FAILED = "listener_failed"
    HOOK_FAILED = "hook_failed"
    BLOCKED = "blocked"


class LoadError(UnitError):
    """Raised when a unit cannot be loaded."""

    def __init__(
        self,
        unit_name: str | None,
        message: str,
        kind: LoadFailureKind = LoadFailureKind.GENERIC,
    ):
        self.kind = kind
        super().__init__(unit_name, message)


class UnloadError(UnitError):
    """Raised or reported when unload hooks or namespace release fail."""


class OrderingViolation(UnitError):
    """Raised when an operation would break dependency order of loaded units."""

    def __init__(self, unit_name: str, message: str, dependents: list[str]):
        self.dependents = dependents
        super().__init__(unit_name, message)


class StructuralError(UnitError):
    """Raised or reported for dependency cycles and self-dependencies."""

    def __init__(self, unit_name: str | None, message: str, cycle: list[str] | None = None):
        self.cycle = cycle or []
        super().__init__(unit_name, message)


class NamespaceClosedError(ImportError):
    """Raised by a released unit namespace on any further lookup."""
