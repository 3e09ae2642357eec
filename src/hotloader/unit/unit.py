"""A single hot-loadable unit: its directories, compile step and load state."""

import inspect
import logging
import shutil
import sys
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING

import hotloader
from hotloader.compiler.interface import FeedbackHandler
from hotloader.dependency.models import Dependency, DependencyScope, FileDependency, UnitDependency
from hotloader.exceptions import (
    CompileError,
    ConfigurationError,
    LoadError,
    LoadFailureKind,
    UnloadError,
)
from hotloader.unit.extension import UnitExtension
from hotloader.unit.listener import UnitStateListener
from hotloader.unit.namespace import IncompatibleBinaryError, UnitNamespace

if TYPE_CHECKING:
    from hotloader.registry.manager import UnitRegistry

logger = logging.getLogger(__name__)

UnloadErrorHandler = Callable[[UnloadError], None]


class UnloadMethod(str, Enum):
    """What to do with loaded dependents when a unit is unloaded."""

    FAIL_IF_LOADED_DEPENDENTS = "fail_if_loaded_dependents"
    UNLOAD_DEPENDENTS = "unload_dependents"
    IGNORE_DEPENDENTS = "ignore_dependents"


def _log_unload_error(error: UnloadError) -> None:
    logger.error(f"Error while unloading: {error}", exc_info=error.__cause__)


def _core_location() -> Path:
    """Directory that makes the ``hotloader`` package importable."""
    return Path(hotloader.__file__).resolve().parent.parent


def _sanitize_dir_name(name: str) -> str:
    return name.replace("..", " ").replace("/", " ").replace("\\", " ")


def _requires_arguments(cls: type) -> bool:
    try:
        inspect.signature(cls).bind()
    except TypeError:
        return True
    except ValueError:
        return False
    return False


class Unit:
    """One unit under a registry's units directory.

    Layout::

        <unit_dir>/src/**/*.py          sources
        <unit_dir>/src/.disabled        present when the unit is disabled
        <unit_dir>/dependencies.txt     live dependency descriptor
        <unit_dir>/bin/**/*.pyc         compiled binaries
        <unit_dir>/bin/dependencies.txt descriptor frozen at compile time
    """

    def __init__(
        self,
        name: str,
        unit_dir: Path,
        registry: "UnitRegistry",
        state_listener: UnitStateListener | None = None,
    ):
        self._name = name
        self._unit_dir = Path(unit_dir).absolute()
        self._registry = registry
        self.state_listener = state_listener

        config = registry.config
        self._source_dir = self._unit_dir / config.source_dir_name
        self._bin_dir = self._unit_dir / config.bin_dir_name
        self._disabled = self.disabled_marker.exists()

        self._loaded = False
        self._namespace: UnitNamespace | None = None
        self._extension: UnitExtension | None = None
        self._version: str | None = None
        self._dependencies: list[Dependency] | None = None

    def __repr__(self) -> str:
        return f"Unit({self._name!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def unit_dir(self) -> Path:
        return self._unit_dir

    @property
    def source_dir(self) -> Path:
        return self._source_dir

    @property
    def bin_dir(self) -> Path:
        return self._bin_dir

    @property
    def registry(self) -> "UnitRegistry":
        return self._registry

    @property
    def descriptor_path(self) -> Path:
        return self._unit_dir / self._registry.config.descriptor_name

    @property
    def compiled_descriptor_path(self) -> Path:
        return self._bin_dir / self._registry.config.descriptor_name

    @property
    def disabled_marker(self) -> Path:
        return self._source_dir / self._registry.config.disabled_marker

    @property
    def is_disabled(self) -> bool:
        return self._disabled

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_compiled(self) -> bool:
        return self._bin_dir.is_dir()

    @property
    def version(self) -> str | None:
        return self._version

    @property
    def extension(self) -> UnitExtension | None:
        return self._extension

    @property
    def namespace(self) -> UnitNamespace | None:
        return self._namespace

    @property
    def dependencies(self) -> list[Dependency] | None:
        """Load-time dependencies, or None if they have not been read yet."""
        return None if self._dependencies is None else list(self._dependencies)

    def exists(self) -> bool:
        return self._unit_dir.is_dir()

    # --- directories -------------------------------------------------------

    def set_bin_dir_name(self, name: str) -> None:
        """Point the unit at a different binary directory inside its unit dir.

        A loaded unit keeps running from the namespace it was loaded with.
        """
        self._bin_dir = self._unit_dir / _sanitize_dir_name(name)

    def uses_bin_dir_name(self, name: str) -> bool:
        return self._bin_dir.name == name

    def set_disabled(self, disabled: bool) -> None:
        """Create or remove the disabled marker."""
        if disabled == self._disabled:
            return
        if disabled:
            if self._loaded:
                raise RuntimeError(f"Cannot disable loaded unit {self._name}")
            self.disabled_marker.parent.mkdir(parents=True, exist_ok=True)
            self.disabled_marker.touch()
        else:
            self.disabled_marker.unlink(missing_ok=True)
        self._disabled = disabled
        logger.info(f"Unit {self._name} {'disabled' if disabled else 'enabled'}")

    def clean(self) -> bool:
        """Delete the binary directory. Returns True if there was one."""
        if self._loaded:
            raise RuntimeError(f"Cannot clean loaded unit {self._name}")
        if not self._bin_dir.exists():
            return False
        shutil.rmtree(self._bin_dir)
        self._dependencies = None
        return True

    # --- descriptors -------------------------------------------------------

    def _read_descriptor(self, path: Path) -> list[Dependency]:
        if not path.is_file():
            return []
        text = path.read_text(encoding="utf-8")
        return self._registry.dependency_parser.parse(text, self._name, self._unit_dir)

    def source_dependencies(self) -> list[Dependency]:
        """Parse the live descriptor next to the sources.

        Raises:
            ConfigurationError: If the descriptor is malformed.
            OSError: If it cannot be read.
        """
        return self._read_descriptor(self.descriptor_path)

    def init_dependencies(self) -> list[Dependency]:
        """Read and cache the descriptor frozen into the binary directory.

        Raises:
            ConfigurationError: If it is malformed or unreadable.
        """
        if self._dependencies is None:
            try:
                self._dependencies = self._read_descriptor(self.compiled_descriptor_path)
            except ConfigurationError as e:
                raise ConfigurationError(
                    self._name,
                    f"Invalid dependency descriptor in compiled code. "
                    f"Recompile the unit to resolve this issue: {e.message}",
                ) from e
            except OSError as e:
                raise ConfigurationError(
                    self._name,
                    f"Unable to read dependency descriptor at {self.compiled_descriptor_path}: {e}",
                ) from e
        return list(self._dependencies)

    def reset_dependencies(self) -> None:
        """Forget the cached load-time dependencies."""
        if self._loaded:
            raise RuntimeError(f"Cannot reset dependencies of loaded unit {self._name}")
        self._dependencies = None

    def unit_dependency_names(self, use_source: bool = False) -> list[str]:
        dependencies = self.source_dependencies() if use_source else self.init_dependencies()
        return [d.unit_name for d in dependencies if isinstance(d, UnitDependency)]

    # --- compile -----------------------------------------------------------

    def _compile_classpath(self, dependencies: list[Dependency]) -> list[Path]:
        paths: list[Path] = []
        for dependency in dependencies:
            if isinstance(dependency, UnitDependency):
                target = self._registry.get_unit(dependency.unit_name)
                if target is None:
                    raise CompileError(self._name, f"Dependency unit not found: {dependency.unit_name}")
                if not target.bin_dir.is_dir():
                    raise CompileError(
                        self._name,
                        f"Dependency unit exists, but has not been compiled: {dependency.unit_name}",
                    )
                paths.append(target.bin_dir)
            elif isinstance(dependency, FileDependency):
                if not dependency.exists():
                    raise CompileError(self._name, f"Dependency file does not exist: {dependency.path}")
                paths.append(dependency.path)
            else:
                raise CompileError(
                    self._name, f"Unsupported dependency type: {type(dependency).__name__}"
                )
        return paths

    def compile(self, feedback: FeedbackHandler) -> None:
        """Compile the sources into the current binary directory.

        Args:
            feedback: Receives each compiler diagnostic as it is produced.

        Raises:
            CompileError: If anything prevents a successful compile.
        """
        if self._disabled:
            raise CompileError(self._name, "Unit is disabled.")

        try:
            dependencies = self.source_dependencies()
        except ConfigurationError as e:
            raise CompileError(self._name, e.message) from e
        except OSError as e:
            raise CompileError(self._name, f"Unable to read dependency descriptor: {e}") from e

        dependency_paths = self._compile_classpath(dependencies)

        sources = sorted(p for p in self._source_dir.rglob("*.py") if p.is_file()) if self._source_dir.is_dir() else []
        if not sources:
            raise CompileError(self._name, "No source files found.")

        try:
            if self._bin_dir.exists():
                shutil.rmtree(self._bin_dir)
            self._bin_dir.mkdir(parents=True)

            classpath = [Path(entry) for entry in sys.path if entry]
            classpath.append(_core_location())
            classpath.extend(dependency_paths)

            logger.info(f"Compiling unit {self._name} ({len(sources)} source files)")
            ok = self._registry.compiler.compile(sources, self._source_dir, self._bin_dir, classpath, feedback)
            if not ok:
                raise CompileError(self._name, "Compilation failed.")

            if self.descriptor_path.is_file():
                shutil.copyfile(self.descriptor_path, self.compiled_descriptor_path)
        except OSError as e:
            raise CompileError(self._name, f"An I/O error occurred while compiling: {e}") from e

    # --- load --------------------------------------------------------------

    def binary_module_names(self) -> list[str]:
        """Dotted names of every compiled module, in sorted path order."""
        names: list[str] = []
        for pyc in sorted(self._bin_dir.rglob("*.pyc")):
            parts = pyc.relative_to(self._bin_dir).with_suffix("").parts
            if parts[-1] == "__init__":
                parts = parts[:-1]
            if parts and all(part.isidentifier() for part in parts):
                names.append(".".join(parts))
        return names

    def _create_namespace(self, dependencies: list[Dependency]) -> UnitNamespace:
        archives: list[Path] = []
        namespaces: list[UnitNamespace] = []
        for dependency in dependencies:
            if isinstance(dependency, UnitDependency):
                target = self._registry.get_unit(dependency.unit_name)
                if target is None or not target.is_loaded or target.namespace is None:
                    raise LoadError(
                        self._name,
                        f"Dependency unit is not loaded: {dependency.unit_name}",
                        LoadFailureKind.DEPENDENCY_NOT_LOADED,
                    )
                namespaces.append(target.namespace)
            elif isinstance(dependency, FileDependency) and dependency.scope == DependencyScope.INCLUDE:
                if not dependency.exists():
                    raise LoadError(
                        self._name,
                        f"Dependency file does not exist: {dependency.path}",
                        LoadFailureKind.MISSING_FILE_DEPENDENCY,
                    )
                archives.append(dependency.path)
        return UnitNamespace(
            self._name,
            self._bin_dir,
            archives=archives,
            dependencies=namespaces,
            delegate=self._registry.platform_resolver,
        )

    def _import_module(self, namespace: UnitNamespace, module_name: str) -> ModuleType:
        try:
            return namespace.resolve(module_name)
        except IncompatibleBinaryError as e:
            raise LoadError(
                self._name,
                f"Module {module_name} was compiled by a different Python version. "
                f"Recompile the unit to resolve this issue.",
                LoadFailureKind.INCOMPATIBLE_BINARY,
            ) from e
        except ImportError as e:
            raise LoadError(
                self._name,
                f"Module {module_name} failed to import {e.name or 'a module'}: {e}. "
                f"Is a dependency missing from the descriptor?",
                LoadFailureKind.LIKELY_MISSING_DEPENDENCY,
            ) from e
        except Exception as e:
            raise LoadError(
                self._name,
                f"Module {module_name} raised {type(e).__name__} while initializing: {e}",
                LoadFailureKind.MODULE_INIT_FAILED,
            ) from e

    def _find_extension_type(self, namespace: UnitNamespace) -> type[UnitExtension]:
        found: list[type[UnitExtension]] = []
        for module_name in self.binary_module_names():
            module = self._import_module(namespace, module_name)
            for value in list(vars(module).values()):
                if (
                    isinstance(value, type)
                    and issubclass(value, UnitExtension)
                    and value.__module__ == module.__name__
                    and not inspect.isabstract(value)
                    and value not in found
                ):
                    found.append(value)

        if not found:
            raise LoadError(
                self._name,
                "No extension class found. Exactly one class must subclass UnitExtension.",
                LoadFailureKind.NO_EXTENSION,
            )
        if len(found) > 1:
            names = ", ".join(sorted(f"{cls.__module__}.{cls.__qualname__}" for cls in found))
            raise LoadError(
                self._name,
                f"Multiple extension classes found: {names}. Only one class may subclass UnitExtension.",
                LoadFailureKind.MULTIPLE_EXTENSIONS,
            )
        return found[0]

    def _instantiate(self, extension_type: type[UnitExtension]) -> UnitExtension:
        qualname = f"{extension_type.__module__}.{extension_type.__qualname__}"
        try:
            return extension_type()
        except TypeError as e:
            if not _requires_arguments(extension_type):
                raise LoadError(
                    self._name,
                    f"The constructor of {qualname} raised TypeError: {e}",
                    LoadFailureKind.INSTANTIATION_FAILED,
                ) from e
            raise LoadError(
                self._name,
                f"The extension class {qualname} could not be instantiated. "
                f"It needs a constructor that takes no arguments: {e}",
                LoadFailureKind.INSTANTIATION_FAILED,
            ) from e
        except ImportError as e:
            raise LoadError(
                self._name,
                f"The extension class {qualname} failed to import {e.name or 'a module'}: {e}. "
                f"Is a dependency missing from the descriptor?",
                LoadFailureKind.LIKELY_MISSING_DEPENDENCY,
            ) from e
        except (AttributeError, NameError) as e:
            raise LoadError(
                self._name,
                f"The extension class {qualname} referenced something that does not exist: {e}. "
                f"The binaries may be stale; recompile the unit.",
                LoadFailureKind.LIKELY_STALE_BINARIES,
            ) from e
        except Exception as e:
            raise LoadError(
                self._name,
                f"The constructor of {qualname} raised {type(e).__name__}: {e}",
                LoadFailureKind.INSTANTIATION_FAILED,
            ) from e

    def _read_version(self, extension: UnitExtension) -> str:
        try:
            return str(extension.version)
        except Exception as e:
            raise LoadError(
                self._name,
                f"Reading the version raised {type(e).__name__}: {e}",
                LoadFailureKind.VERSION_FAILED,
            ) from e

    def load(self) -> None:
        """Load the compiled unit and run its extension's ``on_load``.

        Does nothing if the unit is already loaded. On failure every partial
        effect is undone: the namespace is closed and the unit stays unloaded.

        Raises:
            LoadError: With a ``kind`` describing what went wrong.
        """
        if self._loaded:
            return
        if self._disabled:
            raise LoadError(self._name, "Unit is disabled.", LoadFailureKind.DISABLED)
        if not self._bin_dir.is_dir():
            raise LoadError(self._name, "Unit has not been compiled.", LoadFailureKind.NOT_COMPILED)

        try:
            dependencies = self.init_dependencies()
        except ConfigurationError as e:
            raise LoadError(self._name, e.message, LoadFailureKind.DESCRIPTOR) from e

        namespace = self._create_namespace(dependencies)
        listener_notified = False
        try:
            extension_type = self._find_extension_type(namespace)
            extension = self._instantiate(extension_type)
            extension.initialize(self)
            version = self._read_version(extension)

            self._namespace = namespace
            self._extension = extension
            self._version = version

            if self.state_listener is not None:
                try:
                    self.state_listener.on_load(self)
                except LoadError:
                    raise
                except Exception as e:
                    raise LoadError(
                        self._name,
                        f"The state listener's on_load() raised {type(e).__name__}: {e}",
                        LoadFailureKind.LISTENER_FAILED,
                    ) from e
                listener_notified = True

            try:
                extension.on_load()
            except Exception as e:
                raise LoadError(
                    self._name,
                    f"on_load() raised {type(e).__name__}: {e}",
                    LoadFailureKind.HOOK_FAILED,
                ) from e
        except LoadError:
            self._abandon_load(namespace, listener_notified)
            raise

        self._loaded = True
        logger.info(f"Loaded unit {self._name} {version}")

    def _abandon_load(self, namespace: UnitNamespace, listener_notified: bool) -> None:
        if listener_notified and self.state_listener is not None:
            try:
                self.state_listener.on_unload(self)
            except Exception:
                logger.exception(f"State listener failed while abandoning load of {self._name}")
        namespace.close()
        self._namespace = None
        self._extension = None
        self._version = None
        self._dependencies = None

    # --- unload ------------------------------------------------------------

    def unload(
        self,
        method: UnloadMethod = UnloadMethod.FAIL_IF_LOADED_DEPENDENTS,
        error_handler: UnloadErrorHandler | None = None,
    ) -> list["Unit"]:
        """Unload this unit.

        Args:
            method: How loaded dependents are treated.
            error_handler: Receives hook failures; they never stop the unload.

        Returns:
            Every unit that was unloaded, this one first. Empty if it was not loaded.

        Raises:
            UnloadError: If ``method`` forbids unloading with loaded dependents.
        """
        if not self._loaded:
            return []
        handler = error_handler or _log_unload_error

        unloaded: list[Unit] = [self]
        if method != UnloadMethod.IGNORE_DEPENDENTS:
            dependents = self._registry.loaded_dependents(self)
            if dependents and method == UnloadMethod.FAIL_IF_LOADED_DEPENDENTS:
                names = ", ".join(sorted(d.name for d in dependents))
                raise UnloadError(self._name, f"Unit has loaded dependents: {names}")
            for dependent in dependents:
                unloaded.extend(dependent.unload(method, handler))

        if self.state_listener is not None:
            try:
                self.state_listener.on_unload(self)
            except UnloadError as e:
                handler(e)
            except Exception as e:
                handler(self._unload_error(f"The state listener's on_unload() raised {type(e).__name__}: {e}", e))

        if self._extension is not None:
            try:
                self._extension.on_unload()
            except Exception as e:
                handler(self._unload_error(f"on_unload() raised {type(e).__name__}: {e}", e))

        if self._namespace is not None:
            try:
                self._namespace.close()
            except Exception as e:
                handler(self._unload_error(f"Closing the namespace raised {type(e).__name__}: {e}", e))

        self._namespace = None
        self._extension = None
        self._version = None
        self._dependencies = None
        self._loaded = False
        logger.info(f"Unloaded unit {self._name}")
        return unloaded

    def _unload_error(self, message: str, cause: BaseException) -> UnloadError:
        error = UnloadError(self._name, message)
        error.__cause__ = cause
        return error
