"""Per-unit module namespace.

A unit's modules are executed in a namespace of their own and never enter
``sys.modules``. Every module the namespace executes gets a private
``__builtins__`` whose ``__import__`` resolves names through an explicit
chain of stages:

1. the namespace's cache (including remembered misses)
2. the unit's own compiled binaries
3. INCLUDE-scope archives on the unit's classpath
4. the namespaces of the units it depends on, for modules they own
5. an optional delegate resolver supplied by the host
6. the host interpreter's regular import system
"""

import builtins
import importlib
import importlib.util
import logging
import os
import zipimport
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from importlib.machinery import ModuleSpec, SourcelessFileLoader
from pathlib import Path
from types import ModuleType
from typing import Any, Protocol, runtime_checkable

from hotloader.exceptions import NamespaceClosedError

logger = logging.getLogger(__name__)


class IncompatibleBinaryError(ImportError):
    """A compiled module was written by a different interpreter version."""


@runtime_checkable
class ModuleResolver(Protocol):
    """Something that can hand out modules by fully qualified name."""

    def resolve(self, name: str) -> ModuleType | None: ...


class MappingResolver:
    """Resolver backed by a fixed name-to-module mapping."""

    def __init__(self, modules: Mapping[str, ModuleType] | None = None):
        self._modules: dict[str, ModuleType] = dict(modules or {})

    def register(self, module: ModuleType, name: str | None = None) -> None:
        self._modules[name or module.__name__] = module

    def resolve(self, name: str) -> ModuleType | None:
        return self._modules.get(name)


class ResolverStage(ABC):
    """One link in a namespace's lookup chain."""

    label: str = "stage"
    # Modules found by an owned stage are visible to dependent units.
    owned: bool = False

    @abstractmethod
    def resolve(self, name: str, namespace: "UnitNamespace") -> ModuleType | None:
        """Return the module, or None if this stage does not know it."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class BinaryStage(ResolverStage):
    """Loads the unit's own unchecked-hash pyc files."""

    label = "binary"
    owned = True

    def __init__(self, bin_dir: Path):
        self.bin_dir = Path(bin_dir)

    def resolve(self, name: str, namespace: "UnitNamespace") -> ModuleType | None:
        relative = Path(*name.split("."))
        package_dir = self.bin_dir / relative
        package_init = package_dir / "__init__.pyc"
        module_file = self.bin_dir / relative.parent / f"{relative.name}.pyc"

        if package_init.is_file():
            check_magic(package_init)
            loader = SourcelessFileLoader(name, str(package_init))
            spec = importlib.util.spec_from_file_location(
                name, package_init, loader=loader, submodule_search_locations=[str(package_dir)]
            )
        elif module_file.is_file():
            check_magic(module_file)
            loader = SourcelessFileLoader(name, str(module_file))
            spec = importlib.util.spec_from_file_location(name, module_file, loader=loader)
        elif package_dir.is_dir():
            spec = ModuleSpec(name, None, is_package=True)
            spec.submodule_search_locations = [str(package_dir)]
        else:
            return None
        return namespace.execute(spec)


class ArchiveStage(ResolverStage):
    """Loads modules from INCLUDE-scope zip archives and wheels."""

    label = "archive"
    owned = True

    def __init__(self, archives: Iterable[Path]):
        self.archives = [Path(archive) for archive in archives]

    def resolve(self, name: str, namespace: "UnitNamespace") -> ModuleType | None:
        parent = name.rpartition(".")[0]
        for archive in self.archives:
            location = os.path.join(str(archive), *parent.split(".")) if parent else str(archive)
            try:
                importer = zipimport.zipimporter(location)
            except zipimport.ZipImportError:
                continue
            spec = importer.find_spec(name)
            if spec is not None:
                return namespace.execute(spec)
        return None


class UnitNamespaceStage(ResolverStage):
    """Asks the namespaces of dependency units for modules they own."""

    label = "dependencies"
    owned = True

    def __init__(self, namespaces: Iterable["UnitNamespace"]):
        self.namespaces = list(namespaces)

    def resolve(self, name: str, namespace: "UnitNamespace") -> ModuleType | None:
        for dependency in self.namespaces:
            module = dependency.find_owned(name)
            if module is not None:
                return module
        return None


class DelegateStage(ResolverStage):
    """Forwards to a host-supplied resolver."""

    label = "delegate"

    def __init__(self, resolver: ModuleResolver):
        self.resolver = resolver

    def resolve(self, name: str, namespace: "UnitNamespace") -> ModuleType | None:
        return self.resolver.resolve(name)


class CoreStage(ResolverStage):
    """Falls back to the host interpreter's import system."""

    label = "core"

    def resolve(self, name: str, namespace: "UnitNamespace") -> ModuleType | None:
        try:
            return importlib.import_module(name)
        except ModuleNotFoundError as e:
            # Only a miss for this name (or a parent of it) counts as "not here".
            if e.name is not None and (name == e.name or name.startswith(e.name + ".")):
                return None
            raise


def check_magic(path: Path) -> None:
    """Raise IncompatibleBinaryError if ``path`` was not written by this interpreter."""
    with open(path, "rb") as f:
        magic = f.read(len(importlib.util.MAGIC_NUMBER))
    if magic != importlib.util.MAGIC_NUMBER:
        raise IncompatibleBinaryError(
            f"{path} was compiled by an incompatible Python version", path=str(path)
        )


def _package_of(globals: Mapping[str, Any] | None) -> str | None:
    if not globals:
        return None
    package = globals.get("__package__")
    if package is not None:
        return package
    name = globals.get("__name__")
    if name is None:
        return None
    return name if "__path__" in globals else name.rpartition(".")[0]


class UnitNamespace:
    """Module namespace of one loaded unit."""

    def __init__(
        self,
        unit_name: str,
        bin_dir: Path,
        archives: Iterable[Path] = (),
        dependencies: Iterable["UnitNamespace"] = (),
        delegate: ModuleResolver | None = None,
    ):
        self.unit_name = unit_name
        self.bin_dir = Path(bin_dir)
        self._delegate = delegate
        self._stages: list[ResolverStage] = [
            BinaryStage(self.bin_dir),
            ArchiveStage(archives),
            UnitNamespaceStage(dependencies),
        ]
        if delegate is not None:
            self._stages.append(DelegateStage(delegate))
        self._stages.append(CoreStage())

        self._cache: dict[str, ModuleType | None] = {}
        self._owned: set[str] = set()
        self._closed = False

        self._builtins = dict(builtins.__dict__)
        self._builtins["__import__"] = self._import

    @property
    def stages(self) -> list[ResolverStage]:
        return list(self._stages)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def delegate(self) -> ModuleResolver | None:
        return self._delegate

    def __contains__(self, name: str) -> bool:
        return self._cache.get(name) is not None

    def owned_modules(self) -> list[str]:
        """Names of modules loaded from this unit's binaries or archives."""
        return sorted(self._owned)

    def _ensure_open(self, name: str) -> None:
        if self._closed:
            raise NamespaceClosedError(
                f"Namespace of unit {self.unit_name!r} is closed; cannot import {name!r}",
                name=name,
            )

    def _miss(self, name: str) -> ModuleNotFoundError:
        return ModuleNotFoundError(
            f"No module named {name!r} visible to unit {self.unit_name!r}", name=name
        )

    def resolve(self, name: str) -> ModuleType:
        """Resolve ``name`` through the full chain.

        Raises:
            NamespaceClosedError: If the namespace has been closed.
            ModuleNotFoundError: If no stage knows the module.
        """
        self._ensure_open(name)
        if name in self._cache:
            cached = self._cache[name]
            if cached is None:
                raise self._miss(name)
            return cached

        parent = name.rpartition(".")[0]
        if parent:
            self.resolve(parent)
            if name in self._cache:
                # Importing the parent may have imported this module as well.
                return self.resolve(name)

        for stage in self._stages:
            module = stage.resolve(name, self)
            if module is not None:
                self._cache[name] = module
                if stage.owned:
                    self._owned.add(name)
                return module

        self._cache[name] = None
        raise self._miss(name)

    def find_owned(self, name: str) -> ModuleType | None:
        """Look ``name`` up in the stages that belong to this unit only.

        Dependent units call this so that they see this unit's modules but
        never reach the shared stages through it.
        """
        self._ensure_open(name)
        if name in self._owned:
            return self._cache[name]
        if name in self._cache:
            return None

        parent = name.rpartition(".")[0]
        if parent and self.find_owned(parent) is None:
            return None

        for stage in self._stages:
            if not stage.owned:
                continue
            module = stage.resolve(name, self)
            if module is not None:
                self._cache[name] = module
                self._owned.add(name)
                return module
        return None

    def execute(self, spec: ModuleSpec) -> ModuleType:
        """Create and run the module described by ``spec`` inside this namespace."""
        if spec.loader is None:
            module = ModuleType(spec.name)
            module.__spec__ = spec
            module.__package__ = spec.name
            module.__path__ = list(spec.submodule_search_locations or [])
        else:
            module = importlib.util.module_from_spec(spec)
        module.__dict__["__builtins__"] = self._builtins

        # Registered before running so circular imports see the partial module.
        self._cache[spec.name] = module
        self._owned.add(spec.name)
        try:
            if spec.loader is not None:
                spec.loader.exec_module(module)
        except BaseException:
            self._cache.pop(spec.name, None)
            self._owned.discard(spec.name)
            raise

        parent, _, child = spec.name.rpartition(".")
        if parent and parent in self._owned:
            setattr(self._cache[parent], child, module)
        logger.debug(f"[{self.unit_name}] executed {spec.name}")
        return module

    def _import(
        self,
        name: str,
        globals: Mapping[str, Any] | None = None,
        locals: Mapping[str, Any] | None = None,
        fromlist: Iterable[str] | None = (),
        level: int = 0,
    ) -> ModuleType:
        if level > 0:
            name = importlib.util.resolve_name("." * level + name, _package_of(globals))
        module = self.resolve(name)

        if not fromlist:
            return self.resolve(name.partition(".")[0])

        if hasattr(module, "__path__"):
            for item in fromlist:
                if item == "*":
                    items = getattr(module, "__all__", ())
                    self._import_submodules(module, name, [i for i in items if i != "*"])
                else:
                    self._import_submodules(module, name, [item])
        return module

    def _import_submodules(self, module: ModuleType, name: str, items: Iterable[str]) -> None:
        for item in items:
            if hasattr(module, item):
                continue
            submodule = f"{name}.{item}"
            try:
                self.resolve(submodule)
            except ModuleNotFoundError as e:
                # A missing attribute is reported by the from-import itself.
                if e.name != submodule:
                    raise

    def close(self) -> None:
        """Drop every cached module and the delegate. Later lookups fail."""
        self._closed = True
        self._cache.clear()
        self._owned.clear()
        self._stages = []
        self._delegate = None

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"{len(self._owned)} modules"
        return f"<UnitNamespace {self.unit_name!r} ({state})>"
