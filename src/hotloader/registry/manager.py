"""Registry that owns the units of one units directory and drives bulk operations."""

import logging
import shutil
from collections.abc import Callable, Iterable
from pathlib import Path

from hotloader.compiler.interface import UnitCompiler
from hotloader.compiler.python import PythonCompiler
from hotloader.config import RegistryConfig
from hotloader.dependency.parser import DependencyParser
from hotloader.exceptions import (
    CompileError,
    ConfigurationError,
    LoadError,
    LoadFailureKind,
    OrderingViolation,
    StructuralError,
    UnitError,
)
from hotloader.graph.dependency_graph import DependencyFirstTraversal, DependencyGraph
from hotloader.registry.feedback import CollectingFeedback, ErrorHandler, FeedbackSink, log_error
from hotloader.registry.results import (
    DependentsHandling,
    LoadAllResult,
    RecompileAllResult,
    UnitSnapshot,
)
from hotloader.unit.extension import UnitExtension
from hotloader.unit.listener import UnitStateListener
from hotloader.unit.namespace import ModuleResolver
from hotloader.unit.unit import Unit, UnloadMethod

logger = logging.getLogger(__name__)


class UnitRegistry:
    """All units of one units directory.

    Not thread-safe: every call must come from the same logical thread.

    Example:
        registry = UnitRegistry(RegistryConfig(units_dir=Path("units")))
        result = registry.recompile_all(CollectingFeedback())
        registry.unload_all()
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        compiler: UnitCompiler | None = None,
        platform_resolver: ModuleResolver | None = None,
        state_listener: UnitStateListener | None = None,
    ):
        self.config = config or RegistryConfig()
        self.compiler = compiler or PythonCompiler(self.config.python_executable)
        self.dependency_parser = DependencyParser(self.config.archive_suffixes)
        self.platform_resolver = platform_resolver
        self.state_listener = state_listener
        self._units: dict[str, Unit] = {}

    @property
    def units_dir(self) -> Path:
        return self.config.units_dir

    # --- lookup ------------------------------------------------------------

    def get_unit(self, name: str) -> Unit | None:
        return self._units.get(name)

    def has_unit(self, name: str) -> bool:
        return name in self._units

    @property
    def units(self) -> list[Unit]:
        return [self._units[name] for name in sorted(self._units)]

    @property
    def unit_names(self) -> list[str]:
        return sorted(self._units)

    def get_extension(self, name: str) -> UnitExtension | None:
        unit = self._units.get(name)
        return unit.extension if unit is not None else None

    def extensions(self) -> list[UnitExtension]:
        return [u.extension for u in self.units if u.is_loaded and u.extension is not None]

    def loaded_dependents(self, unit: Unit) -> list[Unit]:
        """Loaded units that directly depend on ``unit``."""
        return [
            other
            for other in self.units
            if other is not unit and other.is_loaded and unit.name in other.unit_dependency_names()
        ]

    def snapshot(self) -> list[UnitSnapshot]:
        snapshots = []
        for unit in self.units:
            snapshot = UnitSnapshot(
                name=unit.name,
                loaded=unit.is_loaded,
                disabled=unit.is_disabled,
                compiled=unit.is_compiled,
                version=unit.version,
            )
            try:
                snapshot.dependencies = [str(d) for d in unit.source_dependencies()]
            except (ConfigurationError, OSError) as e:
                snapshot.descriptor_error = str(e)
            snapshots.append(snapshot)
        return snapshots

    # --- registration ------------------------------------------------------

    def register_unit(
        self,
        name: str,
        unit_dir: Path | None = None,
        listener: UnitStateListener | None = None,
    ) -> Unit:
        """Register one unit explicitly.

        Raises:
            ValueError: If a unit with this name is already registered.
        """
        if name in self._units:
            raise ValueError(f"Unit already registered: {name}")
        unit = Unit(name, unit_dir or self.units_dir / name, self, listener or self.state_listener)
        self._units[name] = unit
        logger.debug(f"Registered unit {name} at {unit.unit_dir}")
        return unit

    def discover_units(self, listener: UnitStateListener | None = None) -> list[Unit]:
        """Register every new unit directory under the units dir.

        Directories whose name ends in ``.disabled`` (any case) or starts
        with a dot are skipped.

        Returns:
            The newly registered units.
        """
        if not self.units_dir.is_dir():
            return []
        added = []
        for path in sorted(self.units_dir.iterdir()):
            if not path.is_dir() or path.name.startswith(".") or path.name.lower().endswith(".disabled"):
                continue
            if path.name not in self._units:
                added.append(self.register_unit(path.name, path, listener))
        if added:
            logger.info(f"Discovered {len(added)} unit(s): {', '.join(u.name for u in added)}")
        return added

    def discover_unit(self, name: str, listener: UnitStateListener | None = None) -> Unit | None:
        """Register the unit directory ``name`` if it exists.

        Returns:
            The (possibly already registered) unit, or None if there is no such directory.

        Raises:
            ValueError: If ``name`` does not denote a direct child of the units dir.
        """
        root = self.units_dir.resolve()
        path = (root / name).resolve()
        if path.parent != root or name.lower().endswith(".disabled"):
            raise ValueError(f"Invalid unit name: {name!r}")
        if name in self._units:
            return self._units[name]
        if not path.is_dir():
            return None
        return self.register_unit(name, self.units_dir / name, listener)

    def remove_deleted_unit(self, name: str) -> bool:
        """Forget ``name`` if its unit directory is gone.

        Raises:
            RuntimeError: If the unit is still loaded.
        """
        unit = self._units.get(name)
        if unit is None or unit.exists():
            return False
        if unit.is_loaded:
            raise RuntimeError(f"Cannot remove loaded unit {name}")
        del self._units[name]
        logger.info(f"Removed deleted unit {name}")
        return True

    def remove_deleted_units(self) -> list[Unit]:
        """Forget every unloaded unit whose unit directory is gone."""
        removed = [u for u in self.units if not u.is_loaded and not u.exists()]
        for unit in removed:
            self.remove_deleted_unit(unit.name)
        return removed

    def unload_and_remove_if_deleted(self, name: str, error_handler: ErrorHandler | None = None) -> list[Unit]:
        """Unload a vanished unit together with its dependents, then forget it.

        Returns:
            Units that were unloaded.
        """
        unit = self._units.get(name)
        if unit is None or unit.exists():
            return []
        unloaded = unit.unload(UnloadMethod.UNLOAD_DEPENDENTS, error_handler or log_error)
        self.remove_deleted_unit(name)
        return unloaded

    def clear(self, error_handler: ErrorHandler | None = None) -> None:
        """Unload everything and forget every unit."""
        self.unload_all(error_handler)
        self._units.clear()

    # --- graphs ------------------------------------------------------------

    def _build_graph(
        self, units: Iterable[Unit], use_source: bool
    ) -> tuple[DependencyGraph[Unit], dict[Unit, ConfigurationError]]:
        """Graph over ``units``; edges only to dependencies inside the set.

        ``use_source`` selects live descriptors instead of compiled ones.
        Units whose descriptor cannot be read are returned with their error.
        """
        members = list(units)
        by_name = {u.name: u for u in members}
        graph: DependencyGraph[Unit] = DependencyGraph(members)
        errors: dict[Unit, ConfigurationError] = {}
        for unit in members:
            try:
                names = unit.unit_dependency_names(use_source)
            except ConfigurationError as e:
                errors[unit] = e
                continue
            except OSError as e:
                error = ConfigurationError(unit.name, f"Unable to read dependency descriptor: {e}")
                error.__cause__ = e
                errors[unit] = error
                continue
            for name in names:
                dependency = by_name.get(name)
                if dependency is not None:
                    graph.add_edge(unit, dependency)
        return graph, errors

    def _loaded_graph(self) -> DependencyGraph[Unit]:
        graph, _ = self._build_graph((u for u in self.units if u.is_loaded), use_source=False)
        return graph

    @staticmethod
    def _cycle_errors(graph: DependencyGraph[Unit]) -> dict[Unit, StructuralError]:
        """One error per cycle member, self-dependent unit and cycle dependent."""
        errors: dict[Unit, StructuralError] = {}
        cycles = graph.find_cycles()
        for cycle in cycles:
            names = sorted(u.name for u in cycle)
            if len(cycle) == 1:
                (unit,) = cycle
                errors[unit] = StructuralError(unit.name, "Unit depends on itself.", names)
            else:
                for unit in cycle:
                    errors[unit] = StructuralError(
                        unit.name, f"Unit is part of a dependency cycle: {', '.join(names)}", names
                    )
        for cycle in cycles:
            names = sorted(u.name for u in cycle)
            for member in cycle:
                for dependent in graph.transitive_dependents(member):
                    if dependent not in errors:
                        errors[dependent] = StructuralError(
                            dependent.name,
                            f"Unit depends on a dependency cycle: {', '.join(names)}",
                            names,
                        )
        return errors

    def _verify_bin_dir_names(self) -> None:
        for unit in self._units.values():
            if not unit.uses_bin_dir_name(self.config.bin_dir_name):
                raise RuntimeError(
                    f"Unit {unit.name} uses binary directory {unit.bin_dir.name!r}, "
                    f"expected {self.config.bin_dir_name!r}"
                )

    @staticmethod
    def _cascade(
        traversal: DependencyFirstTraversal[Unit],
        failed: Unit,
        make_error: Callable[[Unit, Unit], UnitError],
        handler: ErrorHandler,
        errored: set[Unit],
    ) -> None:
        """Drop everything depending on ``failed`` from ``traversal`` and report it."""
        removed = traversal.remove_dependents() or []
        for dependent in removed[1:]:
            handler(make_error(dependent, failed))
            errored.add(dependent)

    # --- load / unload -----------------------------------------------------

    def load_all(self, error_handler: ErrorHandler | None = None) -> LoadAllResult:
        """Load every registered, enabled and unloaded unit in dependency order.

        A unit that fails blocks everything depending on it; each blocked unit
        gets an error of its own. Unrelated units are still loaded.
        """
        handler = error_handler or log_error
        candidates = [u for u in self.units if not u.is_loaded and not u.is_disabled]
        graph, descriptor_errors = self._build_graph(candidates, use_source=False)
        result = LoadAllResult()

        pending: dict[Unit, UnitError] = {}
        for unit, e in descriptor_errors.items():
            error = LoadError(unit.name, e.message, LoadFailureKind.DESCRIPTOR)
            error.__cause__ = e
            pending[unit] = error
        for unit, error in self._cycle_errors(graph).items():
            handler(error)
            result.errored.add(unit)

        traversal = graph.dependency_first()
        for unit in traversal:
            error = pending.get(unit)
            if error is None:
                try:
                    unit.load()
                except LoadError as e:
                    error = e
                else:
                    result.loaded.add(unit)
                    continue
            handler(error)
            result.errored.add(unit)
            self._cascade(traversal, unit, _blocked_load_error, handler, result.errored)

        logger.info(f"Loaded {len(result.loaded)} unit(s), {len(result.errored)} failed")
        return result

    def unload_all(self, error_handler: ErrorHandler | None = None) -> set[Unit]:
        """Unload every loaded unit, dependents before their dependencies."""
        handler = error_handler or log_error
        unloaded: set[Unit] = set()
        for unit in self._loaded_graph().dependent_first():
            unloaded.update(unit.unload(UnloadMethod.IGNORE_DEPENDENTS, handler))
        if unloaded:
            logger.info(f"Unloaded {len(unloaded)} unit(s)")
        return unloaded

    def _unload_graph(self, graph: DependencyGraph[Unit], handler: ErrorHandler) -> set[Unit]:
        unloaded: set[Unit] = set()
        for unit in graph.copy().dependent_first():
            unloaded.update(unit.unload(UnloadMethod.IGNORE_DEPENDENTS, handler))
        return unloaded

    def _load_graph(self, graph: DependencyGraph[Unit], handler: ErrorHandler) -> set[Unit]:
        loaded: set[Unit] = set()
        for unit in graph.copy().dependency_first():
            try:
                unit.load()
            except LoadError as e:
                handler(e)
            else:
                loaded.add(unit)
        return loaded

    # --- staging -----------------------------------------------------------

    def _discard_staging(self, units: Iterable[Unit], feedback: FeedbackSink) -> None:
        staging = self.config.staging_dir_name
        for unit in units:
            if unit.uses_bin_dir_name(staging) and unit.bin_dir.exists():
                try:
                    shutil.rmtree(unit.bin_dir)
                except OSError as e:
                    error = CompileError(unit.name, f"Unable to remove staging directory {unit.bin_dir}: {e}")
                    error.__cause__ = e
                    feedback.handle_error(error)
            unit.set_bin_dir_name(self.config.bin_dir_name)

    def _swap(self, units: Iterable[Unit], feedback: FeedbackSink) -> set[Unit]:
        """Replace each unit's binary directory with its staged one."""
        staging = self.config.staging_dir_name
        swapped: set[Unit] = set()
        for unit in units:
            if not unit.uses_bin_dir_name(staging):
                raise RuntimeError(f"Unit {unit.name} was compiled but is not using the staging directory")
            staged_dir = unit.bin_dir
            target = unit.unit_dir / self.config.bin_dir_name
            try:
                if target.exists():
                    shutil.rmtree(target)
                staged_dir.rename(target)
            except OSError as e:
                error = CompileError(
                    unit.name,
                    f"Compiled successfully, but replacing {target} with {staged_dir} failed: {e}",
                )
                error.__cause__ = e
                feedback.handle_error(error)
            else:
                swapped.add(unit)
            finally:
                unit.set_bin_dir_name(self.config.bin_dir_name)
                unit.reset_dependencies()
        return swapped

    def _compile_staged(
        self,
        graph: DependencyGraph[Unit],
        feedback: FeedbackSink,
        pending: dict[Unit, UnitError] | None = None,
    ) -> tuple[list[Unit], set[Unit]]:
        """Compile ``graph`` dependency-first into staging directories.

        Units listed in ``pending`` are not compiled; they and all their
        dependents are reported instead.

        Returns:
            (successfully compiled units, units that failed or were blocked)
        """
        pending = pending or {}
        staging = self.config.staging_dir_name
        compiled: list[Unit] = []
        errored: set[Unit] = set()

        traversal = graph.copy().dependency_first()
        for unit in traversal:
            error = pending.get(unit)
            if error is None:
                unit.set_bin_dir_name(staging)
                try:
                    unit.compile(feedback.compiler_feedback)
                except CompileError as e:
                    self._discard_staging([unit], feedback)
                    error = e
                else:
                    compiled.append(unit)
                    continue
            feedback.handle_error(error)
            errored.add(unit)
            self._cascade(traversal, unit, _blocked_compile_error, feedback.handle_error, errored)
        return compiled, errored

    # --- recompile ---------------------------------------------------------

    def recompile(
        self,
        unit: Unit,
        dependents_handling: DependentsHandling = DependentsHandling.NONE,
        feedback: FeedbackSink | None = None,
    ) -> None:
        """Recompile one unit and reload it if it was loaded.

        The unit is compiled into its staging directory first. Nothing is
        unloaded until every unit of the batch compiled, so a failed compile
        leaves the running system untouched. Swap and load failures are
        reported to ``feedback`` and do not raise.

        Raises:
            ValueError: If ``unit`` is not registered here.
            OrderingViolation: With ``NONE`` and loaded dependents.
            StructuralError: If the units to recompile form a cycle.
            CompileError: If any unit of the batch fails to compile or has an
                unreadable descriptor. Descriptor errors go to ``feedback`` first.
        """
        if self._units.get(unit.name) is not unit:
            raise ValueError(f"Unit {unit.name} does not belong to this registry")
        feedback = feedback or CollectingFeedback()
        self._verify_bin_dir_names()

        loaded_graph = self._loaded_graph()
        dependents = loaded_graph.transitive_dependents(unit) if unit in loaded_graph else set()

        if not dependents:
            compile_graph: DependencyGraph[Unit] = DependencyGraph([unit])
            unload_graph = compile_graph
            load_graph = compile_graph
        elif dependents_handling == DependentsHandling.NONE:
            names = sorted(d.name for d in dependents)
            raise OrderingViolation(
                unit.name, f"Unit has loaded dependents: {', '.join(names)}", names
            )
        elif dependents_handling == DependentsHandling.RELOAD:
            compile_graph = DependencyGraph([unit])
            unload_graph = loaded_graph.subgraph([unit, *dependents])
            load_graph = unload_graph
        else:
            members = [unit, *sorted(dependents, key=lambda u: u.name)]
            compile_graph, descriptor_errors = self._build_graph(members, use_source=True)
            if descriptor_errors:
                for e in descriptor_errors.values():
                    feedback.handle_error(e)
                raise CompileError(unit.name, "Dependency descriptors are invalid.")
            cycles = compile_graph.find_cycles()
            if cycles:
                names = sorted(u.name for cycle in cycles for u in cycle)
                raise StructuralError(
                    unit.name, f"Units to recompile form a dependency cycle: {', '.join(names)}", names
                )
            unload_graph = loaded_graph.subgraph(members)
            load_graph = compile_graph

        compiled, errored = self._compile_staged(compile_graph, feedback)
        if errored:
            self._discard_staging(compiled, feedback)
            raise CompileError(unit.name, "Compilation has failed.")
        logger.info(f"Compiled {len(compiled)} unit(s) for recompile of {unit.name}")

        self._unload_graph(unload_graph, feedback.handle_error)
        self._swap(compiled, feedback)
        self._verify_bin_dir_names()
        self._load_graph(load_graph, feedback.handle_error)

    def recompile_all(
        self,
        feedback: FeedbackSink | None = None,
        listener: UnitStateListener | None = None,
    ) -> RecompileAllResult:
        """Discover, recompile, and reload every unit with staged swaps.

        Every enabled unit is compiled into its staging directory while the
        old binaries keep running. Then everything is unloaded, deleted units
        are dropped, staged binaries are swapped in, and everything is loaded
        again. A unit whose compile failed is reloaded from its previous binaries.
        """
        feedback = feedback or CollectingFeedback()
        result = RecompileAllResult()
        result.added = set(self.discover_units(listener))
        self._verify_bin_dir_names()

        candidates = [u for u in self.units if not u.is_disabled and u.exists()]
        graph, descriptor_errors = self._build_graph(candidates, use_source=True)

        pending: dict[Unit, UnitError] = {}
        for unit, e in descriptor_errors.items():
            error = CompileError(unit.name, e.message)
            error.__cause__ = e
            pending[unit] = error
        for unit, error in self._cycle_errors(graph).items():
            feedback.handle_error(error)
            result.errored.add(unit)

        compiled, errored = self._compile_staged(graph, feedback, pending)
        result.errored |= errored

        result.unloaded = self.unload_all(feedback.handle_error)
        result.removed = set(self.remove_deleted_units())

        still_registered = [u for u in compiled if self._units.get(u.name) is u]
        self._discard_staging([u for u in compiled if u not in still_registered], feedback)
        result.compiled = self._swap(still_registered, feedback)
        self._verify_bin_dir_names()

        load_result = self.load_all(feedback.handle_error)
        result.loaded = load_result.loaded
        result.errored |= load_result.errored

        logger.info(
            f"Recompiled all: {len(result.compiled)} compiled, {len(result.loaded)} loaded, "
            f"{len(result.errored)} errored, {len(result.added)} added, {len(result.removed)} removed"
        )
        return result


def _blocked_load_error(unit: Unit, failed: Unit) -> LoadError:
    return LoadError(
        unit.name, f"Not loaded because dependency {failed.name} failed.", LoadFailureKind.BLOCKED
    )


def _blocked_compile_error(unit: Unit, failed: Unit) -> CompileError:
    return CompileError(unit.name, f"Not compiled because dependency {failed.name} failed.")
