"""Pytest configuration and fixtures."""

import contextlib
import io
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path
from types import ModuleType

import pytest

from hotloader.compiler.interface import DiagnosticCoalescer, FeedbackHandler, UnitCompiler
from hotloader.compiler.worker import compile_tree
from hotloader.config import RegistryConfig
from hotloader.registry.manager import UnitRegistry
from hotloader.unit.listener import UnitStateListener
from hotloader.unit.namespace import MappingResolver
from hotloader.unit.unit import Unit


def extension_source(
    class_name: str = "Main",
    version: str = "1.0",
    on_load: str = "pass",
    on_unload: str = "pass",
    header: str = "",
) -> str:
    """Source of a module defining one extension class.

    ``on_load``/``on_unload`` are single statements; ``probe`` (the shared
    test module) is importable from them.
    """
    return textwrap.dedent(
        f"""\
        import probe
        from hotloader import UnitExtension
        {header}

        class {class_name}(UnitExtension):
            @property
            def version(self):
                return {version!r}

            def on_load(self):
                {on_load}

            def on_unload(self):
                {on_unload}
        """
    )


class InProcessCompiler(UnitCompiler):
    """Byte-compiles in the test process and records what it compiled.

    Units named in ``fail`` report one diagnostic and fail.
    """

    def __init__(self) -> None:
        self.compiled: list[str] = []
        self.classpaths: dict[str, list[Path]] = {}
        self.fail: set[str] = set()

    def compile(
        self,
        sources: list[Path],
        source_root: Path,
        output_dir: Path,
        classpath: list[Path],
        feedback: FeedbackHandler,
    ) -> bool:
        unit_name = source_root.parent.name
        self.compiled.append(unit_name)
        self.classpaths[unit_name] = list(classpath)
        if unit_name in self.fail:
            feedback(f"{sources[0]}:1: error: injected failure\n")
            feedback("1 error\n")
            return False

        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            errors, _ = compile_tree(source_root.resolve(), output_dir.resolve(), [s.resolve() for s in sources])
        with DiagnosticCoalescer(feedback) as coalescer:
            for line in output.getvalue().splitlines(keepends=True):
                coalescer.write(line)
        return errors == 0


class RecordingListener(UnitStateListener):
    """Records ("load"|"unload", unit name) events in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []
        self.fail_load: set[str] = set()
        self.fail_unload: set[str] = set()

    def on_load(self, unit: Unit) -> None:
        if unit.name in self.fail_load:
            raise RuntimeError(f"listener refused {unit.name}")
        self.events.append(("load", unit.name))

    def on_unload(self, unit: Unit) -> None:
        self.events.append(("unload", unit.name))
        if unit.name in self.fail_unload:
            raise RuntimeError(f"listener broke on {unit.name}")

    def names(self, kind: str) -> list[str]:
        return [name for event, name in self.events if event == kind]


@pytest.fixture
def probe() -> ModuleType:
    """Module shared between tests and unit code through the delegate resolver."""
    module = ModuleType("probe")
    module.events = []
    return module


@pytest.fixture
def units_dir(tmp_path: Path) -> Path:
    path = tmp_path / "units"
    path.mkdir()
    return path


@pytest.fixture
def make_unit(units_dir: Path) -> Callable[..., Path]:
    """Create ``units/<name>`` with sources and an optional descriptor."""

    def _make(name: str, sources: dict[str, str] | None = None, dependencies: str | None = None) -> Path:
        unit_dir = units_dir / name
        src = unit_dir / "src"
        src.mkdir(parents=True, exist_ok=True)
        for relative, text in (sources if sources is not None else {"main.py": extension_source()}).items():
            path = src / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        if dependencies is not None:
            (unit_dir / "dependencies.txt").write_text(dependencies)
        return unit_dir

    return _make


@pytest.fixture
def compiler() -> InProcessCompiler:
    return InProcessCompiler()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def registry(units_dir: Path, compiler: InProcessCompiler, listener: RecordingListener, probe: ModuleType) -> UnitRegistry:
    config = RegistryConfig(units_dir=units_dir, python_executable=sys.executable)
    return UnitRegistry(
        config,
        compiler=compiler,
        platform_resolver=MappingResolver({"probe": probe}),
        state_listener=listener,
    )
