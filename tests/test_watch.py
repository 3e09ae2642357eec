"""Tests for unit change detection."""

import os
from pathlib import Path

import pytest

from hotloader.watch import FileChange, UnitChangeWatcher


def touch_later(path: Path, text: str) -> None:
    """Rewrite ``path`` and move its mtime forward so the change is noticed."""
    stat = path.stat()
    path.write_text(text)
    os.utime(path, (stat.st_atime + 10, stat.st_mtime + 10))


@pytest.fixture
def watcher(units_dir: Path) -> UnitChangeWatcher:
    return UnitChangeWatcher(units_dir)


class TestUnitChangeWatcher:
    """Tests for UnitChangeWatcher."""

    def test_first_call_initializes(self, watcher: UnitChangeWatcher, make_unit):
        make_unit("alpha")
        assert watcher.detect_changes() == []
        assert watcher.detect_changes() == []

    def test_modified_source(self, watcher: UnitChangeWatcher, make_unit):
        unit_dir = make_unit("alpha")
        watcher.initialize()

        touch_later(unit_dir / "src" / "main.py", "VALUE = 2\n")
        changes = watcher.detect_changes()

        assert [(c.unit_name, c.change_type) for c in changes] == [("alpha", "modified")]
        assert isinstance(changes[0], FileChange)
        assert changes[0].detected_at is not None

    def test_touch_without_content_change_is_ignored(self, watcher: UnitChangeWatcher, make_unit):
        unit_dir = make_unit("alpha")
        watcher.initialize()

        main = unit_dir / "src" / "main.py"
        touch_later(main, main.read_text())

        assert watcher.detect_changes() == []

    def test_created_and_deleted(self, watcher: UnitChangeWatcher, make_unit):
        unit_dir = make_unit("alpha", {"main.py": "A = 1\n", "extra.py": "B = 2\n"})
        watcher.initialize()

        (unit_dir / "src" / "extra.py").unlink()
        make_unit("beta")
        changes = watcher.detect_changes()

        kinds = sorted((c.unit_name, c.change_type) for c in changes)
        assert kinds == [("alpha", "deleted"), ("beta", "created")]
        assert watcher.changed_units(changes) == ["alpha", "beta"]

    def test_descriptor_and_disabled_marker_are_watched(self, watcher: UnitChangeWatcher, make_unit):
        unit_dir = make_unit("alpha", dependencies="")
        watcher.initialize()

        touch_later(unit_dir / "dependencies.txt", "project beta\n")
        (unit_dir / "src" / ".disabled").touch()
        changes = watcher.detect_changes()

        assert sorted(c.path.name for c in changes) == [".disabled", "dependencies.txt"]

    def test_binaries_and_caches_are_ignored(self, watcher: UnitChangeWatcher, make_unit):
        unit_dir = make_unit("alpha")
        watcher.initialize()

        (unit_dir / "bin").mkdir()
        (unit_dir / "bin" / "main.pyc").write_bytes(b"\x00")
        (unit_dir / "src" / "__pycache__").mkdir()
        (unit_dir / "src" / "__pycache__" / "main.cpython-311.pyc").write_bytes(b"\x00")
        (unit_dir / "src" / "main.py.swp").write_text("")

        assert watcher.detect_changes() == []

    def test_hidden_directories_are_skipped(self, watcher: UnitChangeWatcher, units_dir: Path):
        watcher.initialize()
        (units_dir / ".cache" / "src").mkdir(parents=True)
        (units_dir / ".cache" / "src" / "x.py").write_text("")
        assert watcher.detect_changes() == []


class TestWatchLoop:
    """Tests for the polling loop."""

    def test_callback_receives_changed_units(self, watcher: UnitChangeWatcher, make_unit):
        unit_dir = make_unit("alpha")
        make_unit("beta")
        calls: list[list[str]] = []
        polls = iter(range(100))

        def should_stop() -> bool:
            poll = next(polls)
            if poll == 1:
                touch_later(unit_dir / "src" / "main.py", "VALUE = 3\n")
            return bool(calls) or poll > 10

        watcher.watch_loop(calls.append, poll_interval=0, debounce_seconds=0, should_stop=should_stop)

        assert calls == [["alpha"]]

    def test_stops_without_changes(self, watcher: UnitChangeWatcher, make_unit):
        make_unit("alpha")
        calls: list[list[str]] = []
        polls = iter(range(3))

        watcher.watch_loop(calls.append, poll_interval=0, should_stop=lambda: next(polls) == 2)

        assert calls == []
