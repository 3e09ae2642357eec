"""Polling change detection for unit source trees.

Watches, for every unit directory under the units dir:
- every file below its source directory (including the disabled marker)
- its live dependency descriptor
"""

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class FileChange:
    """One file under a unit that appeared, changed content or vanished."""

    path: Path
    unit_name: str
    change_type: str  # "modified", "created", "deleted"
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class UnitChangeWatcher:
    """Scans a units directory and reports which units changed.

    Uses modification time to skip unchanged files and a SHA-256 content
    hash to confirm real modifications.
    """

    def __init__(
        self,
        units_dir: str | Path,
        source_dir_name: str = "src",
        descriptor_name: str = "dependencies.txt",
        ignore_patterns: list[str] | None = None,
    ):
        self.units_dir = Path(units_dir)
        self.source_dir_name = source_dir_name
        self.descriptor_name = descriptor_name
        self.ignore_patterns = ignore_patterns or ["__pycache__", "*.pyc", "*.swp", "*~"]

        self._snapshot: dict[Path, tuple[float, str]] = {}  # path -> (mtime, hash)
        self._initialized = False

    def _should_ignore(self, path: Path) -> bool:
        return any(part == "__pycache__" for part in path.parts) or any(
            path.match(pattern) for pattern in self.ignore_patterns
        )

    def _digest(self, path: Path) -> str:
        return hashlib.sha256(path.read_bytes()).hexdigest()

    def _unit_files(self, unit_dir: Path) -> list[Path]:
        files = []
        descriptor = unit_dir / self.descriptor_name
        if descriptor.is_file():
            files.append(descriptor)
        source_dir = unit_dir / self.source_dir_name
        if source_dir.is_dir():
            files.extend(p for p in source_dir.rglob("*") if p.is_file() and not self._should_ignore(p))
        return files

    def _take_snapshot(self) -> dict[Path, tuple[float, str]]:
        files: dict[Path, tuple[float, str]] = {}
        if not self.units_dir.is_dir():
            return files

        for unit_dir in sorted(self.units_dir.iterdir()):
            if not unit_dir.is_dir() or unit_dir.name.startswith("."):
                continue
            for path in self._unit_files(unit_dir):
                try:
                    mtime = path.stat().st_mtime
                    previous = self._snapshot.get(path)
                    if previous is not None and previous[0] == mtime:
                        files[path] = previous
                    else:
                        files[path] = (mtime, self._digest(path))
                except OSError as e:
                    logger.debug(f"Error scanning {path}: {e}")
        return files

    def unit_name_of(self, path: Path) -> str:
        return path.relative_to(self.units_dir).parts[0]

    def initialize(self) -> None:
        """Record the current state without reporting anything."""
        self._snapshot = self._take_snapshot()
        self._initialized = True
        logger.info(f"UnitChangeWatcher initialized with {len(self._snapshot)} files")

    def detect_changes(self) -> list[FileChange]:
        """Changes since the previous scan. The first call only initializes."""
        if not self._initialized:
            self.initialize()
            return []

        current = self._take_snapshot()
        changes: list[FileChange] = []

        for path, (_mtime, file_hash) in current.items():
            if path not in self._snapshot:
                changes.append(FileChange(path, self.unit_name_of(path), "created"))
            elif file_hash != self._snapshot[path][1]:
                changes.append(FileChange(path, self.unit_name_of(path), "modified"))

        for path in self._snapshot:
            if path not in current:
                changes.append(FileChange(path, self.unit_name_of(path), "deleted"))

        self._snapshot = current
        return changes

    @staticmethod
    def changed_units(changes: list[FileChange]) -> list[str]:
        return sorted({change.unit_name for change in changes})

    def watch_loop(
        self,
        callback: Callable[[list[str]], None],
        poll_interval: float = 2.0,
        debounce_seconds: float = 1.0,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        """Poll until ``should_stop`` returns True, calling back with changed unit names.

        Runs on the caller's thread, so the callback may use the registry directly.

        Args:
            callback: Receives the sorted names of units that changed.
            poll_interval: Seconds between directory scans.
            debounce_seconds: Quiet period required before the callback fires.
            should_stop: Checked once per poll; the loop runs forever without it.
        """
        self.initialize()
        pending: list[FileChange] = []
        last_change: float | None = None

        while should_stop is None or not should_stop():
            changes = self.detect_changes()
            if changes:
                pending.extend(changes)
                last_change = time.monotonic()

            if pending and last_change is not None and time.monotonic() - last_change >= debounce_seconds:
                units = self.changed_units(pending)
                logger.info(f"Detected {len(pending)} file changes in {', '.join(units)}")
                callback(units)
                pending = []
                last_change = None

            time.sleep(poll_interval)
