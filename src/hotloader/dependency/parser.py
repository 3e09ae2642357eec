"""Parser for the line-oriented dependency descriptor.

Format:
    # comment            (also "// comment", both run to end of line)
    project <name>       dependency on another unit (always PROVIDED)
    unit <name>          synonym for "project"
    zip [-include|-provided] <path>
                         dependency on a zip archive (default INCLUDE);
                         "./" makes the path relative to the unit directory
"""

import logging
import re
from pathlib import Path

from hotloader.dependency.models import (
    Dependency,
    DependencyScope,
    FileDependency,
    UnitDependency,
)
from hotloader.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_SUFFIXES = (".zip", ".whl")

_COMMENT = re.compile(r"(//|#).*$")


class DependencyParser:
    """Turns descriptor text into Dependency objects."""

    def __init__(self, archive_suffixes: tuple[str, ...] = DEFAULT_ARCHIVE_SUFFIXES):
        self.archive_suffixes = tuple(s.lower() for s in archive_suffixes)

    def parse(self, text: str, unit_name: str, unit_dir: Path) -> list[Dependency]:
        """Parse a full descriptor.

        Args:
            text: Descriptor contents.
            unit_name: Name of the unit owning the descriptor (for errors).
            unit_dir: Directory relative file paths are resolved against.

        Raises:
            ConfigurationError: If any line is malformed.
        """
        dependencies: list[Dependency] = []
        for raw_line in text.splitlines():
            line = _COMMENT.sub("", raw_line.replace("\t", " ").replace("\r", " ")).strip()
            if not line:
                continue
            dependencies.append(self.parse_line(line.replace("\\", "/"), unit_name, unit_dir))
        logger.debug(f"Parsed {len(dependencies)} dependencies for unit {unit_name}")
        return dependencies

    def parse_line(self, line: str, unit_name: str, unit_dir: Path) -> Dependency:
        """Parse one normalised, non-empty descriptor line."""
        keyword, _, rest = line.partition(" ")
        keyword = keyword.lower()
        rest = rest.strip()

        if keyword in ("project", "unit"):
            if not rest or " " in rest:
                raise ConfigurationError(unit_name, f"Dependency format invalid: {line}")
            return UnitDependency(rest)

        if keyword == "zip":
            return self._parse_file_dependency(line, rest, unit_name, unit_dir)

        raise ConfigurationError(unit_name, f"Dependency format invalid: {line}")

    def _parse_file_dependency(
        self, line: str, rest: str, unit_name: str, unit_dir: Path
    ) -> FileDependency:
        if not rest.lower().endswith(self.archive_suffixes):
            raise ConfigurationError(
                unit_name,
                "Dependency format invalid. File dependency does not have a"
                f" {'/'.join(self.archive_suffixes)} extension: {line}",
            )

        scope = DependencyScope.INCLUDE
        if rest.startswith("-"):
            option, _, rest = rest[1:].partition(" ")
            rest = rest.strip()
            try:
                scope = DependencyScope(option.lower())
            except ValueError:
                raise ConfigurationError(
                    unit_name,
                    'Dependency format invalid. Expected option "include" or "provided" in'
                    f' syntax "zip -option path", but received option: "{option}".',
                ) from None
            if not rest:
                raise ConfigurationError(unit_name, f"Dependency format invalid: {line}")

        if rest.startswith("./"):
            path = unit_dir / rest[2:]
        else:
            path = Path(rest)
        return FileDependency(path=path, scope=scope)
