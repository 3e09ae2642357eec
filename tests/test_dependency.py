"""Tests for dependency descriptors."""

from pathlib import Path

import pytest

from hotloader.dependency import (
    DependencyParser,
    DependencyScope,
    FileDependency,
    UnitDependency,
)
from hotloader.exceptions import ConfigurationError


@pytest.fixture
def parser() -> DependencyParser:
    return DependencyParser()


UNIT_DIR = Path("/units/alpha")


class TestDependencyModels:
    """Tests for dependency value objects."""

    def test_unit_dependency_is_always_provided(self):
        """Unit dependencies never include files."""
        assert UnitDependency("beta").scope == DependencyScope.PROVIDED

    def test_file_dependency_defaults_to_include(self):
        """File dependencies default to INCLUDE scope."""
        assert FileDependency(Path("lib.zip")).scope == DependencyScope.INCLUDE

    def test_file_dependency_exists(self, tmp_path: Path):
        """exists() reflects the file on disk."""
        archive = tmp_path / "lib.zip"
        dependency = FileDependency(archive)
        assert not dependency.exists()
        archive.write_bytes(b"")
        assert dependency.exists()

    def test_str_round_trips_through_parser(self, parser: DependencyParser):
        """String forms use descriptor syntax."""
        assert str(UnitDependency("beta")) == "project beta"
        text = str(FileDependency(Path("/opt/lib.zip"), DependencyScope.PROVIDED))
        assert text == "zip -provided /opt/lib.zip"
        assert parser.parse(text, "alpha", UNIT_DIR) == [
            FileDependency(Path("/opt/lib.zip"), DependencyScope.PROVIDED)
        ]


class TestDependencyParser:
    """Tests for DependencyParser."""

    def test_empty_descriptor(self, parser: DependencyParser):
        """Blank lines and comments produce nothing."""
        text = "\n   \n# a comment\n// another comment\n"
        assert parser.parse(text, "alpha", UNIT_DIR) == []

    def test_unit_dependencies(self, parser: DependencyParser):
        """'project' and 'unit' both declare unit dependencies."""
        text = "project beta\nunit gamma # trailing comment\n"
        assert parser.parse(text, "alpha", UNIT_DIR) == [UnitDependency("beta"), UnitDependency("gamma")]

    def test_parse_logs_dependency_count(self, parser: DependencyParser, caplog):
        with caplog.at_level("DEBUG", logger="hotloader.dependency.parser"):
            parser.parse("project beta\n", "alpha", UNIT_DIR)
        assert "Parsed 1 dependencies for unit alpha" in caplog.text

    def test_whitespace_is_normalised(self, parser: DependencyParser):
        """Tabs, carriage returns and padding are ignored."""
        text = "\t project\tbeta  \r\n"
        assert parser.parse(text, "alpha", UNIT_DIR) == [UnitDependency("beta")]

    def test_keyword_is_case_insensitive(self, parser: DependencyParser):
        """Keywords are matched case-insensitively."""
        assert parser.parse("PROJECT beta", "alpha", UNIT_DIR) == [UnitDependency("beta")]

    def test_file_dependency_scopes(self, parser: DependencyParser):
        """Options select the scope; the default is INCLUDE."""
        text = "zip /libs/a.zip\nzip -include /libs/b.zip\nzip -PROVIDED /libs/c.whl\n"
        assert parser.parse(text, "alpha", UNIT_DIR) == [
            FileDependency(Path("/libs/a.zip"), DependencyScope.INCLUDE),
            FileDependency(Path("/libs/b.zip"), DependencyScope.INCLUDE),
            FileDependency(Path("/libs/c.whl"), DependencyScope.PROVIDED),
        ]

    def test_relative_path_uses_unit_dir(self, parser: DependencyParser):
        """A leading ./ resolves against the unit directory."""
        [dependency] = parser.parse("zip ./lib/tools.zip", "alpha", UNIT_DIR)
        assert dependency.path == UNIT_DIR / "lib" / "tools.zip"

    def test_backslashes_are_normalised(self, parser: DependencyParser):
        """Windows separators are accepted."""
        [dependency] = parser.parse("zip .\\lib\\tools.zip", "alpha", UNIT_DIR)
        assert dependency.path == UNIT_DIR / "lib" / "tools.zip"

    @pytest.mark.parametrize(
        "line",
        [
            "project",
            "project beta gamma",
            "jar lib.jar",
            "zip lib.tar.gz",
            "zip -optional lib.zip",
            "zip -include",
            "something else",
        ],
    )
    def test_invalid_lines(self, parser: DependencyParser, line: str):
        """Malformed lines raise ConfigurationError naming the unit."""
        with pytest.raises(ConfigurationError) as exc_info:
            parser.parse(line, "alpha", UNIT_DIR)
        assert exc_info.value.unit_name == "alpha"

    def test_custom_archive_suffixes(self):
        """Accepted archive suffixes are configurable."""
        parser = DependencyParser(archive_suffixes=(".pyz",))
        [dependency] = parser.parse("zip /opt/app.pyz", "alpha", UNIT_DIR)
        assert dependency.path == Path("/opt/app.pyz")
        with pytest.raises(ConfigurationError):
            parser.parse("zip /opt/lib.zip", "alpha", UNIT_DIR)
