"""Registry configuration."""

import sys
from pathlib import Path

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class RegistryConfig(BaseModel):
    """Layout and tooling settings shared by a registry and its units."""

    units_dir: Path = Field(default_factory=lambda: Path.cwd() / "units")

    # Directory and file names inside every unit directory
    source_dir_name: str = "src"
    bin_dir_name: str = "bin"
    staging_dir_name: str = "bin_new"
    descriptor_name: str = "dependencies.txt"
    disabled_marker: str = ".disabled"

    # File dependencies must end in one of these
    archive_suffixes: tuple[str, ...] = (".zip", ".whl")

    # Interpreter used to byte-compile unit sources
    python_executable: str = Field(default_factory=lambda: sys.executable)

    # Maximum compiler messages shown to a console user
    compiler_feedback_limit: int = Field(default=5, ge=0)

    @field_validator(
        "source_dir_name",
        "bin_dir_name",
        "staging_dir_name",
        "descriptor_name",
        "disabled_marker",
    )
    @classmethod
    def _plain_name(cls, value: str) -> str:
        if not value or value in (".", "..") or "/" in value or "\\" in value:
            raise ValueError(f"must be a plain file name, got {value!r}")
        return value

    @field_validator("staging_dir_name")
    @classmethod
    def _staging_differs(cls, value: str, info: ValidationInfo) -> str:
        if value == info.data.get("bin_dir_name"):
            raise ValueError("staging_dir_name must differ from bin_dir_name")
        return value
