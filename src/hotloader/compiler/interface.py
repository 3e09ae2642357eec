"""Compiler invocation boundary.

A compiler takes the sources of one unit plus a classpath and produces
binaries in an output directory. Diagnostics are streamed through a
callback while the compiler runs.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

FeedbackHandler = Callable[[str], None]


class UnitCompiler(ABC):
    """Abstract compiler used by units."""

    @abstractmethod
    def compile(
        self,
        sources: list[Path],
        source_root: Path,
        output_dir: Path,
        classpath: list[Path],
        feedback: FeedbackHandler,
    ) -> bool:
        """Compile ``sources`` into ``output_dir``.

        Args:
            sources: Source files, all located below ``source_root``.
            source_root: Root the output layout is mirrored from.
            output_dir: Existing, empty output directory.
            classpath: Locations the compiled code may import from.
            feedback: Receives each coalesced diagnostic message as produced.

        Returns:
            True if compilation succeeded.

        Raises:
            OSError: If the compiler could not be run.
        """
        ...


class DiagnosticCoalescer:
    """Groups raw compiler output lines into discrete messages.

    A line that is empty or starts with whitespace continues the current
    message; any other line starts a new one. A message is handed to the
    handler as soon as the next one starts, and the last one on ``close()``.
    """

    def __init__(self, handler: FeedbackHandler):
        self._handler = handler
        self._buffer = ""
        self._closed = False

    def write(self, line: str) -> None:
        if self._closed:
            raise ValueError("Coalescer is closed")
        line = line.replace("\r", "")
        if not line.endswith("\n"):
            line += "\n"
        if line == "\n" or line[0] in " \t":
            self._buffer += line
            return
        self._flush()
        self._buffer = line

    def close(self) -> None:
        if not self._closed:
            self._flush()
            self._closed = True

    def _flush(self) -> None:
        if self._buffer:
            message, self._buffer = self._buffer, ""
            self._handler(message)

    def __enter__(self) -> "DiagnosticCoalescer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
