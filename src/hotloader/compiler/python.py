"""Compiler that byte-compiles unit sources in a child interpreter."""

import logging
import os
import subprocess
import sys
from pathlib import Path

from hotloader.compiler.interface import DiagnosticCoalescer, FeedbackHandler, UnitCompiler

logger = logging.getLogger(__name__)

WORKER_MODULE = "hotloader.compiler.worker"


class PythonCompiler(UnitCompiler):
    """Runs ``hotloader.compiler.worker`` with deprecation warnings enabled.

    The classpath becomes the child's PYTHONPATH. The child's combined
    output is read line by line and streamed as it arrives.
    """

    def __init__(self, python_executable: str | None = None):
        self.python_executable = python_executable or sys.executable

    def _build_command(self, sources: list[Path], source_root: Path, output_dir: Path) -> list[str]:
        return [
            self.python_executable,
            "-W",
            "always::DeprecationWarning",
            "-m",
            WORKER_MODULE,
            str(source_root),
            str(output_dir),
            *(str(source) for source in sources),
        ]

    def compile(
        self,
        sources: list[Path],
        source_root: Path,
        output_dir: Path,
        classpath: list[Path],
        feedback: FeedbackHandler,
    ) -> bool:
        cmd = self._build_command(sources, source_root, output_dir)

        env = os.environ.copy()
        env["PYTHONPATH"] = os.pathsep.join(str(entry) for entry in classpath)
        env["PYTHONDONTWRITEBYTECODE"] = "1"

        logger.debug(f"Compiling {len(sources)} file(s) into {output_dir}")
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=env,
        )
        if process.stdout is None:
            raise RuntimeError("Compiler process has no output pipe")
        with DiagnosticCoalescer(feedback) as coalescer:
            for line in process.stdout:
                coalescer.write(line)
        returncode = process.wait()

        if returncode != 0:
            logger.debug(f"Compiler exited with code {returncode}")
        return returncode == 0
