"""Tests for compiler invocation and diagnostic handling."""

import importlib.util
import sys
from pathlib import Path

import pytest

from hotloader.compiler import DiagnosticCoalescer, PythonCompiler
from hotloader.compiler.worker import compile_tree, main


class TestDiagnosticCoalescer:
    """Tests for DiagnosticCoalescer."""

    def test_continuation_lines_stay_together(self):
        """Indented and empty lines continue the previous message."""
        messages: list[str] = []
        with DiagnosticCoalescer(messages.append) as coalescer:
            coalescer.write("a.py:1: error: invalid syntax\n")
            coalescer.write("    x = (\n")
            coalescer.write("        ^\n")
            coalescer.write("\n")
            coalescer.write("b.py:2: warning: something\n")
            coalescer.write("2 errors")

        assert messages == [
            "a.py:1: error: invalid syntax\n    x = (\n        ^\n\n",
            "b.py:2: warning: something\n",
            "2 errors\n",
        ]

    def test_messages_are_streamed(self):
        """A message is delivered as soon as the next one starts."""
        messages: list[str] = []
        coalescer = DiagnosticCoalescer(messages.append)
        coalescer.write("first\n")
        assert messages == []
        coalescer.write("second\n")
        assert messages == ["first\n"]
        coalescer.close()
        assert messages == ["first\n", "second\n"]

    def test_write_after_close_fails(self):
        """A closed coalescer rejects input."""
        coalescer = DiagnosticCoalescer(lambda message: None)
        coalescer.close()
        with pytest.raises(ValueError):
            coalescer.write("late\n")


class TestWorker:
    """Tests for the in-interpreter byte-compiler."""

    def test_compiles_tree(self, tmp_path: Path, capsys):
        """Every source becomes a pyc at the mirrored location."""
        src = tmp_path / "src"
        (src / "pkg").mkdir(parents=True)
        (src / "main.py").write_text("VALUE = 1\n")
        (src / "pkg" / "__init__.py").write_text("")
        out = tmp_path / "bin"

        files = [src / "main.py", src / "pkg" / "__init__.py"]
        assert compile_tree(src, out, files) == (0, 0)

        pyc = out / "main.pyc"
        assert pyc.is_file()
        assert (out / "pkg" / "__init__.pyc").is_file()
        assert pyc.read_bytes()[:4] == importlib.util.MAGIC_NUMBER
        assert capsys.readouterr().out == ""

    def test_reports_syntax_errors(self, tmp_path: Path, capsys):
        """Syntax errors are printed with location and summarised."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "broken.py").write_text("def oops(:\n    pass\n")

        status = main([str(src), str(tmp_path / "bin"), str(src / "broken.py")])

        out = capsys.readouterr().out
        assert status == 1
        assert "broken.py:1: error:" in out
        assert out.rstrip().endswith("1 error")

    def test_reports_warnings(self, tmp_path: Path, capsys):
        """Compile-time warnings are printed but do not fail."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "warns.py").write_text("assert (1, 'always true')\n")

        status = main([str(src), str(tmp_path / "bin"), str(src / "warns.py")])

        out = capsys.readouterr().out
        assert status == 0
        assert "warning: [SyntaxWarning]" in out
        assert out.rstrip().splitlines()[-1].endswith(("warning", "warnings"))

    def test_usage(self, capsys):
        """Too few arguments is a usage error."""
        assert main([]) == 2


@pytest.mark.compiler
class TestPythonCompiler:
    """Tests for the child-interpreter compiler."""

    def test_successful_compile(self, tmp_path: Path):
        """A valid tree compiles without diagnostics."""
        src = tmp_path / "unit" / "src"
        src.mkdir(parents=True)
        (src / "main.py").write_text("VALUE = 1\n")
        out = tmp_path / "unit" / "bin"
        out.mkdir()

        messages: list[str] = []
        compiler = PythonCompiler(sys.executable)
        ok = compiler.compile([src / "main.py"], src, out, [Path(p) for p in sys.path if p], messages.append)

        assert ok
        assert messages == []
        assert (out / "main.pyc").is_file()

    def test_failed_compile_streams_feedback(self, tmp_path: Path):
        """Errors come back as coalesced messages and the call fails."""
        src = tmp_path / "unit" / "src"
        src.mkdir(parents=True)
        (src / "bad.py").write_text("x = (\n")
        out = tmp_path / "unit" / "bin"
        out.mkdir()

        messages: list[str] = []
        compiler = PythonCompiler(sys.executable)
        ok = compiler.compile([src / "bad.py"], src, out, [Path(p) for p in sys.path if p], messages.append)

        assert not ok
        assert len(messages) == 2
        assert "bad.py:1: error:" in messages[0]
        assert messages[-1] == "1 error\n"

    def test_command_enables_deprecation_warnings(self, tmp_path: Path):
        """The child runs the worker module with deprecation warnings on."""
        compiler = PythonCompiler("python-x")
        cmd = compiler._build_command([tmp_path / "a.py"], tmp_path, tmp_path / "bin")
        assert cmd[:5] == ["python-x", "-W", "always::DeprecationWarning", "-m", "hotloader.compiler.worker"]
        assert cmd[5:] == [str(tmp_path), str(tmp_path / "bin"), str(tmp_path / "a.py")]
