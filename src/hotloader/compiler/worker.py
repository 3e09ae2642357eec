"""Byte-compiler run in a child interpreter.

Usage:
    python -W always::DeprecationWarning -m hotloader.compiler.worker \\
        SOURCE_ROOT OUTPUT_DIR FILE...

Every FILE is compiled to OUTPUT_DIR/<path relative to SOURCE_ROOT>.pyc as an
unchecked-hash pyc, so it loads without its source. Errors and warnings are
printed one per message; continuation lines are indented. The last line
summarises the counts. Exit status is 1 if any file failed.
"""

import py_compile
import sys
import warnings
from pathlib import Path


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _report_error(source: Path, error: py_compile.PyCompileError) -> None:
    exc = error.exc_value
    if isinstance(exc, SyntaxError):
        print(f"{source}:{exc.lineno or 0}: error: {exc.msg}")
        if exc.text:
            print(f"    {exc.text.rstrip()}")
            if exc.offset:
                print(f"    {' ' * (exc.offset - 1)}^")
    else:
        print(f"{source}: error: {error.exc_type_name}: {exc}")


def compile_tree(source_root: Path, output_dir: Path, files: list[Path]) -> tuple[int, int]:
    """Compile ``files`` and return (errors, warnings)."""
    errors = 0
    warning_count = 0
    for source in files:
        target = output_dir / source.relative_to(source_root).with_suffix(".pyc")
        target.parent.mkdir(parents=True, exist_ok=True)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                py_compile.compile(
                    str(source),
                    cfile=str(target),
                    dfile=str(source),
                    doraise=True,
                    invalidation_mode=py_compile.PycInvalidationMode.UNCHECKED_HASH,
                )
            except py_compile.PyCompileError as e:
                errors += 1
                _report_error(source, e)
        for warning in caught:
            warning_count += 1
            print(
                f"{warning.filename}:{warning.lineno}: warning:"
                f" [{warning.category.__name__}] {warning.message}"
            )
    return errors, warning_count


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) < 2:
        print("usage: worker SOURCE_ROOT OUTPUT_DIR FILE...", file=sys.stderr)
        return 2

    source_root = Path(args[0]).resolve()
    output_dir = Path(args[1]).resolve()
    files = [Path(f).resolve() for f in args[2:]]

    errors, warning_count = compile_tree(source_root, output_dir, files)
    if warning_count:
        print(_plural(warning_count, "warning"))
    if errors:
        print(_plural(errors, "error"))
    sys.stdout.flush()
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
