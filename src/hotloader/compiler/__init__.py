"""Compiler invocation for unit sources."""

from hotloader.compiler.interface import DiagnosticCoalescer, FeedbackHandler, UnitCompiler
from hotloader.compiler.python import PythonCompiler

__all__ = [
    "DiagnosticCoalescer",
    "FeedbackHandler",
    "PythonCompiler",
    "UnitCompiler",
]
