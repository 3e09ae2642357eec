"""Unit registry and the types its bulk operations report with."""

from hotloader.registry.feedback import CollectingFeedback, ErrorHandler, FeedbackSink, log_error
from hotloader.registry.manager import UnitRegistry
from hotloader.registry.results import (
    DependentsHandling,
    LoadAllResult,
    RecompileAllResult,
    UnitSnapshot,
)

__all__ = [
    "CollectingFeedback",
    "DependentsHandling",
    "ErrorHandler",
    "FeedbackSink",
    "LoadAllResult",
    "RecompileAllResult",
    "UnitRegistry",
    "UnitSnapshot",
    "log_error",
]
