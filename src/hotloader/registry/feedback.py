"""Sinks that receive per-unit errors and compiler output from bulk operations."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from hotloader.exceptions import UnitError

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[UnitError], None]


def log_error(error: UnitError) -> None:
    """Default error handler: log and continue."""
    logger.warning(f"{error}", exc_info=error.__cause__)


class FeedbackSink(ABC):
    """Receives what a recompile produces besides its result."""

    @abstractmethod
    def handle_error(self, error: UnitError) -> None:
        """Called once for every per-unit failure."""
        ...

    @abstractmethod
    def compiler_feedback(self, message: str) -> None:
        """Called for every compiler diagnostic, as it is produced."""
        ...


class CollectingFeedback(FeedbackSink):
    """Sink that logs and keeps everything it receives."""

    def __init__(self) -> None:
        self.errors: list[UnitError] = []
        self.messages: list[str] = []

    def handle_error(self, error: UnitError) -> None:
        log_error(error)
        self.errors.append(error)

    def compiler_feedback(self, message: str) -> None:
        logger.debug(f"compiler: {message}")
        self.messages.append(message)

    def errors_for(self, unit_name: str) -> list[UnitError]:
        return [e for e in self.errors if e.unit_name == unit_name]
