"""Text command interface over a registry: help, list, recompile, load, unload, exit."""

import logging
from collections.abc import Callable

from rich.console import Console
from rich.markup import escape

from hotloader import __version__
from hotloader.exceptions import (
    CompileError,
    LoadError,
    OrderingViolation,
    StructuralError,
    UnitError,
    UnloadError,
)
from hotloader.registry.feedback import FeedbackSink
from hotloader.registry.manager import UnitRegistry
from hotloader.registry.results import DependentsHandling
from hotloader.unit.listener import UnitStateListener
from hotloader.unit.unit import UnloadMethod

logger = logging.getLogger(__name__)

COMMAND_HELP = {
    "help": ("help [command]", "Displays this page or information about a command."),
    "list": ("list", "Displays a list of all units and their status."),
    "recompile": (
        "recompile [unit]",
        "Recompiles, unloads and loads the given unit or all units. Compiling happens"
        " before anything is unloaded, so the old unit stays loaded when compiling fails.",
    ),
    "load": (
        "load [unit]",
        "Loads the given unit or all units. Only the compiled binaries have to be valid."
        " Newly added units are picked up as well.",
    ),
    "unload": (
        "unload [unit]",
        "Unloads the given unit or all units. Units whose directory no longer exists are removed.",
    ),
    "exit": ("exit", "Unloads everything and stops."),
}


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def format_compiler_feedback(messages: list[str], limit: int) -> str | None:
    """Join compiler messages for display.

    At most ``limit`` messages are shown, followed by "... N more". The last
    message is the compiler's summary line and is always kept.
    """
    if not messages or limit <= 0:
        return None
    *body, summary = messages
    lines = body[:limit]
    if len(body) > limit:
        lines.append(f"... {len(body) - limit} more")
    lines.append(summary)
    return "\n".join(line.rstrip("\n") for line in lines).replace("\t", "    ")


class _ConsoleFeedback(FeedbackSink):
    def __init__(self, executor: "UnitCommandExecutor"):
        self.executor = executor
        self.messages: list[str] = []

    def handle_error(self, error: UnitError) -> None:
        self.executor.report_error(error)

    def compiler_feedback(self, message: str) -> None:
        self.messages.append(message)


class UnitCommandExecutor:
    """Executes console commands against a registry.

    Output goes to a rich console. Errors never escape ``execute``; they
    are printed for the user instead.
    """

    def __init__(
        self,
        registry: UnitRegistry,
        console: Console | None = None,
        state_listener: UnitStateListener | None = None,
        on_exit: Callable[[], None] | None = None,
        compiler_feedback_limit: int | None = None,
        dependents_handling: DependentsHandling = DependentsHandling.RECOMPILE,
    ):
        self.registry = registry
        self.console = console or Console()
        self.state_listener = state_listener
        self.on_exit = on_exit
        self.dependents_handling = dependents_handling
        if compiler_feedback_limit is None:
            compiler_feedback_limit = registry.config.compiler_feedback_limit
        self.compiler_feedback_limit = compiler_feedback_limit

    # --- output ------------------------------------------------------------

    def info(self, message: str) -> None:
        self.console.print(f"[green]{message}[/green]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]{message}[/red]")

    def report_error(self, error: UnitError) -> None:
        label = type(error).__name__
        text = f"{label} in unit {error.unit_name}: {error.message}" if error.unit_name else f"{label}: {error.message}"
        self.error(escape(text))
        if error.__cause__ is not None:
            logger.debug(f"{label} cause", exc_info=error.__cause__)

    def _show_compiler_feedback(self, messages: list[str]) -> None:
        text = format_compiler_feedback(messages, self.compiler_feedback_limit)
        if text is not None:
            self.error("Compiler feedback:")
            self.console.print(f"[yellow]{escape(text)}[/yellow]")

    # --- dispatch ----------------------------------------------------------

    def execute(self, args: list[str]) -> None:
        """Run one command given as its split words."""
        if not args:
            args = ["help"]
        command, params = args[0].lower(), args[1:]

        handler = {
            "help": self._help,
            "list": self._list,
            "recompile": self._recompile,
            "load": self._load,
            "unload": self._unload,
            "exit": self._exit,
        }.get(command)
        if handler is None or (command == "exit" and self.on_exit is None):
            self.error(f"Unknown command: {escape(args[0])}")
            return
        if len(params) > 1 or (command in ("list", "exit") and params):
            self.error("Too many arguments.")
            return
        handler(params[0] if params else None)

    def execute_line(self, line: str) -> None:
        self.execute(line.split())

    def _help(self, command: str | None) -> None:
        commands = [c for c in COMMAND_HELP if c != "exit" or self.on_exit is not None]
        if command is None:
            self.info(f"Version: {__version__}.")
            for name in commands:
                usage, description = COMMAND_HELP[name]
                self.console.print(f"[yellow]  - {escape(usage)}[/yellow]")
                self.console.print(f"[cyan]    {description}[/cyan]")
            return
        if command.lower() not in commands:
            self.error(f"Unknown command: {escape(command)}")
            return
        usage, description = COMMAND_HELP[command.lower()]
        self.console.print(f"[yellow]{escape(usage)}[/yellow] - [cyan]{description}[/cyan]")

    def _list(self, _: str | None) -> None:
        units = self.registry.units
        if not units:
            self.info("There are no units available.")
            return
        names = ", ".join(
            f"[bold green]{escape(u.name)}[/bold green]" if u.is_loaded else f"[red]{escape(u.name)}[/red]"
            for u in units
        )
        self.console.print(f"Units ([bold green]loaded[/bold green]/[red]unloaded[/red]): {names}.")

    def _recompile(self, name: str | None) -> None:
        feedback = _ConsoleFeedback(self)
        if name is None:
            result = self.registry.recompile_all(feedback, self.state_listener)
            self._show_compiler_feedback(feedback.messages)
            self.info("Recompile complete.")
            for label, units in (
                ("added", result.added),
                ("removed", result.removed),
                ("compiled", result.compiled),
                ("unloaded", result.unloaded),
                ("loaded", result.loaded),
                ("with errors", result.errored),
            ):
                self.console.print(f"    Units {label}: {len(units)}")
            return

        try:
            unit = self.registry.discover_unit(name, self.state_listener)
        except ValueError as e:
            self.error(escape(str(e)))
            return
        if unit is None:
            self.error(f"Unit does not exist: {escape(name)}")
            return

        if not unit.exists():
            unloaded = self.registry.unload_and_remove_if_deleted(name, self.report_error)
            if not unloaded:
                self.info(f"Removed unit because it no longer exists: {escape(name)}")
            else:
                self.info(f"Removed and unloaded unit because it no longer exists: {escape(name)}")
                dependents = [u.name for u in unloaded[1:]]
                if dependents:
                    self.info(f"Also unloaded dependents: {escape(', '.join(dependents))}")
            return

        success = False
        try:
            self.registry.recompile(unit, self.dependents_handling, feedback)
            success = True
        except (CompileError, OrderingViolation, StructuralError) as e:
            self.report_error(e)
        self._show_compiler_feedback(feedback.messages)
        self.info(f"Recompile complete{'' if success else ' (with errors)'}.")

    def _load(self, name: str | None) -> None:
        if name is None:
            self.registry.discover_units(self.state_listener)
            result = self.registry.load_all(self.report_error)
            self.info(f"Loaded {_plural(len(result.loaded), 'unit')}.")
            return

        try:
            unit = self.registry.discover_unit(name, self.state_listener)
        except ValueError as e:
            self.error(escape(str(e)))
            return
        if unit is None:
            self.error(f"Unit does not exist: {escape(name)}")
            return
        if unit.is_loaded:
            self.error(f"Unit already loaded: {escape(name)}")
            return
        try:
            unit.load()
        except LoadError as e:
            self.report_error(e)
            return
        self.info(f"Unit loaded: {escape(name)}")

    def _unload(self, name: str | None) -> None:
        if name is None:
            unloaded = self.registry.unload_all(self.report_error)
            removed = self.registry.remove_deleted_units()
            self.info(f"Unloaded {_plural(len(unloaded), 'unit')}.")
            if removed:
                self.info(f"Removed {_plural(len(removed), 'unit')} whose directory no longer exists.")
            return

        unit = self.registry.get_unit(name)
        if unit is None:
            self.error(f"Unit does not exist: {escape(name)}")
            return
        if unit.is_loaded:
            try:
                unit.unload(UnloadMethod.FAIL_IF_LOADED_DEPENDENTS, self.report_error)
                self.info(f"Unit unloaded: {escape(name)}")
            except UnloadError as e:
                self.report_error(e)
        else:
            self.error(f"Unit was not loaded: {escape(name)}")

        if not unit.is_loaded and self.registry.remove_deleted_unit(name):
            self.info(f"Removed unit because its directory no longer exists: {escape(name)}")

    def _exit(self, _: str | None) -> None:
        if self.on_exit is not None:
            self.on_exit()
