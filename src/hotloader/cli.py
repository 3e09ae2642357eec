"""hotloader CLI entry point."""

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from hotloader.config import RegistryConfig
from hotloader.console import UnitCommandExecutor, format_compiler_feedback
from hotloader.exceptions import UnitError
from hotloader.registry import CollectingFeedback, DependentsHandling, UnitRegistry
from hotloader.unit.listener import LoggingStateListener
from hotloader.watch import UnitChangeWatcher

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=err_console)],
    )


def _registry(ctx: click.Context) -> UnitRegistry:
    registry: UnitRegistry = ctx.obj["registry"]
    registry.discover_units()
    return registry


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.option(
    "--units-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default="units",
    show_default=True,
    envvar="HOTLOADER_UNITS_DIR",
    help="Directory holding one subdirectory per unit",
)
@click.option("--python", "python_executable", default=None, help="Interpreter used to compile units")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, units_dir: Path, python_executable: str | None) -> None:
    """hotloader - hot-load and hot-unload source units."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)

    config = RegistryConfig(units_dir=units_dir.absolute(), python_executable=python_executable or sys.executable)
    ctx.obj["config"] = config
    ctx.obj["registry"] = UnitRegistry(config, state_listener=LoggingStateListener())


@cli.command("list")
@click.pass_context
def list_units(ctx: click.Context) -> None:
    """List units and their status."""
    registry = _registry(ctx)
    snapshots = registry.snapshot()
    if not snapshots:
        console.print(f"[yellow]No units found in {registry.units_dir}[/yellow]")
        return

    table = Table(title="Units")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Compiled")
    table.add_column("Dependencies")

    for snapshot in snapshots:
        if snapshot.disabled:
            status = "[dim]disabled[/dim]"
        elif snapshot.loaded:
            status = "[green]loaded[/green]"
        else:
            status = "[yellow]unloaded[/yellow]"
        dependencies = snapshot.descriptor_error or ", ".join(snapshot.dependencies) or "-"
        table.add_row(
            escape(snapshot.name),
            status,
            "yes" if snapshot.compiled else "no",
            escape(dependencies),
        )

    console.print(table)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print snapshots as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show a summary of the units directory."""
    registry = _registry(ctx)
    snapshots = registry.snapshot()
    if as_json:
        click.echo(json.dumps([s.model_dump() for s in snapshots], indent=2))
        return

    console.print(f"[bold]Units directory:[/bold] {registry.units_dir}")
    console.print(f"  Units: {len(snapshots)}")
    console.print(f"  Compiled: {sum(1 for s in snapshots if s.compiled)}")
    console.print(f"  Disabled: {sum(1 for s in snapshots if s.disabled)}")
    broken = [s.name for s in snapshots if s.descriptor_error]
    if broken:
        console.print(f"  [red]Invalid descriptors: {escape(', '.join(broken))}[/red]")


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Recompile and load every unit once, report, and unload again."""
    registry = _registry(ctx)
    feedback = CollectingFeedback()
    result = registry.recompile_all(feedback)

    text = format_compiler_feedback(feedback.messages, registry.config.compiler_feedback_limit)
    if text:
        console.print("[red]Compiler feedback:[/red]")
        console.print(f"[yellow]{escape(text)}[/yellow]")
    for error in feedback.errors:
        console.print(f"[red]{escape(str(error))}[/red]")

    table = Table(title="Recompile result")
    table.add_column("Set", style="cyan")
    table.add_column("Units")
    for label, units in (
        ("added", result.added),
        ("removed", result.removed),
        ("compiled", result.compiled),
        ("loaded", result.loaded),
        ("errored", result.errored),
    ):
        table.add_row(label, escape(", ".join(sorted(u.name for u in units))) or "-")
    console.print(table)

    registry.unload_all(feedback.handle_error)
    if result.errored:
        console.print(f"[red]{len(result.errored)} unit(s) with errors[/red]")
        sys.exit(1)
    console.print("[green]All units compiled and loaded[/green]")


def _set_disabled(ctx: click.Context, name: str, disabled: bool) -> None:
    registry: UnitRegistry = ctx.obj["registry"]
    try:
        unit = registry.discover_unit(name)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    if unit is None:
        console.print(f"[red]Unit not found: {escape(name)}[/red]")
        sys.exit(1)
    unit.set_disabled(disabled)
    console.print(f"[green]Unit {escape(name)} {'disabled' if disabled else 'enabled'}[/green]")


@cli.command()
@click.argument("name")
@click.pass_context
def enable(ctx: click.Context, name: str) -> None:
    """Remove a unit's disabled marker."""
    _set_disabled(ctx, name, False)


@cli.command()
@click.argument("name")
@click.pass_context
def disable(ctx: click.Context, name: str) -> None:
    """Create a unit's disabled marker."""
    _set_disabled(ctx, name, True)


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Load every unit and read commands until 'exit'."""
    registry = _registry(ctx)
    stopped = False

    def stop() -> None:
        nonlocal stopped
        stopped = True

    executor = UnitCommandExecutor(registry, console, registry.state_listener, on_exit=stop)
    executor.execute(["load"])
    console.print("[bold green]Type 'help' for a list of commands.[/bold green]")
    try:
        while not stopped:
            try:
                line = console.input("[bold]> [/bold]")
            except EOFError:
                break
            executor.execute_line(line)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
    finally:
        unloaded = registry.unload_all(executor.report_error)
        console.print(f"[yellow]Unloaded {len(unloaded)} unit(s)[/yellow]")


@cli.command()
@click.option("--poll-interval", default=2.0, help="Seconds between scans")
@click.option("--debounce", default=1.0, help="Quiet seconds before recompiling")
@click.pass_context
def watch(ctx: click.Context, poll_interval: float, debounce: float) -> None:
    """Load every unit and recompile units whose sources change."""
    registry = _registry(ctx)
    config: RegistryConfig = ctx.obj["config"]
    registry.load_all()

    def on_change(names: list[str]) -> None:
        for name in names:
            try:
                unit = registry.discover_unit(name)
            except ValueError as e:
                logger.warning(f"Ignoring change in {name}: {e}")
                continue
            if unit is None:
                continue
            if not unit.exists():
                registry.unload_and_remove_if_deleted(name)
                continue
            if unit.is_disabled:
                continue
            feedback = CollectingFeedback()
            try:
                registry.recompile(unit, DependentsHandling.RECOMPILE, feedback)
            except UnitError as e:
                console.print(f"[red]{escape(str(e))}[/red]")
            text = format_compiler_feedback(feedback.messages, config.compiler_feedback_limit)
            if text:
                console.print(f"[yellow]{escape(text)}[/yellow]")

    watcher = UnitChangeWatcher(config.units_dir, config.source_dir_name, config.descriptor_name)
    console.print(f"[bold green]Watching {config.units_dir}[/bold green]")
    try:
        watcher.watch_loop(on_change, poll_interval=poll_interval, debounce_seconds=debounce)
    except KeyboardInterrupt:
        console.print("\n[yellow]Watcher stopped[/yellow]")
    finally:
        registry.unload_all()


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
