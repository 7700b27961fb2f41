"""Main CLI application for ideup."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ideup import __version__
from ideup.config.parser import (
    ConfigurationError,
    load_config,
    merge_overrides,
    parse_pairs,
    split_csv,
)
from ideup.config.schemas import UpdaterConfig
from ideup.core.probe import default_probes, detect_build
from ideup.core.updater import (
    PluginUpdater,
    UpdateResult,
    list_plugins,
    load_registry,
    require_build,
)

# Create the main Typer app
app = typer.Typer(
    name="ideup",
    help="Update locally installed IDE plugins for the current IDE build",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

# Set up logger for the ideup package
logger = logging.getLogger("ideup")

CONFIG_ERROR_EXIT = 2

PluginsDirOption = Annotated[
    Path | None,
    typer.Option("--plugins-dir", "-d", help="Path to the IDE plugins directory"),
]
BuildOption = Annotated[
    str | None,
    typer.Option("--build", "-b", help="IDE build, e.g. RM-252.23892.415 (auto-detect if omitted)"),
]
ProductOption = Annotated[
    str | None,
    typer.Option("--product", help="Product code used to auto-detect the build (default: RM)"),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="YAML config file"),
]


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2=DEBUG, 3+=DEBUG with source paths
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {escape(message)}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {escape(message)}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {escape(message)}")


def build_config(config_path: Path | None, **overrides: object) -> UpdaterConfig:
    """Load the config file and apply command-line overrides."""
    return merge_overrides(load_config(config_path), **overrides)


def resolve_build(config: UpdaterConfig) -> str:
    """Use the configured build or detect it from the installed IDE."""
    build = config.build or detect_build(default_probes(config.product))
    if build is None:
        raise ConfigurationError(
            f"Could not detect build; pass --build, e.g. {config.product}-252.23892.415"
        )
    require_build(build)
    return build


def fail_config(error: ConfigurationError) -> typer.Exit:
    print_error(str(error))
    return typer.Exit(CONFIG_ERROR_EXIT)


@app.callback()
def callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug, -vvv trace)",
        ),
    ] = 0,
) -> None:
    """ideup - update IDE plugins for the current IDE build."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the ideup version."""
    console.print(f"ideup {__version__}")


@app.command("list")
def list_command(
    plugins_dir: PluginsDirOption = None,
    build: BuildOption = None,
    product: ProductOption = None,
    config_path: ConfigOption = None,
) -> None:
    """List installed plugins with their compatibility status."""
    try:
        config = build_config(config_path, plugins_dir=plugins_dir, build=build, product=product)
        build_str = resolve_build(config)
        registry = load_registry(config.plugins_dir)
        statuses = list_plugins(registry, build_str)
    except ConfigurationError as e:
        raise fail_config(e) from e

    if not statuses:
        console.print(f"No plugins found in {config.plugins_dir}")
        return

    table = Table(title=f"Installed plugins for build {build_str}")
    table.add_column("Plugin", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Since", style="dim")
    table.add_column("Until", style="dim")
    table.add_column("Status")

    for status in statuses:
        record = status.record
        label = "[green]OK[/green]" if status.is_compatible else "[red]incompatible[/red]"
        if record.backup_path is not None:
            label += f" [yellow](only in {escape(record.backup_path.name)})[/yellow]"
        table.add_row(
            escape(record.id),
            escape(record.version or "unknown"),
            escape(record.compatibility.since or "-"),
            escape(record.compatibility.until or "-"),
            label,
        )

    console.print(table)


@app.command()
def update(
    plugins_dir: PluginsDirOption = None,
    build: BuildOption = None,
    product: ProductOption = None,
    config_path: ConfigOption = None,
    only: Annotated[
        list[str] | None,
        typer.Option("--only", help="Plugin ids to update (repeat or comma-separate)"),
    ] = None,
    only_incompatible: Annotated[
        bool,
        typer.Option(
            "--only-incompatible",
            help="Only update plugins incompatible with the current build",
        ),
    ] = False,
    downloads_host: Annotated[
        str | None,
        typer.Option(
            "--downloads-host",
            help="Rewrite /files/ downloads to this host, e.g. downloads.marketplace.jetbrains.com",
        ),
    ] = None,
    pin: Annotated[
        list[str] | None,
        typer.Option("--pin", help="Pin a version: ID=VERSION (repeatable)"),
    ] = None,
    direct: Annotated[
        list[str] | None,
        typer.Option("--direct", help="Use a direct download URL: ID=URL (repeatable)"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show actions without downloading or installing"),
    ] = False,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Per-request timeout in seconds"),
    ] = None,
    deadline: Annotated[
        float | None,
        typer.Option("--deadline", help="Per-plugin time limit in seconds"),
    ] = None,
    max_redirects: Annotated[
        int | None,
        typer.Option("--max-redirects", help="Redirects to follow when downloading"),
    ] = None,
    extractor: Annotated[
        str | None,
        typer.Option("--extractor", help="Archive extractor: zipfile or unzip"),
    ] = None,
) -> None:
    """Download and install plugin updates for the current build."""
    try:
        config = build_config(
            config_path,
            plugins_dir=plugins_dir,
            build=build,
            product=product,
            only=split_csv(only or []),
            only_incompatible=only_incompatible or None,
            downloads_host=downloads_host,
            pins=parse_pairs(pin or [], "--pin"),
            direct_urls=parse_pairs(direct or [], "--direct"),
            dry_run=dry_run or None,
            timeout=timeout,
            plugin_deadline=deadline,
            max_redirects=max_redirects,
            extractor=extractor,
        )
        build_str = resolve_build(config)
        registry = load_registry(config.plugins_dir)
        updater = PluginUpdater(config, build_str)
    except ConfigurationError as e:
        raise fail_config(e) from e

    console.print(f"Build: {build_str}")
    summary = updater.update(registry)
    if not summary.results:
        console.print(f"No matching plugins to update in {config.plugins_dir}")
        return

    for result in summary.results:
        print_result(result)

    console.print()
    if summary.all_successful:
        print_success(f"Processed {summary.success_count} plugin(s). Restart the IDE to load them.")
    else:
        print_error(
            f"{summary.failure_count} of {len(summary.results)} plugin(s) failed to update"
        )
        raise typer.Exit(1)


def print_result(result: UpdateResult) -> None:
    """Print one plugin's update result."""
    current = result.current_version or "unknown"
    target = result.target_version or "?"
    console.print(f"[cyan]{escape(result.plugin_id)}[/cyan] {escape(current)} -> {escape(target)}")
    if result.url:
        console.print(f"  URL: {escape(result.url)}")

    if not result.success:
        error_console.print(f"  [red]failed:[/red] {escape(result.message)}")
        return
    if result.dry_run:
        console.print(f"  (dry-run) {escape(result.message)}")
        return

    outcome = result.outcome
    if outcome and outcome.record:
        post = outcome.record
        line = f"  installed: {post.id} {post.version or 'unknown'} {post.compatibility}"
        console.print(escape(line), end="")
        console.print("" if outcome.is_compatible else " [yellow](still incompatible!)[/yellow]")
    else:
        print_warning("  installed, but no plugin.xml was found in the new files")
    if outcome and outcome.backup_path:
        console.print(f"  backup: {escape(str(outcome.backup_path))}")


if __name__ == "__main__":
    app()
