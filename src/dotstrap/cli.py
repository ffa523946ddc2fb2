"""Command-line interface for dotstrap."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

import tomli_w
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import DEFAULT_CONFIG_FILENAME, Config, ConfigError, MissingLinkSourcesError, load_config
from .coordinator import RunCoordinator
from .declarations import group_names, load_declarations, select_groups
from .journal import BackupJournal
from .logging_utils import configure_logging
from .models import (
    Declaration,
    LinkDeclaration,
    OutcomeKind,
    PackageDeclaration,
    ParseError,
    Policy,
    ProbedState,
    ProbeState,
    RunResult,
)
from .packages import PRESETS, PrerequisiteError
from .prompts import ConsoleConfirmer

app = typer.Typer(help="Provision a machine from declared packages and dotfile links")
console = Console()

LOG_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def _build_coordinator(config: Config) -> RunCoordinator:
    return RunCoordinator.from_config(config)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Re-run the command with elevated privileges (e.g. `sudo`).")
        raise typer.Exit(code=1)
    if isinstance(exc, MissingLinkSourcesError):
        console.print("[red]Link sources are missing; no links were processed:[/red]")
        for path in exc.missing:
            console.print(f"  [red]- {escape(str(path))}[/red]", soft_wrap=True)
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{escape(message)}[/red]")
        if "does not exist" in message:
            console.print("[yellow]Use 'dotstrap init --config <path>' to create a configuration file.[/yellow]")
        elif "Expected to find" in message:
            console.print(
                "[yellow]Make sure you pointed to the directory containing the config file, or to the file itself.[/yellow]"
            )
        raise typer.Exit(code=1)
    if isinstance(exc, PrerequisiteError):
        console.print(f"[red]{escape(str(exc))}[/red]")
        console.print("[yellow]Install the package manager first, or choose another one with the 'package_manager' setting.[/yellow]")
        raise typer.Exit(code=1)
    raise exc


def _describe(declaration: Declaration) -> tuple[str, str, str]:
    if isinstance(declaration, PackageDeclaration):
        return ("package", declaration.name, declaration.group or "")
    return ("link", str(declaration.link_path), f"-> {declaration.target_path}")


def _format_parse_errors(errors: Iterable[ParseError]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source", overflow="fold")
    table.add_column("Location")
    table.add_column("Problem", overflow="fold")

    for error in errors:
        table.add_row(escape(error.source), escape(error.location), escape(error.message))

    console.print(table)


def _format_run_result(result: RunResult) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Kind")
    table.add_column("Resource", overflow="fold")
    table.add_column("Outcome")
    table.add_column("Details", overflow="fold")

    outcome_styles = {
        OutcomeKind.CREATED: "green",
        OutcomeKind.REPLACED: "green",
        OutcomeKind.SKIPPED: "yellow",
        OutcomeKind.FAILED: "red",
    }

    for outcome in result.outcomes:
        kind, resource, _ = _describe(outcome.declaration)
        style = outcome_styles.get(outcome.kind, "white")
        details = [part for part in (outcome.reason, outcome.message) if part]
        if outcome.error_kind is not None:
            details.insert(0, outcome.error_kind.value)
        if outcome.backup is not None:
            details.append(f"backup: {outcome.backup.backup_path}")
        if outcome.reboot_required:
            details.append("reboot required")
        table.add_row(kind, resource, f"[{style}]{outcome.kind.value}[/{style}]", "; ".join(details))

    console.print(table)


def _format_summary(result: RunResult) -> None:
    counts = result.counts()
    console.print(
        f"[green]{counts[OutcomeKind.CREATED]} created[/green], "
        f"[green]{counts[OutcomeKind.REPLACED]} replaced[/green], "
        f"[yellow]{counts[OutcomeKind.SKIPPED]} skipped[/yellow], "
        f"[red]{counts[OutcomeKind.FAILED]} failed[/red]"
    )
    if counts[OutcomeKind.FAILED]:
        console.print("[yellow]Some resources failed. Fix the reported problems and re-run 'dotstrap apply'.[/yellow]")
    if result.reboot_required:
        console.print("[bold yellow]Reboot required[/bold yellow] to finish installing one or more packages.")


def _format_probes(probes: Sequence[tuple[Declaration, ProbedState]]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Kind")
    table.add_column("Resource", overflow="fold")
    table.add_column("Declared", overflow="fold")
    table.add_column("State")
    table.add_column("Details", overflow="fold")

    state_styles = {
        ProbeState.SATISFIES: "green",
        ProbeState.ABSENT: "yellow",
        ProbeState.CONFLICTING: "red",
        ProbeState.PROBE_FAILED: "red",
    }

    for declaration, probed in probes:
        kind, resource, declared = _describe(declaration)
        style = state_styles.get(probed.state, "white")
        table.add_row(kind, resource, declared, f"[{style}]{probed.state.value}[/{style}]", probed.detail or "")

    console.print(table)


def _load(config: Path | None, packages: list[str] | None) -> tuple[Config, list[Declaration]]:
    config_obj = load_config(config)
    package_lists = [Path(item).expanduser().resolve() for item in packages] if packages else None
    declarations, errors = load_declarations(config_obj, package_lists)
    if errors:
        console.print(f"[red]Found {len(errors)} problem(s) in the declaration sources:[/red]")
        _format_parse_errors(errors)
        raise typer.Exit(code=1)
    return config_obj, declarations


def _select_interactively(declarations: list[Declaration]) -> list[Declaration]:
    confirmer = ConsoleConfirmer(console)
    chosen = [name for name in group_names(declarations) if confirmer.confirm(f"Install group '{name}'?")]
    return select_groups(declarations, chosen)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug)"),
) -> None:
    ctx.obj = LOG_LEVELS.get(verbose, logging.DEBUG)
    configure_logging(ctx.obj)


@app.command()
def init(
    config: Path = typer.Option(
        Path(DEFAULT_CONFIG_FILENAME),
        "--config",
        "-c",
        help="Path to write the configuration file",
        dir_okay=False,
        writable=True,
    ),
    package_manager: str = typer.Option("choco", "--package-manager", help="Package manager preset"),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config if present"),
) -> None:
    """Create a starter dotstrap configuration file."""

    if package_manager not in PRESETS:
        console.print(f"[red]Unknown package manager '{package_manager}'. Choose from: {', '.join(sorted(PRESETS))}[/red]")
        raise typer.Exit(code=1)

    config_path = config
    if config_path.exists() and not force:
        console.print(f"[red]Configuration '{config_path}' already exists. Use --force to overwrite.[/red]")
        raise typer.Exit(code=1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "settings": {
            "package_manager": package_manager,
            "package_lists": [],
            "dotfiles_root": ".",
            "state_dir": "./.dotstrap",
        },
        "groups": [
            {
                "name": "essentials",
                "description": "Core command-line tools",
                "packages": [
                    {"name": "git", "description": "Version control"},
                    {"name": "jq", "description": "JSON processor"},
                ],
            }
        ],
        "links": [
            {
                "path": "~/.wezterm.lua",
                "target": "wezterm/wezterm.lua",
                "description": "WezTerm configuration",
            }
        ],
    }

    config_path.write_text("# dotstrap configuration\n\n" + tomli_w.dumps(data))
    console.print(f"[green]Created '{config_path}'.[/green]")


@app.command()
def apply(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotstrap.toml"),
    packages: list[str] = typer.Option(None, "--packages", "-p", help="Package list file(s) to use instead of the configured ones"),
    group: list[str] = typer.Option(None, "--group", "-g", help="Limit packages to specific group(s)"),
    select: bool = typer.Option(False, "--select", help="Choose package groups interactively"),
    skip_packages: bool = typer.Option(False, "--skip-packages", help="Only converge links"),
    skip_links: bool = typer.Option(False, "--skip-links", help="Only converge packages"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview changes without applying them"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Replace conflicting files without asking"),
) -> None:
    """Install declared packages and link dotfiles."""

    try:
        config_obj, declarations = _load(config, packages)
        if group:
            declarations = select_groups(declarations, group)
        if select:
            declarations = _select_interactively(declarations)
        if skip_packages:
            declarations = [item for item in declarations if not isinstance(item, PackageDeclaration)]
        if skip_links:
            declarations = [item for item in declarations if not isinstance(item, LinkDeclaration)]

        if config_obj.settings.log_file is not None:
            configure_logging(ctx.obj or logging.WARNING, config_obj.settings.log_file)

        coordinator = _build_coordinator(config_obj)
        policy = Policy(assume_yes=yes, dry_run=dry_run, confirmer=ConsoleConfirmer(console))
        if dry_run:
            console.print("[yellow]Dry run: no changes will be made.[/yellow]")
        result = coordinator.run(declarations, policy)
        _format_run_result(result)
        _format_summary(result)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def status(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotstrap.toml"),
    packages: list[str] = typer.Option(None, "--packages", "-p", help="Package list file(s) to use instead of the configured ones"),
    group: list[str] = typer.Option(None, "--group", "-g", help="Limit packages to specific group(s)"),
) -> None:
    """Show the current state of every declared resource without changing anything."""

    try:
        config_obj, declarations = _load(config, packages)
        if group:
            declarations = select_groups(declarations, group)
        coordinator = _build_coordinator(config_obj)
        probes = coordinator.probe_all(declarations)
        _format_probes(probes)
        if any(probed.state is not ProbeState.SATISFIES for _, probed in probes):
            console.print("[yellow]Some resources are not converged. Run 'dotstrap apply' to converge them.[/yellow]")
        else:
            console.print("[green]All declared resources are in place.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def backups(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotstrap.toml"),
) -> None:
    """List backups taken when conflicting files were replaced."""

    try:
        config_obj = load_config(config)
        journal = BackupJournal.load(config_obj.settings.journal_path)
        records = journal.records()
        if not records:
            console.print("No backups recorded.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Taken")
        table.add_column("Original", overflow="fold")
        table.add_column("Backup", overflow="fold")
        for record in records:
            table.add_row(record.timestamp.isoformat(timespec="seconds"), str(record.original_path), str(record.backup_path))
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
