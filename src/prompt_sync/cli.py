"""Command-line interface for prompt-sync."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import tomli_w
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import DEFAULT_CONFIG_FILENAME, Profile, build_default_config, load_config
from .errors import ConfigError, PromptSyncError
from .manager import SyncManager
from .models import GroupHealth, Outcome, PairResult, Report

app = typer.Typer(help="Hard-link manager for AI instruction and skills files")
console = Console()

STATUS_STYLES = {
    Outcome.OK: "green",
    Outcome.CREATED: "green",
    Outcome.REPLACED: "green",
    Outcome.WOULD_CREATE: "cyan",
    Outcome.WOULD_REPLACE: "cyan",
    Outcome.SKIPPED: "yellow",
    Outcome.MISSING: "yellow",
    Outcome.BROKEN: "red",
    Outcome.CONFLICT: "red",
    Outcome.ERROR: "bold red",
}

ConfigOption = typer.Option(None, "--config", "-c", help=f"Path to {DEFAULT_CONFIG_FILENAME}")
JsonOption = typer.Option(False, "--json", help="Emit the report as JSON")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Log every pipeline stage to stderr")
BackupDirOption = typer.Option(None, "--backup-dir", help="Directory for backups of replaced targets")
DryRunOption = typer.Option(False, "--dry-run", help="Show planned changes without touching files")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_manager(config: Path | None, backup_dir: Path | None = None) -> SyncManager:
    config_obj = load_config(config)
    return SyncManager(config_obj, backup_dir=backup_dir.expanduser().absolute() if backup_dir else None)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Re-run the command with elevated privileges (e.g. `sudo`).")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{escape(message)}[/red]")
        if "does not exist" in message:
            console.print("[yellow]Use 'prompt-sync init --config <path>' to create a configuration file.[/yellow]")
        elif "Expected to find" in message:
            console.print(
                "[yellow]Make sure you pointed to the directory containing the config file, or to the file itself.[/yellow]"
            )
        raise typer.Exit(code=1)
    if isinstance(exc, PromptSyncError):
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    raise exc


def _styled(status: Outcome) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _format_results(results: Iterable[PairResult]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Status")
    table.add_column("Source", overflow="fold")
    table.add_column("Target", overflow="fold")
    table.add_column("Details", overflow="fold")

    for result in results:
        details = result.details or ""
        if result.warnings:
            details = "; ".join([details, *result.warnings]) if details else "; ".join(result.warnings)
        table.add_row(
            _styled(result.status), escape(str(result.pair.source)), escape(str(result.pair.target)), escape(details)
        )

    console.print(table)


def _format_groups(groups: Iterable[GroupHealth]) -> None:
    table = Table(show_header=True, header_style="bold magenta", title="Skill sets")
    table.add_column("Group")
    table.add_column("Target root", overflow="fold")
    table.add_column("Files")
    table.add_column("Health")

    for group in groups:
        table.add_row(escape(group.group), escape(str(group.target_root)), str(group.files), _styled(group.status))

    console.print(table)


def _format_summary(report: Report) -> None:
    summary = report.summary
    counts = " ".join(
        f"{outcome.value.lower()}={summary.count(outcome)}" for outcome in Outcome if summary.count(outcome)
    )
    console.print(f"[bold]{report.command}[/bold]: total={summary.total} {counts}".rstrip())
    for warning in report.warnings:
        console.print(f"[yellow]warning:[/yellow] {escape(warning)}")


def _render(report: Report, *, json_output: bool, show_records: bool) -> None:
    if json_output:
        console.print_json(data=report.to_payload())
        return

    if show_records:
        records = report.results
    else:
        records = tuple(result for result in report.results if result.status is Outcome.ERROR)
    if records:
        _format_results(records)
    if report.groups:
        _format_groups(report.groups)
    _format_summary(report)


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
    profile: list[Profile] = typer.Option(
        None,
        "--profile",
        help="Include a vendor profile in the template (repeatable; default: all)",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config if present"),
) -> None:
    """Create a starter prompt-sync configuration file."""

    config_path = config
    if config_path.exists() and not force:
        console.print(
            f"[red]Configuration '{escape(str(config_path))}' already exists. Use --force to overwrite.[/red]"
        )
        raise typer.Exit(code=1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = build_default_config(profile or None)
    config_path.write_text("# prompt-sync configuration\n\n" + tomli_w.dumps(data))
    console.print(f"[green]Created '{escape(str(config_path))}'.[/green]")


@app.command()
def link(
    config: Path | None = ConfigOption,
    force: bool = typer.Option(False, "--force", help="Replace conflicting targets (a backup is taken first)"),
    only_missing: bool = typer.Option(False, "--only-missing", help="Only create links that do not exist yet"),
    dry_run: bool = DryRunOption,
    json_output: bool = JsonOption,
    backup_dir: Path | None = BackupDirOption,
    verbose: bool = VerboseOption,
) -> None:
    """Create or update hard links from the configuration."""

    _configure_logging(verbose)
    try:
        manager = _load_manager(config, backup_dir)
        report = manager.link(force=force, only_missing=only_missing, dry_run=dry_run)
        _render(report, json_output=json_output, show_records=verbose or dry_run)
        raise typer.Exit(code=report.exit_code(include_inconsistency=False))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def verify(
    config: Path | None = ConfigOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Check every configured link and report its state."""

    _configure_logging(verbose)
    try:
        manager = _load_manager(config)
        report = manager.verify()
        _render(report, json_output=json_output, show_records=True)
        raise typer.Exit(code=report.exit_code(include_inconsistency=True))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def repair(
    config: Path | None = ConfigOption,
    force: bool = typer.Option(False, "--force", help="Also overwrite CONFLICT targets (a backup is taken first)"),
    dry_run: bool = DryRunOption,
    json_output: bool = JsonOption,
    backup_dir: Path | None = BackupDirOption,
    verbose: bool = VerboseOption,
) -> None:
    """Recreate missing and broken links."""

    _configure_logging(verbose)
    try:
        manager = _load_manager(config, backup_dir)
        report = manager.repair(force=force, dry_run=dry_run)
        _render(report, json_output=json_output, show_records=verbose or dry_run)
        raise typer.Exit(code=report.exit_code(include_inconsistency=True))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def status(
    config: Path | None = ConfigOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Print a short health summary."""

    _configure_logging(verbose)
    try:
        manager = _load_manager(config)
        report = manager.status()
        _render(report, json_output=json_output, show_records=verbose)
        if not json_output and report.summary.has_inconsistency():
            console.print(
                "[yellow]Some links are out of sync. Run 'prompt-sync verify' for details or "
                "'prompt-sync repair' to fix them.[/yellow]"
            )
        raise typer.Exit(code=report.exit_code(include_inconsistency=True))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
