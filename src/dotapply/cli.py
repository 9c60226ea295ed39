"""Command-line interface for dotapply."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterable

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import bootstrap
from .brew import HomebrewPackageManager
from .config import Config, ConfigError, load_config, resolve_repo_path
from .errors import ApplyError, ScriptBlocked, ScriptDangerous
from .models import ApplyOptions, ApplyReport, BootstrapScript, ItemOutcome, ItemStatus, SafetyLevel, StageReport
from .orchestrator import ApplyOrchestrator
from .prompts import RichPrompter
from .sops import SopsAgeBackend

app = typer.Typer(help="Apply dotfile profiles: symlinks, secrets, packages and reviewable bootstrap scripts")
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to dotapply.toml or its directory")
ProfileOption = typer.Option(None, "--profile", "-p", help="Profile to use (defaults to global.default_profile)")
HomeOption = typer.Option(
    None,
    "--home",
    envvar="DOTAPPLY_HOME",
    help="Home directory to link into (defaults to the current user's home)",
)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")) -> None:
    """Configure logging for every command."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_time=False, show_path=False)],
        force=True,
    )


def _resolve_home(home: Path | None) -> Path:
    return (home or Path.home()).expanduser()


def _build_orchestrator(config: Config, home: Path, *, interactive: bool | None) -> ApplyOrchestrator:
    if interactive is None:
        interactive = sys.stdin.isatty()
    sops_config = resolve_repo_path(config.secrets.sops_config, config) if config.secrets.sops_config else None
    return ApplyOrchestrator(
        config,
        home=home,
        encryption=SopsAgeBackend(home, sops_config=sops_config),
        packages=HomebrewPackageManager(),
        prompter=RichPrompter() if interactive else None,
    )


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Check ownership of the target directories and try again.")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{escape(message)}[/red]")
        if "does not exist" in message:
            console.print("[yellow]Point --config at your dotfiles repository or its dotapply.toml.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, ApplyError):
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    raise exc


_STATUS_STYLES = {
    ItemStatus.SUCCEEDED: "green",
    ItemStatus.SKIPPED: "yellow",
    ItemStatus.FAILED: "red",
}

_LEVEL_STYLES = {
    SafetyLevel.SAFE: "green",
    SafetyLevel.WARNING: "yellow",
    SafetyLevel.DANGEROUS: "red",
    SafetyLevel.BLOCKED: "bold red",
}


def _format_outcomes(title: str, outcomes: Iterable[ItemOutcome]) -> None:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Item")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Details", overflow="fold")

    for outcome in outcomes:
        style = _STATUS_STYLES.get(outcome.status, "white")
        table.add_row(
            escape(outcome.item),
            outcome.action,
            f"[{style}]{outcome.status.value}[/{style}]",
            escape(outcome.detail or ""),
        )

    console.print(table)


def _format_script(script: BootstrapScript) -> None:
    style = _LEVEL_STYLES[script.level]
    console.print(f"Bootstrap script: {script.path}")
    console.print(f"Safety level: [{style}]{script.level.value.upper()}[/{style}]")
    for match in script.matches:
        match_style = _LEVEL_STYLES[match.level]
        console.print(f"  line {match.line_number}: [{match_style}]{match.rule}[/{match_style}]  {escape(match.excerpt)}")

    try:
        bootstrap.ensure_reviewable(script)
    except ScriptBlocked:
        console.print("[bold red]This script is BLOCKED. Do not run it; edit it first.[/bold red]")
        return
    except ScriptDangerous:
        console.print("[red]This script is DANGEROUS. Read it carefully before running it.[/red]")
    console.print(f"To run the bootstrap script manually: [bold]bash {script.path}[/bold]")


def _format_stage(stage: StageReport) -> None:
    title = f"{stage.stage.value} ({stage.status.value})"
    if stage.script is not None:
        _format_script(stage.script)
    if stage.outcomes:
        _format_outcomes(title, stage.outcomes)
    else:
        console.print(f"[dim]{title}[/dim]")


def _format_report(report: ApplyReport) -> None:
    if report.dry_run:
        console.print("[yellow]DRY-RUN: no changes were made.[/yellow]")
    for stage in report.stages:
        _format_stage(stage)

    summary = f"Succeeded: {report.succeeded}  Skipped: {report.skipped}  Failed: {report.failed}"
    if report.cancelled:
        console.print("[red]Apply cancelled.[/red]")
    elif report.ok:
        console.print(f"[green]Profile '{report.profile}' applied.[/green]")
    else:
        console.print(f"[red]Profile '{report.profile}' applied with unresolved items.[/red]")
    console.print(summary)


@app.command()
def apply(
    config: Path | None = ConfigOption,
    profile: str | None = ProfileOption,
    skip_bootstrap: bool = typer.Option(False, "--skip-bootstrap", help="Do not generate or classify the bootstrap script"),
    skip_secrets: bool = typer.Option(False, "--skip-secrets", help="Do not decrypt secrets"),
    skip_packages: bool = typer.Option(False, "--skip-packages", help="Do not install Homebrew packages"),
    force: bool = typer.Option(False, "--force", help="Overwrite conflicting files when backups are disabled"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report intended actions without changing anything"),
    interactive: bool | None = typer.Option(
        None, "--interactive/--no-interactive", help="Prompt for key setup and conflicts (default: when on a TTY)"
    ),
    home: Path | None = HomeOption,
) -> None:
    """Apply a profile: bootstrap review, secrets, packages, then symlinks."""

    try:
        orchestrator = _build_orchestrator(load_config(config), _resolve_home(home), interactive=interactive)
        report = orchestrator.apply(
            ApplyOptions(
                profile=profile,
                skip_bootstrap=skip_bootstrap,
                skip_secrets=skip_secrets,
                skip_packages=skip_packages,
                force=force,
                dry_run=dry_run,
            )
        )
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    _format_report(report)
    if report.exit_code:
        raise typer.Exit(code=report.exit_code)


@app.command()
def uninstall(
    config: Path | None = ConfigOption,
    profile: str | None = ProfileOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report intended actions without changing anything"),
    home: Path | None = HomeOption,
) -> None:
    """Remove a profile's symlinks and restore the most recent backups."""

    try:
        orchestrator = _build_orchestrator(load_config(config), _resolve_home(home), interactive=False)
        report = orchestrator.uninstall(profile, dry_run=dry_run)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    _format_report(report)
    if report.exit_code:
        raise typer.Exit(code=report.exit_code)


@app.command("bootstrap")
def bootstrap_command(
    config: Path | None = ConfigOption,
    profile: str | None = ProfileOption,
    edit: bool = typer.Option(False, "--edit", help="Open the script in $EDITOR before classifying it"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not write a missing script"),
    home: Path | None = HomeOption,
) -> None:
    """Show the bootstrap script for a profile and how risky it is. Never runs it."""

    try:
        config_obj = load_config(config)
        orchestrator = _build_orchestrator(config_obj, _resolve_home(home), interactive=False)
        selected = orchestrator.select_profile(profile)
        _, script = bootstrap.prepare_script(selected, config_obj.repo_root, dry_run=dry_run)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    if dry_run:
        console.print("[yellow]DRY-RUN: the script was not written.[/yellow]")
    if script is None or script.path is None:
        console.print(f"No bootstrap script defined for profile '{selected.name}'.")
        return

    if edit and script.path.exists():
        bootstrap.edit_script(script.path)
        console.print(f"Script opened for editing: {script.path}")
        script = bootstrap.classify(script.path)

    console.print(f"Bootstrap script info for profile: {selected.name}")
    _format_script(script)


@app.command()
def track(
    path: str = typer.Argument(..., help="File or directory to track, e.g. ~/.zshrc"),
    config: Path | None = ConfigOption,
    profile: str | None = ProfileOption,
    home: Path | None = HomeOption,
) -> None:
    """Copy a path into repository storage under a stable hash-id."""

    try:
        orchestrator = _build_orchestrator(load_config(config), _resolve_home(home), interactive=False)
        selected = orchestrator.select_profile(profile)
        entry = orchestrator.track(selected.name, path)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    console.print(f"[green]Stored {entry.original} as {entry.storage_path}.[/green]")
    if entry.original not in selected.files and entry.original not in selected.directories:
        console.print(
            f"[yellow]Add '{entry.original}' to profiles.{selected.name}.files (or directories) to link it on apply.[/yellow]"
        )


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
