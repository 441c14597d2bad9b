"""
Blueprints CLI Utilities.

Shared utility functions used across CLI modules.
"""

import logging
import platform
from pathlib import Path

import typer

from blueprints._version import get_version
from blueprints.core.errors import GrammarError, ManifestError
from blueprints.core.manifest import BlueprintsManifest, load_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def version_callback(value: bool) -> None:
    """Display version and environment information."""
    if value:
        typer.echo(f"blueprints version {get_version()}")
        typer.echo("")
        typer.echo("Environment:")
        typer.echo(f"  Python:        {platform.python_implementation()} {platform.python_version()}")
        typer.echo(f"  Platform:      {platform.system()} {platform.release()}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    # force: the CLI may be invoked repeatedly in one process (tests)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        force=True,
    )


def resolve_blueprints(root: str, directory: str | None) -> tuple[BlueprintsManifest, Path]:
    """
    Load settings for a project root and resolve the blueprints directory.

    ``--dir`` wins over ``BLUEPRINTS_DIR`` which wins over blueprints.toml.
    """
    root_path = Path(root).resolve()
    try:
        settings = load_settings(root_path)
    except ManifestError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)
    if directory:
        return settings, Path(directory).resolve()
    return settings, settings.blueprints_path(root_path)


def print_human_diagnostics(errors: list[str], warnings: list[str]) -> None:
    """Print diagnostics in human-readable format."""
    if errors:
        typer.echo("Validation failed:\n", err=True)
        for err in errors:
            typer.echo(f"ERROR: {err}", err=True)

    if warnings:
        typer.echo("Validation warnings:\n", err=False)
        for warn in warnings:
            typer.echo(f"WARNING: {warn}", err=False)

    if not errors and not warnings:
        typer.echo("OK: blueprints are consistent.")


def print_vscode_diagnostics(errors: list[str], warnings: list[str], directory: Path) -> None:
    """
    Print diagnostics in VS Code format: file:line:col: severity: message

    Integrity findings span several files, so they are reported against
    02-spec.md.
    """
    location = directory / "02-spec.md"
    for err in errors:
        typer.echo(f"{location}:1:1: error: {err}", err=True)

    for warn in warnings:
        typer.echo(f"{location}:1:1: warning: {warn}", err=True)

    if not errors and not warnings:
        typer.echo("::notice: Validation successful")


def print_grammar_error(error: GrammarError, root: Path, vscode: bool = False) -> None:
    """Print a grammar rejection with its file:line location."""
    if not error.context:
        typer.echo(f"Grammar error: {error.message}", err=True)
        return

    file_path = error.context.file
    try:
        rel_path = Path(file_path).relative_to(root) if file_path else None
    except ValueError:
        rel_path = Path(file_path) if file_path else None
    location = f"{rel_path or '<text>'}:{error.context.line}:{error.context.column}"

    if vscode:
        typer.echo(f"{location}: error: {error.reason.value}: {error.detail}", err=True)
    else:
        typer.echo(f"Grammar error at {location}: {error.message}", err=True)
