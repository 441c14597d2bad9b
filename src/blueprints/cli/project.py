"""
Project-level commands: init, validate, trace, status.
"""

from __future__ import annotations

import json
from enum import StrEnum
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from blueprints.cli.utils import (
    print_grammar_error,
    print_human_diagnostics,
    print_vscode_diagnostics,
    resolve_blueprints,
)
from blueprints.core import ir
from blueprints.core.errors import BlueprintsError, GrammarError
from blueprints.core.init import InitError, init_blueprints
from blueprints.core.lint import lint_document
from blueprints.core.manifest import DEFAULT_BLUEPRINTS_DIR
from blueprints.core.parser import load_document
from blueprints.core.protocol import Error, render_signal
from blueprints.core.sync import sync_signal, synchronize
from blueprints.core.traceability import derive_traceability, render_markdown

console = Console()

RootOption = Annotated[str, typer.Option("--root", "-r", help="Project root holding blueprints.toml")]
DirOption = Annotated[
    str | None, typer.Option("--dir", "-d", help="Blueprints directory (overrides blueprints.toml)")
]


class DiagnosticFormat(StrEnum):
    HUMAN = "human"
    VSCODE = "vscode"


class TraceFormat(StrEnum):
    TABLE = "table"
    MARKDOWN = "markdown"
    JSON = "json"


def init_command(
    path: Annotated[Path, typer.Argument(help="Project root to initialize")] = Path("."),
    name: Annotated[str | None, typer.Option("--name", "-n", help="Project name")] = None,
    directory: Annotated[
        str, typer.Option("--dir", "-d", help="Blueprints directory, relative to the root")
    ] = DEFAULT_BLUEPRINTS_DIR,
    force: Annotated[
        bool, typer.Option("--force", help="Reuse an existing blueprints directory")
    ] = False,
) -> None:
    """
    Create blueprints.toml and the six artifact files.

    Existing files are never overwritten.
    """
    typer.echo(f"Initializing blueprints in {path.resolve()}")
    try:
        created = init_blueprints(
            path,
            project_name=name,
            blueprints_dir=directory,
            allow_existing=force,
            progress_callback=typer.echo,
        )
    except InitError as e:
        typer.echo(f"Initialization failed: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Created {len(created)} file(s).")


def validate_command(
    root: RootOption = ".",
    directory: DirOption = None,
    format: Annotated[
        DiagnosticFormat, typer.Option("--format", "-f", help="Output format")
    ] = DiagnosticFormat.HUMAN,
) -> None:
    """
    Parse every artifact and check cross-document integrity.

    Exits with code 1 on a grammar error or any blocking violation.
    """
    _, blueprints_dir = resolve_blueprints(root, directory)

    try:
        document = load_document(blueprints_dir)
    except GrammarError as e:
        print_grammar_error(e, blueprints_dir, vscode=format == DiagnosticFormat.VSCODE)
        raise typer.Exit(code=1)

    errors, warnings = lint_document(document)
    if format == DiagnosticFormat.VSCODE:
        print_vscode_diagnostics(errors, warnings, blueprints_dir)
    else:
        print_human_diagnostics(errors, warnings)

    if errors:
        raise typer.Exit(code=1)


def _trace_table(rows: list[ir.TraceabilityRow]) -> Table:
    table = Table(title="Traceability")
    table.add_column("Spec", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("TV Count", justify="right")
    table.add_column("Test Tasks", justify="right")
    table.add_column("Impl Tasks", justify="right")
    table.add_column("Integration", justify="center")
    table.add_column("Property", justify="center")
    table.add_column("Status")
    for row in rows:
        status = "[green]Covered[/green]" if row.status == ir.CoverageStatus.COVERED else "[red]Missing[/red]"
        table.add_row(
            str(row.clause),
            row.title,
            str(row.tv_count),
            str(row.test_tasks),
            str(row.impl_tasks),
            "yes" if row.integration else "-",
            "yes" if row.property else "-",
            status,
        )
    return table


def trace_command(
    root: RootOption = ".",
    directory: DirOption = None,
    format: Annotated[
        TraceFormat, typer.Option("--format", "-f", help="Output format")
    ] = TraceFormat.TABLE,
) -> None:
    """Show the per-clause traceability table."""
    _, blueprints_dir = resolve_blueprints(root, directory)
    try:
        document = load_document(blueprints_dir)
    except GrammarError as e:
        print_grammar_error(e, blueprints_dir)
        raise typer.Exit(code=1)

    rows = derive_traceability(document)
    if format == TraceFormat.JSON:
        payload = [{**row.model_dump(mode="json"), "clause": str(row.clause)} for row in rows]
        console.print_json(json.dumps(payload))
    elif format == TraceFormat.MARKDOWN:
        typer.echo(render_markdown(rows), nl=False)
    elif rows:
        console.print(_trace_table(rows))
    else:
        typer.echo("No spec clauses yet.")


def status_command(
    root: RootOption = ".",
    directory: DirOption = None,
) -> None:
    """
    Print the protocol token for the current blueprints.

    Read-only: nothing is remediated or written. Exits with code 1 when
    the token is the error token.
    """
    _, blueprints_dir = resolve_blueprints(root, directory)
    try:
        outcome = synchronize(blueprints_dir, remediation=False, dry_run=True)
        signal = sync_signal(outcome)
    except BlueprintsError as e:
        signal = sync_signal(e)

    typer.echo(render_signal(signal))
    if isinstance(signal, Error):
        typer.echo(signal.reason, err=True)
        raise typer.Exit(code=1)
