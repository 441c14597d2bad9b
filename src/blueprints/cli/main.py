"""
Blueprints CLI entry point.
"""

import sys

import typer

from blueprints.cli.utils import configure_logging, version_callback

# =============================================================================
# Main Application
# =============================================================================

app = typer.Typer(
    help="""blueprints - traceability and synchronization for blueprint documents

Command Types:
  • Setup: init
    → Create blueprints.toml and the six artifact files

  • Inspection: validate, trace, status, next-id
    → Read the blueprints directory, never write it

  • Editing: apply, renumber
    → Change records through the plan differ

  • Automation: loop
    → Drive external reviewer and builder passes to convergence
""",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and environment information",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Blueprints CLI main callback for global options."""
    configure_logging(verbose)


# =============================================================================
# Project Commands
# =============================================================================
from blueprints.cli.project import (  # noqa: E402
    init_command,
    status_command,
    trace_command,
    validate_command,
)

app.command(name="init")(init_command)
app.command(name="validate")(validate_command)
app.command(name="trace")(trace_command)
app.command(name="status")(status_command)


# =============================================================================
# Editing Commands
# =============================================================================
from blueprints.cli.plan import (  # noqa: E402
    apply_command,
    next_id_command,
    renumber_command,
)

app.command(name="next-id")(next_id_command)
app.command(name="apply")(apply_command)
app.command(name="renumber")(renumber_command)


# =============================================================================
# Loop
# =============================================================================
from blueprints.cli.loop import loop_command  # noqa: E402

app.command(name="loop")(loop_command)


def main(argv: list[str] | None = None) -> None:
    app(args=argv, standalone_mode=True)


if __name__ == "__main__":
    main(sys.argv[1:])
