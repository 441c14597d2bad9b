"""
The review/build loop.

Runs the configured reviewer and builder commands under the iteration
controller until the reviewer signs off or a budget runs out.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Annotated

import typer

from blueprints.agent import CommandPass, CommandVerifier, PassRole, UncheckedItemsGate, ValidatedPass
from blueprints.cli.project import DirOption, RootOption
from blueprints.cli.utils import resolve_blueprints
from blueprints.core.controller import (
    AbortReason,
    CompletionGate,
    IterationController,
    LoopConfig,
)
from blueprints.core.errors import BlueprintsError, ManifestError
from blueprints.core.protocol import Complete, Error, format_defects, render_signal


def loop_command(
    root: RootOption = ".",
    directory: DirOption = None,
    review_cmd: Annotated[
        str | None, typer.Option("--review-cmd", help="Reviewer command (overrides [agent] reviewer)")
    ] = None,
    build_cmd: Annotated[
        str | None, typer.Option("--build-cmd", help="Builder command (overrides [agent] builder)")
    ] = None,
    max_review: Annotated[
        int | None, typer.Option("--max-review", help="Review pass bound (MAX_REVIEWER_ITERS)")
    ] = None,
    max_build: Annotated[
        int | None, typer.Option("--max-build", help="Build pass bound per phase (MAX_BUILDER_ITERS)")
    ] = None,
    sleep: Annotated[
        float | None, typer.Option("--sleep", help="Seconds between passes (LOOP_SLEEP_SECS)")
    ] = None,
) -> None:
    """
    Alternate review and build passes until convergence.

    Exits with code 0 only when the reviewer signs off. An aborted run
    prints the unresolved defects and exits with code 1.
    """
    settings, blueprints_dir = resolve_blueprints(root, directory)
    root_path = Path(root).resolve()

    reviewer = shlex.split(review_cmd) if review_cmd else settings.agent.reviewer
    builder = shlex.split(build_cmd) if build_cmd else settings.agent.builder
    if not reviewer or not builder:
        typer.echo(
            "Both a reviewer and a builder command are required "
            "(--review-cmd/--build-cmd or [agent] in blueprints.toml)",
            err=True,
        )
        raise typer.Exit(code=1)

    base = settings.loop
    try:
        config = LoopConfig(
            max_review_iters=max_review if max_review is not None else base.max_review_iters,
            max_build_iters=max_build if max_build is not None else base.max_build_iters,
            loop_sleep=sleep if sleep is not None else base.loop_sleep,
        )
    except ManifestError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)

    gates: list[CompletionGate] = []
    if settings.verify.unchecked_items:
        gates.append(UncheckedItemsGate(blueprints_dir))
    if settings.verify.commands:
        gates.append(CommandVerifier(settings.verify.commands, cwd=root_path))

    def make_pass(argv: list[str], role: PassRole) -> ValidatedPass:
        return ValidatedPass(
            CommandPass(
                argv,
                role,
                blueprints_dir,
                cwd=root_path,
                timeout=settings.agent.timeout,
            )
        )

    try:
        review_pass = make_pass(reviewer, PassRole.REVIEWER)
        build_pass = make_pass(builder, PassRole.BUILDER)
    except BlueprintsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    controller = IterationController(config, gates)
    outcome = controller.run(review_pass, build_pass)

    if outcome.converged:
        typer.echo(render_signal(Complete()))
        typer.echo(f"Converged after {outcome.reviews} review pass(es).")
        return

    typer.echo(render_signal(Error(reason=outcome.message)))
    if outcome.reason == AbortReason.BUDGET_EXCEEDED:
        typer.echo(f"Budget exceeded: {outcome.message}", err=True)
    else:
        typer.echo(f"Aborted: {outcome.message}", err=True)
    if outcome.defects:
        typer.echo("Unresolved defects:", err=True)
        typer.echo(format_defects(outcome.defects), err=True)
    raise typer.Exit(code=1)
