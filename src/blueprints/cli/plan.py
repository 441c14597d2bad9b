"""
Editing commands: next-id, apply, renumber.

Every edit goes through the plan differ and the integrity checker; a
rejected edit leaves the blueprints directory untouched.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer

from blueprints.cli.project import DirOption, RootOption
from blueprints.cli.utils import print_grammar_error, resolve_blueprints
from blueprints.core import ir
from blueprints.core.allocator import IdAllocator, IdPolicy, retired_ids
from blueprints.core.errors import (
    GrammarError,
    IntegrityError,
    PlanError,
    PolicyError,
    PreconditionError,
)
from blueprints.core.parser import load_document, write_document
from blueprints.core.plan import format_op, parse_plan
from blueprints.core.protocol import render_signal
from blueprints.core.sync import sync_signal, synchronize
from blueprints.core.validator import blocking, check_integrity

KindArgument = Annotated[ir.IdKind, typer.Argument(help="Id kind: R, S, C, TV or DP")]


def _allocator(policy: IdPolicy, approved: bool) -> IdAllocator:
    try:
        return IdAllocator(policy=policy, approved=approved)
    except PolicyError as e:
        typer.echo(f"Policy error: {e}", err=True)
        raise typer.Exit(code=1)


def next_id_command(
    kind: KindArgument,
    root: RootOption = ".",
    directory: DirOption = None,
    policy: Annotated[
        IdPolicy, typer.Option("--policy", help="Allocation policy")
    ] = IdPolicy.UPDATE,
    approved: Annotated[
        bool, typer.Option("--approved", help="Confirm human approval (creation policy)")
    ] = False,
) -> None:
    """Print the next id that would be allocated for KIND."""
    _, blueprints_dir = resolve_blueprints(root, directory)
    allocator = _allocator(policy, approved)
    try:
        document = load_document(blueprints_dir)
    except GrammarError as e:
        print_grammar_error(e, blueprints_dir)
        raise typer.Exit(code=1)

    typer.echo(str(allocator.next_id(kind, document.ids(kind), retired_ids(document, kind))))


def apply_command(
    plan_file: Annotated[str, typer.Argument(help="Plan file, or - for stdin")],
    root: RootOption = ".",
    directory: DirOption = None,
    policy: Annotated[
        IdPolicy, typer.Option("--policy", help="Allocation policy")
    ] = IdPolicy.UPDATE,
    approved: Annotated[
        bool, typer.Option("--approved", help="Confirm human approval (creation policy)")
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Validate the plan but write nothing")
    ] = False,
    no_remediate: Annotated[
        bool,
        typer.Option("--no-remediate", help="Skip milestone and placeholder remediation"),
    ] = False,
) -> None:
    """
    Apply a textual plan (ADD / REPLACE / REMOVE lines) and synchronize.

    Prints the protocol token for the result. Exits with code 1 when the
    plan is rejected; nothing is written in that case.
    """
    _, blueprints_dir = resolve_blueprints(root, directory)
    allocator = _allocator(policy, approved)

    try:
        if plan_file == "-":
            text = sys.stdin.read()
        else:
            text = Path(plan_file).read_text(encoding="utf-8")
    except OSError as e:
        typer.echo(f"Cannot read plan: {e}", err=True)
        raise typer.Exit(code=1)

    try:
        ops = parse_plan(text)
        result = synchronize(
            blueprints_dir,
            ops,
            allocator=allocator,
            remediation=not no_remediate,
            dry_run=dry_run,
        )
    except GrammarError as e:
        print_grammar_error(e, blueprints_dir)
        raise typer.Exit(code=1)
    except IntegrityError as e:
        typer.echo(f"Plan rejected: {e.message}", err=True)
        for violation in e.violations:
            typer.echo(f"ERROR: {violation.message}", err=True)
        raise typer.Exit(code=1)
    except (PlanError, PolicyError, PreconditionError) as e:
        typer.echo(f"Plan rejected: {e}", err=True)
        raise typer.Exit(code=1)

    for op in result.plan.applied:
        typer.echo(f"applied: {format_op(op)}")
    for op in result.plan.skipped:
        typer.echo(f"skipped: {format_op(op)}")
    for note in result.remediated:
        typer.echo(f"remediated: {note}")
    for path in result.written:
        typer.echo(f"wrote: {path.name}")
    if dry_run:
        typer.echo("Dry run: nothing written.")
    typer.echo(render_signal(sync_signal(result)))


def renumber_command(
    kind: KindArgument,
    root: RootOption = ".",
    directory: DirOption = None,
    approved: Annotated[
        bool, typer.Option("--approved", help="Confirm the draft is human-approved")
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show the mapping but write nothing")
    ] = False,
) -> None:
    """
    Renumber ids of KIND to 1..N in file order (creation policy only).

    Refused once the lifecycle ledger names ids of KIND.
    """
    _, blueprints_dir = resolve_blueprints(root, directory)
    allocator = _allocator(IdPolicy.CREATION, approved)

    try:
        document = load_document(blueprints_dir)
        updated = allocator.renumber(document, kind)
    except GrammarError as e:
        print_grammar_error(e, blueprints_dir)
        raise typer.Exit(code=1)
    except PolicyError as e:
        typer.echo(f"Policy error: {e}", err=True)
        raise typer.Exit(code=1)

    blockers = blocking(check_integrity(updated))
    if blockers:
        typer.echo("Renumbering would leave blocking violations:", err=True)
        for violation in blockers:
            typer.echo(f"ERROR: {violation.message}", err=True)
        raise typer.Exit(code=1)

    moves = [
        (old, new) for old, new in zip(document.ids(kind), updated.ids(kind)) if old != new
    ]
    for old, new in moves:
        typer.echo(f"{old} -> {new}")
    if not moves:
        typer.echo(f"{kind} ids are already contiguous.")
        return
    if dry_run:
        typer.echo("Dry run: nothing written.")
        return
    for path in write_document(blueprints_dir, updated):
        typer.echo(f"wrote: {path.name}")
