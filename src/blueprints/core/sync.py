"""
One synchronization pass over a blueprints directory.

    load -> preconditions -> apply plan -> remediate -> integrity check -> write

Any failure before the write leaves every file on disk untouched, and
every outcome maps to exactly one protocol signal (``sync_signal``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from . import ir
from .allocator import IdAllocator, IdPolicy
from .errors import (
    BlueprintsError,
    GrammarError,
    IntegrityError,
    PlanError,
    PreconditionError,
)
from .grammar import render_record
from .parser import load_document, write_document
from .plan import AddOp, PlanOp, PlanResult, apply_plan, ensure_milestone
from .protocol import Complete, Continue, Error, Signal, make_defects
from .traceability import derive_traceability
from .validator import (
    Violation,
    blocking,
    check_append_only,
    check_integrity,
    check_issued_ids,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "PLACEHOLDER: author a test vector for {clause}"


@dataclass
class SyncResult:
    """
    Outcome of a successful pass.

    Attributes:
        document: Document as written
        plan: Result of the applied plan
        warnings: Non-blocking violations still present
        rows: Traceability rows for the written document
        written: Files rewritten on disk
        remediated: Descriptions of automatic remediation steps
    """

    document: ir.DocumentModel
    plan: PlanResult
    warnings: list[Violation] = field(default_factory=list)
    rows: list[ir.TraceabilityRow] = field(default_factory=list)
    written: list[Path] = field(default_factory=list)
    remediated: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.warnings and all(
            row.status == ir.CoverageStatus.COVERED for row in self.rows
        )


def check_preconditions(document: ir.DocumentModel, directory: Path) -> None:
    """
    Raises:
        PreconditionError: If the requirements artifact is missing or empty
    """
    path = directory / ir.Artifact.REQUIREMENTS.filename
    if not path.exists():
        raise PreconditionError(f"Required input {path} does not exist")
    if not document.requirements:
        raise PreconditionError(f"Required input {path} holds no requirements")


def remediate(
    document: ir.DocumentModel, allocator: IdAllocator | None = None
) -> tuple[ir.DocumentModel, list[str]]:
    """
    Fill structural gaps that need no judgment.

    Every clause gets a milestone, and every clause without a test vector
    gets a placeholder implementation task. Placeholders never count
    toward coverage; they only make the gap visible in the plan.
    """
    notes: list[str] = []
    for clause in document.clauses:
        if document.milestone(clause.id) is None:
            document = ensure_milestone(document, clause.id)
            notes.append(f"Opened milestone for {clause.id}")

    tested = {ref for vector in document.test_vectors for ref in vector.clauses}
    ops: list[PlanOp] = [
        AddOp(
            ir.DeliveryItem(
                id=ir.RecordId.placeholder(ir.IdKind.DELIVERY),
                text=PLACEHOLDER_TEXT.format(clause=clause.id),
                refs=(clause.id,),
            )
        )
        for clause in document.clauses
        if clause.id not in tested
    ]
    if ops:
        result = apply_plan(document, ops, allocator)
        document = result.document
        notes.extend(f"Added placeholder task {rid}" for rid in result.added)
    return document, notes


def synchronize(
    directory: Path,
    ops: list[PlanOp] | None = None,
    allocator: IdAllocator | None = None,
    remediation: bool = True,
    dry_run: bool = False,
    baseline: ir.DocumentModel | None = None,
) -> SyncResult:
    """
    Run one synchronization pass.

    Args:
        directory: Blueprints directory
        ops: Plan operations to apply first
        allocator: Id allocator (update policy by default)
        remediation: Open missing milestones and add placeholder tasks
        dry_run: Validate everything but write nothing
        baseline: Document as it stood before an external pass edited the
            directory; the ledger and issued ids are checked against it too

    Returns:
        SyncResult for the new document

    Raises:
        GrammarError: A file has a rejected line
        PreconditionError: Requirements are missing or empty
        PlanError: An operation was rejected
        IntegrityError: The result would violate a blocking invariant
    """
    allocator = allocator or IdAllocator()
    before = load_document(directory)
    check_preconditions(before, directory)

    plan = apply_plan(before, list(ops or []), allocator)
    document = plan.document

    notes: list[str] = []
    if remediation:
        document, notes = remediate(document, allocator)

    violations = check_integrity(document)
    blockers = blocking(violations)
    for reference in (before, baseline):
        if reference is None:
            continue
        blockers += check_append_only(reference, document)
        if allocator.policy == IdPolicy.UPDATE:
            blockers += check_issued_ids(reference, document)
    if blockers:
        raise IntegrityError(
            f"{len(blockers)} blocking violation(s); nothing was written", blockers
        )

    written: list[Path] = []
    if dry_run:
        logger.info("Dry run: no files written")
    else:
        written = write_document(directory, document)

    return SyncResult(
        document=document,
        plan=plan,
        warnings=[v for v in violations if not v.blocking],
        rows=derive_traceability(document),
        written=written,
        remediated=notes,
    )


def unchecked_items(document: ir.DocumentModel) -> list[str]:
    """Unchecked delivery items, rendered without their checkbox."""
    return [
        render_record(item).removeprefix("- [ ] ")
        for item in document.delivery_items
        if not item.checked
    ]


def outstanding_work(result: SyncResult) -> list[str]:
    """Everything standing between the document and full coverage."""
    work = [v.message for v in result.warnings]
    for row in result.rows:
        if row.status == ir.CoverageStatus.MISSING and row.tv_count and not row.impl_tasks:
            work.append(f"Spec clause '{row.clause}' has no implementation task (status Missing)")
    return work


def sync_signal(outcome: SyncResult | BaseException) -> Signal:
    """
    Map the outcome of a pass to exactly one protocol signal.

    Precondition failures map to Error. Grammar, plan and integrity
    failures and remaining warnings map to Continue with one defect per
    finding. A clean, fully covered document maps to Complete.
    """
    if isinstance(outcome, PreconditionError):
        return Error(reason=outcome.message)
    if isinstance(outcome, IntegrityError):
        return Continue(defects=make_defects([v.message for v in outcome.violations]))
    if isinstance(outcome, GrammarError | PlanError):
        return Continue(defects=make_defects([str(outcome)]))
    if isinstance(outcome, BlueprintsError):
        return Error(reason=outcome.message)
    if isinstance(outcome, BaseException):
        raise outcome

    work = outstanding_work(outcome)
    if work:
        return Continue(defects=make_defects(work))
    return Complete()
