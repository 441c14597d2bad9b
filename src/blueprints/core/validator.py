"""
Referential integrity checks for a parsed blueprint document.

Checks run in a fixed order and each returns a list of ``Violation``:

(a) references, id uniqueness/ordering and milestone structure
(b) coverage completeness and disjointness
(c) test vector subset and merge rules
(d) spec clauses without a test vector
(e) orphaned test vectors and clauses without a milestone

Classes (a)-(c) block any write. Classes (d)-(e) are warnings that only
degrade traceability status.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum

from . import ir


class ViolationClass(StrEnum):
    REFERENCE = "reference"
    COVERAGE = "coverage"
    MERGE = "merge"
    MISSING = "missing"
    ORPHAN = "orphan"
    APPEND_ONLY = "append-only"
    MONOTONIC = "monotonic"


BLOCKING_CLASSES = frozenset(
    {
        ViolationClass.REFERENCE,
        ViolationClass.COVERAGE,
        ViolationClass.MERGE,
        ViolationClass.APPEND_ONLY,
        ViolationClass.MONOTONIC,
    }
)


@dataclass(frozen=True)
class Violation:
    """
    One integrity finding.

    Attributes:
        code: Stable short code, e.g. ``unknown-ref`` or ``coverage-gap``
        category: Check class the finding belongs to
        message: Human-readable description naming the offending ids
        ids: Ids involved, offender first
    """

    code: str
    category: ViolationClass
    message: str
    ids: tuple[ir.RecordId, ...] = field(default=())

    @property
    def blocking(self) -> bool:
        return self.category in BLOCKING_CLASSES

    def __str__(self) -> str:
        return self.message


# Coverage gaps are deferred during plan application: requirements are
# covered one clause at a time
DEFERRABLE_CODES = frozenset({"coverage-gap"})


# =============================================================================
# (a) References and structure
# =============================================================================


def _unknown(owner: str, kind_name: str, ref: ir.RecordId, *ids: ir.RecordId) -> Violation:
    return Violation(
        "unknown-ref",
        ViolationClass.REFERENCE,
        f"{owner} references unknown {kind_name} '{ref}'",
        (*ids, ref),
    )


def check_ids(document: ir.DocumentModel) -> list[Violation]:
    """
    Check id uniqueness and ordering within each artifact.

    Delivery ids are only checked for uniqueness: items are grouped by
    milestone, so their file order does not follow allocation order.
    """
    violations: list[Violation] = []
    for kind in ir.IdKind:
        ids = document.ids(kind)
        for rid, count in Counter(ids).items():
            if count > 1:
                violations.append(
                    Violation(
                        "duplicate-id",
                        ViolationClass.REFERENCE,
                        f"Id '{rid}' is used by {count} records",
                        (rid,),
                    )
                )
        if kind == ir.IdKind.DELIVERY:
            continue
        for previous, current in zip(ids, ids[1:]):
            if current < previous:
                violations.append(
                    Violation(
                        "id-order",
                        ViolationClass.REFERENCE,
                        f"Id '{current}' appears after '{previous}'; ids must ascend in file order",
                        (current, previous),
                    )
                )
    return violations


def check_references(document: ir.DocumentModel) -> list[Violation]:
    """Check that every referenced id resolves to a record of its kind."""
    violations: list[Violation] = []
    known = {kind: set(document.ids(kind)) for kind in ir.IdKind}

    for clause in document.clauses:
        for ref in clause.requirements:
            if ref not in known[ir.IdKind.REQUIREMENT]:
                violations.append(
                    _unknown(f"Spec clause '{clause.id}'", "requirement", ref, clause.id)
                )

    for exemption in document.coverage:
        for ref in exemption.requirements:
            if ref not in known[ir.IdKind.REQUIREMENT]:
                violations.append(_unknown("Coverage exemption", "requirement", ref))

    for vector in document.test_vectors:
        for ref in vector.requirements:
            if ref not in known[ir.IdKind.REQUIREMENT]:
                violations.append(
                    _unknown(f"Test vector '{vector.id}'", "requirement", ref, vector.id)
                )
        for ref in vector.clauses:
            if ref not in known[ir.IdKind.CLAUSE]:
                violations.append(
                    _unknown(f"Test vector '{vector.id}'", "spec clause", ref, vector.id)
                )

    names = {
        ir.IdKind.CLAUSE: "spec clause",
        ir.IdKind.CONTRACT: "contract",
        ir.IdKind.TEST_VECTOR: "test vector",
    }
    for item in document.delivery_items:
        for ref in item.refs:
            if ref not in known[ref.kind]:
                violations.append(
                    _unknown(f"Delivery item '{item.id}'", names[ref.kind], ref, item.id)
                )

    for record in document.lifecycle:
        owner = f"Lifecycle entry for '{record.target}'"
        if record.status != ir.LifecycleStatus.REMOVED and record.target not in known[
            record.target.kind
        ]:
            violations.append(
                Violation(
                    "unknown-ref",
                    ViolationClass.REFERENCE,
                    f"{owner} marks a missing id as {record.status}",
                    (record.target,),
                )
            )
        if record.replace_by is not None and record.replace_by not in known[record.replace_by.kind]:
            violations.append(
                _unknown(owner, "replacement", record.replace_by, record.target)
            )

    return violations


def check_milestones(document: ir.DocumentModel) -> list[Violation]:
    """
    Check milestone structure.

    Checks:
    - Each milestone belongs to an existing clause, at most once
    - Milestone title matches the clause title verbatim
    - Every item references its own milestone's clause
    - A test item's vector references the milestone's clause
    """
    violations: list[Violation] = []
    clauses = {clause.id: clause for clause in document.clauses}
    vectors = {vector.id: vector for vector in document.test_vectors}
    seen: set[ir.RecordId] = set()

    for milestone in document.milestones():
        clause = clauses.get(milestone.clause)
        if clause is None:
            violations.append(
                _unknown("Milestone", "spec clause", milestone.clause)
            )
        elif milestone.title != clause.title:
            violations.append(
                Violation(
                    "milestone-title",
                    ViolationClass.REFERENCE,
                    f"Milestone '{milestone.clause}' title '{milestone.title}' "
                    f"does not match clause title '{clause.title}'",
                    (milestone.clause,),
                )
            )
        if milestone.clause in seen:
            violations.append(
                Violation(
                    "duplicate-milestone",
                    ViolationClass.REFERENCE,
                    f"Spec clause '{milestone.clause}' has more than one milestone",
                    (milestone.clause,),
                )
            )
        seen.add(milestone.clause)

        for item in milestone.items:
            if milestone.clause not in item.clause_refs:
                violations.append(
                    Violation(
                        "foreign-milestone",
                        ViolationClass.REFERENCE,
                        f"Delivery item '{item.id}' is filed under milestone "
                        f"'{milestone.clause}' but does not reference it",
                        (item.id, milestone.clause),
                    )
                )
        for item in milestone.test_items:
            for ref in item.vector_refs:
                vector = vectors.get(ref)
                if vector is not None and milestone.clause not in vector.clauses:
                    violations.append(
                        Violation(
                            "test-item-clause",
                            ViolationClass.REFERENCE,
                            f"Delivery item '{item.id}' tests '{ref}', which does not "
                            f"reference spec clause '{milestone.clause}'",
                            (item.id, ref, milestone.clause),
                        )
                    )
    return violations


# =============================================================================
# (b) Coverage
# =============================================================================


def check_coverage(document: ir.DocumentModel) -> list[Violation]:
    """Every requirement is covered by clauses or exemptions, never both."""
    violations: list[Violation] = []
    by_clauses = {ref for clause in document.clauses for ref in clause.requirements}
    by_exemptions = {ref for exemption in document.coverage for ref in exemption.requirements}

    for requirement in document.requirements:
        rid = requirement.id
        if rid in by_clauses and rid in by_exemptions:
            violations.append(
                Violation(
                    "coverage-overlap",
                    ViolationClass.COVERAGE,
                    f"Requirement '{rid}' is referenced by a spec clause and a coverage exemption",
                    (rid,),
                )
            )
        elif rid not in by_clauses and rid not in by_exemptions:
            violations.append(
                Violation(
                    "coverage-gap",
                    ViolationClass.COVERAGE,
                    f"Requirement '{rid}' is not referenced by any spec clause or coverage exemption",
                    (rid,),
                )
            )
    return violations


# =============================================================================
# (c) Subset and merge rules
# =============================================================================


def check_vector_rules(document: ir.DocumentModel) -> list[Violation]:
    """
    Check the subset and merge rules for every test vector.

    A vector's requirements must be a subset of every referenced clause's
    requirements, and a vector spanning several clauses requires those
    clauses to have identical requirement sets.
    """
    violations: list[Violation] = []
    clauses = {clause.id: clause for clause in document.clauses}

    for vector in document.test_vectors:
        resolved = [clauses[ref] for ref in vector.clauses if ref in clauses]
        wanted = set(vector.requirements)
        for clause in resolved:
            extra = sorted(wanted - set(clause.requirements))
            if extra:
                violations.append(
                    Violation(
                        "subset-rule",
                        ViolationClass.MERGE,
                        f"Test vector '{vector.id}' references "
                        f"{ir.format_id_list(extra, ', ')} outside spec clause '{clause.id}'",
                        (vector.id, clause.id),
                    )
                )
        if len({frozenset(clause.requirements) for clause in resolved}) > 1:
            violations.append(
                Violation(
                    "merge-rule",
                    ViolationClass.MERGE,
                    f"Test vector '{vector.id}' merges spec clauses "
                    f"{ir.format_id_list([c.id for c in resolved], ', ')} "
                    f"whose requirement sets differ",
                    (vector.id, *(c.id for c in resolved)),
                )
            )
    return violations


# =============================================================================
# (d) and (e) Completeness warnings
# =============================================================================


def check_missing_vectors(document: ir.DocumentModel) -> list[Violation]:
    tested = {ref for vector in document.test_vectors for ref in vector.clauses}
    return [
        Violation(
            "missing-vector",
            ViolationClass.MISSING,
            f"Spec clause '{clause.id}' has no test vector (status Missing)",
            (clause.id,),
        )
        for clause in document.clauses
        if clause.id not in tested
    ]


def check_orphans(document: ir.DocumentModel) -> list[Violation]:
    violations: list[Violation] = []
    planned = {
        ref
        for milestone in document.milestones()
        for item in milestone.test_items
        for ref in item.vector_refs
    }
    for vector in document.test_vectors:
        if vector.id not in planned:
            violations.append(
                Violation(
                    "orphan-vector",
                    ViolationClass.ORPHAN,
                    f"Test vector '{vector.id}' has no test task in the delivery plan",
                    (vector.id,),
                )
            )

    with_milestone = {milestone.clause for milestone in document.milestones()}
    for clause in document.clauses:
        if clause.id not in with_milestone:
            violations.append(
                Violation(
                    "missing-milestone",
                    ViolationClass.ORPHAN,
                    f"Spec clause '{clause.id}' has no milestone in the delivery plan",
                    (clause.id,),
                )
            )
    return violations


# =============================================================================
# Entry points
# =============================================================================


def check_integrity(document: ir.DocumentModel) -> list[Violation]:
    """
    Run every check in order.

    Returns:
        All violations, blocking classes first; empty when consistent
    """
    violations: list[Violation] = []
    violations.extend(check_ids(document))
    violations.extend(check_references(document))
    violations.extend(check_milestones(document))
    violations.extend(check_coverage(document))
    violations.extend(check_vector_rules(document))
    violations.extend(check_missing_vectors(document))
    violations.extend(check_orphans(document))
    return violations


def blocking(violations: list[Violation]) -> list[Violation]:
    return [v for v in violations if v.blocking]


def check_append_only(before: ir.DocumentModel, after: ir.DocumentModel) -> list[Violation]:
    """The lifecycle ledger may only grow: ``before`` must be a prefix of ``after``."""
    old = before.lifecycle
    new = after.lifecycle
    if new[: len(old)] == old:
        return []
    changed = next(
        (i for i, record in enumerate(old) if i >= len(new) or new[i] != record),
        len(old),
    )
    target = old[changed].target if changed < len(old) else None
    return [
        Violation(
            "lifecycle-rewrite",
            ViolationClass.APPEND_ONLY,
            f"Lifecycle entry {changed + 1} for '{target}' was edited or removed; "
            "the ledger is append-only",
            (target,) if target else (),
        )
    ]


def check_issued_ids(before: ir.DocumentModel, after: ir.DocumentModel) -> list[Violation]:
    """
    Ids may only grow: a record that is new in ``after`` must carry an id
    above every id ``before`` issued or retired, so renumbered or reissued
    ids are caught.
    """
    violations: list[Violation] = []
    for kind in ir.IdKind:
        issued = set(before.ids(kind))
        for record in before.lifecycle:
            issued.update(
                rid
                for rid in (record.target, record.replace_by)
                if rid is not None and rid.kind == kind
            )
        if not issued:
            continue
        high = max(rid.number for rid in issued)
        for rid in after.ids(kind):
            if rid in issued or rid.is_placeholder:
                continue
            if rid.sub:
                siblings = [i.sub for i in issued if i.parent == rid.parent]
                floor = max(siblings, default=0)
                if rid.parent not in issued or rid.sub > floor:
                    continue
                mark = ir.RecordId(kind, rid.number, floor)
            elif rid.number > high:
                continue
            else:
                mark = max(i.parent for i in issued)
            violations.append(
                Violation(
                    "id-reissued",
                    ViolationClass.MONOTONIC,
                    f"Id '{rid}' is new but not above issued id '{mark}'; "
                    "issued ids are never renumbered or reused",
                    (rid,),
                )
            )
    return violations
