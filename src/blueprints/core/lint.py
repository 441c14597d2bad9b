"""Integrity lint: split integrity violations into errors and warnings."""

from . import ir
from .validator import (
    check_coverage,
    check_ids,
    check_milestones,
    check_missing_vectors,
    check_orphans,
    check_references,
    check_vector_rules,
)


def lint_document(document: ir.DocumentModel) -> tuple[list[str], list[str]]:
    """
    Validate a blueprint document for integrity errors and warnings.

    Performs the integrity checks in order:
    - Id uniqueness and ordering
    - Reference resolution across all artifacts
    - Milestone structure
    - Coverage completeness and disjointness
    - Test vector subset and merge rules
    - Missing test vectors, orphaned vectors, missing milestones

    Args:
        document: Parsed blueprint document

    Returns:
        Tuple of (errors, warnings)
        - errors: Blocking violations that prevent any write
        - warnings: Completeness findings that degrade status
    """
    all_errors: list[str] = []
    all_warnings: list[str] = []

    # Basic check
    if not document.requirements:
        all_warnings.append("No requirements defined; nothing to trace.")

    for check in (
        check_ids,
        check_references,
        check_milestones,
        check_coverage,
        check_vector_rules,
        check_missing_vectors,
        check_orphans,
    ):
        for violation in check(document):
            if violation.blocking:
                all_errors.append(violation.message)
            else:
                all_warnings.append(violation.message)

    return all_errors, all_warnings
