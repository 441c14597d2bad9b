"""
Id allocation policies.

Two policies, chosen by the caller and never mixed within one run:

- ``UPDATE`` (default): the next id is ``max(existing ∪ retired) + 1``.
  Ids are never reassigned and never reused, gaps are allowed.
- ``CREATION``: allowed only after explicit human approval of a fresh
  draft. Permits a renumber-from-one pass over a whole kind.

Allocation is a pure function over the current collection; no counters
are cached between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from enum import StrEnum
from typing import Any

from . import ir
from .errors import PolicyError

logger = logging.getLogger(__name__)


class IdPolicy(StrEnum):
    CREATION = "creation"
    UPDATE = "update"


def retired_ids(document: ir.DocumentModel, kind: ir.IdKind) -> set[ir.RecordId]:
    """Ids of a kind named anywhere in the lifecycle ledger."""
    retired: set[ir.RecordId] = set()
    for record in document.lifecycle:
        for rid in (record.target, record.replace_by):
            if rid is not None and rid.kind == kind:
                retired.add(rid)
    return retired


class IdAllocator:
    """
    Hands out ids under one policy.

    Args:
        policy: Allocation policy for this run
        approved: Explicit human approval; required for ``CREATION``

    Raises:
        PolicyError: If ``CREATION`` is requested without approval
    """

    def __init__(self, policy: IdPolicy = IdPolicy.UPDATE, approved: bool = False):
        if policy == IdPolicy.CREATION and not approved:
            raise PolicyError(
                "Creation policy requires explicit approval of the draft "
                "(renumbering issued ids is otherwise forbidden)"
            )
        self.policy = policy
        self.approved = approved

    def next_id(
        self,
        kind: ir.IdKind,
        existing: Iterable[ir.RecordId],
        retired: Iterable[ir.RecordId] = (),
    ) -> ir.RecordId:
        """
        Return the next top-level id of a kind.

        Under ``UPDATE`` this is one past the highest number ever seen in
        ``existing`` or ``retired``. Under ``CREATION`` it is the smallest
        unused number, which after a renumber is N + 1.
        """
        numbers = {rid.number for rid in existing if rid.kind == kind and not rid.is_placeholder}
        if self.policy == IdPolicy.UPDATE:
            numbers |= {rid.number for rid in retired if rid.kind == kind}
            return ir.RecordId(kind, max(numbers, default=0) + 1)
        candidate = 1
        while candidate in numbers:
            candidate += 1
        return ir.RecordId(kind, candidate)

    def next_sub_id(self, parent: ir.RecordId, existing: Iterable[ir.RecordId]) -> ir.RecordId:
        """Next ``S-nnn.m`` under a clause: one past the highest sub-number seen."""
        if parent.kind != ir.IdKind.CLAUSE or parent.sub:
            raise PolicyError(f"'{parent}' cannot carry sub-clauses")
        subs = [rid.sub for rid in existing if rid.parent == parent]
        return ir.RecordId(parent.kind, parent.number, max(subs, default=0) + 1)

    def renumber(self, document: ir.DocumentModel, kind: ir.IdKind) -> ir.DocumentModel:
        """
        Reassign ids of one kind to 1..N in file order.

        Sub-clause numbers are kept under their renumbered parent, and
        every reference to a renumbered id is rewritten.

        Raises:
            PolicyError: Outside the creation policy, or when the
                lifecycle ledger already names ids of this kind
        """
        if self.policy != IdPolicy.CREATION:
            raise PolicyError("Renumbering is only permitted under the creation policy")
        if retired_ids(document, kind):
            raise PolicyError(
                f"Cannot renumber {kind} ids: the lifecycle ledger already names some of them"
            )

        numbers: dict[int, int] = {}
        for rid in document.ids(kind):
            if rid.number not in numbers:
                numbers[rid.number] = len(numbers) + 1

        def rename(rid: ir.RecordId) -> ir.RecordId:
            if rid.kind == kind and rid.number in numbers:
                return rid.with_number(numbers[rid.number])
            return rid

        changed = sum(1 for old, new in numbers.items() if old != new)
        logger.info("Renumbering %s ids: %d of %d change", kind, changed, len(numbers))
        return remap_ids(document, rename)


def remap_record(record: Any, rename: Callable[[ir.RecordId], ir.RecordId]) -> Any:
    """Apply ``rename`` to every id a record owns or references."""

    def many(ids: tuple[ir.RecordId, ...], ordered: bool = False) -> tuple[ir.RecordId, ...]:
        renamed = tuple(rename(rid) for rid in ids)
        return tuple(sorted(renamed)) if ordered else renamed

    if isinstance(record, ir.Requirement | ir.ContractItem):
        return record.model_copy(update={"id": rename(record.id)})
    if isinstance(record, ir.SpecClause):
        return record.model_copy(
            update={"id": rename(record.id), "requirements": many(record.requirements)}
        )
    if isinstance(record, ir.CoverageExemption):
        return record.model_copy(update={"requirements": many(record.requirements)})
    if isinstance(record, ir.TestVector):
        return record.model_copy(
            update={
                "id": rename(record.id),
                "requirements": many(record.requirements, ordered=True),
                "clauses": many(record.clauses, ordered=True),
            }
        )
    if isinstance(record, ir.DeliveryItem):
        return record.model_copy(update={"id": rename(record.id), "refs": many(record.refs)})
    if isinstance(record, ir.MilestoneHeading):
        return record.model_copy(update={"clause": rename(record.clause)})
    if isinstance(record, ir.LifecycleRecord):
        replace_by = rename(record.replace_by) if record.replace_by else None
        return record.model_copy(
            update={"target": rename(record.target), "replace_by": replace_by}
        )
    return record


def remap_ids(
    document: ir.DocumentModel, rename: Callable[[ir.RecordId], ir.RecordId]
) -> ir.DocumentModel:
    """Rewrite ids across every artifact of a document."""
    for artifact in ir.Artifact:
        source = document.file(artifact)
        lines = [
            ir.Line.of(remap_record(line.record, rename))
            if line.kind == ir.LineKind.RECORD
            else line
            for line in source.lines
        ]
        document = document.replace_file(source.with_lines(lines))
    return document
