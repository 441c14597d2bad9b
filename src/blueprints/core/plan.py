"""
Plan differ: apply ADD / REPLACE / REMOVE operations to a document.

Operations run in the order given. Each ADD and REPLACE is checked
against the integrity rules and rejected with ``PlanError`` if it would
introduce a new blocking violation (a requirement not yet covered is
tolerated, since coverage is built one clause at a time). Once every
operation has run, each touched collection is de-duplicated and sorted
by id. Re-applying the same plan is a no-op.

Textual plan format, one operation per line::

    # comment
    ADD spec S-NEW | R:R-003 | DO:Reject empty names | TITLE:Reject names that are empty
    REPLACE TV-004 TV-004 | R:R-003 | S:S-003 | L:U | GIVEN:a | WHEN:b | THEN:c
    REMOVE DP-099
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from . import ir
from .allocator import IdAllocator, IdPolicy, retired_ids
from .errors import GrammarError, PlanError
from .grammar import normalize_spacing, parse_record, render_record, section_line
from .validator import DEFERRABLE_CODES, check_append_only, check_integrity

logger = logging.getLogger(__name__)

PLAN_START = "---PLAN START---"
PLAN_END = "---PLAN END---"

# Ordering is restored by the final sort, so it is only checked at the end
_DEFERRED_WHILE_APPLYING = DEFERRABLE_CODES | {"id-order"}

_RECORD_ARTIFACT: dict[type, ir.Artifact] = {
    ir.Requirement: ir.Artifact.REQUIREMENTS,
    ir.SpecClause: ir.Artifact.SPEC,
    ir.CoverageExemption: ir.Artifact.SPEC,
    ir.ContractItem: ir.Artifact.CONTRACTS,
    ir.TestVector: ir.Artifact.TEST_VECTORS,
    ir.DeliveryItem: ir.Artifact.DELIVERY_PLAN,
    ir.LifecycleRecord: ir.Artifact.LIFECYCLE,
}

_SECTION_ORDER = list(ir.TaskSection)
_BLANK = ir.Line(kind=ir.LineKind.BLANK)


# =============================================================================
# Operations
# =============================================================================


@dataclass(frozen=True)
class AddOp:
    """
    Append a record.

    The record's own id may be a ``<KIND>-NEW`` placeholder, in which case
    the allocator picks the id. ``parent`` asks for the next sub-clause id
    under a spec clause instead.
    """

    record: Any
    parent: ir.RecordId | None = None


@dataclass(frozen=True)
class ReplaceOp:
    """Substitute the full content of an existing record, keeping its id."""

    target: ir.RecordId
    record: Any


@dataclass(frozen=True)
class RemoveOp:
    target: ir.RecordId


PlanOp = AddOp | ReplaceOp | RemoveOp


def format_op(op: PlanOp) -> str:
    """Render an operation in the textual plan format."""
    if isinstance(op, AddOp):
        return f"ADD {artifact_of(op.record)} {render_record(op.record)}"
    if isinstance(op, ReplaceOp):
        return f"REPLACE {op.target} {render_record(op.record)}"
    return f"REMOVE {op.target}"


@dataclass
class PlanResult:
    """
    Outcome of applying a plan.

    Attributes:
        document: The updated document
        applied: Operations that changed the document
        skipped: Operations that were no-ops (repeated ADD, REMOVE of a missing id)
        added: Ids assigned to added records
        touched: Artifacts whose content changed
    """

    document: ir.DocumentModel
    applied: list[PlanOp] = field(default_factory=list)
    skipped: list[PlanOp] = field(default_factory=list)
    added: list[ir.RecordId] = field(default_factory=list)
    touched: set[ir.Artifact] = field(default_factory=set)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


def artifact_of(record: Any) -> ir.Artifact:
    try:
        return _RECORD_ARTIFACT[type(record)]
    except KeyError:
        raise PlanError(
            f"{type(record).__name__} records cannot be added or replaced by a plan"
        ) from None


# =============================================================================
# Line helpers
# =============================================================================


def _is_milestone(line: ir.Line, clause: ir.RecordId | None = None) -> bool:
    if line.kind != ir.LineKind.RECORD or not isinstance(line.record, ir.MilestoneHeading):
        return False
    return clause is None or line.record.clause == clause


def _milestone_span(lines: list[ir.Line], clause: ir.RecordId) -> tuple[int, int] | None:
    start = next((i for i, line in enumerate(lines) if _is_milestone(line, clause)), None)
    if start is None:
        return None
    end = next(
        (i for i in range(start + 1, len(lines)) if _is_milestone(lines[i])),
        len(lines),
    )
    return start, end


def _insert_milestone(lines: list[ir.Line], heading: ir.MilestoneHeading) -> list[ir.Line]:
    """Insert a milestone heading before the first milestone of a later clause."""
    for i, line in enumerate(lines):
        if _is_milestone(line) and line.record.clause > heading.clause:  # type: ignore[union-attr]
            return lines[:i] + [ir.Line.of(heading), _BLANK] + lines[i:]
    block = [ir.Line.of(heading)]
    if lines and lines[-1].kind != ir.LineKind.BLANK:
        block.insert(0, _BLANK)
    return lines + block


def ensure_milestone(document: ir.DocumentModel, clause: ir.RecordId) -> ir.DocumentModel:
    """
    Return a document where ``clause`` has a milestone heading.

    Raises:
        PlanError: If the clause does not exist
    """
    plan = document.file(ir.Artifact.DELIVERY_PLAN)
    if _milestone_span(plan.lines, clause) is not None:
        return document
    record = document.find(clause)
    if not isinstance(record, ir.SpecClause):
        raise PlanError(f"No spec clause '{clause}' to open a milestone for")
    logger.debug("Opening milestone for %s", clause)
    heading = ir.MilestoneHeading(clause=clause, title=record.title)
    return document.replace_file(plan.with_lines(_insert_milestone(plan.lines, heading)))


def _place_item(lines: list[ir.Line], item: ir.DeliveryItem) -> list[ir.Line]:
    """Insert an item at the end of its section, creating the section if needed."""
    span = _milestone_span(lines, item.clause_refs[0])
    if span is None:
        raise PlanError(
            f"Rejected '{render_record(item)}': no milestone for '{item.clause_refs[0]}'"
        )
    start, end = span
    section = item.section
    entry = ir.Line.of(item)

    for i in range(start + 1, end):
        line = lines[i]
        if line.kind == ir.LineKind.SECTION and line.section == section:
            last = i
            for j in range(i + 1, end):
                if lines[j].kind == ir.LineKind.SECTION:
                    break
                if lines[j].kind != ir.LineKind.BLANK:
                    last = j
            return lines[: last + 1] + [entry] + lines[last + 1 :]

    rank = _SECTION_ORDER.index(section)
    for i in range(start + 1, end):
        line = lines[i]
        if line.kind == ir.LineKind.SECTION and _SECTION_ORDER.index(line.section) > rank:  # type: ignore[arg-type]
            return lines[:i] + [section_line(section), entry, _BLANK] + lines[i:]

    last = max(i for i in range(start, end) if lines[i].kind != ir.LineKind.BLANK)
    return lines[: last + 1] + [_BLANK, section_line(section), entry] + lines[last + 1 :]


def _append_record(lines: list[ir.Line], record: Any) -> list[ir.Line]:
    """Append after the last record line, or at the end of the file."""
    last = max((i for i, line in enumerate(lines) if line.kind == ir.LineKind.RECORD), default=None)
    if last is None:
        return lines + [ir.Line.of(record)]
    return lines[: last + 1] + [ir.Line.of(record)] + lines[last + 1 :]


def _drop_record(lines: list[ir.Line], target: ir.RecordId) -> list[ir.Line]:
    return [
        line
        for line in lines
        if line.kind != ir.LineKind.RECORD or ir.record_id(line.record) != target
    ]


def _sort_slots(lines: list[ir.Line], slots: list[int], key: Any) -> list[ir.Line]:
    """De-duplicate and sort the records at ``slots``, reusing those positions."""
    records: list[Any] = []
    for i in slots:
        if lines[i].record not in records:
            records.append(lines[i].record)
    ordered = iter(sorted(records, key=key))
    slot_set = set(slots)
    result: list[ir.Line] = []
    for i, line in enumerate(lines):
        if i not in slot_set:
            result.append(line)
            continue
        record = next(ordered, None)
        if record is not None:
            result.append(ir.Line.of(record))
    return result


def _tidy(file: ir.ArtifactFile) -> ir.ArtifactFile:
    """De-duplicate and sort a collection. The lifecycle ledger keeps append order."""
    lines = file.lines
    if file.artifact == ir.Artifact.LIFECYCLE:
        return file

    if file.artifact != ir.Artifact.DELIVERY_PLAN:
        slots = [i for i, line in enumerate(lines) if line.kind == ir.LineKind.RECORD]
        position = {id(lines[i].record): n for n, i in enumerate(slots)}

        def key(record: Any) -> tuple[int, Any]:
            rid = ir.record_id(record)
            return (0, rid) if rid is not None else (1, position[id(record)])

        return file.with_lines(_sort_slots(lines, slots, key))

    # Delivery items sort within their own section
    groups: list[list[int]] = [[]]
    for i, line in enumerate(lines):
        if line.kind == ir.LineKind.SECTION or _is_milestone(line):
            groups.append([])
        elif line.kind == ir.LineKind.RECORD and isinstance(line.record, ir.DeliveryItem):
            groups[-1].append(i)
    for slots in reversed(groups):
        if slots:
            lines = _sort_slots(lines, slots, lambda item: item.id)
    return file.with_lines(lines)


# =============================================================================
# Applying operations
# =============================================================================


class _Applier:
    def __init__(self, document: ir.DocumentModel, allocator: IdAllocator):
        self.document = document
        self.allocator = allocator
        self.result = PlanResult(document=document)
        self.removed: set[ir.RecordId] = set()
        self.keys = self._blocking_keys(document)

    @staticmethod
    def _blocking_keys(
        document: ir.DocumentModel, deferred: frozenset[str] = _DEFERRED_WHILE_APPLYING
    ) -> set[tuple[str, str]]:
        return {
            (v.code, v.message)
            for v in check_integrity(document)
            if v.blocking and v.code not in deferred
        }

    def _commit(self, op: PlanOp, candidate: ir.DocumentModel, artifacts: set[ir.Artifact]) -> None:
        if not isinstance(op, RemoveOp):
            after = self._blocking_keys(candidate)
            introduced = sorted(message for _, message in after - self.keys)
            if introduced:
                raise PlanError(f"Rejected '{format_op(op)}': " + "; ".join(introduced))
            self.keys = after
        else:
            self.keys = self._blocking_keys(candidate)
        self.document = candidate
        self.result.applied.append(op)
        self.result.touched |= artifacts
        logger.debug("Applied %s", format_op(op))

    def _skip(self, op: PlanOp, why: str) -> None:
        logger.debug("Skipped %s (%s)", format_op(op), why)
        self.result.skipped.append(op)

    # -- ADD -----------------------------------------------------------------

    def _resolve_id(self, rid: ir.RecordId, parent: ir.RecordId | None) -> ir.RecordId:
        existing = self.document.ids(rid.kind)
        retired = retired_ids(self.document, rid.kind) | {
            r for r in self.removed if r.kind == rid.kind
        }
        if rid.is_placeholder:
            if parent is not None:
                return self.allocator.next_sub_id(parent, [*existing, *retired])
            return self.allocator.next_id(rid.kind, existing, retired)

        if rid in existing or rid in retired:
            raise PlanError(f"Id '{rid}' has already been issued")
        if self.allocator.policy == IdPolicy.UPDATE:
            if rid.sub:
                floor = self.allocator.next_sub_id(rid.parent, [*existing, *retired])
            else:
                floor = self.allocator.next_id(rid.kind, existing, retired)
            if rid < floor:
                raise PlanError(f"Id '{rid}' would precede issued ids; next is '{floor}'")
        return rid

    def add(self, op: AddOp) -> None:
        record = op.record
        artifact = artifact_of(record)
        source = self.document.file(artifact)
        if any(ir.same_content(existing, record) for existing in source.records()):
            self._skip(op, "identical record exists")
            return

        rid = ir.record_id(record)
        if rid is not None:
            rid = self._resolve_id(rid, op.parent)
            record = record.model_copy(update={"id": rid})
            self.result.added.append(rid)

        candidate = self.document
        touched = {artifact}
        if isinstance(record, ir.DeliveryItem):
            candidate = ensure_milestone(candidate, record.clause_refs[0])
            plan = candidate.file(artifact)
            candidate = candidate.replace_file(plan.with_lines(_place_item(plan.lines, record)))
        else:
            candidate = candidate.replace_file(
                source.with_lines(_append_record(source.lines, record))
            )
        self._commit(op, candidate, touched)

    def _check_not_added(self, op: ReplaceOp | RemoveOp) -> None:
        # A re-run would allocate a fresh id for the ADD and edit the old one
        if op.target in self.result.added:
            raise PlanError(
                f"Rejected '{format_op(op)}': '{op.target}' is added by this plan; "
                "put the final content in the ADD instead"
            )

    # -- REPLACE -------------------------------------------------------------

    def replace(self, op: ReplaceOp) -> None:
        self._check_not_added(op)
        current = self.document.find(op.target)
        if current is None:
            raise PlanError(f"Cannot replace '{op.target}': no such record")
        if type(op.record) is not type(current):
            raise PlanError(
                f"Cannot replace '{op.target}' with a {type(op.record).__name__} record"
            )
        record = op.record.model_copy(update={"id": op.target})
        if record == current:
            self._skip(op, "content unchanged")
            return

        artifact = artifact_of(record)
        touched = {artifact}
        candidate = self.document
        if isinstance(record, ir.DeliveryItem):
            plan = candidate.file(artifact)
            candidate = candidate.replace_file(plan.with_lines(_drop_record(plan.lines, op.target)))
            candidate = ensure_milestone(candidate, record.clause_refs[0])
            plan = candidate.file(artifact)
            candidate = candidate.replace_file(plan.with_lines(_place_item(plan.lines, record)))
        else:
            source = candidate.file(artifact)
            lines = [
                ir.Line.of(record)
                if line.kind == ir.LineKind.RECORD and ir.record_id(line.record) == op.target
                else line
                for line in source.lines
            ]
            candidate = candidate.replace_file(source.with_lines(lines))
            if isinstance(record, ir.SpecClause) and record.title != current.title:
                # Milestone titles are copied from their clause
                plan = candidate.file(ir.Artifact.DELIVERY_PLAN)
                heading = ir.MilestoneHeading(clause=op.target, title=record.title)
                lines = [
                    ir.Line.of(heading) if _is_milestone(line, op.target) else line
                    for line in plan.lines
                ]
                candidate = candidate.replace_file(plan.with_lines(lines))
                touched.add(ir.Artifact.DELIVERY_PLAN)
        self._commit(op, candidate, touched)

    # -- REMOVE --------------------------------------------------------------

    def remove(self, op: RemoveOp) -> None:
        self._check_not_added(op)
        artifact = ir.KIND_ARTIFACT[op.target.kind]
        source = self.document.file(artifact)
        lines = _drop_record(source.lines, op.target)
        if len(lines) == len(source.lines):
            self._skip(op, "no such record")
            return
        self.removed.add(op.target)
        self._commit(op, self.document.replace_file(source.with_lines(lines)), {artifact})

    def finish(self, original: ir.DocumentModel) -> PlanResult:
        document = self.document
        for artifact in self.result.touched:
            document = document.replace_file(_tidy(document.file(artifact)))

        before = self._blocking_keys(original, DEFERRABLE_CODES)
        after = self._blocking_keys(document, DEFERRABLE_CODES)
        introduced = sorted(message for _, message in after - before)
        introduced += [v.message for v in check_append_only(original, document)]
        if introduced:
            raise PlanError("Plan leaves the blueprints inconsistent: " + "; ".join(introduced))

        self.result.document = document
        return self.result


def apply_plan(
    document: ir.DocumentModel,
    ops: list[PlanOp],
    allocator: IdAllocator | None = None,
) -> PlanResult:
    """
    Apply operations in order and return the updated document.

    Args:
        document: Current document (not modified)
        ops: Operations, applied in the given order
        allocator: Id allocator; defaults to the update policy

    Returns:
        PlanResult with the new document and a record of what happened

    Raises:
        PlanError: If an operation is rejected; nothing is applied
    """
    applier = _Applier(document, allocator or IdAllocator())
    for op in ops:
        if isinstance(op, AddOp):
            applier.add(op)
        elif isinstance(op, ReplaceOp):
            applier.replace(op)
        elif isinstance(op, RemoveOp):
            applier.remove(op)
        else:
            raise PlanError(f"Unknown plan operation: {op!r}")
    result = applier.finish(document)
    logger.info(
        "Plan applied: %d changed, %d skipped", len(result.applied), len(result.skipped)
    )
    return result


# =============================================================================
# Textual plans
# =============================================================================


def parse_plan(text: str) -> list[PlanOp]:
    """
    Parse the textual plan format.

    ADD lines get their spacing normalized before parsing; REPLACE and
    REMOVE lines are taken as written.

    Raises:
        PlanError: On an unknown verb, artifact or id
        GrammarError: If a record line is rejected
    """
    ops: list[PlanOp] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        verb, _, rest = line.partition(" ")
        try:
            if verb == "ADD":
                name, _, record_text = rest.partition(" ")
                try:
                    artifact = ir.Artifact(name)
                except ValueError:
                    raise PlanError(f"line {number}: unknown artifact '{name}'") from None
                record = parse_record(artifact, normalize_spacing(record_text), allow_placeholder=True)
                ops.append(AddOp(record))
            elif verb == "REPLACE":
                target_text, _, record_text = rest.partition(" ")
                target = _parse_target(target_text, number)
                artifact = ir.KIND_ARTIFACT[target.kind]
                record = parse_record(artifact, record_text, allow_placeholder=True)
                ops.append(ReplaceOp(target, record))
            elif verb == "REMOVE":
                ops.append(RemoveOp(_parse_target(rest, number)))
            else:
                raise PlanError(f"line {number}: unknown operation '{verb}'")
        except GrammarError as e:
            raise e.at(None, number) from None
    return ops


def _parse_target(text: str, number: int) -> ir.RecordId:
    try:
        return ir.RecordId.parse(text.strip())
    except ValueError as e:
        raise PlanError(f"line {number}: {e}") from None


def extract_plan_block(output: str) -> str | None:
    """
    Return the text between ``---PLAN START---`` and ``---PLAN END---``.

    Returns None when no complete block is present.
    """
    in_plan = False
    collected: list[str] = []
    for raw in output.splitlines():
        line = raw.rstrip("\r")
        if line == PLAN_START:
            in_plan = True
            continue
        if line == PLAN_END:
            if in_plan:
                return "\n".join(collected)
            break
        if in_plan:
            collected.append(line)
    return None
